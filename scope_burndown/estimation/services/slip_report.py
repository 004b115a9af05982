from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

import numpy as np

from scope_burndown.estimation.domain.models import (
    AverageSlipResult,
    DeliveryEstimate,
    PriorityWindow,
    ScopeSnapshot,
)
from scope_burndown.estimation.services.sequencer import PrioritySequencer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectSlip:
    project_id: str
    estimate: DeliveryEstimate
    window: PriorityWindow | None
    slip_workdays: int | None
    basis: str | None  # "deadline", "priority" or None when unresolvable


def round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


@dataclass
class CalculateAverageSlip:
    """Scope-level slip summary.

    Each project's slip is measured against its explicit deadline, or
    against its priority window end when it has none. Projects with neither
    stay out of the average but count towards the total.
    """

    sequencer: PrioritySequencer = field(default_factory=PrioritySequencer)

    def project_slips(self, snapshot: ScopeSnapshot, today: date | None = None) -> list[ProjectSlip]:
        today = today or date.today()
        estimator = self.sequencer.estimator
        windows = self.sequencer.windows_for_snapshot(snapshot, today=today)

        out: list[ProjectSlip] = []
        for project in snapshot.projects:
            estimate = estimator.estimate_for_snapshot(project, snapshot, today)
            window = windows.get(project.project_id)
            slip: int | None = None
            basis: str | None = None
            if estimate.slip_workdays is not None:
                slip, basis = estimate.slip_workdays, "deadline"
            elif window is not None:
                slip = self.sequencer.priority_slippage(estimate, window)
                basis = "priority" if slip is not None else None
            out.append(
                ProjectSlip(
                    project_id=project.project_id,
                    estimate=estimate,
                    window=window,
                    slip_workdays=slip,
                    basis=basis,
                )
            )
        return out

    def execute(self, snapshot: ScopeSnapshot, today: date | None = None) -> AverageSlipResult:
        total = len(snapshot.projects)
        if total == 0:
            return AverageSlipResult.empty()

        rows = self.project_slips(snapshot, today)
        per_project = {r.project_id: r.slip_workdays for r in rows}
        unschedulable = sum(1 for r in rows if r.estimate.unschedulable)

        slips = np.array([r.slip_workdays for r in rows if r.slip_workdays is not None], dtype=float)
        logger.debug("Scope %s: %d of %d projects have a slip", snapshot.scope_id, slips.size, total)
        if slips.size == 0:
            return AverageSlipResult(
                average_slip=0,
                total_projects=total,
                delayed_projects=0,
                on_time_projects=0,
                ahead_projects=0,
                unschedulable_projects=unschedulable,
                project_slips=per_project,
            )

        return AverageSlipResult(
            average_slip=round_half_up(float(np.mean(slips))),
            total_projects=total,
            delayed_projects=int(np.count_nonzero(slips < 0)),
            on_time_projects=int(np.count_nonzero(slips == 0)),
            ahead_projects=int(np.count_nonzero(slips > 0)),
            unschedulable_projects=unschedulable,
            project_slips=per_project,
        )
