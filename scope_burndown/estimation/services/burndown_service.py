from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Sequence

from scope_burndown.config import BurndownConfig
from scope_burndown.estimation import allocation
from scope_burndown.estimation.calendar.workdays import HolidayCalendarCache, WorkdayCalendar
from scope_burndown.estimation.domain.models import (
    AverageSlipResult,
    DeliveryEstimate,
    MemberCapacity,
    PlannedAllocation,
    PriorityWindow,
    Project,
    ProjectTeamAssignment,
    ScopeCalendarSettings,
    ScopeSnapshot,
    TeamCapacity,
    TeamMember,
    WorkflowDependency,
)
from scope_burndown.estimation.services.delivery import DeliveryEstimator
from scope_burndown.estimation.services.sequencer import PrioritySequencer
from scope_burndown.estimation.services.slip_report import CalculateAverageSlip
from scope_burndown.integration.event_bus import EventBus
from scope_burndown.integration.events import (
    DeliveryEstimated,
    PlannedAllocationsReplaced,
    ProjectAssignmentsReplaced,
    ProjectRemoved,
    ProjectUpserted,
    ScopeCalendarChanged,
    ScopeSnapshotLoaded,
    SlipReportComputed,
    TeamMemberRemoved,
    TeamMemberUpserted,
    WorkflowConfigured,
)


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScopeState:
    scope_id: str
    calendar: ScopeCalendarSettings
    projects: dict[str, Project] = field(default_factory=dict)
    team: dict[str, TeamMember] = field(default_factory=dict)
    assignments: dict[str, tuple[ProjectTeamAssignment, ...]] = field(default_factory=dict)
    workflows: dict[str, WorkflowDependency] = field(default_factory=dict)
    allocations: tuple[PlannedAllocation, ...] = ()

    @classmethod
    def from_snapshot(cls, snapshot: ScopeSnapshot) -> "ScopeState":
        assignments: dict[str, list[ProjectTeamAssignment]] = {}
        for a in snapshot.assignments:
            assignments.setdefault(a.project_id, []).append(a)
        return cls(
            scope_id=snapshot.scope_id,
            calendar=snapshot.calendar,
            projects={p.project_id: p for p in snapshot.projects},
            team={m.member_id: m for m in snapshot.team},
            assignments={pid: tuple(items) for pid, items in assignments.items()},
            workflows=dict(snapshot.workflows),
            allocations=tuple(snapshot.allocations),
        )

    def to_snapshot(self) -> ScopeSnapshot:
        return ScopeSnapshot(
            scope_id=self.scope_id,
            projects=tuple(self.projects.values()),
            team=tuple(self.team.values()),
            assignments=tuple(a for items in self.assignments.values() for a in items),
            workflows=dict(self.workflows),
            calendar=self.calendar,
            allocations=self.allocations,
        )


@dataclass
class ScopeBurndownService:
    """Event-driven holder of scope state that serves delivery and slip reports.

    Every computation runs on a fresh snapshot of the current state; only the
    holiday cache is shared between calls.
    """

    bus: EventBus
    config: BurndownConfig = field(default_factory=BurndownConfig)
    holiday_cache: HolidayCalendarCache = field(default_factory=HolidayCalendarCache)
    auto_recompute: bool = False
    today_provider: Callable[[], date] = date.today

    _scopes: dict[str, ScopeState] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.bus.subscribe(ScopeSnapshotLoaded, self._on_snapshot_loaded)
        self.bus.subscribe(ProjectUpserted, self._on_project_upserted)
        self.bus.subscribe(ProjectRemoved, self._on_project_removed)
        self.bus.subscribe(TeamMemberUpserted, self._on_member_upserted)
        self.bus.subscribe(TeamMemberRemoved, self._on_member_removed)
        self.bus.subscribe(ProjectAssignmentsReplaced, self._on_assignments_replaced)
        self.bus.subscribe(WorkflowConfigured, self._on_workflow_configured)
        self.bus.subscribe(PlannedAllocationsReplaced, self._on_allocations_replaced)
        self.bus.subscribe(ScopeCalendarChanged, self._on_calendar_changed)

    def _maybe_recompute(self, scope_ids: Sequence[str]) -> None:
        if not self.auto_recompute:
            return
        for sid in set(scope_ids):
            try:
                self.average_slip(scope_id=sid)
            except Exception:
                logger.exception("Auto slip recompute failed for scope %s", sid)

    def _state(self, scope_id: str) -> ScopeState:
        st = self._scopes.get(scope_id)
        if st is None:
            st = ScopeState(scope_id=scope_id, calendar=self.config.calendar.to_settings())
            self._scopes[scope_id] = st
        return st

    # --- Event handlers -----------------------------------------------------

    def _on_snapshot_loaded(self, e: ScopeSnapshotLoaded) -> None:
        self._scopes[e.snapshot.scope_id] = ScopeState.from_snapshot(e.snapshot)
        self._maybe_recompute([e.snapshot.scope_id])

    def _on_project_upserted(self, e: ProjectUpserted) -> None:
        self._state(e.scope_id).projects[e.project.project_id] = e.project
        self._maybe_recompute([e.scope_id])

    def _on_project_removed(self, e: ProjectRemoved) -> None:
        st = self._scopes.get(e.scope_id)
        if st is None:
            return
        st.projects.pop(e.project_id, None)
        st.assignments.pop(e.project_id, None)
        st.workflows.pop(e.project_id, None)
        self._maybe_recompute([e.scope_id])

    def _on_member_upserted(self, e: TeamMemberUpserted) -> None:
        self._state(e.scope_id).team[e.member.member_id] = e.member
        self._maybe_recompute([e.scope_id])

    def _on_member_removed(self, e: TeamMemberRemoved) -> None:
        st = self._scopes.get(e.scope_id)
        if st is None:
            return
        st.team.pop(e.member_id, None)
        # Assignments and planned allocations of a removed member go with them.
        for pid, items in list(st.assignments.items()):
            st.assignments[pid] = tuple(a for a in items if a.team_member_id != e.member_id)
        st.allocations = tuple(a for a in st.allocations if a.team_member_id != e.member_id)
        self._maybe_recompute([e.scope_id])

    def _on_assignments_replaced(self, e: ProjectAssignmentsReplaced) -> None:
        self._state(e.scope_id).assignments[e.project_id] = tuple(e.assignments)
        self._maybe_recompute([e.scope_id])

    def _on_workflow_configured(self, e: WorkflowConfigured) -> None:
        self._state(e.scope_id).workflows[e.workflow.project_id] = e.workflow
        self._maybe_recompute([e.scope_id])

    def _on_allocations_replaced(self, e: PlannedAllocationsReplaced) -> None:
        self._state(e.scope_id).allocations = tuple(e.allocations)
        self._maybe_recompute([e.scope_id])

    def _on_calendar_changed(self, e: ScopeCalendarChanged) -> None:
        st = self._state(e.scope_id)
        self.holiday_cache.invalidate(st.calendar.country, st.calendar.subdivision)
        self.holiday_cache.invalidate(e.settings.country, e.settings.subdivision)
        st.calendar = e.settings
        self._maybe_recompute([e.scope_id])

    # --- Report API ---------------------------------------------------------

    def scope_ids(self) -> list[str]:
        return sorted(self._scopes)

    def snapshot(self, scope_id: str) -> ScopeSnapshot:
        st = self._scopes.get(scope_id)
        if st is None:
            raise KeyError(f"Unknown scope: {scope_id}")
        return st.to_snapshot()

    def reporter(self, settings: ScopeCalendarSettings) -> CalculateAverageSlip:
        estimator = DeliveryEstimator(
            calendar=WorkdayCalendar(settings=settings, cache=self.holiday_cache),
            config=self.config.estimator,
        )
        return CalculateAverageSlip(sequencer=PrioritySequencer(estimator=estimator))

    def delivery_estimates(
        self,
        scope_id: str,
        today: date | None = None,
    ) -> dict[str, DeliveryEstimate]:
        snap = self.snapshot(scope_id)
        today = today or self.today_provider()
        estimator = self.reporter(snap.calendar).sequencer.estimator

        results: dict[str, DeliveryEstimate] = {}
        for project in snap.projects:
            est = estimator.estimate_for_snapshot(project, snap, today)
            results[project.project_id] = est
            self.bus.publish(
                DeliveryEstimated(
                    occurred_at=_now(),
                    scope_id=scope_id,
                    project_id=project.project_id,
                    result=asdict(est),
                )
            )
        return results

    def priority_windows(
        self,
        scope_id: str,
        today: date | None = None,
    ) -> dict[str, PriorityWindow]:
        snap = self.snapshot(scope_id)
        today = today or self.today_provider()
        return self.reporter(snap.calendar).sequencer.windows_for_snapshot(snap, today=today)

    def average_slip(self, scope_id: str, today: date | None = None) -> AverageSlipResult:
        snap = self.snapshot(scope_id)
        today = today or self.today_provider()
        result = self.reporter(snap.calendar).execute(snap, today=today)
        self.bus.publish(
            SlipReportComputed(
                occurred_at=_now(),
                scope_id=scope_id,
                result=asdict(result),
            )
        )
        return result

    def _capacity_range(
        self,
        date_from: date | None,
        date_to: date | None,
    ) -> tuple[date, date]:
        start = date_from or self.today_provider()
        end = date_to or start + timedelta(days=self.config.estimator.allocation.capacity_horizon_days)
        if end < start:
            raise ValueError(f"Capacity range ends ({end}) before it starts ({start})")
        return start, end

    def team_capacity(
        self,
        scope_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> TeamCapacity:
        """Base and planned FTE of every team member over a date range.

        Without a range it covers today plus the configured horizon.
        """
        snap = self.snapshot(scope_id)
        start, end = self._capacity_range(date_from, date_to)
        return allocation.team_capacity(snap.team, snap.allocations, self.config.estimator.allocation, start, end)

    def project_capacity(
        self,
        scope_id: str,
        project_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> tuple[MemberCapacity, ...]:
        snap = self.snapshot(scope_id)
        if project_id not in {p.project_id for p in snap.projects}:
            raise KeyError(f"Unknown project {project_id} in scope {scope_id}")
        start, end = self._capacity_range(date_from, date_to)
        return allocation.project_capacity(
            project_id,
            snap.team,
            snap.allocations,
            self.config.estimator.allocation,
            start,
            end,
        )
