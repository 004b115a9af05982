from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable, Sequence

from scope_burndown.config import EstimatorConfig
from scope_burndown.estimation.allocation import RoleCapacity, role_capacity
from scope_burndown.estimation.calendar.workdays import WorkdayCalendar
from scope_burndown.estimation.domain.models import (
    DeliveryEstimate,
    PlannedAllocation,
    Project,
    ProjectTeamAssignment,
    RoleEstimate,
    ScopeSnapshot,
    TeamMember,
    WorkflowDependency,
)
from scope_burndown.estimation.effort import (
    as_number,
    assigned_role_fte,
    done_to_spent_mandays,
    role_remaining,
    staffed_assignments,
    team_role_fte,
)
from scope_burndown.estimation.workflow import build_role_graph, schedule_roles


logger = logging.getLogger(__name__)


def ceil_days(days: float) -> int:
    # Round first so float noise (3.0000000001) does not add a whole day.
    return int(math.ceil(round(days, 9)))


@dataclass
class DeliveryEstimator:
    """Projects a completion date per project from remaining work and capacity.

    Roles work concurrently: duration is the longest role, not the sum. With a
    workflow, roles are ordered by their dependencies and blocked/waiting
    roles push the final date out additively.
    """

    calendar: WorkdayCalendar = field(default_factory=WorkdayCalendar)
    config: EstimatorConfig = field(default_factory=EstimatorConfig)

    # --- Building blocks ---------------------------------------------------

    def reference_start(self, project: Project, today: date) -> date:
        if project.start_date is not None and project.start_date > today:
            return project.start_date
        return today

    def role_estimates(
        self,
        project: Project,
        fte_for: Callable[[str], float],
    ) -> list[RoleEstimate]:
        out: list[RoleEstimate] = []
        for role, effort in project.roles.items():
            planned = as_number(effort.planned)
            spent = done_to_spent_mandays(
                planned,
                effort.done,
                warn=self.config.warn_on_percent_heuristic,
            )
            remaining = role_remaining(effort, warn=False)
            fte = fte_for(role)
            effective = fte if fte > 0 else self.config.default_fte
            out.append(
                RoleEstimate(
                    role=role,
                    planned_mandays=planned,
                    spent_mandays=spent,
                    remaining_mandays=remaining,
                    fte=effective,
                    days_needed=ceil_days(max(0.0, remaining) / effective),
                )
            )
        return out

    def penalty_days(self, estimate: RoleEstimate, status: str | None) -> int:
        normal_days = max(0.0, estimate.remaining_mandays) / estimate.fte
        if status == "blocked":
            return ceil_days(normal_days * self.config.penalties.blocked_ratio)
        if status == "waiting":
            return ceil_days(normal_days * self.config.penalties.waiting_ratio)
        return 0

    def _finish(
        self,
        project: Project,
        completion: date,
        today: date,
        mode: str,
        roles: Sequence[RoleEstimate],
        penalty_workdays: int = 0,
    ) -> DeliveryEstimate:
        deadline = project.delivery_date
        slip = self.calendar.workdays_diff(completion, deadline) if deadline is not None else None
        return DeliveryEstimate(
            project_id=project.project_id,
            calculated_delivery_date=completion,
            delivery_date=deadline,
            slip_workdays=slip,
            duration_workdays=self.calendar.workdays_diff(today, completion),
            mode=mode,
            penalty_workdays=penalty_workdays,
            roles=tuple(roles),
        )

    def unschedulable(self, project: Project, mode: str, reason: str) -> DeliveryEstimate:
        logger.info("Project %s cannot be scheduled: %s", project.project_id, reason)
        return DeliveryEstimate(
            project_id=project.project_id,
            calculated_delivery_date=None,
            delivery_date=project.delivery_date,
            slip_workdays=None,
            duration_workdays=None,
            mode=mode,
            unschedulable=True,
            reason=reason,
        )

    # --- Estimation modes --------------------------------------------------

    def estimate(
        self,
        project: Project,
        team: Sequence[TeamMember],
        today: date | None = None,
    ) -> DeliveryEstimate:
        """Basic mode: capacity is the team's global FTE per role."""
        today = today or date.today()
        roles = self.role_estimates(project, lambda r: team_role_fte(r, team))
        duration = max((r.days_needed for r in roles), default=0)
        completion = self.calendar.add_workdays(self.reference_start(project, today), duration)
        return self._finish(project, completion, today, "basic", roles)

    def estimate_with_assignments(
        self,
        project: Project,
        team: Sequence[TeamMember],
        assignments: Sequence[ProjectTeamAssignment],
        today: date | None = None,
    ) -> DeliveryEstimate:
        """Capacity is what is allocated to this project.

        Assignments of people no longer on the team are dropped first; when
        none remain the project gets no date.
        """
        today = today or date.today()
        assignments = staffed_assignments(assignments, team)
        if not assignments:
            return self.unschedulable(project, "assignments", "no team members assigned")
        roles = self.role_estimates(project, lambda r: assigned_role_fte(r, assignments, team))
        duration = max((r.days_needed for r in roles), default=0)
        completion = self.calendar.add_workdays(self.reference_start(project, today), duration)
        return self._finish(project, completion, today, "assignments", roles)

    def estimate_with_allocation(
        self,
        project: Project,
        team: Sequence[TeamMember],
        allocations: Sequence[PlannedAllocation],
        today: date | None = None,
        date_to: date | None = None,
    ) -> DeliveryEstimate:
        """Role capacity comes from planned allocations from the reference start on.

        How allocations are read (fte, allocation, hybrid) is set by the
        estimator's allocation config.
        """
        today = today or date.today()
        start = self.reference_start(project, today)
        settings = self.config.allocation
        capacities: dict[str, RoleCapacity] = {}

        def fte_for(role: str) -> float:
            cap = role_capacity(role, project.project_id, team, allocations, settings, start, date_to)
            capacities[role] = cap
            return cap.fte

        roles = [
            replace(r, allocation_days=capacities[r.role].allocation_days)
            for r in self.role_estimates(project, fte_for)
        ]
        duration = max((r.days_needed for r in roles), default=0)
        completion = self.calendar.add_workdays(start, duration)
        return self._finish(project, completion, today, "allocation", roles)

    def estimate_with_workflow(
        self,
        project: Project,
        team: Sequence[TeamMember],
        assignments: Sequence[ProjectTeamAssignment] | None,
        workflow: WorkflowDependency,
        today: date | None = None,
    ) -> DeliveryEstimate:
        """Two passes: schedule roles by dependency, then add blocked/waiting penalties.

        Penalties are summed per role and added to the latest role end, not
        threaded through each role's own timeline. A dependency cycle falls
        back to the dependency-free estimate and is flagged on the result.
        """
        today = today or date.today()
        if assignments is not None:
            assignments = staffed_assignments(assignments, team)
        if assignments is not None and not assignments:
            return self.unschedulable(project, "workflow", "no team members assigned")

        if assignments is None:
            fte_for: Callable[[str], float] = lambda r: team_role_fte(r, team)
        else:
            fte_for = lambda r: assigned_role_fte(r, assignments, team)
        roles = self.role_estimates(project, fte_for)

        start = self.reference_start(project, today)
        graph = build_role_graph(workflow, [r.role for r in roles])
        schedule = schedule_roles(graph, {r.role: r.days_needed for r in roles}, start, self.calendar)

        if schedule.has_cycle:
            logger.warning(
                "Dependency cycle %s in project %s, using the estimate without workflow",
                " -> ".join(schedule.cycle),
                project.project_id,
            )
            if assignments is None:
                fallback = self.estimate(project, team, today)
            else:
                fallback = self.estimate_with_assignments(project, team, assignments, today)
            return replace(
                fallback,
                cycle_detected=True,
                cycle=schedule.cycle,
                reason="dependency cycle detected",
            )

        scheduled: list[RoleEstimate] = []
        total_penalty = 0
        for r in roles:
            penalty = self.penalty_days(r, workflow.status_of(r.role))
            total_penalty += penalty
            scheduled.append(
                replace(
                    r,
                    start_date=schedule.starts.get(r.role),
                    end_date=schedule.ends.get(r.role),
                    penalty_days=penalty,
                )
            )

        completion = self.calendar.add_workdays(schedule.latest_end(start), total_penalty)
        return self._finish(project, completion, today, "workflow", scheduled, total_penalty)

    def estimate_for_snapshot(
        self,
        project: Project,
        snapshot: ScopeSnapshot,
        today: date | None = None,
    ) -> DeliveryEstimate:
        """Pick the richest mode the snapshot has data for."""
        workflow = snapshot.workflows.get(project.project_id)
        if not snapshot.uses_assignments:
            if workflow is not None:
                return self.estimate_with_workflow(project, snapshot.team, None, workflow, today)
            if self.config.allocation.uses_allocations:
                return self.estimate_with_allocation(project, snapshot.team, snapshot.allocations, today)
            return self.estimate(project, snapshot.team, today)

        assignments = snapshot.assignments_for(project.project_id)
        if workflow is not None:
            return self.estimate_with_workflow(project, snapshot.team, assignments, workflow, today)
        return self.estimate_with_assignments(project, snapshot.team, assignments, today)
