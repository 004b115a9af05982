from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Mapping, Sequence

from scope_burndown.estimation.domain.models import (
    SCHEDULABLE_STATUS_RANK,
    STATUS_IN_PROGRESS,
    DeliveryEstimate,
    PlannedAllocation,
    PriorityWindow,
    Project,
    ProjectTeamAssignment,
    ScopeSnapshot,
    TeamMember,
    WorkflowDependency,
)
from scope_burndown.estimation.allocation import role_capacity
from scope_burndown.estimation.effort import assigned_role_fte, staffed_assignments, team_role_fte
from scope_burndown.estimation.services.delivery import DeliveryEstimator


logger = logging.getLogger(__name__)


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def sort_key(project: Project) -> tuple[int, int, datetime]:
    """Priority first, then in_progress < not_started < paused, then age."""
    rank = SCHEDULABLE_STATUS_RANK.get(project.effective_status, len(SCHEDULABLE_STATUS_RANK) + 1)
    return (int(project.priority), rank, _aware(project.created_at))


def active_projects(projects: Sequence[Project]) -> list[Project]:
    return sorted(
        (p for p in projects if p.effective_status in SCHEDULABLE_STATUS_RANK),
        key=sort_key,
    )


@dataclass
class PrioritySequencer:
    """Lays active projects end-to-end on the team calendar by priority.

    In-progress projects keep their real start; every other project starts
    the workday after the previous one ends. Projects that cannot be staffed
    get a window without dates and do not hold up the queue.
    """

    estimator: DeliveryEstimator = field(default_factory=DeliveryEstimator)

    def project_duration(
        self,
        project: Project,
        team: Sequence[TeamMember],
        assignments: Sequence[ProjectTeamAssignment] | None,
        workflow: WorkflowDependency | None = None,
        allocations: Sequence[PlannedAllocation] | None = None,
        start: date | None = None,
    ) -> int | None:
        """Workdays the project needs, or None when it cannot be completed."""
        if assignments is None:
            settings = self.estimator.config.allocation
            if allocations is not None and settings.uses_allocations:
                roles = self.estimator.role_estimates(
                    project,
                    lambda r: role_capacity(r, project.project_id, team, allocations, settings, start).fte,
                )
            else:
                roles = self.estimator.role_estimates(project, lambda r: team_role_fte(r, team))
            unstaffed = [
                r.role
                for r in roles
                if r.remaining_mandays > 0 and team_role_fte(r.role, team) <= 0
            ]
            if unstaffed:
                logger.info(
                    "Project %s has no team capacity for %s",
                    project.project_id,
                    ", ".join(unstaffed),
                )
                return None
        else:
            assignments = staffed_assignments(assignments, team)
            if not assignments:
                logger.info("Project %s has no team members assigned", project.project_id)
                return None
            roles = self.estimator.role_estimates(
                project,
                lambda r: assigned_role_fte(r, assignments, team),
            )

        duration = max((r.days_needed for r in roles), default=0)
        if workflow is not None:
            duration += sum(self.estimator.penalty_days(r, workflow.status_of(r.role)) for r in roles)
        return duration

    def windows(
        self,
        projects: Sequence[Project],
        team: Sequence[TeamMember],
        assignments: Mapping[str, Sequence[ProjectTeamAssignment]] | None = None,
        workflows: Mapping[str, WorkflowDependency] | None = None,
        today: date | None = None,
        allocations: Sequence[PlannedAllocation] | None = None,
    ) -> dict[str, PriorityWindow]:
        today = today or date.today()
        calendar = self.estimator.calendar
        workflows = workflows or {}

        result: dict[str, PriorityWindow] = {}
        prev_end: date | None = None
        prev_name: str | None = None

        for project in active_projects(projects):
            project_assignments = None if assignments is None else assignments.get(project.project_id, [])
            duration = self.project_duration(
                project,
                team,
                project_assignments,
                workflows.get(project.project_id),
                allocations,
                today,
            )
            if duration is None:
                result[project.project_id] = PriorityWindow(
                    project_id=project.project_id,
                    priority_start_date=None,
                    priority_end_date=None,
                    duration_workdays=None,
                    unschedulable=True,
                )
                continue

            blocking: str | None = None
            if project.effective_status == STATUS_IN_PROGRESS:
                start = project.started_at or today
            elif prev_end is None:
                start = today
            else:
                start = calendar.next_workday(prev_end + timedelta(days=1))
                blocking = prev_name

            end = calendar.add_workdays(start, duration)
            result[project.project_id] = PriorityWindow(
                project_id=project.project_id,
                priority_start_date=start,
                priority_end_date=end,
                duration_workdays=duration,
                blocking_project_name=blocking,
            )
            prev_end, prev_name = end, project.name

        return result

    def windows_for_snapshot(
        self,
        snapshot: ScopeSnapshot,
        today: date | None = None,
    ) -> dict[str, PriorityWindow]:
        assignments = snapshot.assignments_by_project() if snapshot.uses_assignments else None
        return self.windows(
            snapshot.projects,
            snapshot.team,
            assignments=assignments,
            workflows=snapshot.workflows,
            today=today,
            allocations=snapshot.allocations,
        )

    def priority_slippage(self, estimate: DeliveryEstimate, window: PriorityWindow) -> int | None:
        """Signed workdays between the calculated date and the window end (positive = reserve)."""
        if estimate.calculated_delivery_date is None or window.priority_end_date is None:
            return None
        return self.estimator.calendar.workdays_diff(
            estimate.calculated_delivery_date,
            window.priority_end_date,
        )
