from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Mapping, Protocol, Sequence


STATUS_NOT_STARTED = "not_started"
STATUS_IN_PROGRESS = "in_progress"
STATUS_PAUSED = "paused"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_ARCHIVED = "archived"
STATUS_SUSPENDED = "suspended"

PROJECT_STATUSES: frozenset[str] = frozenset(
    {
        STATUS_NOT_STARTED,
        STATUS_IN_PROGRESS,
        STATUS_PAUSED,
        STATUS_COMPLETED,
        STATUS_CANCELLED,
        STATUS_ARCHIVED,
        STATUS_SUSPENDED,
    }
)

# Statuses that take part in forward priority scheduling, by precedence.
SCHEDULABLE_STATUS_RANK: Mapping[str, int] = {
    STATUS_IN_PROGRESS: 1,
    STATUS_NOT_STARTED: 2,
    STATUS_PAUSED: 3,
}

DEPENDENCY_TYPES: frozenset[str] = frozenset({"blocking", "waiting", "parallel"})
WORKER_STATUSES: frozenset[str] = frozenset({"active", "waiting", "blocked"})


def role_key(label: str) -> str:
    """Normalise a role label ('FE', ' fe ', 'Design') to its key."""
    return str(label or "").strip().lower()


@dataclass(frozen=True)
class RoleEffort:
    planned: float = 0.0
    done: float = 0.0  # percent (0-100) or spent mandays, see effort.done_to_spent_mandays


@dataclass(frozen=True)
class Project:
    project_id: str
    name: str
    priority: int
    created_at: datetime
    status: str = STATUS_NOT_STARTED
    roles: Mapping[str, RoleEffort] = field(default_factory=dict)
    delivery_date: date | None = None
    start_date: date | None = None  # custom start day
    started_at: date | None = None

    @property
    def effective_status(self) -> str:
        return self.status or STATUS_NOT_STARTED

    def role(self, key: str) -> RoleEffort | None:
        return self.roles.get(role_key(key))


@dataclass(frozen=True)
class VacationRange:
    start: date
    end: date
    note: str | None = None

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class TeamMember:
    member_id: str
    name: str
    role: str
    fte: float = 1.0
    vacations: tuple[VacationRange, ...] = ()
    created_at: datetime | None = None

    def is_on_vacation(self, day: date) -> bool:
        return any(v.contains(day) for v in self.vacations)


@dataclass(frozen=True)
class ProjectTeamAssignment:
    """A member's capacity scoped to one project (role may differ from the member's own)."""

    project_id: str
    team_member_id: str
    role: str
    allocation_fte: float = 0.0


@dataclass(frozen=True)
class PlannedAllocation:
    """One member's planned capacity on one day.

    ``project_id`` is None for work outside the scope's projects (an external
    project, support rotation and the like).
    """

    team_member_id: str
    day: date
    allocation_fte: float
    role: str = ""
    project_id: str | None = None
    external_project_name: str | None = None

    @property
    def is_external(self) -> bool:
        return self.project_id is None


@dataclass(frozen=True)
class DependencyItem:
    from_role: str
    to_role: str
    type: str = "blocking"  # "blocking", "waiting", "parallel"
    description: str = ""


@dataclass(frozen=True)
class WorkerState:
    role: str
    status: str = "active"  # "active", "waiting", "blocked"


@dataclass(frozen=True)
class WorkflowDependency:
    """Role ordering constraints and worker states of one project."""

    project_id: str
    workflow_type: str = "FE-First"
    dependencies: tuple[DependencyItem, ...] = ()
    worker_states: tuple[WorkerState, ...] = ()
    parallel_mode: bool = False

    @classmethod
    def from_flags(
        cls,
        project_id: str,
        *,
        be_depends_on_fe: bool = False,
        fe_depends_on_be: bool = False,
        qa_depends_on_be: bool = False,
        qa_depends_on_fe: bool = False,
        parallel_mode: bool = False,
        worker_states: Iterable[WorkerState] | None = None,
        current_active_roles: Iterable[str] | None = None,
        assigned_roles: Iterable[str] = (),
    ) -> "WorkflowDependency":
        """Build a workflow from the legacy boolean flag record.

        Worker states win over the legacy ``current_active_roles`` list; with
        neither, every assigned role is considered waiting.
        """
        if parallel_mode:
            workflow_type = "Parallel"
        elif fe_depends_on_be:
            workflow_type = "BE-First"
        else:
            workflow_type = "FE-First"

        deps: list[DependencyItem] = []
        if be_depends_on_fe:
            deps.append(DependencyItem("FE", "BE", "waiting", "FE waits for the BE API"))
        if fe_depends_on_be:
            deps.append(DependencyItem("BE", "FE", "waiting", "BE waits for FE components"))
        if qa_depends_on_be:
            deps.append(DependencyItem("BE", "QA", "blocking", "QA cannot test without BE"))
        if qa_depends_on_fe:
            deps.append(DependencyItem("FE", "QA", "waiting", "QA tests FE once finished"))

        if worker_states is not None:
            states = tuple(worker_states)
        elif current_active_roles is not None:
            active = {role_key(r) for r in current_active_roles}
            states = tuple(
                WorkerState(role=r, status="active" if role_key(r) in active else "waiting")
                for r in assigned_roles
            )
        else:
            states = tuple(WorkerState(role=r, status="waiting") for r in assigned_roles)

        return cls(
            project_id=project_id,
            workflow_type=workflow_type,
            dependencies=tuple(deps),
            worker_states=states,
            parallel_mode=parallel_mode,
        )

    @classmethod
    def default_fe_first(cls, project_id: str) -> "WorkflowDependency":
        return cls(
            project_id=project_id,
            workflow_type="FE-First",
            dependencies=(
                DependencyItem("PM", "FE", "blocking", "PM defines requirements for FE"),
                DependencyItem("FE", "BE", "waiting", "FE waits for the BE API"),
                DependencyItem("BE", "QA", "blocking", "QA cannot test without BE"),
                DependencyItem("FE", "QA", "waiting", "QA tests FE once finished"),
            ),
        )

    def status_of(self, role: str) -> str | None:
        key = role_key(role)
        for w in self.worker_states:
            if role_key(w.role) == key:
                return w.status
        return None


@dataclass(frozen=True)
class ScopeCalendarSettings:
    include_holidays: bool = True
    country: str = "CZ"
    subdivision: str | None = None


@dataclass(frozen=True)
class ScopeSnapshot:
    """Everything the engine needs for one scope, fetched once per invocation."""

    scope_id: str
    projects: tuple[Project, ...] = ()
    team: tuple[TeamMember, ...] = ()
    assignments: tuple[ProjectTeamAssignment, ...] = ()
    workflows: Mapping[str, WorkflowDependency] = field(default_factory=dict)
    calendar: ScopeCalendarSettings = field(default_factory=ScopeCalendarSettings)
    allocations: tuple[PlannedAllocation, ...] = ()

    def assignments_for(self, project_id: str) -> list[ProjectTeamAssignment]:
        return [a for a in self.assignments if a.project_id == project_id]

    def assignments_by_project(self) -> dict[str, list[ProjectTeamAssignment]]:
        out: dict[str, list[ProjectTeamAssignment]] = {p.project_id: [] for p in self.projects}
        for a in self.assignments:
            out.setdefault(a.project_id, []).append(a)
        return out

    @property
    def uses_assignments(self) -> bool:
        return bool(self.assignments)


# --- Results -----------------------------------------------------------------


@dataclass(frozen=True)
class RoleEstimate:
    role: str
    planned_mandays: float
    spent_mandays: float
    remaining_mandays: float
    fte: float
    days_needed: int
    start_date: date | None = None
    end_date: date | None = None
    penalty_days: int = 0
    allocation_days: int = 0  # planned-allocation records behind ``fte``


@dataclass(frozen=True)
class DeliveryEstimate:
    """Projected completion of one project.

    ``slip_workdays`` is signed: positive is reserve before the deadline,
    negative is lateness. It is None without a deadline or when the project
    cannot be scheduled.
    """

    project_id: str
    calculated_delivery_date: date | None
    delivery_date: date | None
    slip_workdays: int | None
    duration_workdays: int | None
    mode: str  # "basic", "assignments", "workflow", "allocation"
    unschedulable: bool = False
    cycle_detected: bool = False
    cycle: tuple[str, ...] = ()
    penalty_workdays: int = 0
    roles: tuple[RoleEstimate, ...] = ()
    reason: str | None = None


@dataclass(frozen=True)
class PriorityWindow:
    project_id: str
    priority_start_date: date | None
    priority_end_date: date | None
    duration_workdays: int | None
    blocking_project_name: str | None = None
    unschedulable: bool = False


@dataclass(frozen=True)
class AverageSlipResult:
    average_slip: int
    total_projects: int
    delayed_projects: int
    on_time_projects: int
    ahead_projects: int
    unschedulable_projects: int = 0
    project_slips: Mapping[str, int | None] = field(default_factory=dict)

    @classmethod
    def empty(cls, total_projects: int = 0) -> "AverageSlipResult":
        return cls(
            average_slip=0,
            total_projects=total_projects,
            delayed_projects=0,
            on_time_projects=0,
            ahead_projects=0,
        )


@dataclass(frozen=True)
class MemberCapacity:
    member_id: str
    name: str
    role: str
    base_fte: float
    allocated_fte: float
    available_fte: float
    allocation_days: int = 0


@dataclass(frozen=True)
class TeamCapacity:
    total_capacity: float
    date_from: date
    date_to: date
    members: tuple[MemberCapacity, ...] = ()


# --- Collaborator contracts --------------------------------------------------


class ProjectSource(Protocol):
    def projects_for_scope(self, scope_id: str) -> Sequence[Project]:
        ...


class TeamSource(Protocol):
    def team_for_scope(self, scope_id: str) -> Sequence[TeamMember]:
        ...


class AssignmentSource(Protocol):
    def assignments_for_scope(self, scope_id: str) -> Sequence[ProjectTeamAssignment]:
        ...


class WorkflowSource(Protocol):
    def workflows_for_scope(self, scope_id: str) -> Mapping[str, WorkflowDependency]:
        ...


class PlannedAllocationSource(Protocol):
    def allocations_for_scope(self, scope_id: str) -> Sequence[PlannedAllocation]:
        ...


class CalendarSettingsSource(Protocol):
    def calendar_for_scope(self, scope_id: str) -> ScopeCalendarSettings:
        ...


class ScopeSnapshotSource(Protocol):
    """Load a full snapshot for a scope (file, API payload, database)."""

    def load_snapshot(self, scope_id: str) -> ScopeSnapshot:
        ...
