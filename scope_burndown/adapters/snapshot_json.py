from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from scope_burndown.common.time_utils import parse_day, parse_timestamp
from scope_burndown.estimation.domain.models import (
    DEPENDENCY_TYPES,
    PROJECT_STATUSES,
    STATUS_NOT_STARTED,
    WORKER_STATUSES,
    AssignmentSource,
    CalendarSettingsSource,
    DependencyItem,
    PlannedAllocation,
    PlannedAllocationSource,
    Project,
    ProjectSource,
    ProjectTeamAssignment,
    RoleEffort,
    ScopeCalendarSettings,
    ScopeSnapshot,
    TeamMember,
    TeamSource,
    VacationRange,
    WorkerState,
    WorkflowDependency,
    WorkflowSource,
    role_key,
)
from scope_burndown.estimation.effort import as_number


logger = logging.getLogger(__name__)

_MANDAYS_SUFFIX = re.compile(r"^(?P<role>.+)_mandays$")
_FLAG_KEYS = ("be_depends_on_fe", "fe_depends_on_be", "qa_depends_on_be", "qa_depends_on_fe")


class SnapshotError(ValueError):
    """Raised when a snapshot document cannot be turned into a ScopeSnapshot."""


def _pick(row: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in row and row[k] is not None:
            return row[k]
    return default


def _require(row: Mapping[str, Any], kind: str, *keys: str) -> Any:
    value = _pick(row, *keys)
    if value is None or value == "":
        raise SnapshotError(f"{kind} record is missing '{keys[0]}': {dict(row)}")
    return value


def _rows(data: Mapping[str, Any], section: str) -> list[Mapping[str, Any]]:
    rows = data.get(section) or []
    if not isinstance(rows, list):
        raise SnapshotError(f"'{section}' must be a list")
    for i, row in enumerate(rows):
        if not isinstance(row, Mapping):
            raise SnapshotError(f"'{section}' entry {i} must be an object, got {type(row).__name__}")
    return rows


def _choice(value: Any, allowed: frozenset[str], what: str) -> str:
    key = str(value).strip().lower()
    if key not in allowed:
        raise SnapshotError(f"Unknown {what} {value!r}, expected one of {sorted(allowed)}")
    return key


def _day(value: Any, what: str) -> Any:
    try:
        return parse_day(value)
    except (TypeError, ValueError) as exc:
        raise SnapshotError(f"Invalid date for {what}: {value!r}") from exc


# --- Row parsers ---------------------------------------------------------------


def parse_roles(row: Mapping[str, Any]) -> dict[str, RoleEffort]:
    """Collect every '<role>_mandays' / '<role>_done' pair, standard or custom.

    A nested ``roles`` mapping ({"fe": {"planned": 10, "done": 2}}) is also
    accepted and wins over flat keys.
    """
    roles: dict[str, RoleEffort] = {}
    for key in row:
        m = _MANDAYS_SUFFIX.match(str(key))
        if m is None:
            continue
        role = m.group("role")
        roles[role_key(role)] = RoleEffort(
            planned=as_number(row.get(key)),
            done=as_number(row.get(f"{role}_done")),
        )
    nested = row.get("roles")
    if isinstance(nested, Mapping):
        for role, effort in nested.items():
            effort = effort if isinstance(effort, Mapping) else {}
            roles[role_key(role)] = RoleEffort(
                planned=as_number(effort.get("planned", effort.get("mandays"))),
                done=as_number(effort.get("done")),
            )
    return roles


def parse_project(row: Mapping[str, Any]) -> Project:
    pid = str(_require(row, "project", "id", "project_id"))
    try:
        created_at = parse_timestamp(_pick(row, "created_at", "createdAt"))
    except (TypeError, ValueError) as exc:
        raise SnapshotError(f"Invalid created_at for project {pid}") from exc
    return Project(
        project_id=pid,
        name=str(_pick(row, "name", default=pid)),
        priority=int(as_number(_pick(row, "priority", default=0))),
        created_at=created_at,
        status=_choice(_pick(row, "status") or STATUS_NOT_STARTED, PROJECT_STATUSES, f"status of project {pid}"),
        roles=parse_roles(row),
        delivery_date=_day(_pick(row, "delivery_date", "deliveryDate"), f"project {pid} delivery_date"),
        start_date=_day(_pick(row, "start_date", "startDate", "start_day"), f"project {pid} start_date"),
        started_at=_day(_pick(row, "started_at", "startedAt"), f"project {pid} started_at"),
    )


def parse_member(row: Mapping[str, Any]) -> TeamMember:
    mid = str(_require(row, "team member", "id", "member_id"))
    vacations: list[VacationRange] = []
    for v in row.get("vacations") or []:
        if not isinstance(v, Mapping):
            continue
        start = _day(v.get("start"), f"vacation of {mid}")
        end = _day(v.get("end"), f"vacation of {mid}")
        if start is None or end is None:
            continue
        vacations.append(VacationRange(start=start, end=end, note=v.get("note")))
    created = _pick(row, "created_at", "createdAt")
    return TeamMember(
        member_id=mid,
        name=str(_pick(row, "name", default=mid)),
        role=str(_pick(row, "role", default="")),
        fte=as_number(_pick(row, "fte", default=1.0)),
        vacations=tuple(vacations),
        created_at=parse_timestamp(created) if created else None,
    )


def parse_assignment(row: Mapping[str, Any]) -> ProjectTeamAssignment:
    return ProjectTeamAssignment(
        project_id=str(_require(row, "assignment", "project_id", "projectId")),
        team_member_id=str(_require(row, "assignment", "team_member_id", "teamMemberId")),
        role=str(_pick(row, "role", default="")),
        allocation_fte=as_number(_pick(row, "allocation_fte", "allocationFte", default=0.0)),
    )


def parse_allocation(row: Mapping[str, Any]) -> PlannedAllocation:
    member = str(_require(row, "allocation", "team_member_id", "teamMemberId"))
    day = _day(_require(row, "allocation", "date", "day"), f"allocation of {member}")
    project = _pick(row, "project_id", "projectId")
    return PlannedAllocation(
        team_member_id=member,
        day=day,
        allocation_fte=as_number(_pick(row, "allocation_fte", "allocationFte", default=0.0)),
        role=str(_pick(row, "role", default="")),
        project_id=str(project) if project not in (None, "") else None,
        external_project_name=_pick(row, "external_project_name", "externalProjectName"),
    )


def _worker_states(rows: Any) -> tuple[WorkerState, ...]:
    out: list[WorkerState] = []
    for w in rows or []:
        if isinstance(w, Mapping) and w.get("role"):
            status = _choice(w.get("status") or "active", WORKER_STATUSES, "worker status")
            out.append(WorkerState(role=str(w["role"]), status=status))
    return tuple(out)


def parse_workflow(
    project_id: str,
    row: Mapping[str, Any],
    assigned_roles: tuple[str, ...] = (),
) -> WorkflowDependency:
    """Accept the dependency-list shape or the legacy boolean-flag record."""
    states_raw = _pick(row, "worker_states", "active_workers")
    if "dependencies" in row:
        deps = tuple(
            DependencyItem(
                from_role=str(_require(d, "dependency", "from", "from_role")),
                to_role=str(_require(d, "dependency", "to", "to_role")),
                type=_choice(d.get("type") or "blocking", DEPENDENCY_TYPES, "dependency type"),
                description=str(d.get("description", "")),
            )
            for d in row.get("dependencies") or []
            if isinstance(d, Mapping)
        )
        parallel = bool(row.get("parallel_mode", False)) or row.get("workflow_type") == "Parallel"
        return WorkflowDependency(
            project_id=project_id,
            workflow_type=str(row.get("workflow_type", "Parallel" if parallel else "FE-First")),
            dependencies=deps,
            worker_states=_worker_states(states_raw),
            parallel_mode=parallel,
        )

    if any(k in row for k in _FLAG_KEYS) or "parallel_mode" in row:
        return WorkflowDependency.from_flags(
            project_id,
            **{k: bool(row.get(k, False)) for k in _FLAG_KEYS},
            parallel_mode=bool(row.get("parallel_mode", False)),
            worker_states=_worker_states(states_raw) if states_raw is not None else None,
            current_active_roles=row.get("current_active_roles"),
            assigned_roles=assigned_roles,
        )

    logger.debug("Workflow record for %s has no dependencies, using FE-First defaults", project_id)
    default = WorkflowDependency.default_fe_first(project_id)
    return WorkflowDependency(
        project_id=project_id,
        workflow_type=default.workflow_type,
        dependencies=default.dependencies,
        worker_states=_worker_states(states_raw),
    )


def parse_calendar(row: Mapping[str, Any] | None, fallback: ScopeCalendarSettings) -> ScopeCalendarSettings:
    if not row:
        return fallback
    include = _pick(row, "include_holidays", "includeHolidays", default=fallback.include_holidays)
    return ScopeCalendarSettings(
        include_holidays=bool(include),
        country=str(_pick(row, "country", default=fallback.country)),
        subdivision=_pick(row, "subdivision", default=None) or None,
    )


def snapshot_from_dict(
    data: Mapping[str, Any],
    scope_id: str | None = None,
    default_calendar: ScopeCalendarSettings | None = None,
) -> ScopeSnapshot:
    if not isinstance(data, Mapping):
        raise SnapshotError("Snapshot document must be a JSON object")
    sid = scope_id or _pick(data, "scope_id", "scopeId", "id")
    if not sid:
        raise SnapshotError("Snapshot has no scope_id")

    projects = tuple(parse_project(r) for r in _rows(data, "projects"))
    team = tuple(parse_member(r) for r in _rows(data, "team"))
    assignments = tuple(parse_assignment(r) for r in _rows(data, "assignments"))
    allocations = tuple(parse_allocation(r) for r in _rows(data, "allocations"))

    raw_workflows = data.get("workflows") or {}
    if isinstance(raw_workflows, list):
        raw_workflows = {
            str(_require(w, "workflow", "project_id", "projectId")): w
            for w in _rows(data, "workflows")
        }
    if not isinstance(raw_workflows, Mapping):
        raise SnapshotError("'workflows' must be an object keyed by project id or a list")

    workflows: dict[str, WorkflowDependency] = {}
    for pid, row in raw_workflows.items():
        if row is not None and not isinstance(row, Mapping):
            raise SnapshotError(f"Workflow for project {pid} must be an object")
        roles = tuple(a.role for a in assignments if a.project_id == str(pid))
        workflows[str(pid)] = parse_workflow(str(pid), row or {}, assigned_roles=roles)

    return ScopeSnapshot(
        scope_id=str(sid),
        projects=projects,
        team=team,
        assignments=assignments,
        workflows=workflows,
        calendar=parse_calendar(
            data.get("calendar"),
            default_calendar or ScopeCalendarSettings(),
        ),
        allocations=allocations,
    )


def load_snapshot(path: Path, default_calendar: ScopeCalendarSettings | None = None) -> ScopeSnapshot:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SnapshotError(f"Cannot read snapshot {path}: {exc}") from exc
    return snapshot_from_dict(data, default_calendar=default_calendar)


@dataclass(frozen=True)
class JsonSnapshotSource:
    """Snapshots stored as '<directory>/<scope_id>.json'."""

    directory: Path
    default_calendar: ScopeCalendarSettings | None = None

    def load_snapshot(self, scope_id: str) -> ScopeSnapshot:
        path = self.directory / f"{scope_id}.json"
        if not path.exists():
            raise KeyError(f"Unknown scope: {scope_id}")
        snap = load_snapshot(path, default_calendar=self.default_calendar)
        if snap.scope_id != scope_id:
            raise SnapshotError(f"{path} holds scope {snap.scope_id}, expected {scope_id}")
        return snap


def compose_snapshot(
    scope_id: str,
    projects: ProjectSource,
    team: TeamSource,
    assignments: AssignmentSource | None = None,
    workflows: WorkflowSource | None = None,
    calendar: CalendarSettingsSource | None = None,
    allocations: PlannedAllocationSource | None = None,
) -> ScopeSnapshot:
    """Fetch everything a calculation needs once, before any estimation runs."""
    return ScopeSnapshot(
        scope_id=scope_id,
        projects=tuple(projects.projects_for_scope(scope_id)),
        team=tuple(team.team_for_scope(scope_id)),
        assignments=tuple(assignments.assignments_for_scope(scope_id)) if assignments else (),
        workflows=dict(workflows.workflows_for_scope(scope_id)) if workflows else {},
        calendar=calendar.calendar_for_scope(scope_id) if calendar else ScopeCalendarSettings(),
        allocations=tuple(allocations.allocations_for_scope(scope_id)) if allocations else (),
    )
