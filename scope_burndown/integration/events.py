from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from scope_burndown.estimation.domain.models import (
    PlannedAllocation,
    Project,
    ProjectTeamAssignment,
    ScopeCalendarSettings,
    ScopeSnapshot,
    TeamMember,
    WorkflowDependency,
)


@dataclass(frozen=True)
class DomainEvent:
    """Base type for all domain events."""

    occurred_at: datetime


# --- Scope input events ------------------------------------------------------


@dataclass(frozen=True)
class ScopeSnapshotLoaded(DomainEvent):
    snapshot: ScopeSnapshot


@dataclass(frozen=True)
class ProjectUpserted(DomainEvent):
    scope_id: str
    project: Project


@dataclass(frozen=True)
class ProjectRemoved(DomainEvent):
    scope_id: str
    project_id: str


@dataclass(frozen=True)
class TeamMemberUpserted(DomainEvent):
    scope_id: str
    member: TeamMember


@dataclass(frozen=True)
class TeamMemberRemoved(DomainEvent):
    scope_id: str
    member_id: str


@dataclass(frozen=True)
class ProjectAssignmentsReplaced(DomainEvent):
    scope_id: str
    project_id: str
    assignments: tuple[ProjectTeamAssignment, ...]


@dataclass(frozen=True)
class WorkflowConfigured(DomainEvent):
    scope_id: str
    workflow: WorkflowDependency


@dataclass(frozen=True)
class PlannedAllocationsReplaced(DomainEvent):
    scope_id: str
    allocations: tuple[PlannedAllocation, ...]


@dataclass(frozen=True)
class ScopeCalendarChanged(DomainEvent):
    scope_id: str
    settings: ScopeCalendarSettings


# --- Computed outputs --------------------------------------------------------


@dataclass(frozen=True)
class DeliveryEstimated(DomainEvent):
    scope_id: str
    project_id: str
    result: Mapping[str, Any]


@dataclass(frozen=True)
class SlipReportComputed(DomainEvent):
    scope_id: str
    result: Mapping[str, Any]
