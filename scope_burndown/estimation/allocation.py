from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Sequence

import numpy as np

from scope_burndown.config import AllocationConfig
from scope_burndown.estimation.domain.models import (
    MemberCapacity,
    PlannedAllocation,
    TeamCapacity,
    TeamMember,
    role_key,
)
from scope_burndown.estimation.effort import as_number


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleCapacity:
    fte: float
    allocation_days: int
    source: str  # "allocation", "team" or "default"


def in_range(
    allocations: Iterable[PlannedAllocation],
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[PlannedAllocation]:
    return [
        a
        for a in allocations
        if (date_from is None or a.day >= date_from) and (date_to is None or a.day <= date_to)
    ]


def relevant_to_project(
    allocations: Iterable[PlannedAllocation],
    project_id: str,
    include_external: bool,
) -> list[PlannedAllocation]:
    """Records booked on the project, plus non-project records when they count as capacity."""
    return [a for a in allocations if a.project_id == project_id or (include_external and a.is_external)]


def mean_daily_fte(allocations: Sequence[PlannedAllocation]) -> float | None:
    """Average over days of the FTE summed across members; None without records."""
    if not allocations:
        return None
    per_day: dict[date, float] = defaultdict(float)
    for a in allocations:
        per_day[a.day] += max(0.0, as_number(a.allocation_fte))
    return float(np.mean(np.fromiter(per_day.values(), dtype=float)))


def base_fte(member: TeamMember) -> float:
    fte = as_number(member.fte)
    return fte if fte > 0 else 1.0


def role_capacity(
    role: str,
    project_id: str,
    team: Sequence[TeamMember],
    allocations: Sequence[PlannedAllocation],
    settings: AllocationConfig,
    date_from: date | None = None,
    date_to: date | None = None,
) -> RoleCapacity:
    """Capacity available to one role of one project.

    With allocations in use, it is the average daily planned FTE of the
    role's members on this project. ``hybrid`` falls back to the members'
    own FTE when nothing is planned; ``allocation`` and a role without any
    capacity fall back to ``default_allocation_fte``.
    """
    key = role_key(role)
    members = [m for m in team if role_key(m.role) == key]
    team_fte = sum(max(0.0, as_number(m.fte)) for m in members)

    if settings.uses_allocations:
        ids = {m.member_id for m in members}
        records = relevant_to_project(
            (
                a
                for a in in_range(allocations, date_from, date_to)
                if a.team_member_id in ids and (not a.role or role_key(a.role) == key)
            ),
            project_id,
            settings.include_external_projects,
        )
        planned = mean_daily_fte(records)
        if planned is not None and planned > 0:
            return RoleCapacity(fte=planned, allocation_days=len({a.day for a in records}), source="allocation")
        if settings.calculation_mode == "allocation":
            logger.debug("No planned allocation for %s on %s, using the default FTE", key, project_id)
            return RoleCapacity(fte=settings.default_allocation_fte, allocation_days=0, source="default")

    if team_fte > 0:
        return RoleCapacity(fte=team_fte, allocation_days=0, source="team")
    return RoleCapacity(fte=settings.default_allocation_fte, allocation_days=0, source="default")


def project_capacity(
    project_id: str,
    team: Sequence[TeamMember],
    allocations: Sequence[PlannedAllocation],
    settings: AllocationConfig,
    date_from: date,
    date_to: date,
) -> tuple[MemberCapacity, ...]:
    """Per-member capacity available to one project in [date_from, date_to]."""
    window = in_range(allocations, date_from, date_to)
    out: list[MemberCapacity] = []
    for m in team:
        base = base_fte(m)
        records: list[PlannedAllocation] = []
        available = base
        if settings.enabled:
            records = relevant_to_project(
                (a for a in window if a.team_member_id == m.member_id),
                project_id,
                settings.include_external_projects,
            )
            planned = mean_daily_fte(records)
            if planned is not None:
                available = planned
        out.append(
            MemberCapacity(
                member_id=m.member_id,
                name=m.name,
                role=m.role,
                base_fte=base,
                allocated_fte=available,
                available_fte=available,
                allocation_days=len({a.day for a in records}),
            )
        )
    return tuple(out)


def team_capacity(
    team: Sequence[TeamMember],
    allocations: Sequence[PlannedAllocation],
    settings: AllocationConfig,
    date_from: date,
    date_to: date,
) -> TeamCapacity:
    """Base, allocated and available FTE per member and for the whole team."""
    window = in_range(allocations, date_from, date_to)
    members: list[MemberCapacity] = []
    for m in team:
        base = base_fte(m)
        records = [a for a in window if a.team_member_id == m.member_id] if settings.enabled else []
        planned = mean_daily_fte(records)
        allocated = planned if planned is not None else base
        members.append(
            MemberCapacity(
                member_id=m.member_id,
                name=m.name,
                role=m.role,
                base_fte=base,
                allocated_fte=allocated,
                available_fte=allocated,
                allocation_days=len({a.day for a in records}),
            )
        )
    total = float(np.sum([c.available_fte for c in members])) if members else 0.0
    return TeamCapacity(
        total_capacity=total,
        date_from=date_from,
        date_to=date_to,
        members=tuple(members),
    )
