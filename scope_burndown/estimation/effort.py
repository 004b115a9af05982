from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Mapping, Sequence

from scope_burndown.estimation.domain.models import (
    Project,
    ProjectTeamAssignment,
    RoleEffort,
    TeamMember,
    role_key,
)


logger = logging.getLogger(__name__)

# A done-value above this multiple of the plan is read as a percentage.
PERCENT_HEURISTIC_RATIO = 1.5


def as_number(value: Any) -> float:
    """Coerce a possibly missing or malformed numeric field to a float (0.0 on failure)."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        out = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(out) or math.isinf(out):
        return 0.0
    return out


def done_to_spent_mandays(planned: Any, done: Any, *, warn: bool = True) -> float:
    """Convert a mixed done-value (percent or mandays) into spent mandays.

    Some records store "done" as 0-100 percent, others as mandays already
    spent. A value above 1.5x the plan is taken as a percentage, anything
    else as mandays (clamped at 0).
    """
    plan = as_number(planned)
    done_value = as_number(done)
    if plan <= 0:
        return 0.0
    if done_value > plan * PERCENT_HEURISTIC_RATIO:
        if warn:
            logger.warning(
                "Done value %.2f exceeds %.1fx plan %.2f, reading it as a percentage",
                done_value,
                PERCENT_HEURISTIC_RATIO,
                plan,
            )
        return min(max(done_value, 0.0), 100.0) / 100.0 * plan
    return max(done_value, 0.0)


def remaining_mandays(planned: Any, done: Any, *, warn: bool = True) -> float:
    # Not clamped: an overspent role yields a negative remainder.
    return as_number(planned) - done_to_spent_mandays(planned, done, warn=warn)


def role_remaining(effort: RoleEffort, *, warn: bool = True) -> float:
    return remaining_mandays(effort.planned, effort.done, warn=warn)


def project_planned_mandays(project: Project) -> float:
    return sum(as_number(e.planned) for e in project.roles.values())


def project_spent_mandays(project: Project) -> float:
    return sum(done_to_spent_mandays(e.planned, e.done, warn=False) for e in project.roles.values())


def project_progress_pct(project: Project) -> int:
    plan = project_planned_mandays(project)
    if plan <= 0:
        return 0
    return min(100, int(math.floor(project_spent_mandays(project) / plan * 100 + 0.5)))


# --- FTE resolution ---------------------------------------------------------


def _matches(label: str, role: str) -> bool:
    return role_key(label) == role_key(role)


def team_role_fte(role: str, team: Iterable[TeamMember]) -> float:
    """Global capacity of every team member whose main role is ``role``."""
    return sum(max(0.0, as_number(m.fte)) for m in team if _matches(m.role, role))


def assigned_role_fte(
    role: str,
    assignments: Sequence[ProjectTeamAssignment],
    team: Iterable[TeamMember] = (),
) -> float:
    """Capacity allocated to ``role`` on one project.

    An assignment's own ``allocation_fte`` wins; without one the member's
    global FTE is used.
    """
    fte_by_member: Mapping[str, float] = {m.member_id: as_number(m.fte) for m in team}
    total = 0.0
    for a in assignments:
        if not _matches(a.role, role):
            continue
        fte = as_number(a.allocation_fte)
        if fte <= 0:
            fte = fte_by_member.get(a.team_member_id, 0.0)
        total += max(0.0, fte)
    return total


def staffed_assignments(
    assignments: Iterable[ProjectTeamAssignment],
    team: Iterable[TeamMember],
) -> list[ProjectTeamAssignment]:
    """Assignments whose member is still on the team; the rest give no capacity."""
    ids = {m.member_id for m in team}
    return [a for a in assignments if a.team_member_id in ids]
