from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping

import networkx as nx

from scope_burndown.estimation.calendar.workdays import WorkdayCalendar
from scope_burndown.estimation.domain.models import WorkflowDependency, role_key


@dataclass(frozen=True)
class RoleSchedule:
    starts: Mapping[str, date] = field(default_factory=dict)
    ends: Mapping[str, date] = field(default_factory=dict)
    cycle: tuple[str, ...] = ()

    @property
    def has_cycle(self) -> bool:
        return bool(self.cycle)

    def latest_end(self, default: date) -> date:
        return max(self.ends.values(), default=default)


def build_role_graph(workflow: WorkflowDependency, roles: Iterable[str]) -> nx.DiGraph:
    """Directed graph of the project's roles; an edge a -> b means b waits for a.

    Parallel dependencies and parallel-mode workflows impose no ordering.
    Edges naming roles the project does not have are ignored.
    """
    g = nx.DiGraph()
    keys = [role_key(r) for r in roles]
    g.add_nodes_from(keys)
    if workflow.parallel_mode:
        return g
    known = set(keys)
    for dep in workflow.dependencies:
        if dep.type == "parallel":
            continue
        src, dst = role_key(dep.from_role), role_key(dep.to_role)
        if src in known and dst in known:
            g.add_edge(src, dst, type=dep.type)
    return g


def find_cycle(g: nx.DiGraph) -> tuple[str, ...]:
    if nx.is_directed_acyclic_graph(g):
        return ()
    edges = nx.find_cycle(g)
    return tuple(str(u) for u, _v, *_ in edges)


def schedule_roles(
    g: nx.DiGraph,
    base_days: Mapping[str, int],
    start: date,
    calendar: WorkdayCalendar,
) -> RoleSchedule:
    """Lay roles out in dependency order, ignoring blocked/waiting penalties.

    A role starts when its last predecessor ends (or at ``start``) and runs
    for its own base days.
    """
    cycle = find_cycle(g)
    if cycle:
        return RoleSchedule(cycle=cycle)

    starts: dict[str, date] = {}
    ends: dict[str, date] = {}
    for role in nx.topological_sort(g):
        preds = [ends[p] for p in g.predecessors(role)]
        role_start = max(preds) if preds else start
        starts[role] = role_start
        ends[role] = calendar.add_workdays(role_start, int(base_days.get(role, 0)))
    return RoleSchedule(starts=starts, ends=ends)
