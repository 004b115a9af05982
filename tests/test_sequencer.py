from __future__ import annotations

import json
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone

from scope_burndown.config import AllocationConfig, EstimatorConfig
from scope_burndown.estimation.calendar.workdays import WorkdayCalendar
from scope_burndown.estimation.domain.models import (
    PlannedAllocation,
    Project,
    ProjectTeamAssignment,
    RoleEffort,
    ScopeSnapshot,
    TeamMember,
    WorkerState,
    WorkflowDependency,
)
from scope_burndown.estimation.services.delivery import DeliveryEstimator
from scope_burndown.estimation.services.sequencer import PrioritySequencer, active_projects


MONDAY = date(2025, 1, 6)
TEAM = (
    TeamMember(member_id="m-fe", name="Fe", role="FE", fte=1.0),
    TeamMember(member_id="m-be", name="Be", role="BE", fte=1.0),
)


def _sequencer() -> PrioritySequencer:
    return PrioritySequencer(estimator=DeliveryEstimator(calendar=WorkdayCalendar.weekends_only()))


def _project(
    pid: str,
    priority: int,
    fe: float = 0.0,
    be: float = 0.0,
    status: str = "not_started",
    created_day: int = 1,
    started_at: date | None = None,
) -> Project:
    roles = {}
    if fe:
        roles["fe"] = RoleEffort(planned=fe)
    if be:
        roles["be"] = RoleEffort(planned=be)
    return Project(
        project_id=pid,
        name=pid.upper(),
        priority=priority,
        created_at=datetime(2024, 12, created_day, tzinfo=timezone.utc),
        status=status,
        roles=roles,
        started_at=started_at,
    )


def test_windows_are_laid_end_to_end() -> None:
    a = _project("a", 1, fe=3)
    b = _project("b", 2, fe=2)
    windows = _sequencer().windows([b, a], TEAM, today=MONDAY)

    assert windows["a"].priority_start_date == MONDAY
    assert windows["a"].priority_end_date == date(2025, 1, 9)
    assert windows["a"].blocking_project_name is None
    assert windows["b"].priority_start_date == date(2025, 1, 10)
    assert windows["b"].priority_end_date == date(2025, 1, 14)
    assert windows["b"].blocking_project_name == "A"
    assert windows["b"].duration_workdays == 2


def test_next_window_starts_on_the_next_workday() -> None:
    a = _project("a", 1, fe=4)
    b = _project("b", 2, fe=1)
    windows = _sequencer().windows([a, b], TEAM, today=MONDAY)
    assert windows["a"].priority_end_date == date(2025, 1, 10)
    assert windows["b"].priority_start_date == date(2025, 1, 13)


def test_in_progress_project_keeps_its_real_start() -> None:
    started = MONDAY - timedelta(days=10)
    a = _project("a", 1, fe=3)
    b = _project("b", 2, fe=2, status="in_progress", started_at=started)
    windows = _sequencer().windows([a, b], TEAM, today=MONDAY)
    assert windows["b"].priority_start_date == started
    assert windows["b"].blocking_project_name is None


def test_in_progress_without_start_uses_today() -> None:
    a = _project("a", 1, fe=3, status="in_progress")
    windows = _sequencer().windows([a], TEAM, today=MONDAY)
    assert windows["a"].priority_start_date == MONDAY


def test_terminal_statuses_are_not_scheduled() -> None:
    projects = [
        _project("done", 1, fe=1, status="completed"),
        _project("gone", 1, fe=1, status="cancelled"),
        _project("old", 1, fe=1, status="archived"),
        _project("hold", 1, fe=1, status="suspended"),
        _project("live", 2, fe=1),
    ]
    windows = _sequencer().windows(projects, TEAM, today=MONDAY)
    assert list(windows) == ["live"]
    assert windows["live"].priority_start_date == MONDAY


def test_sort_order_is_priority_then_status_then_age() -> None:
    projects = [
        _project("paused", 1, status="paused", created_day=1),
        _project("new", 1, created_day=3),
        _project("older", 1, created_day=2),
        _project("running", 1, status="in_progress", created_day=9),
        _project("urgent", 0, status="paused", created_day=20),
    ]
    order = [p.project_id for p in active_projects(projects)]
    assert order == ["urgent", "running", "older", "new", "paused"]


def test_naive_created_at_sorts_with_aware_ones() -> None:
    naive = Project(project_id="n", name="N", priority=1, created_at=datetime(2024, 1, 1))
    aware = _project("w", 1)
    assert [p.project_id for p in active_projects([aware, naive])] == ["n", "w"]


def test_unassigned_project_gets_no_window_and_does_not_block() -> None:
    a = _project("a", 1, fe=3)
    u = _project("u", 2, fe=5)
    c = _project("c", 3, fe=1)
    assignments = {
        "a": [ProjectTeamAssignment("a", "m-fe", "FE", 1.0)],
        "c": [ProjectTeamAssignment("c", "m-fe", "FE", 1.0)],
    }
    windows = _sequencer().windows([a, u, c], TEAM, assignments=assignments, today=MONDAY)

    assert windows["u"].unschedulable
    assert windows["u"].priority_start_date is None
    assert windows["u"].priority_end_date is None
    assert windows["c"].priority_start_date == date(2025, 1, 10)
    assert windows["c"].blocking_project_name == "A"


def test_role_nobody_on_the_team_can_do_is_unschedulable() -> None:
    team = (TeamMember(member_id="m-fe", name="Fe", role="FE"),)
    windows = _sequencer().windows([_project("a", 1, fe=2, be=3)], team, today=MONDAY)
    assert windows["a"].unschedulable


def test_workflow_penalties_lengthen_the_window() -> None:
    a = _project("a", 1, be=4)
    workflow = WorkflowDependency(project_id="a", worker_states=(WorkerState("BE", "blocked"),))
    windows = _sequencer().windows([a], TEAM, workflows={"a": workflow}, today=MONDAY)
    assert windows["a"].duration_workdays == 6


def test_windows_are_deterministic_and_serializable() -> None:
    snapshot = ScopeSnapshot(
        scope_id="s",
        projects=(_project("a", 1, fe=3), _project("b", 2, be=2), _project("c", 2, fe=1, created_day=5)),
        team=TEAM,
    )
    seq = _sequencer()
    first = seq.windows_for_snapshot(snapshot, today=MONDAY)
    second = seq.windows_for_snapshot(snapshot, today=MONDAY)
    assert first == second

    dumped = json.loads(json.dumps({k: asdict(v) for k, v in first.items()}, default=str))
    for pid, window in first.items():
        assert date.fromisoformat(dumped[pid]["priority_end_date"]) == window.priority_end_date

    ordered = sorted(first.values(), key=lambda w: w.priority_start_date)
    for prev, nxt in zip(ordered, ordered[1:]):
        assert nxt.priority_start_date > prev.priority_end_date


def test_priority_slippage_against_window_end() -> None:
    seq = _sequencer()
    a = _project("a", 1, fe=3)
    b = _project("b", 2, fe=2)
    windows = seq.windows([a, b], TEAM, today=MONDAY)
    est_b = seq.estimator.estimate(b, TEAM, today=MONDAY)
    # b alone would finish on the 8th, its slot ends on the 14th
    assert seq.priority_slippage(est_b, windows["b"]) == 4


def test_assignment_of_a_former_member_leaves_the_project_unstaffed() -> None:
    a = _project("a", 1, fe=3)
    b = _project("b", 2, fe=2)
    assignments = {
        "a": [ProjectTeamAssignment("a", "ghost", "FE", 0.0)],
        "b": [ProjectTeamAssignment("b", "m-fe", "FE", 1.0)],
    }
    windows = _sequencer().windows([a, b], TEAM, assignments=assignments, today=MONDAY)
    assert windows["a"].unschedulable
    assert windows["b"].priority_start_date == MONDAY
    assert windows["b"].blocking_project_name is None


def test_planned_allocations_set_the_window_length() -> None:
    config = EstimatorConfig(allocation=AllocationConfig(enabled=True, calculation_mode="allocation"))
    sequencer = PrioritySequencer(
        estimator=DeliveryEstimator(calendar=WorkdayCalendar.weekends_only(), config=config)
    )
    planned = tuple(
        PlannedAllocation("m-fe", MONDAY + timedelta(days=i), 0.5, project_id="a") for i in range(5)
    )
    snapshot = ScopeSnapshot(scope_id="s", projects=(_project("a", 1, fe=3),), team=TEAM, allocations=planned)

    windows = sequencer.windows_for_snapshot(snapshot, today=MONDAY)
    assert windows["a"].duration_workdays == 6
    assert windows["a"].priority_end_date == date(2025, 1, 14)
    assert _sequencer().windows_for_snapshot(snapshot, today=MONDAY)["a"].duration_workdays == 3
