from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from scope_burndown.config import AllocationConfig, BurndownConfig, CalendarConfig, EstimatorConfig
from scope_burndown.estimation.calendar.workdays import HolidayCalendarCache
from scope_burndown.estimation.domain.models import (
    PlannedAllocation,
    Project,
    ProjectTeamAssignment,
    RoleEffort,
    ScopeCalendarSettings,
    ScopeSnapshot,
    TeamMember,
    WorkerState,
    WorkflowDependency,
)
from scope_burndown.estimation.services.burndown_service import ScopeBurndownService
from scope_burndown.integration.event_bus import InMemoryEventBus
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


MONDAY = date(2025, 1, 6)
NO_HOLIDAYS = ScopeCalendarSettings(include_holidays=False)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _project(pid: str, priority: int, be: float, deadline: date | None = None) -> Project:
    return Project(
        project_id=pid,
        name=pid.upper(),
        priority=priority,
        created_at=datetime(2024, 12, 1, tzinfo=timezone.utc),
        roles={"be": RoleEffort(planned=be)},
        delivery_date=deadline,
    )


def _service(bus: InMemoryEventBus, **kwargs: object) -> ScopeBurndownService:
    config = BurndownConfig(calendar=CalendarConfig(include_holidays=False))
    return ScopeBurndownService(bus=bus, config=config, today_provider=lambda: MONDAY, **kwargs)


def _load(bus: InMemoryEventBus) -> None:
    snapshot = ScopeSnapshot(
        scope_id="s",
        projects=(_project("p1", 1, be=5, deadline=date(2025, 1, 16)),),
        team=(TeamMember(member_id="m-be", name="Be", role="BE"),),
        calendar=NO_HOLIDAYS,
    )
    bus.publish(ScopeSnapshotLoaded(occurred_at=_now(), snapshot=snapshot))


def test_unknown_scope_raises_key_error() -> None:
    service = _service(InMemoryEventBus())
    with pytest.raises(KeyError):
        service.average_slip("nope")
    assert service.scope_ids() == []


def test_snapshot_event_loads_scope_and_reports_are_published() -> None:
    bus = InMemoryEventBus()
    service = _service(bus)
    reports: list[SlipReportComputed] = []
    deliveries: list[DeliveryEstimated] = []
    bus.subscribe(SlipReportComputed, reports.append)
    bus.subscribe(DeliveryEstimated, deliveries.append)

    _load(bus)
    assert service.scope_ids() == ["s"]

    result = service.average_slip("s")
    assert result.average_slip == 3
    assert reports[-1].scope_id == "s"
    assert reports[-1].result["average_slip"] == 3

    estimates = service.delivery_estimates("s")
    assert estimates["p1"].calculated_delivery_date == date(2025, 1, 13)
    assert [d.project_id for d in deliveries] == ["p1"]

    windows = service.priority_windows("s")
    assert windows["p1"].priority_end_date == date(2025, 1, 13)


def test_incremental_events_update_state() -> None:
    bus = InMemoryEventBus()
    service = _service(bus)
    _load(bus)

    bus.publish(ProjectUpserted(occurred_at=_now(), scope_id="s", project=_project("p2", 2, be=2)))
    bus.publish(
        TeamMemberUpserted(occurred_at=_now(), scope_id="s", member=TeamMember(member_id="m2", name="B2", role="BE"))
    )
    assert {p.project_id for p in service.snapshot("s").projects} == {"p1", "p2"}
    assert service.delivery_estimates("s")["p1"].duration_workdays == 3

    bus.publish(
        ProjectAssignmentsReplaced(
            occurred_at=_now(),
            scope_id="s",
            project_id="p2",
            assignments=(ProjectTeamAssignment("p2", "m2", "BE", 1.0),),
        )
    )
    assert service.snapshot("s").uses_assignments
    assert service.delivery_estimates("s")["p1"].unschedulable

    bus.publish(TeamMemberRemoved(occurred_at=_now(), scope_id="s", member_id="m2"))
    snap = service.snapshot("s")
    assert [m.member_id for m in snap.team] == ["m-be"]
    assert snap.assignments == ()

    bus.publish(ProjectRemoved(occurred_at=_now(), scope_id="s", project_id="p2"))
    assert [p.project_id for p in service.snapshot("s").projects] == ["p1"]


def test_removals_for_unknown_scopes_are_ignored() -> None:
    bus = InMemoryEventBus()
    service = _service(bus)
    bus.publish(ProjectRemoved(occurred_at=_now(), scope_id="ghost", project_id="p"))
    bus.publish(TeamMemberRemoved(occurred_at=_now(), scope_id="ghost", member_id="m"))
    assert service.scope_ids() == []


def test_upserts_create_scopes_with_configured_calendar() -> None:
    bus = InMemoryEventBus()
    service = _service(bus)
    bus.publish(ProjectUpserted(occurred_at=_now(), scope_id="new", project=_project("p", 1, be=1)))
    assert service.snapshot("new").calendar == ScopeCalendarSettings(include_holidays=False, country="CZ")


def test_workflow_event_switches_to_workflow_mode() -> None:
    bus = InMemoryEventBus()
    service = _service(bus)
    _load(bus)
    workflow = WorkflowDependency(project_id="p1", worker_states=(WorkerState("BE", "blocked"),))
    bus.publish(WorkflowConfigured(occurred_at=_now(), scope_id="s", workflow=workflow))

    est = service.delivery_estimates("s")["p1"]
    assert est.mode == "workflow"
    assert est.penalty_workdays == 3


def test_calendar_change_invalidates_cached_holidays() -> None:
    bus = InMemoryEventBus()
    cache = HolidayCalendarCache()
    service = _service(bus, holiday_cache=cache)
    snapshot = ScopeSnapshot(
        scope_id="s",
        projects=(_project("p1", 1, be=1),),
        calendar=ScopeCalendarSettings(include_holidays=True, country="CZ"),
    )
    bus.publish(ScopeSnapshotLoaded(occurred_at=_now(), snapshot=snapshot))

    # 2024-12-31 + 1 workday skips New Year's Day in CZ
    assert service.delivery_estimates("s", today=date(2024, 12, 31))["p1"].calculated_delivery_date == date(2025, 1, 2)
    cached = cache.get("CZ")
    assert len(cache) == 1

    settings = ScopeCalendarSettings(include_holidays=True, country="SK")
    bus.publish(ScopeCalendarChanged(occurred_at=_now(), scope_id="s", settings=settings))
    assert cache.get("CZ") is not cached
    assert service.snapshot("s").calendar == settings


def test_auto_recompute_publishes_a_report_per_change() -> None:
    bus = InMemoryEventBus()
    _service(bus, auto_recompute=True)
    reports: list[SlipReportComputed] = []
    bus.subscribe(SlipReportComputed, reports.append)

    _load(bus)
    bus.publish(ProjectUpserted(occurred_at=_now(), scope_id="s", project=_project("p2", 2, be=2)))

    assert len(reports) == 2
    assert reports[-1].result["total_projects"] == 2


def _allocating_service(bus: InMemoryEventBus) -> ScopeBurndownService:
    config = BurndownConfig(
        calendar=CalendarConfig(include_holidays=False),
        estimator=EstimatorConfig(allocation=AllocationConfig(enabled=True, calculation_mode="allocation")),
    )
    return ScopeBurndownService(bus=bus, config=config, today_provider=lambda: MONDAY)


def test_allocation_events_drive_capacity_and_estimates() -> None:
    bus = InMemoryEventBus()
    service = _allocating_service(bus)
    _load(bus)
    planned = tuple(PlannedAllocation("m-be", date(2025, 1, 6 + i), 0.5, project_id="p1") for i in range(5))
    bus.publish(PlannedAllocationsReplaced(occurred_at=_now(), scope_id="s", allocations=planned))

    assert service.snapshot("s").allocations == planned
    est = service.delivery_estimates("s")["p1"]
    assert est.mode == "allocation"
    assert est.duration_workdays == 10

    cap = service.team_capacity("s", MONDAY, date(2025, 1, 10))
    assert cap.total_capacity == 0.5
    assert cap.members[0].allocation_days == 5

    # default range is today plus the configured horizon
    horizon = service.team_capacity("s")
    assert (horizon.date_from, horizon.date_to) == (MONDAY, date(2025, 2, 5))

    members = service.project_capacity("s", "p1", MONDAY, date(2025, 1, 10))
    assert members[0].available_fte == 0.5
    with pytest.raises(KeyError):
        service.project_capacity("s", "nope")
    with pytest.raises(ValueError):
        service.team_capacity("s", date(2025, 1, 10), MONDAY)


def test_removed_member_takes_their_allocations() -> None:
    bus = InMemoryEventBus()
    service = _allocating_service(bus)
    _load(bus)
    planned = (PlannedAllocation("m-be", MONDAY, 0.5, project_id="p1"),)
    bus.publish(PlannedAllocationsReplaced(occurred_at=_now(), scope_id="s", allocations=planned))
    bus.publish(TeamMemberRemoved(occurred_at=_now(), scope_id="s", member_id="m-be"))
    assert service.snapshot("s").allocations == ()
