from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from scope_burndown.adapters.snapshot_json import SnapshotError, snapshot_from_dict
from scope_burndown.estimation.services.burndown_service import ScopeBurndownService
from scope_burndown.integration.events import ScopeSnapshotLoaded


class SnapshotPayload(BaseModel):
    projects: list[dict[str, Any]] = Field(default_factory=list, description="Project rows with <role>_mandays/<role>_done")
    team: list[dict[str, Any]] = Field(default_factory=list)
    assignments: list[dict[str, Any]] = Field(default_factory=list)
    allocations: list[dict[str, Any]] = Field(default_factory=list, description="Planned allocation rows, one per member and day")
    workflows: dict[str, Any] | list[dict[str, Any]] = Field(default_factory=dict)
    calendar: dict[str, Any] | None = None


class SnapshotAccepted(BaseModel):
    scope_id: str
    projects: int
    team_members: int
    assignments: int
    allocations: int = 0


class SlipResponse(BaseModel):
    scope_id: str
    average_slip: int
    total_projects: int
    delayed_projects: int
    on_time_projects: int
    ahead_projects: int
    unschedulable_projects: int
    project_slips: dict[str, int | None]


def create_app(service: ScopeBurndownService) -> FastAPI:
    app = FastAPI(title="Scope Burndown")

    def _snapshot_or_404(scope_id: str) -> None:
        try:
            service.snapshot(scope_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown scope: {scope_id}") from exc

    @app.put("/scopes/{scope_id}", response_model=SnapshotAccepted)
    def load_scope(scope_id: str, payload: SnapshotPayload) -> SnapshotAccepted:
        try:
            snap = snapshot_from_dict(
                payload.model_dump(),
                scope_id=scope_id,
                default_calendar=service.config.calendar.to_settings(),
            )
        except SnapshotError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        service.bus.publish(ScopeSnapshotLoaded(occurred_at=datetime.now(timezone.utc), snapshot=snap))
        return SnapshotAccepted(
            scope_id=scope_id,
            projects=len(snap.projects),
            team_members=len(snap.team),
            assignments=len(snap.assignments),
            allocations=len(snap.allocations),
        )

    @app.get("/scopes/{scope_id}/delivery")
    def delivery(scope_id: str, today: date | None = None) -> dict[str, Any]:
        _snapshot_or_404(scope_id)
        results = service.delivery_estimates(scope_id, today=today)
        return {pid: asdict(r) for pid, r in results.items()}

    @app.get("/scopes/{scope_id}/windows")
    def windows(scope_id: str, today: date | None = None) -> dict[str, Any]:
        _snapshot_or_404(scope_id)
        result = service.priority_windows(scope_id, today=today)
        return {pid: asdict(w) for pid, w in result.items()}

    @app.get("/scopes/{scope_id}/slip", response_model=SlipResponse)
    def slip(scope_id: str, today: date | None = None) -> SlipResponse:
        _snapshot_or_404(scope_id)
        res = service.average_slip(scope_id, today=today)
        return SlipResponse(
            scope_id=scope_id,
            average_slip=res.average_slip,
            total_projects=res.total_projects,
            delayed_projects=res.delayed_projects,
            on_time_projects=res.on_time_projects,
            ahead_projects=res.ahead_projects,
            unschedulable_projects=res.unschedulable_projects,
            project_slips=dict(res.project_slips),
        )

    @app.get("/scopes/{scope_id}/capacity")
    def capacity(
        scope_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        _snapshot_or_404(scope_id)
        try:
            if project_id is not None:
                members = service.project_capacity(scope_id, project_id, date_from, date_to)
                return {"project_id": project_id, "members": [asdict(m) for m in members]}
            return asdict(service.team_capacity(scope_id, date_from, date_to))
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    return app
