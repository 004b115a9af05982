from __future__ import annotations

import json
from dataclasses import asdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from scope_burndown.adapters.snapshot_json import SnapshotError, load_snapshot
from scope_burndown.common.logging_config import configure_logging
from scope_burndown.config import BurndownConfig
from scope_burndown.estimation.domain.models import ScopeSnapshot
from scope_burndown.estimation.services.burndown_service import ScopeBurndownService
from scope_burndown.integration.event_bus import InMemoryEventBus
from scope_burndown.integration.events import ScopeSnapshotLoaded


app = typer.Typer(add_completion=False, help="Delivery dates, priority windows and slip for a scope.")


def _parse_today(today: str | None) -> date:
    if not today:
        return date.today()
    try:
        return date.fromisoformat(today)
    except ValueError as exc:
        raise typer.BadParameter(f"--today must be YYYY-MM-DD, got {today!r}") from exc


def _parse_day(value: str | None, flag: str) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"{flag} must be YYYY-MM-DD, got {value!r}") from exc


def _fmt(d: date | None) -> str:
    return d.isoformat() if d is not None else "-"


def _fmt_slip(slip: int | None) -> str:
    if slip is None:
        return "-"
    if slip > 0:
        return f"[green]+{slip}[/green]"
    if slip < 0:
        return f"[red]{slip}[/red]"
    return "0"


def _load(snapshot: Path, config: Optional[Path]) -> tuple[ScopeBurndownService, ScopeSnapshot]:
    try:
        cfg = BurndownConfig.load_or_default(config)
    except FileNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc
    configure_logging(cfg.logging.level, cfg.logging.resolved_log_dir())

    try:
        snap = load_snapshot(snapshot, default_calendar=cfg.calendar.to_settings())
    except SnapshotError as exc:
        raise typer.BadParameter(str(exc)) from exc

    bus = InMemoryEventBus()
    service = ScopeBurndownService(bus=bus, config=cfg)
    bus.publish(ScopeSnapshotLoaded(occurred_at=_utcnow(), snapshot=snap))
    return service, snap


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


SnapshotArg = typer.Argument(..., exists=True, dir_okay=False, help="Scope snapshot JSON")
TodayOpt = typer.Option(None, "--today", help="Pin 'today' (YYYY-MM-DD)")
ConfigOpt = typer.Option(None, "--config", help="Path to a burndown TOML config")
JsonOpt = typer.Option(False, "--json", help="Print JSON instead of a table")


@app.command()
def delivery(
    snapshot: Path = SnapshotArg,
    today: Optional[str] = TodayOpt,
    config: Optional[Path] = ConfigOpt,
    as_json: bool = JsonOpt,
) -> None:
    """Calculated delivery date and slip for every project."""
    service, snap = _load(snapshot, config)
    results = service.delivery_estimates(snap.scope_id, today=_parse_today(today))

    if as_json:
        _echo_json({pid: asdict(r) for pid, r in results.items()})
        return

    names = {p.project_id: p.name for p in snap.projects}
    table = Table(title=f"Delivery estimates - {snap.scope_id}")
    for col in ("Project", "Mode", "Calculated", "Deadline", "Slip", "Workdays", "Note"):
        table.add_column(col)
    for pid, r in results.items():
        note = r.reason or ""
        if r.penalty_workdays:
            note = f"+{r.penalty_workdays} workflow penalty"
        table.add_row(
            names.get(pid, pid),
            r.mode,
            _fmt(r.calculated_delivery_date),
            _fmt(r.delivery_date),
            _fmt_slip(r.slip_workdays),
            "-" if r.duration_workdays is None else str(r.duration_workdays),
            note,
        )
    Console().print(table)


@app.command()
def windows(
    snapshot: Path = SnapshotArg,
    today: Optional[str] = TodayOpt,
    config: Optional[Path] = ConfigOpt,
    as_json: bool = JsonOpt,
) -> None:
    """Priority windows: projects laid end-to-end by priority."""
    service, snap = _load(snapshot, config)
    result = service.priority_windows(snap.scope_id, today=_parse_today(today))

    if as_json:
        _echo_json({pid: asdict(w) for pid, w in result.items()})
        return

    names = {p.project_id: p.name for p in snap.projects}
    table = Table(title=f"Priority windows - {snap.scope_id}")
    for col in ("Project", "Start", "End", "Workdays", "After"):
        table.add_column(col)
    for pid, w in result.items():
        table.add_row(
            names.get(pid, pid),
            _fmt(w.priority_start_date),
            _fmt(w.priority_end_date) if not w.unschedulable else "[red]unstaffed[/red]",
            "-" if w.duration_workdays is None else str(w.duration_workdays),
            w.blocking_project_name or "",
        )
    Console().print(table)


@app.command()
def report(
    snapshot: Path = SnapshotArg,
    today: Optional[str] = TodayOpt,
    config: Optional[Path] = ConfigOpt,
    as_json: bool = JsonOpt,
) -> None:
    """Scope-level slip summary."""
    service, snap = _load(snapshot, config)
    res = service.average_slip(snap.scope_id, today=_parse_today(today))

    if as_json:
        _echo_json(asdict(res))
        return

    console = Console()
    console.print(f"[bold]Scope {snap.scope_id}[/bold]")
    console.print(f"Average slip: {_fmt_slip(res.average_slip)} workdays")
    console.print(
        f"Projects: {res.total_projects} | delayed {res.delayed_projects} | "
        f"on time {res.on_time_projects} | ahead {res.ahead_projects} | "
        f"unstaffed {res.unschedulable_projects}"
    )


@app.command()
def capacity(
    snapshot: Path = SnapshotArg,
    date_from: Optional[str] = typer.Option(None, "--from", help="First day (YYYY-MM-DD), default today"),
    date_to: Optional[str] = typer.Option(None, "--to", help="Last day (YYYY-MM-DD), default today plus the horizon"),
    project: Optional[str] = typer.Option(None, "--project", help="Only capacity available to this project"),
    config: Optional[Path] = ConfigOpt,
    as_json: bool = JsonOpt,
) -> None:
    """Team capacity from member FTE and planned allocations."""
    service, snap = _load(snapshot, config)
    start = _parse_day(date_from, "--from")
    end = _parse_day(date_to, "--to")
    try:
        if project is not None:
            members = service.project_capacity(snap.scope_id, project, start, end)
            total = sum(m.available_fte for m in members)
        else:
            team = service.team_capacity(snap.scope_id, start, end)
            members, total = team.members, team.total_capacity
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    if as_json:
        _echo_json({"project_id": project, "total_capacity": total, "members": [asdict(m) for m in members]})
        return

    title = f"Capacity - {snap.scope_id}" + (f" / {project}" if project else "")
    table = Table(title=title)
    for col in ("Member", "Role", "Base FTE", "Available FTE", "Planned days"):
        table.add_column(col)
    for m in members:
        table.add_row(m.name, m.role, f"{m.base_fte:.2f}", f"{m.available_fte:.2f}", str(m.allocation_days))
    table.add_row("[bold]Total[/bold]", "", "", f"[bold]{total:.2f}[/bold]", "")
    Console().print(table)


@app.command()
def init_config(
    path: str = typer.Argument(
        "scope_burndown.toml",
        help="Where to write the burndown configuration TOML",
    ),
) -> None:
    """Write an example scope_burndown.toml."""
    project_root = Path(__file__).resolve().parents[1]
    template = project_root / "scope_burndown.example.toml"
    if not template.exists():
        raise RuntimeError(f"Missing template file: {template}")

    out = Path(path).expanduser()
    if out.exists():
        raise typer.BadParameter(f"Refusing to overwrite existing file: {out}")

    out.write_text(template.read_text())
    typer.echo(f"Wrote {out} (edit it, then run: scope-burndown report SNAPSHOT --config {out})")
