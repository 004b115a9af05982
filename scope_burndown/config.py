from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from scope_burndown.estimation.domain.models import ScopeCalendarSettings


def _expand(path: str) -> Path:
    return Path(os.path.expanduser(path)).resolve()


def _read_toml(path: Path) -> dict[str, Any]:
    return tomllib.loads(path.read_bytes().decode("utf-8"))


class CalendarConfig(BaseModel):
    """Fallback calendar for snapshots that carry no calendar settings."""

    include_holidays: bool = Field(default=True)
    country: str = Field(default="CZ", description="ISO 3166 country code for public holidays.")
    subdivision: str | None = Field(default=None, description="Optional region, e.g. 'BY' for DE.")

    def to_settings(self) -> ScopeCalendarSettings:
        return ScopeCalendarSettings(
            include_holidays=self.include_holidays,
            country=self.country,
            subdivision=self.subdivision or None,
        )


class PenaltyConfig(BaseModel):
    blocked_ratio: float = Field(default=0.5, ge=0, description="Extra share of a blocked role's own days.")
    waiting_ratio: float = Field(default=0.2, ge=0, description="Extra share of a waiting role's own days.")


class AllocationConfig(BaseModel):
    """Planned-allocation capacity. Off by default; role FTE then comes from the team."""

    enabled: bool = Field(default=False)
    calculation_mode: Literal["fte", "allocation", "hybrid"] = Field(
        default="fte",
        description="fte ignores allocations, allocation uses only them, hybrid falls back to member FTE.",
    )
    include_external_projects: bool = Field(
        default=False,
        description="Count allocations that belong to no project as capacity.",
    )
    default_allocation_fte: float = Field(
        default=1.0,
        gt=0,
        description="Capacity used when a role has no allocation records or no capacity at all.",
    )
    capacity_horizon_days: int = Field(
        default=30,
        ge=0,
        description="Calendar days after today covered by a capacity summary without an explicit range.",
    )

    @property
    def uses_allocations(self) -> bool:
        return self.enabled and self.calculation_mode != "fte"


class EstimatorConfig(BaseModel):
    default_fte: float = Field(
        default=1.0,
        gt=0,
        description="Capacity assumed for a role nobody is assigned to.",
    )
    warn_on_percent_heuristic: bool = Field(
        default=True,
        description="Log when a done-value is read as a percentage.",
    )
    penalties: PenaltyConfig = Field(default_factory=PenaltyConfig)
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    log_dir: str | None = Field(default=None)

    def resolved_log_dir(self) -> str | None:
        return str(_expand(self.log_dir)) if self.log_dir else None


class BurndownConfig(BaseModel):
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    estimator: EstimatorConfig = Field(default_factory=EstimatorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Path) -> "BurndownConfig":
        raw = _read_toml(path)
        return cls.model_validate(raw)

    @classmethod
    def load_or_default(cls, path: str | Path | None) -> "BurndownConfig":
        if path is None:
            return cls()
        p = _expand(str(path))
        if not p.exists():
            raise FileNotFoundError(f"Config file not found: {p}")
        return cls.load(p)
