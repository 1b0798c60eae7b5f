"""Configuration models and YAML loader for the booking engine.

Rate and fee tables are frozen snapshots. A change to a table produces a new
snapshot (see ``RateTables.revised``) so a calculation in flight never sees a
half-edited table.
"""

from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _to_decimal(v: Any) -> Any:
    # YAML floats go through str() so 0.033 stays exactly 0.033.
    if isinstance(v, float):
        return Decimal(str(v))
    return v


class BaseLocation(BaseModel):
    """Origin that site distances are measured from."""

    model_config = ConfigDict(frozen=True)

    name: str = "head office"
    latitude: float = Field(default=36.8056, ge=-90.0, le=90.0)
    longitude: float = Field(default=128.6239, ge=-180.0, le=180.0)


class TransportFeeBand(BaseModel):
    """Half-open distance interval [min_km, max_km) and its fee."""

    model_config = ConfigDict(frozen=True)

    min_km: int = Field(ge=0)
    max_km: int | None = None
    fee: Decimal = Field(ge=0)

    @field_validator("fee", mode="before")
    @classmethod
    def coerce_fee(cls, v: Any) -> Any:
        return _to_decimal(v)


def _default_bands() -> list[TransportFeeBand]:
    return [
        TransportFeeBand(min_km=0, max_km=40, fee=Decimal("0")),
        TransportFeeBand(min_km=40, max_km=70, fee=Decimal("15000")),
        TransportFeeBand(min_km=70, max_km=100, fee=Decimal("30000")),
        TransportFeeBand(min_km=100, max_km=None, fee=Decimal("45000")),
    ]


class TransportConfig(BaseModel):
    """Base location plus the distance → transport fee table."""

    model_config = ConfigDict(frozen=True)

    base: BaseLocation = Field(default_factory=BaseLocation)
    bands: list[TransportFeeBand] = Field(default_factory=_default_bands)

    @field_validator("bands")
    @classmethod
    def bands_cover_all_distances(cls, v: list[TransportFeeBand]) -> list[TransportFeeBand]:
        if not v:
            msg = "at least one transport fee band must be configured"
            raise ValueError(msg)
        if v[0].min_km != 0:
            msg = f"first transport band must start at 0 km, got {v[0].min_km}"
            raise ValueError(msg)
        for prev, band in zip(v, v[1:]):
            if prev.max_km is None:
                msg = "only the last transport band may be unbounded"
                raise ValueError(msg)
            if band.min_km != prev.max_km:
                msg = f"transport bands must be contiguous: {prev.max_km} != {band.min_km}"
                raise ValueError(msg)
        for band in v:
            if band.max_km is not None and band.max_km <= band.min_km:
                msg = f"transport band [{band.min_km}, {band.max_km}) is empty"
                raise ValueError(msg)
        if v[-1].max_km is not None:
            msg = "last transport band must be unbounded (max_km: null)"
            raise ValueError(msg)
        return v


def _default_session_fees() -> dict[int, Decimal]:
    return {
        2: Decimal("70000"),
        3: Decimal("90000"),
        4: Decimal("110000"),
        5: Decimal("130000"),
        6: Decimal("150000"),
    }


class RateTables(BaseModel):
    """One immutable snapshot of every rate the calculators read."""

    model_config = ConfigDict(frozen=True)

    version: str = "default"
    session_fees: dict[int, Decimal] = Field(default_factory=_default_session_fees)
    extra_session_fee: Decimal = Field(default=Decimal("25000"), ge=0)
    material_cost_per_student: Decimal = Field(default=Decimal("7000"), ge=0)
    assistant_fee_per_session: Decimal = Field(default=Decimal("30000"), ge=0)
    overhead_rate: Decimal = Field(default=Decimal("0.05"), ge=0)
    margin_rate: Decimal = Field(default=Decimal("0.15"), ge=0)
    margin_floor_rate: Decimal = Field(default=Decimal("0.10"), ge=0)
    vat_rate: Decimal = Field(default=Decimal("0.10"), ge=0)
    tax_withholding_rate: Decimal = Field(default=Decimal("0.033"), ge=0, lt=1)
    quote_valid_days: int = Field(default=30, ge=1)

    @field_validator(
        "extra_session_fee",
        "material_cost_per_student",
        "assistant_fee_per_session",
        "overhead_rate",
        "margin_rate",
        "margin_floor_rate",
        "vat_rate",
        "tax_withholding_rate",
        mode="before",
    )
    @classmethod
    def coerce_rates(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("session_fees", mode="before")
    @classmethod
    def coerce_fee_values(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: _to_decimal(fee) for k, fee in v.items()}
        return v

    @field_validator("session_fees")
    @classmethod
    def session_tiers_contiguous(cls, v: dict[int, Decimal]) -> dict[int, Decimal]:
        if not v:
            msg = "session_fees must contain at least one tier"
            raise ValueError(msg)
        counts = sorted(v)
        if counts[0] < 1:
            msg = f"session tiers start at 1 or more, got {counts[0]}"
            raise ValueError(msg)
        if counts != list(range(counts[0], counts[-1] + 1)):
            msg = f"session tiers must be contiguous, got {counts}"
            raise ValueError(msg)
        if any(fee < 0 for fee in v.values()):
            msg = "session fees must not be negative"
            raise ValueError(msg)
        return dict(sorted(v.items()))

    @model_validator(mode="after")
    def floor_below_margin(self) -> "RateTables":
        if self.margin_floor_rate > self.margin_rate:
            msg = (
                f"margin_floor_rate ({self.margin_floor_rate}) must not exceed "
                f"margin_rate ({self.margin_rate})"
            )
            raise ValueError(msg)
        return self

    def revised(self, version: str, **changes: Any) -> "RateTables":
        """Return a new validated snapshot with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        data["version"] = version
        return RateTables.model_validate(data)


class MatchingConfig(BaseModel):
    """Knobs for the expertise part of instructor matching."""

    model_config = ConfigDict(frozen=True)

    # Program category -> specialty keywords that count as category expertise.
    category_keywords: dict[str, list[str]] = Field(
        default_factory=lambda: {"FOURTHIND": ["AI"], "CULTURE": ["Art", "예술"]},
    )
    experienced_min_years: int = Field(default=5, ge=0)


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/booking.db"


class Settings(BaseModel):
    """Top-level settings loaded from YAML. Every key is optional."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    rates: RateTables = Field(default_factory=RateTables)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
