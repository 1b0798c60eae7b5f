"""Core data models for the matching and pricing engine.

Entities are frozen pydantic models. State changes go through the repository,
which hands back fresh instances.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    QUOTED = "QUOTED"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class WorkerStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    INACTIVE = "INACTIVE"
    TERMINATED = "TERMINATED"


class AssignmentStatus(str, Enum):
    PROPOSED = "PROPOSED"
    ACCEPTED = "ACCEPTED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DECLINED = "DECLINED"


# Statuses that release a job for a new assignment.
INACTIVE_ASSIGNMENT_STATUSES = frozenset({AssignmentStatus.CANCELLED, AssignmentStatus.DECLINED})

WEEKDAYS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")

_RANGE_RE = re.compile(r"(\d+)\s*-\s*(\d+)")


def weekday_code(d: date) -> str:
    """Return the three-letter weekday code (MON..SUN) for a date."""
    return WEEKDAYS[d.weekday()]


def parse_range_km(label: str) -> tuple[int, int]:
    """Parse a travel range label such as ``"30-60"`` or ``"30-60km"``.

    Unparseable labels fall back to (0, 60).
    """
    match = _RANGE_RE.search(label)
    if match:
        return (int(match.group(1)), int(match.group(2)))
    return (0, 60)


class Site(BaseModel):
    """A school the job takes place at."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    region: str = ""
    latitude: float | None = None
    longitude: float | None = None
    distance_km: int | None = Field(default=None, ge=0)
    transport_fee: Decimal | None = Field(default=None, ge=0)


class ProgramCatalogEntry(BaseModel):
    """A catalog program; fee overrides are optional."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    category: str = ""
    base_session_fee: Decimal | None = Field(default=None, ge=0)
    base_material_cost: Decimal | None = Field(default=None, ge=0)


class Worker(BaseModel):
    """An instructor that can be matched to jobs."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    status: WorkerStatus = WorkerStatus.ACTIVE
    home_region: str = ""
    max_distance_km: int = Field(default=60, ge=0)
    available_weekdays: frozenset[str] = frozenset()
    specialties: tuple[str, ...] = ()
    experience_years: int = Field(default=0, ge=0)
    rating: Decimal | None = Field(default=None, ge=0, le=5)
    default_session_fee: Decimal | None = Field(default=None, ge=0)

    @field_validator("max_distance_km", mode="before")
    @classmethod
    def range_label_to_km(cls, v: Any) -> Any:
        # Travel ranges are often recorded as "30-60km"; keep the upper bound.
        if isinstance(v, str) and not v.strip().isdigit():
            return parse_range_km(v)[1]
        return v

    @field_validator("available_weekdays", mode="before")
    @classmethod
    def normalize_weekdays(cls, v: Any) -> Any:
        if v is None:
            return frozenset()
        result = set()
        for day in v:
            code = str(day).strip().upper()[:3]
            if code not in WEEKDAYS:
                msg = f"unknown weekday '{day}'"
                raise ValueError(msg)
            result.add(code)
        return frozenset(result)


class Job(BaseModel):
    """A school's request for a program."""

    model_config = ConfigDict(frozen=True)

    id: int
    site_id: int
    program_id: int | None = None
    sessions: int
    student_count: int
    target_grade: str = ""
    desired_date: date | None = None
    flexible_date: bool = False
    budget: Decimal | None = None
    status: JobStatus = JobStatus.SUBMITTED


class Assignment(BaseModel):
    """A worker bound to a job."""

    model_config = ConfigDict(frozen=True)

    id: int
    job_id: int
    worker_id: int
    status: AssignmentStatus = AssignmentStatus.PROPOSED
    scheduled_date: date | None = None
    distance_km: int | None = None
    transport_fee: Decimal | None = None
    actual_sessions: int | None = None
    notes: str = ""
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_ASSIGNMENT_STATUSES


class Match(BaseModel):
    """One ranked candidate with the reasons behind its score."""

    model_config = ConfigDict(frozen=True)

    worker: Worker
    score: int
    reasons: tuple[str, ...]
    distance_km: int
    is_available: bool


class QuoteBreakdown(BaseModel):
    """Every line of a computed quote, before it is persisted."""

    model_config = ConfigDict(frozen=True)

    sessions: int
    student_count: int
    session_fee: Decimal
    transport_fee: Decimal
    material_cost: Decimal
    assistant_fee: Decimal
    overhead: Decimal
    subtotal: Decimal
    margin_rate: Decimal
    margin_amount: Decimal
    before_vat: Decimal
    vat: Decimal
    total: Decimal
    discount: Decimal
    final_total: Decimal
    rates_version: str = "default"


class Quote(BaseModel):
    """A persisted quote. At most one per job."""

    model_config = ConfigDict(frozen=True)

    id: int
    job_id: int
    quote_number: str
    breakdown: QuoteBreakdown
    valid_from: date
    valid_until: date
    created_by: str = ""
    notes: str = ""


class PaymentBreakdown(BaseModel):
    """Every line of a worker payout."""

    model_config = ConfigDict(frozen=True)

    sessions: int
    session_fee: Decimal
    fee_per_session: Decimal
    transport_fee: Decimal
    bonus: Decimal
    subtotal: Decimal
    tax_rate: Decimal
    tax_withholding: Decimal
    deductions: Decimal
    net_amount: Decimal


class Payment(BaseModel):
    """A persisted payout. At most one per assignment."""

    model_config = ConfigDict(frozen=True)

    id: int
    assignment_id: int
    worker_id: int
    payment_number: str
    breakdown: PaymentBreakdown
    accounting_period: str
    status: str = "CALCULATED"
    approved_by: str | None = None
    notes: str = ""


class WorkerPaymentTotal(BaseModel):
    """Per-worker line of a monthly payment summary."""

    worker_id: int
    worker_name: str
    count: int
    net_amount: Decimal


class MonthlyPaymentSummary(BaseModel):
    """Totals across every payment booked in one accounting period."""

    accounting_period: str
    total_payments: int
    gross_amount: Decimal
    tax_withholding: Decimal
    net_amount: Decimal
    workers: list[WorkerPaymentTotal] = Field(default_factory=list)
