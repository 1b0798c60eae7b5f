"""Quote calculation, budget fitting and quote persistence.

Chain order (every quote, every time):
  1. session fee      override -> program -> session tier table
  2. transport fee    override -> site preset -> distance band
  3. material cost    per-student (override -> program -> default) x students
  4. assistant fee    per-session fee x sessions x assistants
  5. overhead         (1..4) x overhead rate, rounded up
  6. subtotal         1..5
  7. margin           subtotal x margin rate, rounded up
  8. VAT              (subtotal + margin) x VAT rate, rounded up
  9. total            subtotal + margin + VAT
 10. final total      total - discount

Only overhead, margin and VAT are rounded; everything else is an exact
lookup, product or sum.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import date, timedelta
from decimal import ROUND_UP, Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.config import RateTables
from src.core.errors import InvalidInput, QuoteAlreadyExists
from src.core.repository import Repository, load_job_context
from src.core.schemas import Job, JobStatus, ProgramCatalogEntry, Quote, QuoteBreakdown, Site
from src.pricing.distance import DistanceFeeTable
from src.pricing.rates import require_amount, round_up, session_fee

logger = logging.getLogger(__name__)

# Margin rates move in steps of 0.01%.
_RATE_STEP = Decimal("0.0001")


class QuoteOptions(BaseModel):
    """Every override a quote calculation accepts. None means "use the table"."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    session_fee: Decimal | None = Field(default=None, ge=0)
    transport_fee: Decimal | None = Field(default=None, ge=0)
    material_cost_per_student: Decimal | None = Field(default=None, ge=0)
    assistant_count: int = Field(default=0, ge=0)
    overhead_rate: Decimal | None = Field(default=None, ge=0)
    margin_rate: Decimal | None = Field(default=None, ge=0)
    vat_rate: Decimal | None = Field(default=None, ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str = ""

    @classmethod
    def parse(cls, raw: Mapping[str, Any] | None) -> "QuoteOptions":
        """Validate a loose mapping (CLI, forms) into options, or raise InvalidInput."""
        try:
            return cls.model_validate(dict(raw or {}))
        except ValidationError as e:
            msg = f"invalid quote options: {e}"
            raise InvalidInput(msg) from e


class BudgetFit(BaseModel):
    """A quote squeezed under a budget, with the steps that got it there."""

    model_config = ConfigDict(frozen=True)

    quote: QuoteBreakdown
    adjustments: tuple[str, ...] = ()

    @property
    def adjusted(self) -> bool:
        return bool(self.adjustments)


def _percent(rate: Decimal) -> str:
    return f"{rate * 100:.2f}%"


class QuoteCalculator:
    """Prices jobs against one rate-table snapshot.

    ``calculate`` and ``fit_to_budget`` are pure. ``create_quote`` and
    ``auto_generate`` need a repository.
    """

    def __init__(
        self,
        tables: RateTables,
        fee_table: DistanceFeeTable,
        repo: Repository | None = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._tables = tables
        self._fees = fee_table
        self._repo = repo
        self._clock = clock

    @property
    def tables(self) -> RateTables:
        return self._tables

    def calculate(
        self,
        job: Job,
        site: Site,
        program: ProgramCatalogEntry | None = None,
        options: QuoteOptions | None = None,
    ) -> QuoteBreakdown:
        """Run the full chain for one job."""
        options = options or QuoteOptions()
        tables = self._tables
        if job.sessions < 1:
            msg = f"job {job.id}: session count must be at least 1, got {job.sessions}"
            raise InvalidInput(msg)
        if job.student_count < 1:
            msg = f"job {job.id}: student count must be at least 1, got {job.student_count}"
            raise InvalidInput(msg)

        # 1. Session fee
        if options.session_fee is not None:
            fee = options.session_fee
        elif program is not None and program.base_session_fee is not None:
            fee = program.base_session_fee
        else:
            fee = session_fee(job.sessions, tables)

        # 2. Transport fee
        if options.transport_fee is not None:
            transport = options.transport_fee
        else:
            transport = self._fees.resolve_transport_fee(site)

        # 3. Material cost
        if options.material_cost_per_student is not None:
            per_student = options.material_cost_per_student
        elif program is not None and program.base_material_cost is not None:
            per_student = program.base_material_cost
        else:
            per_student = tables.material_cost_per_student
        material = per_student * job.student_count

        # 4. Assistant fee
        assistant = tables.assistant_fee_per_session * job.sessions * options.assistant_count

        # 5-6. Overhead and subtotal
        overhead_rate = _rate(options.overhead_rate, tables.overhead_rate)
        costs = fee + transport + material + assistant
        overhead = round_up(costs * overhead_rate)
        subtotal = costs + overhead

        # 7. Margin
        margin_rate = _rate(options.margin_rate, tables.margin_rate)
        margin = round_up(subtotal * margin_rate)

        # 8-9. VAT and total
        vat_rate = _rate(options.vat_rate, tables.vat_rate)
        before_vat = subtotal + margin
        vat = round_up(before_vat * vat_rate)
        total = before_vat + vat

        # 10. Discount
        discount = require_amount("discount", options.discount)
        if discount > total:
            msg = f"discount {discount} exceeds quote total {total}"
            raise InvalidInput(msg)

        return QuoteBreakdown(
            sessions=job.sessions,
            student_count=job.student_count,
            session_fee=fee,
            transport_fee=transport,
            material_cost=material,
            assistant_fee=assistant,
            overhead=overhead,
            subtotal=subtotal,
            margin_rate=margin_rate,
            margin_amount=margin,
            before_vat=before_vat,
            vat=vat,
            total=total,
            discount=discount,
            final_total=total - discount,
            rates_version=tables.version,
        )

    def fit_to_budget(
        self,
        job: Job,
        site: Site,
        program: ProgramCatalogEntry | None,
        target_budget: Decimal,
        options: QuoteOptions | None = None,
    ) -> BudgetFit:
        """Bring the quote to ``target_budget`` or below.

        Margin goes down first, never below the configured floor. Whatever is
        still over after that becomes a flat discount. Each step re-runs the
        whole chain.
        """
        if target_budget < 0:
            msg = f"target budget must not be negative, got {target_budget}"
            raise InvalidInput(msg)
        options = options or QuoteOptions()
        base = self.calculate(job, site, program, options)
        if base.final_total <= target_budget:
            return BudgetFit(quote=base)

        adjustments: list[str] = []
        quote = base
        floor = self._tables.margin_floor_rate
        if base.margin_rate > floor and base.subtotal > 0:
            vat_rate = _rate(options.vat_rate, self._tables.vat_rate)
            excess = base.final_total - target_budget
            needed = (excess / (base.subtotal * (1 + vat_rate))).quantize(
                _RATE_STEP, rounding=ROUND_UP,
            )
            new_rate = max(floor, base.margin_rate - needed)
            options = options.model_copy(update={"margin_rate": new_rate})
            quote = self.calculate(job, site, program, options)
            adjustments.append(f"margin rate {_percent(base.margin_rate)} -> {_percent(new_rate)}")
            logger.debug(
                "Job %d: margin %s -> %s, total %s -> %s (target %s)",
                job.id, base.margin_rate, new_rate,
                base.final_total, quote.final_total, target_budget,
            )
            if quote.final_total <= target_budget:
                return BudgetFit(quote=quote, adjustments=tuple(adjustments))

        remaining = quote.final_total - target_budget
        options = options.model_copy(update={"discount": options.discount + remaining})
        quote = self.calculate(job, site, program, options)
        adjustments.append(f"discount {remaining:,} applied")
        logger.debug("Job %d: discount %s, final total %s", job.id, remaining, quote.final_total)
        return BudgetFit(quote=quote, adjustments=tuple(adjustments))

    def calculate_for_job(self, job_id: int, options: QuoteOptions | None = None) -> QuoteBreakdown:
        """Load the job from storage and run ``calculate``."""
        ctx = load_job_context(self._require_repo(), job_id)
        return self.calculate(ctx.job, ctx.site, ctx.program, options)

    def create_quote(
        self,
        job_id: int,
        breakdown: QuoteBreakdown,
        created_by: str = "system",
        notes: str = "",
        valid_days: int | None = None,
    ) -> Quote:
        """Store a computed quote and mark the job QUOTED in one transaction."""
        repo = self._require_repo()
        days = valid_days if valid_days is not None else self._tables.quote_valid_days
        if days < 1:
            msg = f"quote validity must be at least one day, got {days}"
            raise InvalidInput(msg)
        today = self._clock()
        with repo.transaction():
            repo.get_job(job_id)
            if repo.find_quote_for_job(job_id) is not None:
                msg = f"job {job_id} already has a quote"
                raise QuoteAlreadyExists(msg)
            prefix = f"QT-{today:%Y%m}-"
            number = f"{prefix}{repo.next_quote_sequence(prefix):03d}"
            quote = repo.create_quote(
                job_id=job_id,
                quote_number=number,
                breakdown=breakdown,
                valid_from=today,
                valid_until=today + timedelta(days=days),
                created_by=created_by,
                notes=notes,
            )
            repo.update_job_status(job_id, JobStatus.QUOTED)
        logger.info("Quote %s created for job %d: %s", number, job_id, breakdown.final_total)
        return quote

    def auto_generate(
        self,
        job_id: int,
        created_by: str = "system",
        adjust_to_budget: bool = True,
    ) -> Quote:
        """Price a job (budget-fitted when it has a budget) and store the quote."""
        repo = self._require_repo()
        if repo.find_quote_for_job(job_id) is not None:
            msg = f"job {job_id} already has a quote"
            raise QuoteAlreadyExists(msg)
        ctx = load_job_context(repo, job_id)
        notes = "automatically generated quote"
        if adjust_to_budget and ctx.job.budget is not None:
            fit = self.fit_to_budget(ctx.job, ctx.site, ctx.program, ctx.job.budget)
            breakdown = fit.quote
            if fit.adjusted:
                notes += "\nadjusted: " + ", ".join(fit.adjustments)
        else:
            breakdown = self.calculate(ctx.job, ctx.site, ctx.program)
        return self.create_quote(job_id, breakdown, created_by=created_by, notes=notes)

    def _require_repo(self) -> Repository:
        if self._repo is None:
            msg = "QuoteCalculator was built without a repository"
            raise RuntimeError(msg)
        return self._repo


def _rate(override: Decimal | None, default: Decimal) -> Decimal:
    return default if override is None else override
