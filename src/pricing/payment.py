"""Worker payout calculation and payment generation.

Payout = session fee + transport fee + bonus, less tax withholding (rounded
down) and deductions. Payments exist only for COMPLETED assignments, one per
assignment.
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from src.core.config import RateTables
from src.core.errors import AssignmentNotCompleted, InvalidInput, PaymentAlreadyExists
from src.core.repository import Repository
from src.core.schemas import (
    Assignment,
    AssignmentStatus,
    Job,
    JobStatus,
    MonthlyPaymentSummary,
    Payment,
    PaymentBreakdown,
    Site,
    Worker,
    WorkerPaymentTotal,
)
from src.pricing.distance import DistanceFeeTable
from src.pricing.rates import require_amount, round_down, round_half_up, session_fee

logger = logging.getLogger(__name__)


class PaymentOptions(BaseModel):
    """Overrides for a payout. None means "derive it"."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    actual_sessions: int | None = Field(default=None, ge=1)
    session_fee: Decimal | None = Field(default=None, ge=0)
    bonus: Decimal = Field(default=Decimal("0"), ge=0)
    deductions: Decimal = Field(default=Decimal("0"), ge=0)


class PaymentCalculator:
    """Computes and books worker payouts against one rate-table snapshot."""

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

    def calculate(
        self,
        assignment: Assignment,
        job: Job,
        worker: Worker,
        site: Site,
        options: PaymentOptions | None = None,
    ) -> PaymentBreakdown:
        """Payout for a completed assignment. Pure; raises if not COMPLETED."""
        if assignment.status is not AssignmentStatus.COMPLETED:
            msg = (
                f"assignment {assignment.id} is {assignment.status.value}, "
                "only COMPLETED assignments can be paid"
            )
            raise AssignmentNotCompleted(msg)
        options = options or PaymentOptions()

        sessions = options.actual_sessions or assignment.actual_sessions or job.sessions
        if sessions < 1:
            msg = f"assignment {assignment.id}: session count must be at least 1"
            raise InvalidInput(msg)

        if options.session_fee is not None:
            fee = options.session_fee
        elif worker.default_session_fee is not None:
            fee = worker.default_session_fee
        else:
            fee = session_fee(sessions, self._tables)

        transport = self._fees.resolve_transport_fee(site)
        bonus = require_amount("bonus", options.bonus)
        deductions = require_amount("deductions", options.deductions)

        subtotal = fee + transport + bonus
        rate = self._tables.tax_withholding_rate
        tax = round_down(subtotal * rate)
        return PaymentBreakdown(
            sessions=sessions,
            session_fee=fee,
            fee_per_session=round_half_up(fee / sessions),
            transport_fee=transport,
            bonus=bonus,
            subtotal=subtotal,
            tax_rate=rate,
            tax_withholding=tax,
            deductions=deductions,
            net_amount=subtotal - tax - deductions,
        )

    def auto_generate(
        self,
        assignment_id: int,
        approved_by: str | None = None,
        options: PaymentOptions | None = None,
    ) -> Payment:
        """Book the payout for a completed assignment and mark its job PAID."""
        repo = self._require_repo()
        today = self._clock()
        period = f"{today:%Y-%m}"
        with repo.transaction():
            assignment = repo.get_assignment(assignment_id)
            if assignment.status is not AssignmentStatus.COMPLETED:
                msg = (
                    f"assignment {assignment_id} is {assignment.status.value}, "
                    "only COMPLETED assignments can be paid"
                )
                raise AssignmentNotCompleted(msg)
            if repo.find_payment_for_assignment(assignment_id) is not None:
                msg = f"assignment {assignment_id} already has a payment"
                raise PaymentAlreadyExists(msg)

            job = repo.get_job(assignment.job_id)
            worker = repo.get_worker(assignment.worker_id)
            site = repo.get_site(job.site_id)
            breakdown = self.calculate(assignment, job, worker, site, options)

            prefix = f"PAY-{today:%Y%m}-"
            number = f"{prefix}{repo.next_payment_sequence(prefix):03d}"
            payment = repo.create_payment(
                assignment_id=assignment_id,
                worker_id=worker.id,
                payment_number=number,
                breakdown=breakdown,
                accounting_period=period,
                approved_by=approved_by,
                notes="automatically generated payment",
            )
            repo.update_job_status(job.id, JobStatus.PAID)
        logger.info(
            "Payment %s for assignment %d: net %s", number, assignment_id, breakdown.net_amount,
        )
        return payment

    def monthly_summary(self, accounting_period: str) -> MonthlyPaymentSummary:
        """Gross, withholding and net totals for one YYYY-MM period, per worker too."""
        repo = self._require_repo()
        payments = repo.list_payments(accounting_period)

        counts: dict[int, int] = defaultdict(int)
        nets: dict[int, Decimal] = defaultdict(Decimal)
        for p in payments:
            counts[p.worker_id] += 1
            nets[p.worker_id] += p.breakdown.net_amount

        workers = [
            WorkerPaymentTotal(
                worker_id=worker_id,
                worker_name=repo.get_worker(worker_id).name,
                count=counts[worker_id],
                net_amount=nets[worker_id],
            )
            for worker_id in sorted(counts)
        ]
        return MonthlyPaymentSummary(
            accounting_period=accounting_period,
            total_payments=len(payments),
            gross_amount=sum((p.breakdown.subtotal for p in payments), Decimal("0")),
            tax_withholding=sum((p.breakdown.tax_withholding for p in payments), Decimal("0")),
            net_amount=sum((p.breakdown.net_amount for p in payments), Decimal("0")),
            workers=workers,
        )

    def _require_repo(self) -> Repository:
        if self._repo is None:
            msg = "PaymentCalculator was built without a repository"
            raise RuntimeError(msg)
        return self._repo
