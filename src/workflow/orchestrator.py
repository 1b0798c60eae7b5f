"""Orchestrator: runs the quote -> assign -> pay sequence for jobs.

Data flow:
  process_new_job
    1. Quote (budget-fitted when the job has a budget) -> job QUOTED
    2. Auto-assign the best worker (optional)          -> job ASSIGNED
  process_completed_job
    3. Book the payout for a COMPLETED assignment      -> job PAID

Each stage commits on its own. A failed quote stops the run before matching.
A failed assignment after a stored quote is a partial success: the quote
stays, the result says what went wrong.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from src.core.config import Settings
from src.core.errors import BookingError
from src.core.notifier import Notifier
from src.core.repository import Repository
from src.core.schemas import Assignment, Payment, Quote
from src.matching.matcher import InstructorMatcher
from src.pricing.distance import DistanceFeeTable
from src.pricing.payment import PaymentCalculator
from src.pricing.quote import QuoteCalculator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quoted:
    """Quote stored; assignment was not requested."""

    quote: Quote


@dataclass(frozen=True)
class QuotedAndAssigned:
    """Quote stored and a worker proposed."""

    quote: Quote
    assignment: Assignment


@dataclass(frozen=True)
class QuoteFailed:
    """Nothing was stored."""

    error: BookingError


@dataclass(frozen=True)
class AssignmentFailed:
    """Quote stored, but no worker could be proposed."""

    quote: Quote
    error: BookingError


NewJobOutcome = Quoted | QuotedAndAssigned | QuoteFailed | AssignmentFailed


@dataclass(frozen=True)
class Paid:
    payment: Payment


@dataclass(frozen=True)
class PaymentFailed:
    error: BookingError


CompletedJobOutcome = Paid | PaymentFailed


class AutomationWorkflow:
    """Wires the calculators and the matcher to one repository and notifier."""

    def __init__(
        self,
        repo: Repository,
        notifier: Notifier,
        settings: Settings | None = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        settings = settings or Settings()
        fees = DistanceFeeTable(settings.transport)
        self._notifier = notifier
        self.quotes = QuoteCalculator(settings.rates, fees, repo, clock)
        self.matcher = InstructorMatcher(fees, settings.matching, repo)
        self.payments = PaymentCalculator(settings.rates, fees, repo, clock)

    def process_new_job(
        self,
        job_id: int,
        auto_assign: bool = True,
        adjust_to_budget: bool = True,
        created_by: str = "system",
    ) -> NewJobOutcome:
        """Quote a new job, then (optionally) propose a worker for it."""
        try:
            quote = self.quotes.auto_generate(job_id, created_by, adjust_to_budget)
        except BookingError as e:
            logger.warning("Job %d: quote failed: %s", job_id, e)
            return QuoteFailed(error=e)
        self._notify(self._notifier.notify_quote_generated, quote.id)

        if not auto_assign:
            return Quoted(quote=quote)

        try:
            result = self.matcher.auto_assign(job_id)
        except BookingError as e:
            logger.warning("Job %d: quoted as %s but assignment failed: %s", job_id, quote.quote_number, e)
            return AssignmentFailed(quote=quote, error=e)
        self._notify(self._notifier.notify_assignment, result.assignment.id)
        return QuotedAndAssigned(quote=quote, assignment=result.assignment)

    def process_completed_job(
        self,
        assignment_id: int,
        approved_by: str | None = None,
    ) -> CompletedJobOutcome:
        """Book the payout for a completed assignment."""
        try:
            payment = self.payments.auto_generate(assignment_id, approved_by)
        except BookingError as e:
            logger.warning("Assignment %d: payment failed: %s", assignment_id, e)
            return PaymentFailed(error=e)
        self._notify(self._notifier.notify_payment_processed, payment.id)
        return Paid(payment=payment)

    def _notify(self, send: Callable[[int], None], entity_id: int) -> None:
        # The stage is already committed; a delivery problem must not undo it.
        try:
            send(entity_id)
        except Exception:
            logger.warning("Notification for %d failed", entity_id, exc_info=True)
