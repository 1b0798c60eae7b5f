"""Tests for worker payout calculation, payment booking and monthly totals."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from src.core.config import RateTables
from src.core.db import init_db
from src.core.errors import AssignmentNotCompleted, PaymentAlreadyExists, RepositoryFailure
from src.core.repository import SqliteRepository
from src.core.schemas import Assignment, AssignmentStatus, Job, JobStatus, Site, Worker
from src.pricing.distance import DistanceFeeTable
from src.pricing.payment import PaymentCalculator, PaymentOptions

TODAY = date(2026, 10, 19)


def _calc(repo: SqliteRepository | None = None) -> PaymentCalculator:
    return PaymentCalculator(RateTables(), DistanceFeeTable(), repo, clock=lambda: TODAY)


def _assignment(**kw: object) -> Assignment:
    defaults: dict[str, object] = {
        "id": 1, "job_id": 1, "worker_id": 1, "status": AssignmentStatus.COMPLETED,
    }
    defaults.update(kw)
    return Assignment(**defaults)  # type: ignore[arg-type]


JOB = Job(id=1, site_id=1, sessions=3, student_count=20)
SITE = Site(id=1, distance_km=50)
WORKER = Worker(id=1, name="Kim")


@pytest.fixture()
def repo(tmp_path: Path) -> SqliteRepository:
    return SqliteRepository(init_db(tmp_path / "test.db"))


def _completed_assignment(repo: SqliteRepository, worker: Worker | None = None) -> int:
    """Seed a job with a COMPLETED assignment and return the assignment id."""
    site = repo.add_site(name="Andong Elementary", distance_km=50)
    job = repo.add_job(site_id=site.id, sessions=3, student_count=20)
    if worker is None:
        worker = repo.add_worker(name="Kim")
    with repo.transaction():
        a = repo.create_assignment(job.id, worker.id, None, 50, Decimal("15000"))
        repo.update_assignment_status(a.id, AssignmentStatus.COMPLETED)
    return a.id


class TestCalculate:
    def test_basic_payout(self) -> None:
        p = _calc().calculate(_assignment(), JOB, WORKER, SITE)
        assert p.sessions == 3
        assert p.session_fee == Decimal("90000")
        assert p.fee_per_session == Decimal("30000")
        assert p.transport_fee == Decimal("15000")
        assert p.subtotal == Decimal("105000")
        assert p.tax_rate == Decimal("0.033")
        assert p.tax_withholding == Decimal("3465")
        assert p.net_amount == Decimal("101535")

    def test_bonus_and_deductions(self) -> None:
        options = PaymentOptions(bonus=Decimal("10000"), deductions=Decimal("5000"))
        p = _calc().calculate(_assignment(), JOB, WORKER, SITE, options)
        assert p.subtotal == Decimal("115000")
        assert p.tax_withholding == Decimal("3795")
        assert p.net_amount == Decimal("106205")

    def test_tax_rounds_down(self) -> None:
        worker = Worker(id=1, default_session_fee=Decimal("100001"))
        site = Site(id=1, distance_km=10)
        p = _calc().calculate(_assignment(), JOB, worker, site)
        # 100,001 x 0.033 = 3,300.033
        assert p.tax_withholding == Decimal("3300")
        assert p.net_amount == Decimal("96701")

    def test_worker_default_fee(self) -> None:
        worker = Worker(id=1, default_session_fee=Decimal("100000"))
        p = _calc().calculate(_assignment(), JOB, worker, SITE)
        assert p.session_fee == Decimal("100000")
        assert p.fee_per_session == Decimal("33333")

    def test_actual_sessions_from_assignment(self) -> None:
        p = _calc().calculate(_assignment(actual_sessions=4), JOB, WORKER, SITE)
        assert p.sessions == 4
        assert p.session_fee == Decimal("110000")

    def test_option_overrides(self) -> None:
        options = PaymentOptions(actual_sessions=2, session_fee=Decimal("80000"))
        p = _calc().calculate(_assignment(actual_sessions=4), JOB, WORKER, SITE, options)
        assert p.sessions == 2
        assert p.session_fee == Decimal("80000")
        assert p.fee_per_session == Decimal("40000")

    @pytest.mark.parametrize(
        "status",
        [AssignmentStatus.PROPOSED, AssignmentStatus.CONFIRMED, AssignmentStatus.CANCELLED],
    )
    def test_requires_completed(self, status: AssignmentStatus) -> None:
        with pytest.raises(AssignmentNotCompleted):
            _calc().calculate(_assignment(status=status), JOB, WORKER, SITE)


class TestAutoGenerate:
    def test_books_payment_and_marks_paid(self, repo: SqliteRepository) -> None:
        assignment_id = _completed_assignment(repo)
        payment = _calc(repo).auto_generate(assignment_id, approved_by="manager")

        assert payment.payment_number == "PAY-202610-001"
        assert payment.accounting_period == "2026-10"
        assert payment.status == "CALCULATED"
        assert payment.approved_by == "manager"
        assert payment.notes == "automatically generated payment"
        assert payment.breakdown.net_amount == Decimal("101535")
        job_id = repo.get_assignment(assignment_id).job_id
        assert repo.get_job(job_id).status is JobStatus.PAID

    def test_second_payment_rejected(self, repo: SqliteRepository) -> None:
        assignment_id = _completed_assignment(repo)
        calc = _calc(repo)
        calc.auto_generate(assignment_id)
        with pytest.raises(PaymentAlreadyExists):
            calc.auto_generate(assignment_id)

    def test_number_follows_highest_after_delete(self, repo: SqliteRepository) -> None:
        calc = _calc(repo)
        first = _completed_assignment(repo)
        calc.auto_generate(first)
        calc.auto_generate(_completed_assignment(repo))
        repo.connection.execute("DELETE FROM payments WHERE assignment_id = ?", (first,))
        repo.connection.commit()

        third = calc.auto_generate(_completed_assignment(repo))
        assert third.payment_number == "PAY-202610-003"

    def test_number_clash_is_not_duplicate_payment(self, repo: SqliteRepository) -> None:
        calc = _calc(repo)
        taken = calc.auto_generate(_completed_assignment(repo))
        assignment = repo.get_assignment(_completed_assignment(repo))
        with pytest.raises(RepositoryFailure) as exc_info, repo.transaction():
            repo.create_payment(
                assignment.id, assignment.worker_id, taken.payment_number,
                taken.breakdown, "2026-10", None, "",
            )
        assert not isinstance(exc_info.value, PaymentAlreadyExists)
        assert repo.find_payment_for_assignment(assignment.id) is None

    def test_not_completed_stores_nothing(self, repo: SqliteRepository) -> None:
        site = repo.add_site(distance_km=50)
        job = repo.add_job(site_id=site.id, sessions=3, student_count=20)
        worker = repo.add_worker(name="Kim")
        with repo.transaction():
            a = repo.create_assignment(job.id, worker.id, None, 50, Decimal("15000"))

        with pytest.raises(AssignmentNotCompleted):
            _calc(repo).auto_generate(a.id)
        assert repo.find_payment_for_assignment(a.id) is None
        assert repo.get_job(job.id).status is JobStatus.SUBMITTED


class TestMonthlySummary:
    def test_totals(self, repo: SqliteRepository) -> None:
        kim = repo.add_worker(name="Kim")
        lee = repo.add_worker(name="Lee", default_session_fee=Decimal("100001"))
        calc = _calc(repo)
        calc.auto_generate(_completed_assignment(repo, kim))
        calc.auto_generate(_completed_assignment(repo, kim))
        calc.auto_generate(_completed_assignment(repo, lee))

        s = calc.monthly_summary("2026-10")
        assert s.total_payments == 3
        # Kim: 105,000 gross / 3,465 tax twice. Lee: 115,001 gross / 3,795 tax.
        assert s.gross_amount == Decimal("325001")
        assert s.tax_withholding == Decimal("10725")
        assert s.net_amount == Decimal("314276")
        assert [(w.worker_name, w.count) for w in s.workers] == [("Kim", 2), ("Lee", 1)]
        assert s.workers[0].net_amount == Decimal("203070")

    def test_empty_period(self, repo: SqliteRepository) -> None:
        s = _calc(repo).monthly_summary("2026-09")
        assert s.total_payments == 0
        assert s.net_amount == Decimal("0")
        assert s.workers == []
