"""Tests for SqliteRepository: transactions and error mapping."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from src.core.db import init_db
from src.core.errors import (
    DuplicateAssignment,
    EntityNotFound,
    RepositoryFailure,
)
from src.core.repository import SqliteRepository, load_job_context
from src.core.schemas import AssignmentStatus, JobStatus


@pytest.fixture()
def repo(tmp_path: Path) -> SqliteRepository:
    return SqliteRepository(init_db(tmp_path / "test.db"))


def _job_id(repo: SqliteRepository, **kw: object) -> int:
    site = repo.add_site(name="Andong Elementary", region="Andong", distance_km=50)
    fields: dict[str, object] = {"site_id": site.id, "sessions": 3, "student_count": 20}
    fields.update(kw)
    return repo.add_job(**fields).id


class TestTransaction:
    def test_commit(self, repo: SqliteRepository, tmp_path: Path) -> None:
        job_id = _job_id(repo)
        with repo.transaction():
            repo.update_job_status(job_id, JobStatus.QUOTED)
        # A second connection sees committed data only.
        other = SqliteRepository(init_db(tmp_path / "test.db"))
        assert other.get_job(job_id).status is JobStatus.QUOTED

    def test_rollback_on_error(self, repo: SqliteRepository) -> None:
        job_id = _job_id(repo)
        with pytest.raises(RuntimeError), repo.transaction():
            repo.update_job_status(job_id, JobStatus.QUOTED)
            raise RuntimeError("boom")
        assert repo.get_job(job_id).status is JobStatus.SUBMITTED

    def test_nested_scope_joins_outer(self, repo: SqliteRepository) -> None:
        job_id = _job_id(repo)
        worker = repo.add_worker(name="Kim")
        with pytest.raises(RuntimeError), repo.transaction():
            with repo.transaction():
                repo.create_assignment(job_id, worker.id, None, 50, Decimal("15000"))
            repo.update_job_status(job_id, JobStatus.ASSIGNED)
            raise RuntimeError("boom")
        assert repo.find_active_assignment(job_id) is None
        assert repo.get_job(job_id).status is JobStatus.SUBMITTED


class TestReads:
    @pytest.mark.parametrize(
        "getter",
        ["get_job", "get_site", "get_program", "get_worker", "get_assignment", "get_quote", "get_payment"],
    )
    def test_missing_raises_not_found(self, repo: SqliteRepository, getter: str) -> None:
        with pytest.raises(EntityNotFound):
            getattr(repo, getter)(999)

    def test_not_found_is_repository_failure(self) -> None:
        assert issubclass(EntityNotFound, RepositoryFailure)

    def test_update_missing_job(self, repo: SqliteRepository) -> None:
        with pytest.raises(EntityNotFound):
            repo.update_job_status(999, JobStatus.QUOTED)

    def test_load_job_context(self, repo: SqliteRepository) -> None:
        program = repo.add_program(name="AI Robot Coding", category="FOURTHIND")
        job_id = _job_id(repo, program_id=program.id)
        ctx = load_job_context(repo, job_id)
        assert ctx.job.id == job_id
        assert ctx.site.name == "Andong Elementary"
        assert ctx.program == program

    def test_load_job_context_custom_program(self, repo: SqliteRepository) -> None:
        ctx = load_job_context(repo, _job_id(repo))
        assert ctx.program is None

    def test_booked_worker_ids(self, repo: SqliteRepository) -> None:
        day = date(2026, 10, 19)
        worker = repo.add_worker(name="Kim")
        with repo.transaction():
            repo.create_assignment(_job_id(repo), worker.id, day, 50, Decimal("15000"))
        assert repo.booked_worker_ids(day) == frozenset({worker.id})


class TestWrites:
    def test_second_live_assignment_is_duplicate(self, repo: SqliteRepository) -> None:
        job_id = _job_id(repo)
        worker = repo.add_worker(name="Kim")
        other = repo.add_worker(name="Lee")
        with repo.transaction():
            first = repo.create_assignment(job_id, worker.id, None, 50, Decimal("15000"))
            repo.update_job_status(job_id, JobStatus.ASSIGNED)
        with pytest.raises(DuplicateAssignment), repo.transaction():
            repo.create_assignment(job_id, other.id, None, 50, Decimal("15000"))
            repo.update_job_status(job_id, JobStatus.QUOTED)

        count = repo.connection.execute(
            "SELECT COUNT(*) FROM assignments WHERE job_id = ?", (job_id,)
        ).fetchone()[0]
        assert count == 1
        assert repo.find_active_assignment(job_id) == first
        assert repo.get_job(job_id).status is JobStatus.ASSIGNED

    def test_reopen_after_decline(self, repo: SqliteRepository) -> None:
        job_id = _job_id(repo)
        worker = repo.add_worker(name="Kim")
        with repo.transaction():
            first = repo.create_assignment(job_id, worker.id, None, 50, Decimal("15000"))
            repo.update_assignment_status(first.id, AssignmentStatus.DECLINED)
            second = repo.create_assignment(job_id, worker.id, None, 50, Decimal("15000"))
        assert repo.find_active_assignment(job_id) == second
        assert repo.get_assignment(first.id).is_active is False

    def test_foreign_key_violation_is_repository_failure(self, repo: SqliteRepository) -> None:
        job_id = _job_id(repo)
        with pytest.raises(RepositoryFailure), repo.transaction():
            repo.create_assignment(job_id, 999, None, 50, Decimal("15000"))

    def test_update_missing_assignment(self, repo: SqliteRepository) -> None:
        with pytest.raises(EntityNotFound):
            repo.update_assignment_status(999, AssignmentStatus.COMPLETED)

    def test_sequences_start_at_one(self, repo: SqliteRepository) -> None:
        assert repo.next_quote_sequence("QT-202610-") == 1
        assert repo.next_payment_sequence("PAY-202610-") == 1
