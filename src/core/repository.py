"""Storage contract used by the engine, plus the SQLite implementation.

The engine never talks to sqlite3 directly. It reads and writes through a
``Repository`` and groups paired writes in ``transaction()``::

    with repo.transaction():
        assignment = repo.create_assignment(...)
        repo.update_job_status(job_id, JobStatus.ASSIGNED)

Storage errors surface as ``RepositoryFailure``; uniqueness violations on the
one-live-assignment / one-quote / one-payment constraints surface as the
matching domain error so concurrent writers see a typed failure.
"""

import contextlib
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import date
from decimal import Decimal
from typing import Any, NamedTuple

from src.core import db
from src.core.errors import (
    DuplicateAssignment,
    EntityNotFound,
    PaymentAlreadyExists,
    QuoteAlreadyExists,
    RepositoryFailure,
)
from src.core.schemas import (
    Assignment,
    AssignmentStatus,
    Job,
    JobStatus,
    Payment,
    PaymentBreakdown,
    ProgramCatalogEntry,
    Quote,
    QuoteBreakdown,
    Site,
    Worker,
    WorkerStatus,
)

logger = logging.getLogger(__name__)


class Repository(ABC):
    """Atomic read/create/update access to every entity the engine uses."""

    @abstractmethod
    def transaction(self) -> contextlib.AbstractContextManager[None]:
        """Scope in which all writes commit together or roll back together."""

    # --- reads ---

    @abstractmethod
    def get_job(self, job_id: int) -> Job: ...

    @abstractmethod
    def get_site(self, site_id: int) -> Site: ...

    @abstractmethod
    def get_program(self, program_id: int) -> ProgramCatalogEntry: ...

    @abstractmethod
    def get_worker(self, worker_id: int) -> Worker: ...

    @abstractmethod
    def list_workers(self, status: WorkerStatus | None = None) -> list[Worker]: ...

    @abstractmethod
    def get_assignment(self, assignment_id: int) -> Assignment: ...

    @abstractmethod
    def find_active_assignment(self, job_id: int) -> Assignment | None: ...

    @abstractmethod
    def booked_worker_ids(self, on: date) -> frozenset[int]: ...

    @abstractmethod
    def get_quote(self, quote_id: int) -> Quote: ...

    @abstractmethod
    def find_quote_for_job(self, job_id: int) -> Quote | None: ...

    @abstractmethod
    def get_payment(self, payment_id: int) -> Payment: ...

    @abstractmethod
    def find_payment_for_assignment(self, assignment_id: int) -> Payment | None: ...

    @abstractmethod
    def list_payments(self, accounting_period: str) -> list[Payment]: ...

    # --- writes ---

    @abstractmethod
    def update_job_status(self, job_id: int, status: JobStatus) -> None: ...

    @abstractmethod
    def create_assignment(
        self,
        job_id: int,
        worker_id: int,
        scheduled_date: date | None,
        distance_km: int | None,
        transport_fee: Decimal | None,
        notes: str = "",
    ) -> Assignment: ...

    @abstractmethod
    def update_assignment_status(
        self,
        assignment_id: int,
        status: AssignmentStatus,
        actual_sessions: int | None = None,
    ) -> None: ...

    @abstractmethod
    def next_quote_sequence(self, prefix: str) -> int:
        """One past the highest quote number suffix under ``prefix`` (1 when none)."""

    @abstractmethod
    def create_quote(
        self,
        job_id: int,
        quote_number: str,
        breakdown: QuoteBreakdown,
        valid_from: date,
        valid_until: date,
        created_by: str,
        notes: str,
    ) -> Quote: ...

    @abstractmethod
    def next_payment_sequence(self, prefix: str) -> int:
        """One past the highest payment number suffix under ``prefix`` (1 when none)."""

    @abstractmethod
    def create_payment(
        self,
        assignment_id: int,
        worker_id: int,
        payment_number: str,
        breakdown: PaymentBreakdown,
        accounting_period: str,
        approved_by: str | None,
        notes: str,
    ) -> Payment: ...


def _not_found(kind: str, key: int) -> EntityNotFound:
    return EntityNotFound(f"{kind} {key} not found")


class SqliteRepository(Repository):
    """Repository backed by one sqlite3 connection from ``db.init_db``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._depth = 0

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on success, roll back on any exception. Nested scopes join the outer one."""
        self._depth += 1
        try:
            yield
            if self._depth == 1:
                with self._errors():
                    self._conn.commit()
        except BaseException:
            if self._depth == 1:
                self._conn.rollback()
                logger.debug("Transaction rolled back")
            raise
        finally:
            self._depth -= 1

    @contextlib.contextmanager
    def _errors(
        self,
        duplicate: type[Exception] | None = None,
        what: str = "",
        column: str = "",
    ) -> Iterator[None]:
        # Only a UNIQUE failure on ``column`` (e.g. "quotes.job_id") is the domain duplicate.
        try:
            yield
        except sqlite3.IntegrityError as e:
            detail = str(e.args[0]) if e.args else str(e)
            if (
                duplicate is not None
                and detail.startswith("UNIQUE constraint failed")
                and column in detail
            ):
                raise duplicate(what or detail) from e
            raise RepositoryFailure(f"integrity error: {e}") from e
        except sqlite3.Error as e:
            raise RepositoryFailure(f"storage error: {e}") from e

    # --- seeding helpers (bookkeeping outside the engine) ---

    def add_site(self, **fields: Any) -> Site:
        with self.transaction(), self._errors():
            site_id = db.insert_site(self._conn, Site(id=0, **fields))
        return self.get_site(site_id)

    def add_program(self, **fields: Any) -> ProgramCatalogEntry:
        with self.transaction(), self._errors():
            program_id = db.insert_program(self._conn, ProgramCatalogEntry(id=0, **fields))
        return self.get_program(program_id)

    def add_worker(self, **fields: Any) -> Worker:
        with self.transaction(), self._errors():
            worker_id = db.insert_worker(self._conn, Worker(id=0, **fields))
        return self.get_worker(worker_id)

    def add_job(self, **fields: Any) -> Job:
        with self.transaction(), self._errors():
            job_id = db.insert_job(self._conn, Job(id=0, **fields))
        return self.get_job(job_id)

    # --- reads ---

    def get_job(self, job_id: int) -> Job:
        with self._errors():
            job = db.fetch_job(self._conn, job_id)
        if job is None:
            raise _not_found("job", job_id)
        return job

    def get_site(self, site_id: int) -> Site:
        with self._errors():
            site = db.fetch_site(self._conn, site_id)
        if site is None:
            raise _not_found("site", site_id)
        return site

    def get_program(self, program_id: int) -> ProgramCatalogEntry:
        with self._errors():
            program = db.fetch_program(self._conn, program_id)
        if program is None:
            raise _not_found("program", program_id)
        return program

    def get_worker(self, worker_id: int) -> Worker:
        with self._errors():
            worker = db.fetch_worker(self._conn, worker_id)
        if worker is None:
            raise _not_found("worker", worker_id)
        return worker

    def list_workers(self, status: WorkerStatus | None = None) -> list[Worker]:
        with self._errors():
            return db.fetch_workers(self._conn, status)

    def get_assignment(self, assignment_id: int) -> Assignment:
        with self._errors():
            assignment = db.fetch_assignment(self._conn, assignment_id)
        if assignment is None:
            raise _not_found("assignment", assignment_id)
        return assignment

    def find_active_assignment(self, job_id: int) -> Assignment | None:
        with self._errors():
            return db.fetch_active_assignment(self._conn, job_id)

    def booked_worker_ids(self, on: date) -> frozenset[int]:
        with self._errors():
            return frozenset(db.fetch_booked_worker_ids(self._conn, on))

    def get_quote(self, quote_id: int) -> Quote:
        with self._errors():
            quote = db.fetch_quote(self._conn, quote_id)
        if quote is None:
            raise _not_found("quote", quote_id)
        return quote

    def find_quote_for_job(self, job_id: int) -> Quote | None:
        with self._errors():
            return db.fetch_quote_for_job(self._conn, job_id)

    def get_payment(self, payment_id: int) -> Payment:
        with self._errors():
            payment = db.fetch_payment(self._conn, payment_id)
        if payment is None:
            raise _not_found("payment", payment_id)
        return payment

    def find_payment_for_assignment(self, assignment_id: int) -> Payment | None:
        with self._errors():
            return db.fetch_payment_for_assignment(self._conn, assignment_id)

    def list_payments(self, accounting_period: str) -> list[Payment]:
        with self._errors():
            return db.fetch_payments_for_period(self._conn, accounting_period)

    # --- writes ---

    def update_job_status(self, job_id: int, status: JobStatus) -> None:
        with self._errors():
            updated = db.set_job_status(self._conn, job_id, status)
        if not updated:
            raise _not_found("job", job_id)

    def create_assignment(
        self,
        job_id: int,
        worker_id: int,
        scheduled_date: date | None,
        distance_km: int | None,
        transport_fee: Decimal | None,
        notes: str = "",
    ) -> Assignment:
        draft = Assignment(
            id=0,
            job_id=job_id,
            worker_id=worker_id,
            scheduled_date=scheduled_date,
            distance_km=distance_km,
            transport_fee=transport_fee,
            notes=notes,
        )
        with self._errors(
            DuplicateAssignment,
            f"job {job_id} already has an active assignment",
            "assignments.job_id",
        ):
            assignment_id = db.insert_assignment(self._conn, draft)
        return self.get_assignment(assignment_id)

    def update_assignment_status(
        self,
        assignment_id: int,
        status: AssignmentStatus,
        actual_sessions: int | None = None,
    ) -> None:
        with self._errors(
            DuplicateAssignment,
            f"assignment {assignment_id} conflicts with a live one",
            "assignments.job_id",
        ):
            updated = db.set_assignment_status(self._conn, assignment_id, status, actual_sessions)
        if not updated:
            raise _not_found("assignment", assignment_id)

    def next_quote_sequence(self, prefix: str) -> int:
        with self._errors():
            return db.max_quote_sequence(self._conn, prefix) + 1

    def create_quote(
        self,
        job_id: int,
        quote_number: str,
        breakdown: QuoteBreakdown,
        valid_from: date,
        valid_until: date,
        created_by: str,
        notes: str,
    ) -> Quote:
        with self._errors(QuoteAlreadyExists, f"job {job_id} already has a quote", "quotes.job_id"):
            quote_id = db.insert_quote(
                self._conn, job_id, quote_number, breakdown,
                valid_from, valid_until, created_by, notes,
            )
        return self.get_quote(quote_id)

    def next_payment_sequence(self, prefix: str) -> int:
        with self._errors():
            return db.max_payment_sequence(self._conn, prefix) + 1

    def create_payment(
        self,
        assignment_id: int,
        worker_id: int,
        payment_number: str,
        breakdown: PaymentBreakdown,
        accounting_period: str,
        approved_by: str | None,
        notes: str,
    ) -> Payment:
        with self._errors(
            PaymentAlreadyExists,
            f"assignment {assignment_id} already has a payment",
            "payments.assignment_id",
        ):
            payment_id = db.insert_payment(
                self._conn, assignment_id, worker_id, payment_number,
                breakdown, accounting_period, approved_by, notes,
            )
        return self.get_payment(payment_id)


class JobContext(NamedTuple):
    """A job with the site and catalog program it refers to."""

    job: Job
    site: Site
    program: ProgramCatalogEntry | None


def load_job_context(repo: Repository, job_id: int) -> JobContext:
    """Read a job once together with its site and (optional) program."""
    job = repo.get_job(job_id)
    site = repo.get_site(job.site_id)
    program = repo.get_program(job.program_id) if job.program_id is not None else None
    return JobContext(job, site, program)
