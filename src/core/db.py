"""SQLite database layer for sites, workers, jobs, assignments, quotes and payments.

Helpers here never commit. Callers wrap writes in a transaction (see
``SqliteRepository.transaction``) so paired writes land together or not at all.
Money is stored as TEXT holding the exact decimal string.
"""

import json
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

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

_SITES_TABLE = """
CREATE TABLE IF NOT EXISTS sites (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT    NOT NULL DEFAULT '',
    region          TEXT    NOT NULL DEFAULT '',
    latitude        REAL,
    longitude       REAL,
    distance_km     INTEGER,
    transport_fee   TEXT
);
"""

_PROGRAMS_TABLE = """
CREATE TABLE IF NOT EXISTS programs (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    name                TEXT NOT NULL,
    category            TEXT NOT NULL DEFAULT '',
    base_session_fee    TEXT,
    base_material_cost  TEXT
);
"""

_WORKERS_TABLE = """
CREATE TABLE IF NOT EXISTS workers (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    name                TEXT    NOT NULL DEFAULT '',
    status              TEXT    NOT NULL DEFAULT 'ACTIVE',
    home_region         TEXT    NOT NULL DEFAULT '',
    max_distance_km     INTEGER NOT NULL DEFAULT 60,
    available_weekdays  TEXT    NOT NULL DEFAULT '[]',
    specialties         TEXT    NOT NULL DEFAULT '[]',
    experience_years    INTEGER NOT NULL DEFAULT 0,
    rating              TEXT,
    default_session_fee TEXT
);
"""

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    site_id         INTEGER NOT NULL REFERENCES sites(id),
    program_id      INTEGER REFERENCES programs(id),
    sessions        INTEGER NOT NULL,
    student_count   INTEGER NOT NULL,
    target_grade    TEXT    NOT NULL DEFAULT '',
    desired_date    TEXT,
    flexible_date   INTEGER NOT NULL DEFAULT 0,
    budget          TEXT,
    status          TEXT    NOT NULL DEFAULT 'SUBMITTED'
);
"""

_ASSIGNMENTS_TABLE = """
CREATE TABLE IF NOT EXISTS assignments (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id          INTEGER NOT NULL REFERENCES jobs(id),
    worker_id       INTEGER NOT NULL REFERENCES workers(id),
    status          TEXT    NOT NULL DEFAULT 'PROPOSED',
    scheduled_date  TEXT,
    distance_km     INTEGER,
    transport_fee   TEXT,
    actual_sessions INTEGER,
    notes           TEXT    NOT NULL DEFAULT '',
    created_at      TEXT    NOT NULL
);
"""

# One live assignment per job; cancelled/declined rows are history.
_ASSIGNMENTS_ACTIVE_INDEX = """
CREATE UNIQUE INDEX IF NOT EXISTS ux_assignments_active_job
    ON assignments(job_id)
    WHERE status NOT IN ('CANCELLED', 'DECLINED');
"""

_QUOTES_TABLE = """
CREATE TABLE IF NOT EXISTS quotes (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id          INTEGER NOT NULL UNIQUE REFERENCES jobs(id),
    quote_number    TEXT    NOT NULL UNIQUE,
    breakdown_json  TEXT    NOT NULL,
    final_total     TEXT    NOT NULL,
    valid_from      TEXT    NOT NULL,
    valid_until     TEXT    NOT NULL,
    created_by      TEXT    NOT NULL DEFAULT '',
    notes           TEXT    NOT NULL DEFAULT ''
);
"""

_PAYMENTS_TABLE = """
CREATE TABLE IF NOT EXISTS payments (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    assignment_id       INTEGER NOT NULL UNIQUE REFERENCES assignments(id),
    worker_id           INTEGER NOT NULL REFERENCES workers(id),
    payment_number      TEXT    NOT NULL UNIQUE,
    breakdown_json      TEXT    NOT NULL,
    net_amount          TEXT    NOT NULL,
    accounting_period   TEXT    NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'CALCULATED',
    approved_by         TEXT,
    notes               TEXT    NOT NULL DEFAULT ''
);
"""


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    for ddl in (
        _SITES_TABLE,
        _PROGRAMS_TABLE,
        _WORKERS_TABLE,
        _JOBS_TABLE,
        _ASSIGNMENTS_TABLE,
        _ASSIGNMENTS_ACTIVE_INDEX,
        _QUOTES_TABLE,
        _PAYMENTS_TABLE,
    ):
        conn.execute(ddl)
    conn.commit()
    return conn


def _money(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _decimal(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


def _date(value: str | None) -> date | None:
    return None if value is None else date.fromisoformat(value)


# ---------------------------------------------------------------------------
# Sites, programs, workers
# ---------------------------------------------------------------------------


def insert_site(conn: sqlite3.Connection, site: Site) -> int:
    cursor = conn.execute(
        """
        INSERT INTO sites (name, region, latitude, longitude, distance_km, transport_fee)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            site.name,
            site.region,
            site.latitude,
            site.longitude,
            site.distance_km,
            _money(site.transport_fee),
        ),
    )
    return cursor.lastrowid or 0


def fetch_site(conn: sqlite3.Connection, site_id: int) -> Site | None:
    row = conn.execute("SELECT * FROM sites WHERE id = ?", (site_id,)).fetchone()
    if row is None:
        return None
    return Site(
        id=row["id"],
        name=row["name"],
        region=row["region"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        distance_km=row["distance_km"],
        transport_fee=_decimal(row["transport_fee"]),
    )


def insert_program(conn: sqlite3.Connection, program: ProgramCatalogEntry) -> int:
    cursor = conn.execute(
        """
        INSERT INTO programs (name, category, base_session_fee, base_material_cost)
        VALUES (?, ?, ?, ?)
        """,
        (
            program.name,
            program.category,
            _money(program.base_session_fee),
            _money(program.base_material_cost),
        ),
    )
    return cursor.lastrowid or 0


def fetch_program(conn: sqlite3.Connection, program_id: int) -> ProgramCatalogEntry | None:
    row = conn.execute("SELECT * FROM programs WHERE id = ?", (program_id,)).fetchone()
    if row is None:
        return None
    return ProgramCatalogEntry(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        base_session_fee=_decimal(row["base_session_fee"]),
        base_material_cost=_decimal(row["base_material_cost"]),
    )


def insert_worker(conn: sqlite3.Connection, worker: Worker) -> int:
    cursor = conn.execute(
        """
        INSERT INTO workers
            (name, status, home_region, max_distance_km, available_weekdays,
             specialties, experience_years, rating, default_session_fee)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            worker.name,
            worker.status.value,
            worker.home_region,
            worker.max_distance_km,
            json.dumps(sorted(worker.available_weekdays)),
            json.dumps(list(worker.specialties), ensure_ascii=False),
            worker.experience_years,
            _money(worker.rating),
            _money(worker.default_session_fee),
        ),
    )
    return cursor.lastrowid or 0


def _worker_from_row(row: sqlite3.Row) -> Worker:
    return Worker(
        id=row["id"],
        name=row["name"],
        status=WorkerStatus(row["status"]),
        home_region=row["home_region"],
        max_distance_km=row["max_distance_km"],
        available_weekdays=json.loads(row["available_weekdays"]),
        specialties=tuple(json.loads(row["specialties"])),
        experience_years=row["experience_years"],
        rating=_decimal(row["rating"]),
        default_session_fee=_decimal(row["default_session_fee"]),
    )


def fetch_worker(conn: sqlite3.Connection, worker_id: int) -> Worker | None:
    row = conn.execute("SELECT * FROM workers WHERE id = ?", (worker_id,)).fetchone()
    return None if row is None else _worker_from_row(row)


def fetch_workers(conn: sqlite3.Connection, status: WorkerStatus | None = None) -> list[Worker]:
    if status is None:
        rows = conn.execute("SELECT * FROM workers ORDER BY id").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM workers WHERE status = ? ORDER BY id", (status.value,)
        ).fetchall()
    return [_worker_from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def insert_job(conn: sqlite3.Connection, job: Job) -> int:
    cursor = conn.execute(
        """
        INSERT INTO jobs
            (site_id, program_id, sessions, student_count, target_grade,
             desired_date, flexible_date, budget, status)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job.site_id,
            job.program_id,
            job.sessions,
            job.student_count,
            job.target_grade,
            job.desired_date.isoformat() if job.desired_date else None,
            int(job.flexible_date),
            _money(job.budget),
            job.status.value,
        ),
    )
    return cursor.lastrowid or 0


def fetch_job(conn: sqlite3.Connection, job_id: int) -> Job | None:
    row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    if row is None:
        return None
    return Job(
        id=row["id"],
        site_id=row["site_id"],
        program_id=row["program_id"],
        sessions=row["sessions"],
        student_count=row["student_count"],
        target_grade=row["target_grade"],
        desired_date=_date(row["desired_date"]),
        flexible_date=bool(row["flexible_date"]),
        budget=_decimal(row["budget"]),
        status=JobStatus(row["status"]),
    )


def set_job_status(conn: sqlite3.Connection, job_id: int, status: JobStatus) -> bool:
    """Update a job's status. Returns False if no such job."""
    cursor = conn.execute("UPDATE jobs SET status = ? WHERE id = ?", (status.value, job_id))
    return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


def insert_assignment(conn: sqlite3.Connection, assignment: Assignment) -> int:
    cursor = conn.execute(
        """
        INSERT INTO assignments
            (job_id, worker_id, status, scheduled_date, distance_km,
             transport_fee, actual_sessions, notes, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            assignment.job_id,
            assignment.worker_id,
            assignment.status.value,
            assignment.scheduled_date.isoformat() if assignment.scheduled_date else None,
            assignment.distance_km,
            _money(assignment.transport_fee),
            assignment.actual_sessions,
            assignment.notes,
            assignment.created_at.isoformat(),
        ),
    )
    return cursor.lastrowid or 0


def _assignment_from_row(row: sqlite3.Row) -> Assignment:
    return Assignment(
        id=row["id"],
        job_id=row["job_id"],
        worker_id=row["worker_id"],
        status=AssignmentStatus(row["status"]),
        scheduled_date=_date(row["scheduled_date"]),
        distance_km=row["distance_km"],
        transport_fee=_decimal(row["transport_fee"]),
        actual_sessions=row["actual_sessions"],
        notes=row["notes"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def fetch_assignment(conn: sqlite3.Connection, assignment_id: int) -> Assignment | None:
    row = conn.execute("SELECT * FROM assignments WHERE id = ?", (assignment_id,)).fetchone()
    return None if row is None else _assignment_from_row(row)


def fetch_active_assignment(conn: sqlite3.Connection, job_id: int) -> Assignment | None:
    row = conn.execute(
        """
        SELECT * FROM assignments
        WHERE job_id = ? AND status NOT IN ('CANCELLED', 'DECLINED')
        LIMIT 1
        """,
        (job_id,),
    ).fetchone()
    return None if row is None else _assignment_from_row(row)


def fetch_booked_worker_ids(conn: sqlite3.Connection, on: date) -> set[int]:
    """Workers holding a live assignment scheduled on the given date."""
    rows = conn.execute(
        """
        SELECT DISTINCT worker_id FROM assignments
        WHERE scheduled_date = ? AND status NOT IN ('CANCELLED', 'DECLINED')
        """,
        (on.isoformat(),),
    ).fetchall()
    return {r["worker_id"] for r in rows}


def set_assignment_status(
    conn: sqlite3.Connection,
    assignment_id: int,
    status: AssignmentStatus,
    actual_sessions: int | None = None,
) -> bool:
    cursor = conn.execute(
        """
        UPDATE assignments
        SET status = ?, actual_sessions = COALESCE(?, actual_sessions)
        WHERE id = ?
        """,
        (status.value, actual_sessions, assignment_id),
    )
    return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


def insert_quote(
    conn: sqlite3.Connection,
    job_id: int,
    quote_number: str,
    breakdown: QuoteBreakdown,
    valid_from: date,
    valid_until: date,
    created_by: str,
    notes: str,
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO quotes
            (job_id, quote_number, breakdown_json, final_total,
             valid_from, valid_until, created_by, notes)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job_id,
            quote_number,
            breakdown.model_dump_json(),
            str(breakdown.final_total),
            valid_from.isoformat(),
            valid_until.isoformat(),
            created_by,
            notes,
        ),
    )
    return cursor.lastrowid or 0


def _quote_from_row(row: sqlite3.Row) -> Quote:
    return Quote(
        id=row["id"],
        job_id=row["job_id"],
        quote_number=row["quote_number"],
        breakdown=QuoteBreakdown.model_validate_json(row["breakdown_json"]),
        valid_from=date.fromisoformat(row["valid_from"]),
        valid_until=date.fromisoformat(row["valid_until"]),
        created_by=row["created_by"],
        notes=row["notes"],
    )


def fetch_quote(conn: sqlite3.Connection, quote_id: int) -> Quote | None:
    row = conn.execute("SELECT * FROM quotes WHERE id = ?", (quote_id,)).fetchone()
    return None if row is None else _quote_from_row(row)


def fetch_quote_for_job(conn: sqlite3.Connection, job_id: int) -> Quote | None:
    row = conn.execute("SELECT * FROM quotes WHERE job_id = ?", (job_id,)).fetchone()
    return None if row is None else _quote_from_row(row)


def max_quote_sequence(conn: sqlite3.Connection, prefix: str) -> int:
    """Highest numeric suffix among quote numbers starting with prefix, 0 if none."""
    row = conn.execute(
        """
        SELECT MAX(CAST(substr(quote_number, length(?) + 1) AS INTEGER))
        FROM quotes WHERE quote_number LIKE ?
        """,
        (prefix, f"{prefix}%"),
    ).fetchone()
    return int(row[0] or 0)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def insert_payment(
    conn: sqlite3.Connection,
    assignment_id: int,
    worker_id: int,
    payment_number: str,
    breakdown: PaymentBreakdown,
    accounting_period: str,
    approved_by: str | None,
    notes: str,
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO payments
            (assignment_id, worker_id, payment_number, breakdown_json,
             net_amount, accounting_period, approved_by, notes)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            assignment_id,
            worker_id,
            payment_number,
            breakdown.model_dump_json(),
            str(breakdown.net_amount),
            accounting_period,
            approved_by,
            notes,
        ),
    )
    return cursor.lastrowid or 0


def _payment_from_row(row: sqlite3.Row) -> Payment:
    return Payment(
        id=row["id"],
        assignment_id=row["assignment_id"],
        worker_id=row["worker_id"],
        payment_number=row["payment_number"],
        breakdown=PaymentBreakdown.model_validate_json(row["breakdown_json"]),
        accounting_period=row["accounting_period"],
        status=row["status"],
        approved_by=row["approved_by"],
        notes=row["notes"],
    )


def fetch_payment(conn: sqlite3.Connection, payment_id: int) -> Payment | None:
    row = conn.execute("SELECT * FROM payments WHERE id = ?", (payment_id,)).fetchone()
    return None if row is None else _payment_from_row(row)


def fetch_payment_for_assignment(conn: sqlite3.Connection, assignment_id: int) -> Payment | None:
    row = conn.execute(
        "SELECT * FROM payments WHERE assignment_id = ?", (assignment_id,)
    ).fetchone()
    return None if row is None else _payment_from_row(row)


def fetch_payments_for_period(conn: sqlite3.Connection, period: str) -> list[Payment]:
    rows = conn.execute(
        "SELECT * FROM payments WHERE accounting_period = ? ORDER BY id", (period,)
    ).fetchall()
    return [_payment_from_row(r) for r in rows]


def max_payment_sequence(conn: sqlite3.Connection, prefix: str) -> int:
    row = conn.execute(
        """
        SELECT MAX(CAST(substr(payment_number, length(?) + 1) AS INTEGER))
        FROM payments WHERE payment_number LIKE ?
        """,
        (prefix, f"{prefix}%"),
    ).fetchone()
    return int(row[0] or 0)
