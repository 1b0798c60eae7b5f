"""Instructor matching: score, rank and auto-assign workers to a job.

Score range: 0-100, the sum of four parts:
  distance      0-40   same region 40, else tiered by km; 0 if out of range
  expertise     0-30   specialty vs program name, category keywords, experience
  availability  0-20   desired weekday vs the worker's weekdays
  rating        0-10   tiered by rating, 5 when unrated

A worker who cannot travel the distance scores 0 overall and is never ranked.
Ties break on worker id, ascending.
"""

import logging
from collections.abc import Iterable
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from src.core.config import MatchingConfig
from src.core.errors import DuplicateAssignment, NoEligibleWorker, WorkerUnavailable
from src.core.repository import JobContext, Repository, load_job_context
from src.core.schemas import (
    Assignment,
    Job,
    JobStatus,
    Match,
    ProgramCatalogEntry,
    Site,
    Worker,
    WorkerStatus,
    weekday_code,
)
from src.pricing.distance import DistanceFeeTable, can_travel

logger = logging.getLogger(__name__)

SAME_REGION_SCORE = 40
# (max km inclusive, score); anything farther gets FAR_SCORE.
DISTANCE_TIERS: tuple[tuple[int, int], ...] = ((30, 35), (60, 25), (90, 15))
FAR_SCORE = 5

SPECIALTY_SCORE = 30
CATEGORY_SCORE = 25
EXPERIENCE_SCORE = 15
BASELINE_EXPERTISE_SCORE = 5
CUSTOM_PROGRAM_SCORE = 10

AVAILABLE_DAY_SCORE = 20
UNDATED_SCORE = 10
FLEXIBLE_DATE_SCORE = 10

UNRATED_SCORE = 5
# (minimum rating, score), checked top down; below all of them gets LOW_RATING_SCORE.
RATING_TIERS: tuple[tuple[Decimal, int], ...] = (
    (Decimal("4.5"), 10),
    (Decimal("4.0"), 8),
    (Decimal("3.5"), 5),
)
LOW_RATING_SCORE = 2

Part = tuple[int, str]


def distance_score(worker: Worker, site: Site, distance: int) -> Part:
    if not can_travel(worker.max_distance_km, distance):
        return (0, f"out of travel range ({distance} km > {worker.max_distance_km} km)")
    if site.region and worker.home_region == site.region:
        return (SAME_REGION_SCORE, f"same region ({site.region})")
    for max_km, score in DISTANCE_TIERS:
        if distance <= max_km:
            return (score, f"within {max_km} km ({distance} km)")
    return (FAR_SCORE, f"long distance ({distance} km)")


def expertise_score(
    worker: Worker,
    program: ProgramCatalogEntry | None,
    config: MatchingConfig,
) -> Part:
    if program is None:
        return (CUSTOM_PROGRAM_SCORE, "custom program")

    name = program.name.lower().strip()
    # A blank name would be a substring of every tag.
    if name:
        for tag in worker.specialties:
            tag_lower = tag.lower().strip()
            if tag_lower and (tag_lower in name or name in tag_lower):
                return (SPECIALTY_SCORE, f"specialty matches program ({tag})")

    keywords = config.category_keywords.get(program.category, [])
    for tag in worker.specialties:
        if any(kw in tag for kw in keywords):
            return (CATEGORY_SCORE, f"{program.category} category specialist ({tag})")

    if worker.experience_years >= config.experienced_min_years:
        return (EXPERIENCE_SCORE, f"experienced ({worker.experience_years} years)")
    return (BASELINE_EXPERTISE_SCORE, "general instructor")


def availability_score(worker: Worker, job: Job) -> Part:
    if job.desired_date is None:
        return (UNDATED_SCORE, "no date requested")
    day = weekday_code(job.desired_date)
    if day in worker.available_weekdays:
        return (AVAILABLE_DAY_SCORE, f"available on {day}")
    if job.flexible_date:
        return (FLEXIBLE_DATE_SCORE, f"not available on {day}, date is flexible")
    return (0, f"not available on {day}")


def rating_score(worker: Worker) -> Part:
    # A stored 0 means "not rated yet".
    if not worker.rating:
        return (UNRATED_SCORE, "no rating yet")
    for minimum, score in RATING_TIERS:
        if worker.rating >= minimum:
            return (score, f"rating {worker.rating:.1f}")
    return (LOW_RATING_SCORE, f"low rating {worker.rating:.1f}")


def is_available(worker: Worker, job: Job, booked_worker_ids: frozenset[int]) -> bool:
    """Free on the desired weekday and not already booked that date."""
    if job.desired_date is None:
        return True
    if weekday_code(job.desired_date) not in worker.available_weekdays:
        return False
    return worker.id not in booked_worker_ids


def score_worker(
    worker: Worker,
    job: Job,
    site: Site,
    program: ProgramCatalogEntry | None,
    distance: int,
    config: MatchingConfig,
    booked_worker_ids: frozenset[int] = frozenset(),
) -> Match:
    """Score one worker. Out-of-range workers get a single reason and 0."""
    travel = distance_score(worker, site, distance)
    if travel[0] == 0:
        parts = [travel]
    else:
        parts = [
            travel,
            expertise_score(worker, program, config),
            availability_score(worker, job),
            rating_score(worker),
        ]
    return Match(
        worker=worker,
        score=sum(score for score, _ in parts),
        reasons=tuple(reason for _, reason in parts),
        distance_km=distance,
        is_available=is_available(worker, job, booked_worker_ids),
    )


class AssignmentResult(BaseModel):
    """The assignment created by ``auto_assign`` and the match that won it."""

    model_config = ConfigDict(frozen=True)

    assignment: Assignment
    match: Match


class InstructorMatcher:
    """Ranks workers for a job and proposes the best one."""

    def __init__(
        self,
        fee_table: DistanceFeeTable,
        config: MatchingConfig | None = None,
        repo: Repository | None = None,
    ) -> None:
        self._fees = fee_table
        self._config = config or MatchingConfig()
        self._repo = repo

    def rank(
        self,
        job: Job,
        site: Site,
        program: ProgramCatalogEntry | None,
        candidates: Iterable[Worker],
        booked_worker_ids: frozenset[int] = frozenset(),
    ) -> list[Match]:
        """Score every candidate and return those above zero, best first."""
        distance = self._fees.resolve_distance(site)
        matches = []
        for worker in candidates:
            match = score_worker(
                worker, job, site, program, distance, self._config, booked_worker_ids,
            )
            logger.debug(
                "Job %d / worker %d: %d (%s)", job.id, worker.id, match.score, "; ".join(match.reasons),
            )
            if match.score > 0:
                matches.append(match)
        matches.sort(key=lambda m: (-m.score, m.worker.id))
        return matches

    def rank_for_job(self, job_id: int) -> list[Match]:
        """Load a job and all ACTIVE workers from storage and rank them."""
        repo = self._require_repo()
        return self._rank_context(repo, load_job_context(repo, job_id))

    def _rank_context(self, repo: Repository, ctx: JobContext) -> list[Match]:
        booked = (
            repo.booked_worker_ids(ctx.job.desired_date)
            if ctx.job.desired_date is not None
            else frozenset()
        )
        workers = repo.list_workers(WorkerStatus.ACTIVE)
        return self.rank(ctx.job, ctx.site, ctx.program, workers, booked)

    def auto_assign(self, job_id: int) -> AssignmentResult:
        """Propose the top-ranked worker for a job.

        Never falls back to the runner-up: if the best worker is unavailable
        the call fails so staff can decide.
        """
        repo = self._require_repo()
        if repo.find_active_assignment(job_id) is not None:
            msg = f"job {job_id} already has an active assignment"
            raise DuplicateAssignment(msg)

        ctx = load_job_context(repo, job_id)
        matches = self._rank_context(repo, ctx)
        if not matches:
            msg = f"no eligible worker for job {job_id}"
            raise NoEligibleWorker(msg)

        best = matches[0]
        if not best.is_available:
            msg = (
                f"best worker {best.worker.id} ({best.worker.name}) "
                f"is not available for job {job_id}"
            )
            raise WorkerUnavailable(msg)

        transport_fee = self._fees.resolve_transport_fee(ctx.site)
        notes = f"auto-assigned (score {best.score})\nreasons: {', '.join(best.reasons)}"
        with repo.transaction():
            assignment = repo.create_assignment(
                job_id=job_id,
                worker_id=best.worker.id,
                scheduled_date=ctx.job.desired_date,
                distance_km=best.distance_km,
                transport_fee=transport_fee,
                notes=notes,
            )
            repo.update_job_status(job_id, JobStatus.ASSIGNED)
        logger.info(
            "Job %d assigned to worker %d (score %d)", job_id, best.worker.id, best.score,
        )
        return AssignmentResult(assignment=assignment, match=best)

    def _require_repo(self) -> Repository:
        if self._repo is None:
            msg = "InstructorMatcher was built without a repository"
            raise RuntimeError(msg)
        return self._repo
