"""Error taxonomy for the matching and pricing engine.

Components raise these; only the automation workflow catches them and folds
them into stage results.
"""


class BookingError(Exception):
    """Base class for every failure the engine reports to its callers."""


class InvalidInput(BookingError):
    """Input rejected at a calculator boundary (counts, amounts, options)."""


class InvalidCoordinate(BookingError):
    """A distance was needed but the coordinates are missing or out of range."""


class NoEligibleWorker(BookingError):
    """Ranking produced no candidate with a positive score."""


class WorkerUnavailable(BookingError):
    """The best-ranked worker cannot take the job on the requested date."""


class DuplicateAssignment(BookingError):
    """The job already has an assignment that is not cancelled or declined."""


class QuoteAlreadyExists(BookingError):
    """The job has already been quoted."""


class PaymentAlreadyExists(BookingError):
    """The assignment has already been paid out."""


class AssignmentNotCompleted(BookingError):
    """Payment was requested for an assignment that is not COMPLETED."""


class RepositoryFailure(BookingError):
    """Wraps any error raised by the storage collaborator."""


class EntityNotFound(RepositoryFailure):
    """A referenced row does not exist."""
