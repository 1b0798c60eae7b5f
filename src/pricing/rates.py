"""Rate table lookups and the rounding rules every money line follows."""

from decimal import ROUND_DOWN, ROUND_HALF_UP, ROUND_UP, Decimal

from src.core.config import RateTables
from src.core.errors import InvalidInput

_UNIT = Decimal("1")


def round_up(value: Decimal) -> Decimal:
    """Round up to a whole currency unit."""
    return value.quantize(_UNIT, rounding=ROUND_UP)


def round_down(value: Decimal) -> Decimal:
    """Round down (truncate) to a whole currency unit."""
    return value.quantize(_UNIT, rounding=ROUND_DOWN)


def round_half_up(value: Decimal) -> Decimal:
    return value.quantize(_UNIT, rounding=ROUND_HALF_UP)


def session_fee(sessions: int, tables: RateTables) -> Decimal:
    """Base fee for a run of ``sessions`` sessions.

    Counts inside the table are a flat lookup. Counts under the lowest tier pay
    the lowest tier. Past the ceiling each extra session adds
    ``extra_session_fee`` to the ceiling fee.
    """
    if sessions < 1:
        msg = f"session count must be at least 1, got {sessions}"
        raise InvalidInput(msg)
    tiers = tables.session_fees
    floor, ceiling = min(tiers), max(tiers)
    if sessions > ceiling:
        return tiers[ceiling] + (sessions - ceiling) * tables.extra_session_fee
    return tiers[max(sessions, floor)]


def require_amount(name: str, value: Decimal | None) -> Decimal:
    """Reject negative money at a calculator boundary; None means zero."""
    if value is None:
        return Decimal("0")
    if not value.is_finite() or value < 0:
        msg = f"{name} must be a non-negative amount, got {value}"
        raise InvalidInput(msg)
    return value
