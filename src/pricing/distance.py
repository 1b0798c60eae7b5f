"""Distance and transport fee lookups.

Distances are straight-line (haversine) kilometres from the configured base,
rounded to whole km. A site's preset distance or preset fee always wins over
anything computed here.
"""

import logging
import math
from decimal import Decimal

from src.core.config import TransportConfig
from src.core.errors import InvalidCoordinate, InvalidInput
from src.core.schemas import Site

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

Point = tuple[float | None, float | None]


def _check_point(point: Point | None) -> tuple[float, float]:
    if point is None or point[0] is None or point[1] is None:
        msg = f"coordinate pair is incomplete: {point}"
        raise InvalidCoordinate(msg)
    lat, lon = float(point[0]), float(point[1])
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        msg = f"coordinate out of range: ({lat}, {lon})"
        raise InvalidCoordinate(msg)
    return lat, lon


def distance_km(a: Point | None, b: Point | None) -> int:
    """Great-circle distance between two (lat, lon) pairs in whole km."""
    lat1, lon1 = _check_point(a)
    lat2, lon2 = _check_point(b)
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    km = EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    # Half away from zero; km is never negative.
    return int(math.floor(km + 0.5))


def can_travel(max_distance_km: int, distance: int) -> bool:
    return distance <= max_distance_km


class DistanceFeeTable:
    """Read-only view over one ``TransportConfig`` snapshot."""

    def __init__(self, config: TransportConfig | None = None) -> None:
        self._config = config or TransportConfig()

    @property
    def base(self) -> Point:
        return (self._config.base.latitude, self._config.base.longitude)

    def transport_fee(self, distance: int) -> Decimal:
        """Fee for the band containing ``distance``. Bands are half-open [min, max)."""
        if distance < 0:
            msg = f"distance must not be negative, got {distance}"
            raise InvalidInput(msg)
        for band in self._config.bands:
            if band.max_km is None or distance < band.max_km:
                return band.fee
        # Unreachable: config validation requires an unbounded last band.
        return self._config.bands[-1].fee

    def resolve_distance(self, site: Site) -> int:
        """Preset distance if the site has one, else haversine from the base."""
        if site.distance_km is not None:
            return site.distance_km
        distance = distance_km(self.base, (site.latitude, site.longitude))
        logger.debug("Site %d: computed distance %d km", site.id, distance)
        return distance

    def resolve_transport_fee(self, site: Site) -> Decimal:
        """Preset fee if the site has one, else the band fee for its distance."""
        if site.transport_fee is not None:
            return site.transport_fee
        return self.transport_fee(self.resolve_distance(site))
