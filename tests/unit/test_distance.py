"""Tests for haversine distance and the transport fee table."""

from decimal import Decimal

import pytest

from src.core.config import BaseLocation, TransportConfig, TransportFeeBand
from src.core.errors import InvalidCoordinate, InvalidInput
from src.core.schemas import Site
from src.pricing.distance import DistanceFeeTable, can_travel, distance_km


class TestDistanceKm:
    def test_same_point(self) -> None:
        assert distance_km((36.8, 128.6), (36.8, 128.6)) == 0

    def test_one_degree_of_latitude(self) -> None:
        assert distance_km((0.0, 0.0), (1.0, 0.0)) == 111

    def test_symmetric(self) -> None:
        a, b = (37.5665, 126.9780), (35.1796, 129.0756)
        assert distance_km(a, b) == distance_km(b, a)

    def test_seoul_to_busan(self) -> None:
        d = distance_km((37.5665, 126.9780), (35.1796, 129.0756))
        assert 320 <= d <= 330

    @pytest.mark.parametrize("point", [None, (None, 128.0), (36.0, None)])
    def test_missing_coordinate(self, point: tuple | None) -> None:
        with pytest.raises(InvalidCoordinate):
            distance_km((36.8, 128.6), point)

    @pytest.mark.parametrize("point", [(91.0, 0.0), (0.0, 181.0), (-90.5, 0.0)])
    def test_out_of_range(self, point: tuple) -> None:
        with pytest.raises(InvalidCoordinate):
            distance_km(point, (0.0, 0.0))


class TestCanTravel:
    def test_boundary_inclusive(self) -> None:
        assert can_travel(60, 60) is True
        assert can_travel(60, 61) is False


class TestTransportFee:
    @pytest.mark.parametrize(
        ("distance", "fee"),
        [
            (0, "0"),
            (39, "0"),
            (40, "15000"),
            (69, "15000"),
            (70, "30000"),
            (99, "30000"),
            (100, "45000"),
            (500, "45000"),
        ],
    )
    def test_default_bands(self, distance: int, fee: str) -> None:
        assert DistanceFeeTable().transport_fee(distance) == Decimal(fee)

    def test_monotonic_over_range(self) -> None:
        table = DistanceFeeTable()
        fees = [table.transport_fee(d) for d in range(0, 301)]
        assert fees == sorted(fees)

    def test_negative_rejected(self) -> None:
        with pytest.raises(InvalidInput):
            DistanceFeeTable().transport_fee(-1)

    def test_custom_bands(self) -> None:
        table = DistanceFeeTable(TransportConfig(bands=[
            TransportFeeBand(min_km=0, max_km=10, fee=Decimal("1000")),
            TransportFeeBand(min_km=10, max_km=None, fee=Decimal("2000")),
        ]))
        assert table.transport_fee(9) == Decimal("1000")
        assert table.transport_fee(10) == Decimal("2000")


class TestResolve:
    def test_preset_distance_wins(self) -> None:
        site = Site(id=1, latitude=0.0, longitude=0.0, distance_km=50)
        assert DistanceFeeTable().resolve_distance(site) == 50

    def test_distance_from_base(self) -> None:
        table = DistanceFeeTable(TransportConfig(base=BaseLocation(latitude=0.0, longitude=0.0)))
        site = Site(id=1, latitude=1.0, longitude=0.0)
        assert table.resolve_distance(site) == 111
        assert table.resolve_transport_fee(site) == Decimal("45000")

    def test_preset_fee_wins(self) -> None:
        site = Site(id=1, distance_km=150, transport_fee=Decimal("0"))
        assert DistanceFeeTable().resolve_transport_fee(site) == Decimal("0")

    def test_fee_from_preset_distance(self) -> None:
        site = Site(id=1, distance_km=50)
        assert DistanceFeeTable().resolve_transport_fee(site) == Decimal("15000")

    def test_no_location_at_all(self) -> None:
        with pytest.raises(InvalidCoordinate):
            DistanceFeeTable().resolve_distance(Site(id=1))
