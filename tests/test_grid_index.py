from __future__ import annotations
from datetime import datetime, timedelta, timezone

import pytest

from models.signals import NormalizedEvent, SignalKind
from processing.grid_index import SpatialGridIndex

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _event(event_id: str, lat: float, lon: float, kind=SignalKind.PROTEST, age=timedelta(0)) -> NormalizedEvent:
    return NormalizedEvent(
        id=event_id, lat=lat, lon=lon, timestamp=NOW - age, kind=kind, severity=0.5,
    )


def _grid(**kwargs) -> SpatialGridIndex:
    return SpatialGridIndex(clock=lambda: NOW, **kwargs)


def test_cell_key_floors_to_bucket():
    grid = _grid()
    assert grid.cell_key(48.9, 36.5) == (24, 18)
    assert grid.cell_key(-0.5, -0.5) == (-1, -1)
    assert grid.cell_key(90.0, 180.0) == grid.cell_key(89.9, -180.0)


def test_insert_and_query_same_cell():
    grid = _grid()
    grid.insert(_event("a", 48.5, 36.5))
    grid.insert(_event("b", 49.5, 37.5))
    found = grid.query_nearby(48.1, 36.1, radius_cells=0)
    assert sorted(e.id for e in found) == ["a", "b"]


def test_query_nearby_includes_neighbours_only_within_radius():
    grid = _grid()
    grid.insert(_event("here", 48.5, 36.5))
    grid.insert(_event("next", 50.5, 36.5))     # one cell north
    grid.insert(_event("far", 54.5, 36.5))      # three cells north
    assert {e.id for e in grid.query_nearby(48.5, 36.5, radius_cells=0)} == {"here"}
    assert {e.id for e in grid.query_nearby(48.5, 36.5, radius_cells=1)} == {"here", "next"}


def test_longitude_wraps_at_antimeridian():
    grid = _grid()
    grid.insert(_event("east", 10.0, 179.5))
    found = grid.query_nearby(10.0, -179.5, radius_cells=1)
    assert [e.id for e in found] == ["east"]


def test_empty_query_returns_empty_list():
    assert _grid().query_nearby(0.0, 0.0, radius_cells=3) == []


def test_reinsert_same_id_supersedes():
    grid = _grid()
    grid.insert(_event("a", 48.5, 36.5))
    grid.insert(_event("a", 10.5, 10.5))
    assert len(grid) == 1
    assert grid.query_nearby(48.5, 36.5, radius_cells=0) == []
    assert grid.query_nearby(10.5, 10.5, radius_cells=0)[0].lat == 10.5


def test_same_id_different_kind_is_distinct():
    grid = _grid()
    grid.insert(_event("a", 48.5, 36.5, kind=SignalKind.PROTEST))
    grid.insert(_event("a", 48.5, 36.5, kind=SignalKind.EARTHQUAKE))
    assert len(grid) == 2


def test_full_cell_drops_oldest():
    grid = _grid(max_events_per_cell=2)
    for i in range(3):
        grid.insert(_event(f"e{i}", 48.5, 36.5))
    assert sorted(e.id for e in grid.query_nearby(48.5, 36.5, 0)) == ["e1", "e2"]
    assert (SignalKind.PROTEST, "e0") not in grid


def test_insert_non_spatial_raises():
    grid = _grid()
    event = NormalizedEvent(id="n", lat=None, lon=None, timestamp=NOW, kind=SignalKind.NEWS_CLUSTER, severity=0.3)
    with pytest.raises(ValueError):
        grid.insert(event)


def test_negative_radius_raises():
    with pytest.raises(ValueError):
        _grid().query_nearby(0.0, 0.0, radius_cells=-1)


def test_non_positive_bucket_raises():
    with pytest.raises(ValueError):
        SpatialGridIndex(bucket_degrees=0)


class TestRetention:

    def test_event_at_exact_retention_age_is_included(self):
        grid = _grid()
        grid.insert(_event("edge", 44.0, 34.0, kind=SignalKind.MILITARY_FLIGHT, age=timedelta(hours=2)))
        assert [e.id for e in grid.query_nearby(44.0, 34.0, 0)] == ["edge"]

    def test_event_past_retention_is_excluded_and_evicted(self):
        grid = _grid()
        grid.insert(_event("old", 44.0, 34.0, kind=SignalKind.MILITARY_FLIGHT,
                           age=timedelta(hours=2, seconds=1)))
        assert grid.query_nearby(44.0, 34.0, 0) == []
        assert len(grid) == 0
        assert grid.cell_keys() == []

    def test_evict_older_than_only_touches_one_kind(self):
        grid = _grid()
        grid.insert(_event("flight", 44.0, 34.0, kind=SignalKind.MILITARY_FLIGHT, age=timedelta(hours=3)))
        grid.insert(_event("protest", 44.0, 34.0, kind=SignalKind.PROTEST, age=timedelta(hours=3)))
        removed = grid.evict_older_than(SignalKind.MILITARY_FLIGHT, timedelta(hours=2), NOW)
        assert removed == 1
        assert (SignalKind.PROTEST, "protest") in grid
        assert (SignalKind.MILITARY_FLIGHT, "flight") not in grid

    def test_evict_removes_empty_cells(self):
        grid = _grid()
        grid.insert(_event("q", 38.0, 142.0, kind=SignalKind.EARTHQUAKE, age=timedelta(days=8)))
        grid.evict_expired(NOW)
        assert grid.cell_keys() == []
