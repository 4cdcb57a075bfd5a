from __future__ import annotations
from datetime import datetime, timedelta, timezone

import pytest

from models.signals import SignalKind
from processing.grid_index import SpatialGridIndex
from processing.signal_aggregator import SignalAggregator

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _aggregator() -> SignalAggregator:
    clock = lambda: NOW
    return SignalAggregator(SpatialGridIndex(clock=clock), clock=clock)


def _protest(event_id, lat, lon, country=None, severity="high", age=timedelta(0)):
    return {"id": event_id, "lat": lat, "lon": lon, "time": NOW - age, "country": country, "severity": severity}


def _conflict(event_id, lat, lon, country=None, fatalities=0):
    return {"id": event_id, "lat": lat, "lon": lon, "time": NOW, "country": country, "fatalities": fatalities}


def _flight(event_id, lat, lon, age=timedelta(0)):
    return {"id": event_id, "lat": lat, "lon": lon, "lastSeen": NOW - age, "isInteresting": False}


def _ukraine_activity(agg: SignalAggregator) -> None:
    agg.ingest_protests([_protest(f"p{i}", 48.5, 35.0 + i * 0.1, "UA") for i in range(3)])
    agg.ingest_flights([_flight("f1", 48.6, 35.2), _flight("f2", 48.7, 35.4)])


class TestIngestion:

    def test_non_list_raises_type_error(self):
        agg = _aggregator()
        with pytest.raises(TypeError):
            agg.ingest_protests({"id": "p1"})
        with pytest.raises(TypeError):
            agg.ingest_earthquakes(None)

    def test_malformed_records_do_not_block_batch(self):
        agg = _aggregator()
        accepted = agg.ingest_protests([
            _protest("ok", 48.5, 35.0, "UA"),
            {"id": "bad-coords", "lat": "north", "lon": 35.0, "time": NOW},
            None,
            42,
        ])
        assert accepted == 1

    def test_reingest_supersedes_previous_country(self):
        agg = _aggregator()
        agg.ingest_protests([_protest("p1", 48.5, 35.0, "UA")])
        agg.ingest_protests([_protest("p1", 53.9, 27.6, "BY")])
        assert agg.get_country_data("UA").total_events == 0
        assert agg.get_country_data("BY").counts[SignalKind.PROTEST] == 1
        assert len(agg.grid) == 1

    def test_news_without_position_reaches_tallies_not_grid(self):
        agg = _aggregator()
        agg.ingest_news_clusters([
            {"id": "n1", "primaryTitle": "Zelensky meets allies", "threat": {"level": "high"}, "lastUpdated": NOW},
        ])
        assert agg.get_country_tallies()["UA"]["news"] == 1
        assert len(agg.grid) == 0


class TestCountryViews:

    def test_tallies_group_kinds_into_components(self):
        agg = _aggregator()
        _ukraine_activity(agg)
        agg.ingest_vessels([{"id": "v1", "lat": 46.5, "lon": 32.5, "lastAisUpdate": NOW}])
        tallies = agg.get_country_tallies()
        assert tallies["UA"]["protests"] == 3
        assert tallies["UA"]["military"] == 3
        assert tallies["UA"]["conflict"] == 0

    def test_unknown_country_data_is_all_zero(self):
        data = _aggregator().get_country_data("ZZ")
        assert data.total_events == 0
        assert data.last_event_at is None
        assert data.active_kinds == frozenset()

    def test_military_activity_near_counts_flights_and_vessels(self):
        agg = _aggregator()
        _ukraine_activity(agg)
        agg.ingest_vessels([{"id": "v1", "lat": 48.9, "lon": 35.9, "lastAisUpdate": NOW}])
        assert agg.military_activity_near(48.5, 35.0, radius_cells=1) == 3
        assert agg.military_activity_near(10.0, 10.0, radius_cells=1) == 0


class TestCountryClusters:

    def test_cluster_requires_two_kinds(self):
        agg = _aggregator()
        agg.ingest_protests([_protest("ru1", 55.7, 37.6, "RU")])
        _ukraine_activity(agg)
        clusters = agg.get_country_clusters()
        assert [c.country_code for c in clusters] == ["UA"]

    def test_cluster_score(self):
        agg = _aggregator()
        _ukraine_activity(agg)
        cluster = agg.get_country_clusters()[0]
        # 2 kinds × 20 + 5 events × 2 + 0.9 × 20
        assert cluster.convergence_score == pytest.approx(68.0)
        assert cluster.signal_types == frozenset({SignalKind.PROTEST, SignalKind.MILITARY_FLIGHT})
        assert cluster.event_count == 5
        assert cluster.country_name == "Ukraine"

    def test_cluster_score_caps_at_100(self):
        agg = _aggregator()
        agg.ingest_protests([_protest(f"p{i}", 48.5, 35.0, "UA") for i in range(20)])
        agg.ingest_conflicts([_conflict("c1", 48.5, 35.0, "UA", fatalities=100)])
        agg.ingest_flights([_flight("f1", 48.5, 35.0)])
        assert agg.get_country_clusters()[0].convergence_score == 100.0

    def test_expired_events_do_not_count(self):
        agg = _aggregator()
        agg.ingest_protests([_protest("p1", 48.5, 35.0, "UA")])
        agg.ingest_flights([_flight("f-old", 48.6, 35.2, age=timedelta(hours=3))])
        assert agg.get_country_clusters() == []

    def test_clusters_are_deterministic(self):
        first, second = _aggregator(), _aggregator()
        for agg in (first, second):
            _ukraine_activity(agg)
            agg.ingest_protests([_protest("by1", 53.9, 27.6, "BY")])
            agg.ingest_conflicts([_conflict("by2", 53.9, 27.6, "BY")])
        assert first.get_country_clusters() == second.get_country_clusters()


class TestRegionalConvergence:

    def _two_kinds(self, agg, code, lat, lon):
        agg.ingest_protests([_protest(f"{code}-p", lat, lon, code)])
        agg.ingest_conflicts([_conflict(f"{code}-c", lat, lon, code)])

    def test_neighbouring_clusters_group(self):
        agg = _aggregator()
        _ukraine_activity(agg)
        self._two_kinds(agg, "BY", 53.9, 27.6)
        self._two_kinds(agg, "TW", 25.0, 121.5)
        regions = agg.get_regional_convergence()
        assert len(regions) == 1
        assert regions[0].countries == ["UA", "BY"]
        assert regions[0].signal_types == frozenset({
            SignalKind.PROTEST, SignalKind.MILITARY_FLIGHT, SignalKind.CONFLICT,
        })
        assert "Ukraine" in regions[0].description and "Belarus" in regions[0].description

    def test_chained_neighbours_form_one_region(self):
        """A-B and B-C are within range, A-C is not: all three group through B."""
        agg = _aggregator()
        self._two_kinds(agg, "FR", 0.0, 0.0)
        self._two_kinds(agg, "DE", 0.0, 10.0)
        self._two_kinds(agg, "PL", 0.0, 20.0)
        regions = agg.get_regional_convergence()
        assert [r.countries for r in regions] == [["FR", "DE", "PL"]]

    def test_separate_regions_ordered_by_first_seen_anchor(self):
        agg = _aggregator()
        self._two_kinds(agg, "TW", 25.0, 121.5)
        _ukraine_activity(agg)
        self._two_kinds(agg, "BY", 53.9, 27.6)
        self._two_kinds(agg, "PH", 14.6, 121.0)
        regions = agg.get_regional_convergence()
        assert [r.countries for r in regions] == [["TW", "PH"], ["UA", "BY"]]

    def test_single_cluster_is_not_a_region(self):
        agg = _aggregator()
        _ukraine_activity(agg)
        assert agg.get_regional_convergence() == []
