from __future__ import annotations
from datetime import datetime, timedelta, timezone

import pytest

from ingestion.freshness import DataFreshnessTracker, FreshnessStatus

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _tracker() -> DataFreshnessTracker:
    return DataFreshnessTracker(clock=lambda: NOW)


@pytest.mark.parametrize("age,expected", [
    (timedelta(minutes=5), FreshnessStatus.FRESH),
    (timedelta(minutes=15), FreshnessStatus.STALE),
    (timedelta(hours=1), FreshnessStatus.STALE),
    (timedelta(hours=3), FreshnessStatus.VERY_STALE),
    (timedelta(hours=7), FreshnessStatus.NO_DATA),
])
def test_status_by_age(age, expected):
    tracker = _tracker()
    tracker.record_update("usgs", 10, now=NOW - age)
    assert tracker.get_source("usgs").status == expected


def test_never_updated_is_no_data():
    assert _tracker().get_source("opensky").status == FreshnessStatus.NO_DATA


def test_error_wins_until_next_success():
    tracker = _tracker()
    tracker.record_update("opensky", 5)
    tracker.record_error("opensky", "HTTP 503")
    source = tracker.get_source("opensky")
    assert source.status == FreshnessStatus.ERROR
    assert source.last_error == "HTTP 503"

    tracker.record_update("opensky", 3)
    source = tracker.get_source("opensky")
    assert source.status == FreshnessStatus.FRESH
    assert source.last_error is None
    assert source.item_count == 8


def test_disabled_source():
    tracker = _tracker()
    tracker.record_update("ais", 1)
    tracker.set_enabled("ais", False)
    assert tracker.get_source("ais").status == FreshnessStatus.DISABLED
    assert tracker.get_summary().disabled_sources == 1


def test_unknown_source_is_ignored():
    tracker = _tracker()
    tracker.record_update("carrier-pigeon", 1)
    tracker.record_error("carrier-pigeon", "lost")
    assert tracker.get_source("carrier-pigeon") is None
    assert all(s.source_id != "carrier-pigeon" for s in tracker.get_all_sources())


class TestSummary:

    def test_insufficient_with_nothing(self):
        summary = _tracker().get_summary()
        assert summary.overall_status == "insufficient"
        assert summary.active_sources == 0
        assert summary.oldest_update is None

    def test_limited_with_one_required_source(self):
        tracker = _tracker()
        tracker.record_update("rss", 20)
        summary = tracker.get_summary()
        assert summary.overall_status == "limited"
        assert summary.coverage_percent == 50

    def test_sufficient_with_both_required_sources(self):
        tracker = _tracker()
        tracker.record_update("rss", 20, now=NOW - timedelta(minutes=30))
        tracker.record_update("gdelt", 4)
        summary = tracker.get_summary()
        assert summary.overall_status == "sufficient"
        assert summary.coverage_percent == 100
        assert summary.stale_sources == 1
        assert summary.oldest_update == NOW - timedelta(minutes=30)
        assert summary.newest_update == NOW
        assert tracker.has_sufficient_data()


def test_intelligence_gaps_critical_first():
    tracker = _tracker()
    for source in tracker.get_all_sources():
        tracker.record_update(source.source_id, 1)
    tracker.record_update("usgs", 1, now=NOW - timedelta(hours=8))
    tracker.record_update("gdelt", 1, now=NOW - timedelta(hours=8))
    tracker.record_error("opensky", "timeout")

    gaps = tracker.get_intelligence_gaps()
    assert [(g.source_id, g.severity) for g in gaps] == [
        ("opensky", "critical"),
        ("gdelt", "critical"),
        ("usgs", "warning"),
    ]
    assert "flight tracking offline" in gaps[0].message


def test_time_since():
    tracker = _tracker()
    assert tracker.time_since("usgs") == "never"
    tracker.record_update("usgs", 1, now=NOW - timedelta(seconds=30))
    assert tracker.time_since("usgs") == "just now"
    tracker.record_update("usgs", 1, now=NOW - timedelta(minutes=12))
    assert tracker.time_since("usgs") == "12m ago"
    tracker.record_update("usgs", 1, now=NOW - timedelta(hours=5))
    assert tracker.time_since("usgs") == "5h ago"
