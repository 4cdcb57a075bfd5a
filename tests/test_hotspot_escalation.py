from __future__ import annotations
from datetime import datetime, timezone

import pytest

from models.signals import EscalationLevel
from processing.hotspot_escalation import HotspotEscalationTracker, escalation_level

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _tracker(**getters) -> HotspotEscalationTracker:
    return HotspotEscalationTracker(clock=lambda: NOW, **getters)


@pytest.mark.parametrize("score,expected", [
    (1.0, EscalationLevel.LOW),
    (1.99, EscalationLevel.LOW),
    (2.0, EscalationLevel.ELEVATED),
    (3.99, EscalationLevel.ELEVATED),
    (4.0, EscalationLevel.HIGH),
    (5.0, EscalationLevel.HIGH),
])
def test_escalation_level_bands(score, expected):
    assert escalation_level(score) == expected


def test_every_hotspot_starts_at_baseline():
    tracker = _tracker()
    for row in tracker.get_all_escalations():
        assert row.score == 1.0
        assert row.level == EscalationLevel.LOW


def test_news_evidence_without_context():
    tracker = _tracker()
    row = tracker.update_hotspot_escalation("kyiv", match_count=4, has_breaking=True, velocity=2.0)
    # 1.0 + 4 × 0.3 + 0.8 + 2 × 0.1
    assert row.score == pytest.approx(3.2)
    assert row.level == EscalationLevel.ELEVATED
    assert row.has_breaking_flag
    assert row.updated_at == NOW


def test_context_getters_add_components_and_cap():
    tracker = _tracker(
        cii_getter=lambda code: 80.0,
        military_getter=lambda lat, lon, radius_cells: 10,
        geo_alert_getter=lambda lat, lon, radius_km: ["a", "b"],
    )
    row = tracker.update_hotspot_escalation("kyiv", match_count=4, has_breaking=True, velocity=2.0)
    assert row.components["cii"] == pytest.approx(0.4)
    assert row.components["military"] == pytest.approx(0.6)
    assert row.components["convergence"] == pytest.approx(1.0)
    assert row.score == 5.0
    assert row.level == EscalationLevel.HIGH


def test_learning_country_contributes_nothing():
    tracker = _tracker(cii_getter=lambda code: None)
    row = tracker.update_hotspot_escalation("tehran", match_count=0)
    assert row.components["cii"] == 0.0
    assert row.score == 1.0


def test_getters_can_be_bound_late():
    tracker = _tracker()
    tracker.set_cii_getter(lambda code: 50.0 if code == "UA" else None)
    row = tracker.update_hotspot_escalation("kyiv", match_count=0)
    assert row.components["cii"] == pytest.approx(0.25)


def test_failing_getter_is_treated_as_zero():
    def broken(*args):
        raise RuntimeError("upstream down")

    tracker = _tracker(cii_getter=broken, military_getter=broken, geo_alert_getter=broken)
    row = tracker.update_hotspot_escalation("kyiv", match_count=1)
    assert row.components["cii"] == 0.0
    assert row.components["military"] == 0.0
    assert row.components["convergence"] == 0.0
    assert row.score == pytest.approx(1.3)


def test_unknown_hotspot_and_negative_matches_raise():
    tracker = _tracker()
    with pytest.raises(ValueError):
        tracker.update_hotspot_escalation("atlantis", match_count=1)
    with pytest.raises(ValueError):
        tracker.update_hotspot_escalation("kyiv", match_count=-1)
    assert tracker.get_hotspot_escalation("atlantis") is None


class TestDecay:

    def test_tick_pulls_score_toward_baseline(self):
        tracker = _tracker()
        tracker.update_hotspot_escalation("kyiv", match_count=4, has_breaking=True, velocity=2.0)
        tracker.tick()
        assert tracker.get_hotspot_escalation("kyiv").score == pytest.approx(2.54)

    def test_tick_never_raises_or_drops_below_baseline(self):
        tracker = _tracker()
        tracker.update_hotspot_escalation("kyiv", match_count=10, has_breaking=True)
        previous = tracker.get_hotspot_escalation("kyiv").score
        for _ in range(50):
            tracker.tick()
            score = tracker.get_hotspot_escalation("kyiv").score
            assert 1.0 <= score <= previous
            previous = score
        assert previous == pytest.approx(1.0, abs=1e-3)

    def test_repeated_quiet_updates_decay(self):
        tracker = _tracker()
        tracker.update_hotspot_escalation("gaza", match_count=10, has_breaking=True)
        first = tracker.get_hotspot_escalation("gaza").score
        tracker.update_hotspot_escalation("gaza", match_count=0)
        assert tracker.get_hotspot_escalation("gaza").score < first


def test_readers_return_copies():
    tracker = _tracker()
    tracker.update_hotspot_escalation("kyiv", match_count=2)
    tracker.get_hotspot_escalation("kyiv").components["news"] = 99.0
    assert tracker.get_hotspot_escalation("kyiv").components["news"] == pytest.approx(0.6)


def test_all_escalations_sorted_by_score():
    tracker = _tracker()
    tracker.update_hotspot_escalation("taipei", match_count=2)
    tracker.update_hotspot_escalation("gaza", match_count=5)
    rows = tracker.get_all_escalations()
    assert [r.hotspot_id for r in rows[:2]] == ["gaza", "taipei"]
