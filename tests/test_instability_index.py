from __future__ import annotations
from datetime import datetime, timedelta, timezone

import pytest

from config.settings import EngineSettings
from models.signals import CIILevel, Trend
from processing.instability_index import CountryInstabilityCalculator, cii_level

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def _fast_calculator() -> CountryInstabilityCalculator:
    settings = EngineSettings(cii_min_baseline_samples=3, cii_sample_interval=timedelta(0))
    return CountryInstabilityCalculator(settings, clock=lambda: NOW)


def _warm_up(calc: CountryInstabilityCalculator, tallies, rounds: int = 3) -> None:
    for i in range(rounds):
        calc.refresh(tallies, NOW + i * HOUR)


@pytest.mark.parametrize("score,expected", [
    (None, CIILevel.INSUFFICIENT_DATA),
    (0.0, CIILevel.LOW),
    (34.9, CIILevel.LOW),
    (35.0, CIILevel.ELEVATED),
    (55.0, CIILevel.HIGH),
    (75.0, CIILevel.CRITICAL),
    (100.0, CIILevel.CRITICAL),
])
def test_cii_level_bands(score, expected):
    assert cii_level(score) == expected


class TestLearningMode:

    def test_new_country_has_no_score(self):
        calc = CountryInstabilityCalculator(clock=lambda: NOW)
        rows = calc.refresh({"UA": {"protests": 3, "military": 2}})
        assert len(rows) == 1
        assert rows[0].score is None
        assert rows[0].level == CIILevel.INSUFFICIENT_DATA
        assert rows[0].learning
        assert calc.get_country_score("UA") is None
        assert calc.is_learning()
        assert calc.is_learning("UA")

    def test_one_sample_per_interval(self):
        calc = CountryInstabilityCalculator(clock=lambda: NOW)
        calc.refresh({"UA": {"protests": 1}}, NOW)
        calc.refresh({"UA": {"protests": 1}}, NOW + timedelta(minutes=10))
        calc.refresh({"UA": {"protests": 1}}, NOW + HOUR)
        assert calc.get_country_instability("UA").samples == 2

    def test_leaves_learning_after_min_samples(self):
        calc = _fast_calculator()
        _warm_up(calc, {"UA": {"protests": 2}})
        row = calc.get_country_instability("UA")
        assert not row.learning
        assert row.score == 20.0
        assert not calc.is_learning()

    def test_unknown_country(self):
        calc = _fast_calculator()
        assert calc.get_country_score("ZZ") is None
        assert calc.get_country_instability("ZZ") is None
        assert calc.is_learning("ZZ")


class TestScoring:

    def test_steady_activity_sits_at_neutral(self):
        calc = _fast_calculator()
        _warm_up(calc, {"UA": {"protests": 2}}, rounds=5)
        row = calc.get_country_instability("UA")
        assert row.score == 20.0
        assert row.level == CIILevel.LOW
        assert row.trend == Trend.STABLE

    def test_spike_above_baseline_raises_score(self):
        calc = _fast_calculator()
        _warm_up(calc, {"UA": {"protests": 2}})
        calc.refresh({"UA": {"protests": 8, "conflict": 4}}, NOW + 3 * HOUR)
        row = calc.get_country_instability("UA")
        # protests z clipped at 6 → 12 × 0.15 × 6; conflict z = 4 → 12 × 0.25 × 4
        assert row.score == pytest.approx(42.8)
        assert row.level == CIILevel.ELEVATED
        assert row.trend == Trend.RISING
        # Less than a day of history
        assert row.change_24h == 0.0
        assert row.components["protests"] == pytest.approx(10.8)
        assert row.components["conflict"] == pytest.approx(12.0)

    def test_zero_signal_decays_toward_neutral(self):
        calc = _fast_calculator()
        _warm_up(calc, {"UA": {"protests": 2}})
        # Σ w·z = 0.25·6 + 0.20·6 + 0.10·5 + 0.15·2 = 3.5, so 20 + 12 × 3.5
        calc.refresh({"UA": {"protests": 2, "conflict": 6, "military": 6, "outages": 5, "news": 2}},
                     NOW + 3 * HOUR)
        spike = calc.get_country_instability("UA")
        assert spike.score == pytest.approx(62.0)
        assert spike.trend == Trend.RISING

        calc.refresh({}, NOW + 4 * HOUR)
        row = calc.get_country_instability("UA")
        assert row.score == pytest.approx(55.7)
        assert row.score not in (62.0, 0.0)
        assert row.level == CIILevel.HIGH
        assert row.trend == Trend.FALLING

    def test_score_stays_in_range(self):
        calc = _fast_calculator()
        _warm_up(calc, {"UA": {"protests": 10, "conflict": 10}})
        calc.refresh({"UA": {"protests": 0, "conflict": 1}}, NOW + 3 * HOUR)
        score = calc.get_country_score("UA")
        assert 0.0 <= score <= 100.0

    def test_results_are_deterministic(self):
        first, second = _fast_calculator(), _fast_calculator()
        for calc in (first, second):
            _warm_up(calc, {"UA": {"protests": 2}, "IR": {"outages": 1}})
            calc.refresh({"UA": {"protests": 6}, "IR": {"outages": 3}}, NOW + 3 * HOUR)
        assert first.calculate_cii() == second.calculate_cii()


def test_calculate_cii_orders_learning_countries_last():
    calc = _fast_calculator()
    _warm_up(calc, {"UA": {"protests": 2}})
    calc.refresh({"UA": {"protests": 6}, "SD": {"displacement": 1}}, NOW + 3 * HOUR)
    rows = calc.calculate_cii()
    assert [r.country_code for r in rows] == ["UA", "SD"]
    assert rows[-1].learning


def test_readers_return_copies():
    calc = _fast_calculator()
    _warm_up(calc, {"UA": {"protests": 2}})
    calc.calculate_cii()[0].components["protests"] = 999.0
    assert calc.get_country_instability("UA").components["protests"] != 999.0


class TestChange24h:

    def _run(self, hours: int, step: timedelta = timedelta(minutes=5)):
        """Default settings, refreshed every step; protests jump from 2 to 8 at hour 40."""
        calc = CountryInstabilityCalculator(clock=lambda: NOW)
        rows = {}
        t = NOW
        while t <= NOW + hours * HOUR:
            protests = 2 if t < NOW + 40 * HOUR else 8
            calc.refresh({"UA": {"protests": protests}}, t)
            if (t - NOW) % HOUR == timedelta(0):
                rows[int((t - NOW) / HOUR)] = calc.get_country_instability("UA")
            t += step
        return rows

    def test_frequent_refreshes_still_compare_against_a_day_ago(self):
        rows = self._run(50)
        # Hour 50 baseline: 40 samples of 2 and 10 of 8, so z = (8 - 3.2) / 2.4 = 2
        assert rows[26].score == 20.0
        assert rows[50].score == pytest.approx(23.6)
        assert rows[50].change_24h == pytest.approx(3.6)

    def test_zero_until_history_covers_a_day(self):
        rows = self._run(45)
        # Scores are recorded from hour 23, when learning ends
        assert rows[45].score > 20.0
        assert rows[45].change_24h == 0.0
