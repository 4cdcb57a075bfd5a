"""
Country Instability Index (CII).

A 0-100 score per country measuring how far its current signal activity sits
above its own recent normal. Each component count (protests, military,
outages, conflict, displacement, climate, news) is standardised against a
rolling per-country baseline, clipped, weighted and mapped onto the scale:

    z_c   = (count_c - mean_c) / max(std_c, STD_FLOOR)
    score = clamp(NEUTRAL + SCALE * Σ w_c * clip(z_c, -3, 6), 0, 100)

Learning mode: until a country has CII_MIN_BASELINE_SAMPLES samples its
score is None and its level insufficient_data. A score computed from an
empty baseline would be noise, and in the dashboard that noise reads as a
crisis.

With no active signals the score relaxes toward NEUTRAL instead of
dropping to 0: NEUTRAL + (last - NEUTRAL) * ZERO_SIGNAL_DECAY.

refresh() is the only writer. calculate_cii() and get_country_score() read
the snapshot taken at the last refresh and never advance any state.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional

import numpy as np

from config.countries import get_country
from config.settings import CII_COMPONENT_KINDS, CII_LEVEL_THRESHOLDS, CII_Z_CLIP, EngineSettings
from models.baseline import RollingBaseline, ScoreHistory
from models.signals import CIILevel, CountryInstabilityScore, Trend
from processing.grid_index import utc_now

logger = logging.getLogger(__name__)

COMPONENTS = list(CII_COMPONENT_KINDS)


def cii_level(score: Optional[float]) -> CIILevel:
    if score is None:
        return CIILevel.INSUFFICIENT_DATA
    for threshold, level in CII_LEVEL_THRESHOLDS:
        if score >= threshold:
            return CIILevel(level)
    return CIILevel.LOW


@dataclass
class _CountryState:
    baseline: RollingBaseline
    history: ScoreHistory
    last_sample_at: Optional[datetime] = None
    score: Optional[float] = None
    snapshot: Optional[CountryInstabilityScore] = None


class CountryInstabilityCalculator:
    """
    Owns the per-country baselines and score history.

    Usage:
        cii = CountryInstabilityCalculator()
        cii.refresh(aggregator.get_country_tallies(), now)
        for row in cii.calculate_cii():
            print(row.country_code, row.score, row.level)
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or EngineSettings()
        self._clock = clock
        self._weights = np.array([self.settings.cii_weights.get(c, 0.0) for c in COMPONENTS])
        self._states: dict[str, _CountryState] = {}

    def _state(self, code: str) -> _CountryState:
        state = self._states.get(code)
        if state is None:
            state = _CountryState(
                baseline=RollingBaseline(COMPONENTS, self.settings.cii_baseline_window),
                history=ScoreHistory(self.settings.cii_history_length),
            )
            self._states[code] = state
        return state

    # ─── Writer ───────────────────────────────────────────────────────────

    def refresh(
        self,
        tallies: Mapping[str, Mapping[str, int]],
        now: Optional[datetime] = None,
    ) -> list[CountryInstabilityScore]:
        """
        Recompute every known country from current component counts.

        Countries seen before but absent from tallies are refreshed with zero
        counts so their scores decay toward neutral. At most one baseline
        sample per country is committed per CII_SAMPLE_INTERVAL.
        """
        now = now or self._clock()
        codes = sorted(set(tallies) | set(self._states))

        for code in codes:
            row = tallies.get(code, {})
            counts = np.array([float(row.get(c, 0)) for c in COMPONENTS])
            state = self._state(code)

            # z-scores are taken against the baseline as it stood before this sample
            z = np.clip(
                state.baseline.z_scores(counts, self.settings.cii_std_floor),
                CII_Z_CLIP[0], CII_Z_CLIP[1],
            )

            sampled = (
                state.last_sample_at is None
                or now - state.last_sample_at >= self.settings.cii_sample_interval
            )
            if sampled:
                state.baseline.add(counts)
                state.last_sample_at = now

            state.snapshot = self._score(code, state, counts, z, now, sampled)

        logger.info(
            "CII refreshed for %d countries (%d learning)",
            len(codes), sum(1 for code in codes if self._states[code].snapshot.learning),
        )
        return self.calculate_cii()

    def _score(
        self,
        code: str,
        state: _CountryState,
        counts: np.ndarray,
        z: np.ndarray,
        now: datetime,
        sampled: bool,
    ) -> CountryInstabilityScore:
        country = get_country(code)
        name = country.name if country else code
        samples = state.baseline.total_samples

        if samples < self.settings.cii_min_baseline_samples:
            return CountryInstabilityScore(
                country_code=code,
                score=None,
                level=CIILevel.INSUFFICIENT_DATA,
                trend=Trend.STABLE,
                components={c: float(n) for c, n in zip(COMPONENTS, counts)},
                learning=True,
                samples=samples,
                country_name=name,
            )

        neutral = self.settings.cii_neutral_score
        scale = self.settings.cii_z_scale
        if counts.sum() == 0:
            last = state.score if state.score is not None else neutral
            score = neutral + (last - neutral) * self.settings.cii_zero_signal_decay
            contributions = np.zeros(len(COMPONENTS))
        else:
            contributions = scale * self._weights * z
            score = neutral + float(contributions.sum())
        score = round(min(100.0, max(0.0, score)), 1)

        previous = state.score
        if previous is None:
            trend = Trend.STABLE
        elif score - previous >= self.settings.cii_trend_threshold:
            trend = Trend.RISING
        elif previous - score >= self.settings.cii_trend_threshold:
            trend = Trend.FALLING
        else:
            trend = Trend.STABLE

        state.score = score
        # At most one history slot per sample interval
        if sampled:
            state.history.append(now, score)

        return CountryInstabilityScore(
            country_code=code,
            score=score,
            level=cii_level(score),
            trend=trend,
            components={c: round(float(v), 2) for c, v in zip(COMPONENTS, contributions)},
            change_24h=state.history.change_since(now, score),
            learning=False,
            samples=samples,
            country_name=name,
        )

    # ─── Readers ──────────────────────────────────────────────────────────

    def calculate_cii(self) -> list[CountryInstabilityScore]:
        """Scores as of the last refresh, highest first; learning countries last."""
        rows = [
            replace(state.snapshot, components=dict(state.snapshot.components))
            for state in self._states.values()
            if state.snapshot is not None
        ]
        rows.sort(key=lambda r: (r.score is None, -(r.score or 0.0), r.country_code))
        return rows

    def get_country_score(self, code: str) -> Optional[float]:
        """Current score, or None when unknown or still learning."""
        state = self._states.get(code)
        if state is None or state.snapshot is None:
            return None
        return state.snapshot.score

    def get_country_instability(self, code: str) -> Optional[CountryInstabilityScore]:
        state = self._states.get(code)
        if state is None or state.snapshot is None:
            return None
        return replace(state.snapshot, components=dict(state.snapshot.components))

    def is_learning(self, code: Optional[str] = None) -> bool:
        """
        Per-country: True until the country has enough baseline samples.
        Global (no code): True while no country has left learning mode.
        """
        if code is not None:
            state = self._states.get(code)
            return state is None or state.snapshot is None or state.snapshot.learning
        return not any(
            state.snapshot is not None and not state.snapshot.learning
            for state in self._states.values()
        )
