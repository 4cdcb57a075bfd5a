"""
Hotspot Escalation Tracker — decaying 1-5 escalation score per intel hotspot.

Each update pulls the previous score toward the baseline, then adds the
fresh evidence:

    score = B + (score - B) * DECAY
          + match_count * MATCH_WEIGHT
          + BREAKING_BONUS (if a breaking headline matched)
          + velocity * VELOCITY_WEIGHT
          + military   min(MILITARY_CAP, nearby military events * MILITARY_WEIGHT)
          + cii        country CII / 100 * CII_WEIGHT
          + convergence min(CONVERGENCE_CAP, nearby geo alerts * CONVERGENCE_BONUS)

capped at ESCALATION_MAX_SCORE. tick() applies the decay step alone, so a
hotspot that stops appearing in the news drifts back to the baseline.

Context comes from injected callables rather than imports of the other
components, so the tracker can be built before the CII calculator or the
convergence detector exist and be wired up later via the set_* methods.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional, Protocol

from config.hotspots import INTEL_HOTSPOTS, IntelHotspot
from config.settings import (
    ESCALATION_BREAKING_BONUS,
    ESCALATION_CII_WEIGHT,
    ESCALATION_CONVERGENCE_BONUS,
    ESCALATION_CONVERGENCE_CAP,
    ESCALATION_CONVERGENCE_KM,
    ESCALATION_LEVEL_THRESHOLDS,
    ESCALATION_MATCH_WEIGHT,
    ESCALATION_MILITARY_CAP,
    ESCALATION_MILITARY_RADIUS_CELLS,
    ESCALATION_MILITARY_WEIGHT,
    ESCALATION_VELOCITY_WEIGHT,
    EngineSettings,
)
from models.signals import ConvergenceAlert, EscalationLevel, HotspotEscalation
from processing.grid_index import utc_now

logger = logging.getLogger(__name__)


class CIIGetter(Protocol):
    def __call__(self, country_code: str) -> Optional[float]: ...


class GeoAlertGetter(Protocol):
    def __call__(self, lat: float, lon: float, radius_km: float) -> list[ConvergenceAlert]: ...


class MilitaryGetter(Protocol):
    def __call__(self, lat: float, lon: float, radius_cells: int) -> int: ...


def escalation_level(score: float) -> EscalationLevel:
    for threshold, level in ESCALATION_LEVEL_THRESHOLDS:
        if score >= threshold:
            return EscalationLevel(level)
    return EscalationLevel.LOW


class HotspotEscalationTracker:
    """
    Owns per-hotspot escalation state.

    Usage:
        tracker = HotspotEscalationTracker(cii_getter=cii.get_country_score)
        tracker.update_hotspot_escalation("kyiv", match_count=4, has_breaking=True, velocity=2.0)
        tracker.get_hotspot_escalation("kyiv").level
    """

    def __init__(
        self,
        hotspots: Optional[list[IntelHotspot]] = None,
        cii_getter: Optional[CIIGetter] = None,
        geo_alert_getter: Optional[GeoAlertGetter] = None,
        military_getter: Optional[MilitaryGetter] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or EngineSettings()
        self.hotspots = {h.hotspot_id: h for h in (hotspots if hotspots is not None else INTEL_HOTSPOTS)}
        self._cii_getter = cii_getter
        self._geo_alert_getter = geo_alert_getter
        self._military_getter = military_getter
        self._clock = clock

        baseline = self.settings.escalation_baseline
        self._state: dict[str, HotspotEscalation] = {
            hotspot_id: HotspotEscalation(
                hotspot_id=hotspot_id,
                score=baseline,
                level=escalation_level(baseline),
            )
            for hotspot_id in self.hotspots
        }

    # ─── Late Binding ─────────────────────────────────────────────────────

    def set_cii_getter(self, getter: Optional[CIIGetter]) -> None:
        self._cii_getter = getter

    def set_geo_alert_getter(self, getter: Optional[GeoAlertGetter]) -> None:
        self._geo_alert_getter = getter

    def set_military_getter(self, getter: Optional[MilitaryGetter]) -> None:
        self._military_getter = getter

    # ─── Context Components ───────────────────────────────────────────────

    def _military_component(self, hotspot: IntelHotspot) -> float:
        if self._military_getter is None:
            return 0.0
        try:
            count = self._military_getter(hotspot.lat, hotspot.lon, ESCALATION_MILITARY_RADIUS_CELLS)
        except Exception as exc:
            logger.warning("Military context unavailable for %s: %s", hotspot.hotspot_id, exc)
            return 0.0
        return min(ESCALATION_MILITARY_CAP, max(0, count) * ESCALATION_MILITARY_WEIGHT)

    def _cii_component(self, hotspot: IntelHotspot) -> float:
        if self._cii_getter is None or not hotspot.country_code:
            return 0.0
        try:
            score = self._cii_getter(hotspot.country_code)
        except Exception as exc:
            logger.warning("CII context unavailable for %s: %s", hotspot.hotspot_id, exc)
            return 0.0
        # Learning-mode countries contribute nothing
        if score is None:
            return 0.0
        return max(0.0, min(100.0, score)) / 100.0 * ESCALATION_CII_WEIGHT

    def _convergence_component(self, hotspot: IntelHotspot) -> float:
        if self._geo_alert_getter is None:
            return 0.0
        try:
            alerts = self._geo_alert_getter(hotspot.lat, hotspot.lon, ESCALATION_CONVERGENCE_KM)
        except Exception as exc:
            logger.warning("Convergence context unavailable for %s: %s", hotspot.hotspot_id, exc)
            return 0.0
        return min(ESCALATION_CONVERGENCE_CAP, len(alerts) * ESCALATION_CONVERGENCE_BONUS)

    def _decayed(self, score: float) -> float:
        baseline = self.settings.escalation_baseline
        return max(baseline, baseline + (score - baseline) * self.settings.escalation_decay)

    # ─── Updates ──────────────────────────────────────────────────────────

    def update_hotspot_escalation(
        self,
        hotspot_id: str,
        match_count: int,
        has_breaking: bool = False,
        velocity: float = 0.0,
        now: Optional[datetime] = None,
    ) -> HotspotEscalation:
        """Fold one round of news evidence plus current context into the score."""
        hotspot = self.hotspots.get(hotspot_id)
        if hotspot is None:
            raise ValueError(f"unknown hotspot: {hotspot_id}")
        if match_count < 0:
            raise ValueError("match_count must be non-negative")

        current = self._state[hotspot_id]
        components = {
            "decayed": round(self._decayed(current.score), 3),
            "news": match_count * ESCALATION_MATCH_WEIGHT,
            "breaking": ESCALATION_BREAKING_BONUS if has_breaking else 0.0,
            "velocity": max(0.0, velocity) * ESCALATION_VELOCITY_WEIGHT,
            "military": self._military_component(hotspot),
            "cii": self._cii_component(hotspot),
            "convergence": self._convergence_component(hotspot),
        }
        score = min(self.settings.escalation_max_score, sum(components.values()))
        score = round(score, 3)

        updated = HotspotEscalation(
            hotspot_id=hotspot_id,
            score=score,
            level=escalation_level(score),
            last_match_count=match_count,
            velocity=velocity,
            has_breaking_flag=has_breaking,
            components={k: round(v, 3) for k, v in components.items()},
            updated_at=now or self._clock(),
        )
        if updated.level != current.level:
            logger.info(
                "Hotspot %s escalation %s → %s (score %.2f)",
                hotspot_id, current.level.value, updated.level.value, score,
            )
        self._state[hotspot_id] = updated
        return replace(updated, components=dict(updated.components))

    def tick(self, now: Optional[datetime] = None) -> None:
        """Decay every hotspot one step toward the baseline. Never raises a score."""
        now = now or self._clock()
        for hotspot_id, current in self._state.items():
            score = round(self._decayed(current.score), 3)
            self._state[hotspot_id] = replace(
                current,
                score=min(score, current.score),
                level=escalation_level(min(score, current.score)),
                components=dict(current.components),
                updated_at=now,
            )

    # ─── Readers ──────────────────────────────────────────────────────────

    def get_hotspot_escalation(self, hotspot_id: str) -> Optional[HotspotEscalation]:
        """A copy of the hotspot's state; None for an unknown id."""
        current = self._state.get(hotspot_id)
        if current is None:
            return None
        return replace(current, components=dict(current.components))

    def get_all_escalations(self) -> list[HotspotEscalation]:
        rows = [replace(s, components=dict(s.components)) for s in self._state.values()]
        rows.sort(key=lambda s: (-s.score, s.hotspot_id))
        return rows
