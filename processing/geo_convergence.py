"""
Geo-Convergence Detector — grid cells where several signal kinds co-occur.

Per-cell lifecycle:

    quiet ──(≥ min kinds within the window)──▶ alerting ──(emitted)──▶ cooldown
      ▲                                                                   │
      └──────────── cooldown over and the cell no longer qualifies ───────┘

A cell still qualifying when its cooldown runs out alerts again. The only
memory of past alerts is the caller's seen_alerts mapping (alert id →
ConvergenceAlert): the detector itself is stateless, so two calls with the
same grid contents, time and a fresh mapping return identical alerts.

Urgency score (0-100):
    15 per distinct kind + 5 per event (capped at 30) + 20 × max severity
"""
from __future__ import annotations

import logging
from collections.abc import MutableMapping
from datetime import datetime, timedelta
from typing import Callable, Optional

from config.countries import get_country
from config.settings import CONVERGENCE_WINDOW, GEOCODE_MAX_KM, EngineSettings
from models.signals import CellKey, ConvergenceAlert, DisplaySignal, NormalizedEvent
from processing.geo import haversine_km, mean_position, nearest_country
from processing.grid_index import SpatialGridIndex, utc_now

logger = logging.getLogger(__name__)


def _urgency(events: list[NormalizedEvent]) -> float:
    kinds = {e.kind for e in events}
    score = 15.0 * len(kinds) + min(5.0 * len(events), 30.0) + 20.0 * max(e.severity for e in events)
    return round(min(100.0, score), 1)


class GeoConvergenceDetector:
    """
    Scans the SpatialGridIndex for multi-kind convergence.

    Usage:
        detector = GeoConvergenceDetector(grid)
        seen: dict[str, ConvergenceAlert] = {}
        new_alerts = detector.detect_geo_convergence(seen)
    """

    def __init__(
        self,
        grid: SpatialGridIndex,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.grid = grid
        self.settings = settings or EngineSettings()
        self._clock = clock

    def _candidate(self, key: CellKey, now: datetime) -> Optional[ConvergenceAlert]:
        window = self.settings.convergence_window
        events = [
            e for e in self.grid.query_cell_neighbourhood(key, self.settings.convergence_radius_cells, now)
            if now - e.timestamp <= window
        ]
        kinds = frozenset(e.kind for e in events)
        if len(kinds) < self.settings.convergence_min_kinds:
            return None

        center_lat, center_lon = mean_position([(e.lat, e.lon) for e in events])
        return ConvergenceAlert(
            cell_key=key,
            signal_kinds=kinds,
            first_seen_at=now,
            last_alerted_at=now,
            center_lat=round(center_lat, 4),
            center_lon=round(center_lon, 4),
            event_count=len(events),
            contributing_event_ids=sorted(e.id for e in events),
            score=_urgency(events),
        )

    def converging_cells(self, now: Optional[datetime] = None) -> dict[str, ConvergenceAlert]:
        """Every cell qualifying right now, keyed by alert id. No dedup."""
        now = now or self._clock()
        cells: dict[str, ConvergenceAlert] = {}
        for key in self.grid.cell_keys():
            candidate = self._candidate(key, now)
            if candidate is not None:
                cells[candidate.alert_id] = candidate
        return cells

    def detect_geo_convergence(
        self,
        seen_alerts: MutableMapping[str, ConvergenceAlert],
        now: Optional[datetime] = None,
    ) -> list[ConvergenceAlert]:
        """
        Return newly alerting cells and record them in seen_alerts.

        Cells in cooldown are suppressed. Records whose cooldown has expired
        and whose cell no longer qualifies are removed from seen_alerts.
        """
        if not isinstance(seen_alerts, MutableMapping):
            raise TypeError("seen_alerts must be a mutable mapping")

        now = now or self._clock()
        cooldown = self.settings.alert_cooldown
        candidates = self.converging_cells(now)

        emitted: list[ConvergenceAlert] = []
        for alert_id, candidate in candidates.items():
            previous = seen_alerts.get(alert_id)
            if previous is not None:
                if now - previous.last_alerted_at < cooldown:
                    continue
                # Still converging after cooldown: same episode, fresh alert
                candidate.first_seen_at = previous.first_seen_at
            seen_alerts[alert_id] = candidate
            emitted.append(candidate)

        for alert_id in list(seen_alerts):
            record = seen_alerts[alert_id]
            if alert_id not in candidates and now - record.last_alerted_at >= cooldown:
                del seen_alerts[alert_id]

        emitted.sort(key=lambda a: (-a.score, a.cell_key))
        if emitted:
            logger.info(
                "Geo-convergence: %d new alerts (top %s, %d kinds)",
                len(emitted), emitted[0].alert_id, len(emitted[0].signal_kinds),
            )
        return emitted

    def get_alerts_near_location(
        self,
        lat: float,
        lon: float,
        radius_km: float,
        now: Optional[datetime] = None,
    ) -> list[ConvergenceAlert]:
        """Currently converging cells whose centre is within radius_km of a point."""
        nearby = [
            alert for alert in self.converging_cells(now).values()
            if haversine_km(lat, lon, alert.center_lat, alert.center_lon) <= radius_km
        ]
        nearby.sort(key=lambda a: (-a.score, a.cell_key))
        return nearby


def _window_label(window: timedelta) -> str:
    minutes = int(window.total_seconds() // 60)
    if minutes % 60:
        return f"{minutes}m"
    return f"{minutes // 60}h"


def geo_convergence_to_signal(
    alert: ConvergenceAlert,
    window: timedelta = CONVERGENCE_WINDOW,
) -> DisplaySignal:
    """Map an alert to the display signal shape used by the alert modal."""
    kinds = sorted(alert.signal_kinds, key=lambda k: k.value)
    labels = ", ".join(k.label.lower() for k in kinds)

    code = nearest_country(alert.center_lat, alert.center_lon, GEOCODE_MAX_KM)
    country = get_country(code) if code else None
    where = (
        f"near {country.name}" if country
        else f"at {alert.center_lat:.1f}°, {alert.center_lon:.1f}°"
    )

    return DisplaySignal(
        id=f"{alert.alert_id}-{int(alert.last_alerted_at.timestamp())}",
        signal_type="geo_convergence",
        title=f"Geographic Convergence ({len(kinds)} signal types)",
        description=(
            f"{labels} converging {where}: "
            f"{alert.event_count} events in the last {_window_label(window)}"
        ),
        confidence=round(min(1.0, alert.score / 100.0), 2),
        timestamp=alert.last_alerted_at,
        data={
            "cell_key": list(alert.cell_key),
            "signal_kinds": [k.value for k in kinds],
            "event_count": alert.event_count,
            "contributing_event_ids": list(alert.contributing_event_ids),
            "center_lat": alert.center_lat,
            "center_lon": alert.center_lon,
            "country_code": code,
            "first_seen_at": alert.first_seen_at.isoformat(),
            "score": alert.score,
        },
    )
