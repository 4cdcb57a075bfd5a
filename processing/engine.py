"""
Signal Engine — one service object wiring the whole pipeline together.

    producers ─▶ normalize ─▶ SpatialGridIndex + SignalAggregator
                                    │
                     recompute():   ├─▶ CountryInstabilityCalculator.refresh
                                    └─▶ GeoConvergenceDetector (dedup via seen_alerts)
    headlines ─▶ update_hotspot_activity ─▶ HotspotEscalationTracker
                                               (reads CII, convergence, military)

Ordering within a cycle: a batch is fully ingested before anything derived
is recomputed, so downstream views never see half a batch. A fetch that
fails is recorded against its data source and leaves the derived state as
it was.

Constructed once and passed around; nothing in the package keeps a
module-level engine.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, Union

from config.hotspots import IntelHotspot
from config.settings import ESCALATION_NEWS_WINDOW, EngineSettings
from ingestion.fetchers.base import BaseFetcher
from ingestion.freshness import DataFreshnessTracker
from ingestion.normalizer import get_field, parse_timestamp
from models.signals import (
    ConvergenceAlert,
    CountryCluster,
    CountryData,
    CountryInstabilityScore,
    DisplaySignal,
    HotspotEscalation,
    RegionalConvergence,
    SignalKind,
)
from processing.geo_convergence import GeoConvergenceDetector, geo_convergence_to_signal
from processing.grid_index import SpatialGridIndex, utc_now
from processing.hotspot_escalation import HotspotEscalationTracker
from processing.instability_index import CountryInstabilityCalculator
from processing.signal_aggregator import SignalAggregator

logger = logging.getLogger(__name__)

# Data freshness source id per signal kind
SOURCE_BY_KIND: dict[SignalKind, str] = {
    SignalKind.PROTEST: "acled",
    SignalKind.MILITARY_FLIGHT: "opensky",
    SignalKind.MILITARY_VESSEL: "ais",
    SignalKind.EARTHQUAKE: "usgs",
    SignalKind.OUTAGE: "outages",
    SignalKind.NEWS_CLUSTER: "gdelt",
    SignalKind.CONFLICT: "acled_conflict",
    SignalKind.DISPLACEMENT: "unhcr",
    SignalKind.CLIMATE: "climate",
}

HEADLINE_SOURCE = "rss"


class SignalEngine:
    """
    Usage:
        engine = SignalEngine()
        engine.ingest(SignalKind.PROTEST, protests)
        engine.ingest(SignalKind.EARTHQUAKE, quakes)
        signals = engine.recompute()
        engine.update_hotspot_activity(headlines)
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        hotspots: Optional[list[IntelHotspot]] = None,
    ):
        self.settings = settings or EngineSettings()
        self._clock = clock

        self.grid = SpatialGridIndex(
            bucket_degrees=self.settings.grid_bucket_degrees,
            max_events_per_cell=self.settings.max_events_per_cell,
            retention=self.settings.retention,
            clock=clock,
        )
        self.aggregator = SignalAggregator(self.grid, self.settings, clock)
        self.detector = GeoConvergenceDetector(self.grid, self.settings, clock)
        self.cii = CountryInstabilityCalculator(self.settings, clock)
        self.escalation = HotspotEscalationTracker(
            hotspots=hotspots,
            cii_getter=self.cii.get_country_score,
            geo_alert_getter=self.detector.get_alerts_near_location,
            military_getter=self.aggregator.military_activity_near,
            settings=self.settings,
            clock=clock,
        )
        self.freshness = DataFreshnessTracker(clock=clock)

        self.seen_alerts: dict[str, ConvergenceAlert] = {}
        self.latest_signals: list[DisplaySignal] = []

        self._ingest_methods: dict[SignalKind, Callable[[Sequence[Any]], int]] = {
            SignalKind.PROTEST: self.aggregator.ingest_protests,
            SignalKind.MILITARY_FLIGHT: self.aggregator.ingest_flights,
            SignalKind.MILITARY_VESSEL: self.aggregator.ingest_vessels,
            SignalKind.EARTHQUAKE: self.aggregator.ingest_earthquakes,
            SignalKind.OUTAGE: self.aggregator.ingest_outages,
            SignalKind.NEWS_CLUSTER: self.aggregator.ingest_news_clusters,
            SignalKind.CONFLICT: self.aggregator.ingest_conflicts,
            SignalKind.DISPLACEMENT: self.aggregator.ingest_displacement,
            SignalKind.CLIMATE: self.aggregator.ingest_climate,
        }

    def now(self) -> datetime:
        return self._clock()

    # ─── Ingestion ────────────────────────────────────────────────────────

    def ingest(self, kind: Union[SignalKind, str], events: Sequence[Any], now: Optional[datetime] = None) -> int:
        """Ingest one producer batch and mark its source as updated."""
        kind = SignalKind(kind)
        accepted = self._ingest_methods[kind](events)
        self.freshness.record_update(SOURCE_BY_KIND[kind], accepted, now=now)
        return accepted

    def record_source_error(self, kind: Union[SignalKind, str], error: str) -> None:
        self.freshness.record_error(SOURCE_BY_KIND[SignalKind(kind)], error)

    async def refresh_from(self, fetcher: BaseFetcher, now: Optional[datetime] = None) -> int:
        """
        One scheduled refresh: fetch, ingest, recompute.

        A failed fetch is recorded against the source and the previous
        derived state is kept.
        """
        payloads = await fetcher.fetch()
        if fetcher.last_error:
            self.freshness.record_error(fetcher.source_id, fetcher.last_error)
            return 0
        accepted = self.ingest(fetcher.signal_kind, payloads, now=now)
        self.recompute(now)
        return accepted

    # ─── Derived State ────────────────────────────────────────────────────

    def recompute(self, now: Optional[datetime] = None) -> list[DisplaySignal]:
        """
        Refresh the CII from current tallies, then run convergence detection.

        Returns the display signals for newly alerting cells. While every
        country is still learning its baseline, convergence alerts are held
        back (configurable): without a baseline there is nothing to say the
        co-occurrence is unusual.
        """
        now = now or self._clock()
        self.aggregator.evict_expired(now)
        self.cii.refresh(self.aggregator.get_country_tallies(now), now)

        if self.settings.suppress_alerts_while_learning and self.cii.is_learning():
            logger.info("CII in learning mode, convergence alerts suppressed")
            self.latest_signals = []
            return []

        alerts = self.detector.detect_geo_convergence(self.seen_alerts, now)
        window = self.settings.convergence_window
        self.latest_signals = [geo_convergence_to_signal(a, window) for a in alerts]
        return list(self.latest_signals)

    def update_hotspot_activity(
        self,
        news_items: Sequence[Any],
        now: Optional[datetime] = None,
    ) -> list[HotspotEscalation]:
        """
        Match recent headlines to hotspots and feed the escalation tracker.

        Only items published within the news window (2h) count. A hotspot
        matches when any of its keywords appears in the title; velocity is
        matches per hour over the window.
        """
        now = now or self._clock()
        window = ESCALATION_NEWS_WINDOW
        window_hours = window.total_seconds() / 3600.0

        recent_titles: list[str] = []
        for item in news_items:
            published = parse_timestamp(get_field(item, "pubDate", "pub_date", "published", "time"))
            if published is None or now - published >= window:
                continue
            recent_titles.append(str(get_field(item, "title", "primaryTitle", default="")).lower())

        updated: list[HotspotEscalation] = []
        for hotspot in self.escalation.hotspots.values():
            keywords = [k.lower() for k in hotspot.keywords]
            matches = sum(1 for title in recent_titles if any(k in title for k in keywords))
            velocity = matches / window_hours if matches else 0.0
            updated.append(self.escalation.update_hotspot_escalation(
                hotspot.hotspot_id, matches, has_breaking=matches > 0, velocity=velocity, now=now,
            ))

        self.freshness.record_update(HEADLINE_SOURCE, len(recent_titles), now=now)
        logger.info(
            "Hotspot activity: %d recent headlines, %d hotspots matched",
            len(recent_titles), sum(1 for e in updated if e.last_match_count),
        )
        return updated

    def tick_escalation(self, now: Optional[datetime] = None) -> None:
        self.escalation.tick(now)

    # ─── Outbound Getters ─────────────────────────────────────────────────

    def get_country_clusters(self, now: Optional[datetime] = None) -> list[CountryCluster]:
        return self.aggregator.get_country_clusters(now)

    def get_regional_convergence(self, now: Optional[datetime] = None) -> list[RegionalConvergence]:
        return self.aggregator.get_regional_convergence(now)

    def get_country_data(self, code: str, now: Optional[datetime] = None) -> CountryData:
        return self.aggregator.get_country_data(code, now)

    def calculate_cii(self) -> list[CountryInstabilityScore]:
        return self.cii.calculate_cii()

    def detect_geo_convergence(
        self,
        seen_alerts: Optional[dict[str, ConvergenceAlert]] = None,
        now: Optional[datetime] = None,
    ) -> list[ConvergenceAlert]:
        return self.detector.detect_geo_convergence(
            self.seen_alerts if seen_alerts is None else seen_alerts, now,
        )

    def get_hotspot_escalation(self, hotspot_id: str) -> Optional[HotspotEscalation]:
        return self.escalation.get_hotspot_escalation(hotspot_id)

    def get_all_escalations(self) -> list[HotspotEscalation]:
        return self.escalation.get_all_escalations()

    def is_learning(self, code: Optional[str] = None) -> bool:
        return self.cii.is_learning(code)
