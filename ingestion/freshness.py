"""
Data Freshness Tracker — when each producer last delivered, and what is missing.

An empty map is ambiguous: it can mean "all quiet" or "the feed is down".
The tracker keeps per-source update times, item counts and errors so the
engine (and anyone reading its snapshots) can tell the two apart, and
produces intelligence-gap messages describing what cannot currently be seen.

Status by age of the last successful update:
    < 15 min   fresh
    < 2 h      stale
    < 6 h      very_stale
    older      no_data
An error recorded after the last update wins until the next success.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from processing.grid_index import utc_now

logger = logging.getLogger(__name__)

FRESH_THRESHOLD = timedelta(minutes=15)
STALE_THRESHOLD = timedelta(hours=2)
VERY_STALE_THRESHOLD = timedelta(hours=6)

# Required sources that must be active for a "sufficient" summary
CORE_SOURCE_COUNT = 2
SUFFICIENT_COVERAGE_PERCENT = 66


class FreshnessStatus(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    VERY_STALE = "very_stale"
    NO_DATA = "no_data"
    DISABLED = "disabled"
    ERROR = "error"


ACTIVE_STATUSES = frozenset({FreshnessStatus.FRESH, FreshnessStatus.STALE, FreshnessStatus.VERY_STALE})


@dataclass
class DataSource:
    """Static description of one producer."""
    source_id: str
    name: str
    required_for_risk: bool
    gap_message: str


DATA_SOURCES: list[DataSource] = [
    DataSource("acled", "Protests", False,
               "Protest events may be missed: protest feed unavailable"),
    DataSource("opensky", "Military Flights", False,
               "Military aircraft positions unknown: flight tracking offline"),
    DataSource("ais", "Vessel Tracking", False,
               "Vessel positions outdated: AIS-dark activity may go undetected"),
    DataSource("usgs", "Earthquakes", False,
               "Recent earthquakes may not be shown: seismic data unavailable"),
    DataSource("gdelt", "News Intelligence", True,
               "News event velocity unknown: news cluster feed offline"),
    DataSource("rss", "Live News Feeds", True,
               "Breaking news may be missed: headline feeds not updating"),
    DataSource("outages", "Internet Outages", False,
               "Internet disruptions may be unreported: outage monitoring offline"),
    DataSource("acled_conflict", "Armed Conflicts", False,
               "Armed conflict events may be missed: conflict data unavailable"),
    DataSource("unhcr", "Displacement", False,
               "Refugee flows unknown: displacement data unavailable"),
    DataSource("climate", "Climate Anomalies", False,
               "Extreme weather patterns undetected: climate anomaly data unavailable"),
]


@dataclass
class SourceState:
    source_id: str
    name: str
    required_for_risk: bool
    last_update: Optional[datetime] = None
    last_error: Optional[str] = None
    item_count: int = 0
    enabled: bool = True
    status: FreshnessStatus = FreshnessStatus.NO_DATA


@dataclass
class FreshnessSummary:
    total_sources: int
    active_sources: int
    stale_sources: int
    disabled_sources: int
    error_sources: int
    overall_status: str          # "sufficient" | "limited" | "insufficient"
    coverage_percent: int
    oldest_update: Optional[datetime]
    newest_update: Optional[datetime]


@dataclass
class IntelligenceGap:
    source_id: str
    message: str
    severity: str                # "critical" | "warning"


class DataFreshnessTracker:
    """
    Usage:
        freshness = DataFreshnessTracker()
        freshness.record_update("usgs", 42)
        freshness.record_error("opensky", "HTTP 503")
        freshness.get_summary().overall_status
    """

    def __init__(
        self,
        sources: Optional[list[DataSource]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._clock = clock
        self._meta = {s.source_id: s for s in (sources if sources is not None else DATA_SOURCES)}
        self._sources: dict[str, SourceState] = {
            s.source_id: SourceState(s.source_id, s.name, s.required_for_risk)
            for s in self._meta.values()
        }

    def _status(self, source: SourceState, now: datetime) -> FreshnessStatus:
        if not source.enabled:
            return FreshnessStatus.DISABLED
        if source.last_error:
            return FreshnessStatus.ERROR
        if source.last_update is None:
            return FreshnessStatus.NO_DATA
        age = now - source.last_update
        if age < FRESH_THRESHOLD:
            return FreshnessStatus.FRESH
        if age < STALE_THRESHOLD:
            return FreshnessStatus.STALE
        if age < VERY_STALE_THRESHOLD:
            return FreshnessStatus.VERY_STALE
        return FreshnessStatus.NO_DATA

    def _lookup(self, source_id: str) -> Optional[SourceState]:
        source = self._sources.get(source_id)
        if source is None:
            logger.warning("Unknown data source: %s", source_id)
        return source

    # ─── Recording ────────────────────────────────────────────────────────

    def record_update(self, source_id: str, item_count: int = 1, now: Optional[datetime] = None) -> None:
        source = self._lookup(source_id)
        if source is None:
            return
        now = now or self._clock()
        source.last_update = now
        source.item_count += item_count
        source.last_error = None
        source.status = self._status(source, now)

    def record_error(self, source_id: str, error: str) -> None:
        source = self._lookup(source_id)
        if source is None:
            return
        source.last_error = error
        source.status = FreshnessStatus.ERROR
        logger.warning("Data source %s failed: %s", source_id, error)

    def set_enabled(self, source_id: str, enabled: bool, now: Optional[datetime] = None) -> None:
        source = self._lookup(source_id)
        if source is None:
            return
        source.enabled = enabled
        source.status = self._status(source, now or self._clock())

    # ─── Readers ──────────────────────────────────────────────────────────

    def get_source(self, source_id: str, now: Optional[datetime] = None) -> Optional[SourceState]:
        source = self._sources.get(source_id)
        if source is None:
            return None
        return replace(source, status=self._status(source, now or self._clock()))

    def get_all_sources(self, now: Optional[datetime] = None) -> list[SourceState]:
        now = now or self._clock()
        return [replace(s, status=self._status(s, now)) for s in self._sources.values()]

    def get_summary(self, now: Optional[datetime] = None) -> FreshnessSummary:
        sources = self.get_all_sources(now)
        risk = [s for s in sources if s.required_for_risk]
        active_risk = [s for s in risk if s.status in ACTIVE_STATUSES]
        updates = [s.last_update for s in sources if s.last_update is not None]

        coverage = round(len(active_risk) / len(risk) * 100) if risk else 0
        if len(active_risk) >= CORE_SOURCE_COUNT and coverage >= SUFFICIENT_COVERAGE_PERCENT:
            overall = "sufficient"
        elif active_risk:
            overall = "limited"
        else:
            overall = "insufficient"

        return FreshnessSummary(
            total_sources=len(sources),
            active_sources=sum(1 for s in sources if s.status in ACTIVE_STATUSES),
            stale_sources=sum(
                1 for s in sources
                if s.status in (FreshnessStatus.STALE, FreshnessStatus.VERY_STALE)
            ),
            disabled_sources=sum(1 for s in sources if s.status == FreshnessStatus.DISABLED),
            error_sources=sum(1 for s in sources if s.status == FreshnessStatus.ERROR),
            overall_status=overall,
            coverage_percent=coverage,
            oldest_update=min(updates, default=None),
            newest_update=max(updates, default=None),
        )

    def has_sufficient_data(self, now: Optional[datetime] = None) -> bool:
        return self.get_summary(now).overall_status == "sufficient"

    def get_intelligence_gaps(self, now: Optional[datetime] = None) -> list[IntelligenceGap]:
        """What analysts cannot currently see. Critical gaps first."""
        gaps: list[IntelligenceGap] = []
        for source in self.get_all_sources(now):
            if source.status not in (FreshnessStatus.NO_DATA, FreshnessStatus.VERY_STALE, FreshnessStatus.ERROR):
                continue
            critical = source.required_for_risk or source.status == FreshnessStatus.ERROR
            gaps.append(IntelligenceGap(
                source_id=source.source_id,
                message=self._meta[source.source_id].gap_message,
                severity="critical" if critical else "warning",
            ))
        # Stable sort keeps registry order within each severity
        gaps.sort(key=lambda g: g.severity != "critical")
        return gaps

    def time_since(self, source_id: str, now: Optional[datetime] = None) -> str:
        source = self._sources.get(source_id)
        if source is None or source.last_update is None:
            return "never"
        seconds = ((now or self._clock()) - source.last_update).total_seconds()
        if seconds < 60:
            return "just now"
        if seconds < 3600:
            return f"{int(seconds // 60)}m ago"
        if seconds < 86400:
            return f"{int(seconds // 3600)}h ago"
        return f"{int(seconds // 86400)}d ago"
