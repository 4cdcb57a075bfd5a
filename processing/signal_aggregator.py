"""
Signal Aggregator — ingestion front door and per-country accumulators.

One ingest method per producer type: each normalises its batch, supersedes
any earlier record with the same (kind, id), inserts geolocated events into
the SpatialGridIndex and files every country-attributed event under its
country. The aggregator and the grid are the only owners of event storage.

Derived views are pure recomputations over the current stores:
  - get_country_clusters(): countries with ≥2 distinct kinds active.
  - get_regional_convergence(): neighbouring clusters grouped greedily.
    Clusters are visited in the order their country was first seen; the first
    unassigned cluster anchors a group and absorbs every unassigned cluster
    reachable through a chain of centres each within REGIONAL_RADIUS_KM of the
    next (single linkage).
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Callable, Optional

import networkx as nx

from config.countries import get_country
from config.settings import CII_COMPONENT_KINDS, EngineSettings
from ingestion.normalizer import normalize
from models.signals import (
    MILITARY_KINDS,
    CountryCluster,
    CountryData,
    NormalizedEvent,
    RegionalConvergence,
    SignalKind,
)
from processing.geo import haversine_km, mean_position
from processing.grid_index import SpatialGridIndex, utc_now

logger = logging.getLogger(__name__)

EventKey = tuple[SignalKind, str]


class SignalAggregator:
    """
    Rolling per-country and per-cell signal accumulators.

    Usage:
        grid = SpatialGridIndex()
        aggregator = SignalAggregator(grid)
        aggregator.ingest_protests(protest_payloads)
        clusters = aggregator.get_country_clusters()
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

        self._country_events: dict[str, dict[EventKey, NormalizedEvent]] = {}
        self._event_country: dict[EventKey, str] = {}
        self._first_seen: dict[str, int] = {}

    # ─── Ingestion ────────────────────────────────────────────────────────

    def ingest_protests(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.PROTEST, events)

    def ingest_flights(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.MILITARY_FLIGHT, events)

    def ingest_vessels(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.MILITARY_VESSEL, events)

    def ingest_earthquakes(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.EARTHQUAKE, events)

    def ingest_outages(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.OUTAGE, events)

    def ingest_news_clusters(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.NEWS_CLUSTER, events)

    def ingest_conflicts(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.CONFLICT, events)

    def ingest_displacement(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.DISPLACEMENT, events)

    def ingest_climate(self, events: Sequence[Any]) -> int:
        return self._ingest(SignalKind.CLIMATE, events)

    def _ingest(self, kind: SignalKind, events: Sequence[Any]) -> int:
        """Normalise and store a batch. Returns how many records were accepted."""
        if not isinstance(events, (list, tuple)):
            raise TypeError(
                f"ingest of {kind.value} expects a list of events, got {type(events).__name__}"
            )

        accepted = 0
        dropped = 0
        for raw in events:
            try:
                event = normalize(raw, kind)
            except Exception as exc:
                # One bad record never blocks the rest of the batch
                logger.debug("Malformed %s record dropped: %s", kind.value, exc)
                event = None
            if event is None:
                dropped += 1
                continue
            self._store(event)
            accepted += 1

        logger.info(
            "Ingested %d %s events (%d dropped), %d countries tracked",
            accepted, kind.value, dropped, len(self._country_events),
        )
        return accepted

    def _store(self, event: NormalizedEvent) -> None:
        key = event.key

        # Supersede any earlier version of the same record
        previous_country = self._event_country.pop(key, None)
        if previous_country is not None:
            bucket = self._country_events.get(previous_country)
            if bucket is not None:
                bucket.pop(key, None)
                if not bucket:
                    del self._country_events[previous_country]
        self.grid.remove(event.kind, event.id)

        if event.is_spatial:
            self.grid.insert(event)

        if event.country_code:
            code = event.country_code
            self._country_events.setdefault(code, {})[key] = event
            self._event_country[key] = code
            if code not in self._first_seen:
                self._first_seen[code] = len(self._first_seen)

    # ─── Retention ────────────────────────────────────────────────────────

    def evict_expired(self, now: Optional[datetime] = None) -> int:
        """Drop events past their kind's retention window from both stores."""
        now = now or self._clock()
        removed = 0
        for kind_name, max_age in self.settings.retention.items():
            removed += self.grid.evict_older_than(SignalKind(kind_name), max_age, now)

        for code in list(self._country_events):
            bucket = self._country_events[code]
            stale = [
                key for key, event in bucket.items()
                if now - event.timestamp > self.settings.retention[event.kind.value]
            ]
            for key in stale:
                del bucket[key]
                self._event_country.pop(key, None)
            if not bucket:
                del self._country_events[code]
        return removed

    def _live_events(self, code: str, now: datetime) -> list[NormalizedEvent]:
        bucket = self._country_events.get(code, {})
        return [
            event for event in bucket.values()
            if now - event.timestamp <= self.settings.retention[event.kind.value]
        ]

    def _countries_in_order(self) -> list[str]:
        return sorted(self._country_events, key=lambda code: self._first_seen.get(code, 0))

    # ─── Per-Country Views ────────────────────────────────────────────────

    def get_country_data(self, code: str, now: Optional[datetime] = None) -> CountryData:
        """Raw tallies for one country. Unknown countries come back all-zero."""
        now = now or self._clock()
        events = self._live_events(code, now)
        counts = {kind: 0 for kind in SignalKind}
        severity_sums = {kind: 0.0 for kind in SignalKind}
        for event in events:
            counts[event.kind] += 1
            severity_sums[event.kind] += event.severity
        country = get_country(code)
        return CountryData(
            country_code=code,
            counts=counts,
            severity_sums={k: round(v, 4) for k, v in severity_sums.items()},
            event_ids=sorted(e.id for e in events),
            last_event_at=max((e.timestamp for e in events), default=None),
            country_name=country.name if country else code,
        )

    def get_country_tallies(self, now: Optional[datetime] = None) -> dict[str, dict[str, int]]:
        """CII component counts for every country with at least one live event."""
        now = now or self._clock()
        tallies: dict[str, dict[str, int]] = {}
        for code in self._countries_in_order():
            events = self._live_events(code, now)
            if not events:
                continue
            by_kind: dict[str, int] = {}
            for event in events:
                by_kind[event.kind.value] = by_kind.get(event.kind.value, 0) + 1
            tallies[code] = {
                component: sum(by_kind.get(kind, 0) for kind in kinds)
                for component, kinds in CII_COMPONENT_KINDS.items()
            }
        return tallies

    def tracked_countries(self) -> list[str]:
        return self._countries_in_order()

    # ─── Convergence Views ────────────────────────────────────────────────

    @staticmethod
    def _cluster_score(kinds: int, events: int, max_severity: float) -> float:
        """20 per distinct kind + 2 per event (capped at 30) + 20 × max severity, capped at 100."""
        score = 20.0 * kinds + min(2.0 * events, 30.0) + 20.0 * max_severity
        return round(min(100.0, score), 1)

    def get_country_clusters(self, now: Optional[datetime] = None) -> list[CountryCluster]:
        """Countries where at least cluster_min_kinds distinct kinds are active."""
        now = now or self._clock()
        self.evict_expired(now)

        clusters: list[CountryCluster] = []
        for code in self._countries_in_order():
            events = self._live_events(code, now)
            kinds = frozenset(e.kind for e in events)
            if len(kinds) < self.settings.cluster_min_kinds:
                continue

            country = get_country(code)
            positions = [(e.lat, e.lon) for e in events if e.is_spatial]
            if positions:
                center_lat, center_lon = mean_position(positions)
            elif country is not None:
                center_lat, center_lon = country.lat, country.lon
            else:
                continue

            clusters.append(CountryCluster(
                country_code=code,
                signal_types=kinds,
                convergence_score=self._cluster_score(
                    len(kinds), len(events), max(e.severity for e in events)
                ),
                contributing_event_ids=sorted(e.id for e in events),
                center_lat=round(center_lat, 4),
                center_lon=round(center_lon, 4),
                event_count=len(events),
                country_name=country.name if country else code,
            ))

        order = {code: i for i, code in enumerate(self._countries_in_order())}
        clusters.sort(key=lambda c: (-c.convergence_score, order[c.country_code]))
        return clusters

    def _proximity_graph(self, clusters: list[CountryCluster]) -> nx.Graph:
        graph = nx.Graph()
        for cluster in clusters:
            graph.add_node(cluster.country_code, cluster=cluster)
        for i, a in enumerate(clusters):
            for b in clusters[i + 1:]:
                km = haversine_km(a.center_lat, a.center_lon, b.center_lat, b.center_lon)
                if km <= self.settings.regional_radius_km:
                    graph.add_edge(a.country_code, b.country_code, distance_km=km)
        return graph

    def get_regional_convergence(self, now: Optional[datetime] = None) -> list[RegionalConvergence]:
        """Multi-country groups of clusters within the neighbourhood radius."""
        clusters = self.get_country_clusters(now)
        # Anchor order is first-seen order, not score order
        clusters.sort(key=lambda c: self._first_seen.get(c.country_code, 0))
        graph = self._proximity_graph(clusters)

        order = self._first_seen
        components = [sorted(group, key=order.__getitem__) for group in nx.connected_components(graph)]
        # Each group is anchored on its first-seen country
        components.sort(key=lambda members: order[members[0]])

        regions: list[RegionalConvergence] = []
        for members in components:
            if len(members) < 2:
                continue

            member_clusters: list[CountryCluster] = [graph.nodes[m]["cluster"] for m in members]
            kinds = frozenset().union(*(c.signal_types for c in member_clusters))
            center_lat, center_lon = mean_position(
                [(c.center_lat, c.center_lon) for c in member_clusters]
            )
            kind_labels = ", ".join(k.label for k in sorted(kinds, key=lambda k: k.value))
            names = ", ".join(c.country_name for c in member_clusters)
            regions.append(RegionalConvergence(
                countries=members,
                description=f"{kind_labels} across {names}",
                center_lat=round(center_lat, 4),
                center_lon=round(center_lon, 4),
                signal_types=kinds,
            ))

        logger.debug("Regional convergence: %d groups from %d clusters", len(regions), len(clusters))
        return regions

    # ─── Read-Only Helpers ────────────────────────────────────────────────

    def military_activity_near(
        self,
        lat: float,
        lon: float,
        radius_cells: int = 1,
        now: Optional[datetime] = None,
    ) -> int:
        """Number of live military flights/vessels in the surrounding cells."""
        return len(self.grid.query_nearby(lat, lon, radius_cells, now=now, kinds=MILITARY_KINDS))
