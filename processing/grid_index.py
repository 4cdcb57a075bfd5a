"""
Spatial Grid Index — coarse lat/lon buckets for O(1) proximity lookups.

Events are binned by flooring lat/lon to a fixed bucket size (2° by default:
larger buckets catch more co-located signals but blur distinct incidents
together). Each cell holds a bounded deque of entries; expired entries are
dropped lazily whenever a cell is read, and in bulk by evict_older_than().

Longitude wraps at the antimeridian for neighbour queries; latitude clamps at
the poles. Queries over empty areas return [].
"""
from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator, Optional

from config.settings import GRID_BUCKET_DEGREES, MAX_EVENTS_PER_CELL, RETENTION
from models.signals import CellKey, NormalizedEvent, SignalKind

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Entry:
    event: NormalizedEvent
    inserted_at: datetime


class SpatialGridIndex:
    """
    Bucketed store of geolocated NormalizedEvents.

    Usage:
        grid = SpatialGridIndex(bucket_degrees=2.0)
        grid.insert(event)
        nearby = grid.query_nearby(48.5, 35.1, radius_cells=1)
    """

    def __init__(
        self,
        bucket_degrees: float = GRID_BUCKET_DEGREES,
        max_events_per_cell: int = MAX_EVENTS_PER_CELL,
        retention: Optional[dict[str, timedelta]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if bucket_degrees <= 0:
            raise ValueError("bucket_degrees must be positive")
        self.bucket_degrees = bucket_degrees
        self.max_events_per_cell = max_events_per_cell
        self.retention = dict(retention or RETENTION)
        self._clock = clock

        self._cells: dict[CellKey, deque[_Entry]] = {}
        self._locations: dict[tuple[SignalKind, str], CellKey] = {}

        self._min_lat_bucket = math.floor(-90.0 / bucket_degrees)
        self._max_lat_bucket = math.ceil(90.0 / bucket_degrees) - 1
        self._min_lon_bucket = math.floor(-180.0 / bucket_degrees)
        self._lon_buckets = math.ceil(360.0 / bucket_degrees)

    # ─── Keys ─────────────────────────────────────────────────────────────

    def cell_key(self, lat: float, lon: float) -> CellKey:
        """Quantise a position to its (lat_bucket, lon_bucket)."""
        if lon >= 180.0:
            lon -= 360.0
        lat_bucket = min(math.floor(lat / self.bucket_degrees), self._max_lat_bucket)
        lon_bucket = math.floor(lon / self.bucket_degrees)
        return (lat_bucket, self._wrap_lon(lon_bucket))

    def cell_center(self, key: CellKey) -> tuple[float, float]:
        lat = (key[0] + 0.5) * self.bucket_degrees
        lon = (key[1] + 0.5) * self.bucket_degrees
        return min(lat, 90.0), lon

    def _wrap_lon(self, lon_bucket: int) -> int:
        return (lon_bucket - self._min_lon_bucket) % self._lon_buckets + self._min_lon_bucket

    def neighbour_keys(self, key: CellKey, radius_cells: int) -> list[CellKey]:
        """The cell itself plus every cell within Chebyshev distance radius_cells."""
        if radius_cells < 0:
            raise ValueError("radius_cells must be non-negative")
        keys: list[CellKey] = []
        seen: set[CellKey] = set()
        for dlat in range(-radius_cells, radius_cells + 1):
            lat_bucket = key[0] + dlat
            if lat_bucket < self._min_lat_bucket or lat_bucket > self._max_lat_bucket:
                continue
            for dlon in range(-radius_cells, radius_cells + 1):
                candidate = (lat_bucket, self._wrap_lon(key[1] + dlon))
                if candidate not in seen:
                    seen.add(candidate)
                    keys.append(candidate)
        return keys

    # ─── Mutation ─────────────────────────────────────────────────────────

    def insert(self, event: NormalizedEvent) -> CellKey:
        """
        Add an event to its cell. An event with the same (kind, id) already in
        the index is superseded. Raises ValueError for a non-spatial event.
        """
        if not event.is_spatial:
            raise ValueError(f"event {event.id} has no coordinates")

        self.remove(event.kind, event.id)

        key = self.cell_key(event.lat, event.lon)
        cell = self._cells.setdefault(key, deque())
        if len(cell) >= self.max_events_per_cell:
            dropped = cell.popleft()
            self._locations.pop(dropped.event.key, None)
            logger.debug("Cell %s full, dropped oldest event %s", key, dropped.event.id)

        cell.append(_Entry(event=event, inserted_at=self._clock()))
        self._locations[event.key] = key
        return key

    def remove(self, kind: SignalKind, event_id: str) -> bool:
        """Remove an event by identity. Returns True if it was present."""
        key = self._locations.pop((kind, event_id), None)
        if key is None:
            return False
        cell = self._cells.get(key)
        if cell is not None:
            for entry in list(cell):
                if entry.event.kind == kind and entry.event.id == event_id:
                    cell.remove(entry)
                    break
            if not cell:
                del self._cells[key]
        return True

    def evict_older_than(self, kind: SignalKind, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Physically drop events of one kind older than max_age. Returns the count removed."""
        now = now or self._clock()
        cutoff = now - max_age
        removed = 0
        for key in list(self._cells):
            cell = self._cells[key]
            stale = [e for e in cell if e.event.kind == kind and e.event.timestamp < cutoff]
            for entry in stale:
                cell.remove(entry)
                self._locations.pop(entry.event.key, None)
            removed += len(stale)
            if not cell:
                del self._cells[key]
        if removed:
            logger.debug("Evicted %d %s events older than %s", removed, kind.value, max_age)
        return removed

    def evict_expired(self, now: Optional[datetime] = None) -> int:
        """Apply every kind's retention window."""
        now = now or self._clock()
        return sum(
            self.evict_older_than(SignalKind(kind), max_age, now)
            for kind, max_age in self.retention.items()
        )

    # ─── Queries ──────────────────────────────────────────────────────────

    def _is_live(self, event: NormalizedEvent, now: datetime) -> bool:
        return now - event.timestamp <= self.retention[event.kind.value]

    def _live_entries(self, key: CellKey, now: datetime) -> list[NormalizedEvent]:
        cell = self._cells.get(key)
        if not cell:
            return []
        live = [e.event for e in cell if self._is_live(e.event, now)]
        if len(live) != len(cell):
            # Lazy eviction on access
            for entry in [e for e in cell if not self._is_live(e.event, now)]:
                cell.remove(entry)
                self._locations.pop(entry.event.key, None)
            if not cell:
                del self._cells[key]
        return live

    def events_in_cell(
        self,
        key: CellKey,
        now: Optional[datetime] = None,
        kinds: Optional[Iterable[SignalKind]] = None,
    ) -> list[NormalizedEvent]:
        now = now or self._clock()
        events = self._live_entries(key, now)
        if kinds is not None:
            wanted = set(kinds)
            events = [e for e in events if e.kind in wanted]
        return events

    def query_nearby(
        self,
        lat: float,
        lon: float,
        radius_cells: int = 1,
        now: Optional[datetime] = None,
        kinds: Optional[Iterable[SignalKind]] = None,
    ) -> list[NormalizedEvent]:
        """All live events in the cell containing (lat, lon) and its radius-N neighbours."""
        now = now or self._clock()
        wanted = set(kinds) if kinds is not None else None
        results: list[NormalizedEvent] = []
        for key in self.neighbour_keys(self.cell_key(lat, lon), radius_cells):
            for event in self._live_entries(key, now):
                if wanted is None or event.kind in wanted:
                    results.append(event)
        return results

    def query_cell_neighbourhood(
        self,
        key: CellKey,
        radius_cells: int,
        now: Optional[datetime] = None,
    ) -> list[NormalizedEvent]:
        now = now or self._clock()
        results: list[NormalizedEvent] = []
        for neighbour in self.neighbour_keys(key, radius_cells):
            results.extend(self._live_entries(neighbour, now))
        return results

    def cell_keys(self) -> list[CellKey]:
        """Non-empty cells, sorted for deterministic iteration."""
        return sorted(self._cells)

    def all_events(self, now: Optional[datetime] = None) -> Iterator[NormalizedEvent]:
        now = now or self._clock()
        for key in self.cell_keys():
            yield from self._live_entries(key, now)

    def __len__(self) -> int:
        return len(self._locations)

    def __contains__(self, key: tuple[SignalKind, str]) -> bool:
        return key in self._locations
