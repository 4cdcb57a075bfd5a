"""
Signal data model — the shapes that flow between the engine's components.

NormalizedEvent is the only input shape the core works with; every derived
structure below (clusters, alerts, scores, escalations) is a recomputed view
and is never the source of truth for anything.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SignalKind(str, Enum):
    PROTEST = "protest"
    MILITARY_FLIGHT = "military_flight"
    MILITARY_VESSEL = "military_vessel"
    EARTHQUAKE = "earthquake"
    OUTAGE = "outage"
    NEWS_CLUSTER = "news_cluster"
    CONFLICT = "conflict"
    DISPLACEMENT = "displacement"
    CLIMATE = "climate"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


MILITARY_KINDS = frozenset({SignalKind.MILITARY_FLIGHT, SignalKind.MILITARY_VESSEL})


class CIILevel(str, Enum):
    LOW = "low"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"
    INSUFFICIENT_DATA = "insufficient_data"


class Trend(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


class EscalationLevel(str, Enum):
    LOW = "low"
    ELEVATED = "elevated"
    HIGH = "high"


CellKey = tuple[int, int]


@dataclass(frozen=True)
class NormalizedEvent:
    """
    A single producer event in the common internal shape.

    lat/lon are None only for non-spatial records (e.g. a news cluster with
    no geolocation): those reach the per-country tallies but never the grid.
    """
    id: str
    lat: Optional[float]
    lon: Optional[float]
    timestamp: datetime          # timezone-aware, UTC
    kind: SignalKind
    severity: float              # 0..1
    country_code: Optional[str] = None

    @property
    def is_spatial(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def key(self) -> tuple[SignalKind, str]:
        """Identity used for supersession on re-ingestion."""
        return (self.kind, self.id)


@dataclass
class CountryCluster:
    """Two or more distinct signal kinds active in one country."""
    country_code: str
    signal_types: frozenset[SignalKind]
    convergence_score: float
    contributing_event_ids: list[str]
    center_lat: float
    center_lon: float
    event_count: int
    country_name: str = ""


@dataclass
class RegionalConvergence:
    """Neighbouring country clusters grouped into one cross-border signal."""
    countries: list[str]
    description: str
    center_lat: float
    center_lon: float
    signal_types: frozenset[SignalKind]


@dataclass
class ConvergenceAlert:
    """A grid cell where enough distinct kinds co-occur within the window."""
    cell_key: CellKey
    signal_kinds: frozenset[SignalKind]
    first_seen_at: datetime
    last_alerted_at: datetime
    center_lat: float
    center_lon: float
    event_count: int = 0
    contributing_event_ids: list[str] = field(default_factory=list)
    score: float = 0.0

    @property
    def alert_id(self) -> str:
        return f"geo-{self.cell_key[0]}_{self.cell_key[1]}"


@dataclass
class DisplaySignal:
    """Alert-modal signal, the shape shared with the correlation signals."""
    id: str
    signal_type: str
    title: str
    description: str
    confidence: float
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class CountryInstabilityScore:
    """CII output for one country. score is None while the country is learning."""
    country_code: str
    score: Optional[float]
    level: CIILevel
    trend: Trend
    components: dict[str, float]
    change_24h: float = 0.0
    learning: bool = False
    samples: int = 0
    country_name: str = ""


@dataclass
class HotspotEscalation:
    """Decaying escalation state for one intel hotspot."""
    hotspot_id: str
    score: float
    level: EscalationLevel
    last_match_count: int = 0
    velocity: float = 0.0
    has_breaking_flag: bool = False
    components: dict[str, float] = field(default_factory=dict)
    updated_at: Optional[datetime] = None


@dataclass
class CountryData:
    """Raw per-country tallies within the retention windows."""
    country_code: str
    counts: dict[SignalKind, int]
    severity_sums: dict[SignalKind, float]
    event_ids: list[str]
    last_event_at: Optional[datetime]
    country_name: str = ""

    @property
    def active_kinds(self) -> frozenset[SignalKind]:
        return frozenset(k for k, n in self.counts.items() if n > 0)

    @property
    def total_events(self) -> int:
        return sum(self.counts.values())
