"""
Signal Convergence Engine — Configuration

Tunable constants for spatial binning, retention, convergence detection,
the Country Instability Index and hotspot escalation. None of the thresholds
below has a derivation beyond product tuning; they are exposed through
EngineSettings so a deployment (or a test) can override any of them.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
import logging
import os

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

# ─── Storage Paths ───────────────────────────────────────────────────────────

DATA_ROOT = Path(os.environ.get("SNAPSHOT_DIR", Path(__file__).parent.parent / "data"))
SNAPSHOT_DIR = DATA_ROOT / "snapshots"


# ─── Producer Endpoints ──────────────────────────────────────────────────────

# OpenSky is reached through a relay; empty means the flight adapter is disabled
OPENSKY_BASE_URL = os.environ.get("OPENSKY_BASE_URL", "").rstrip("/")
USGS_FEED_URL = os.environ.get(
    "USGS_FEED_URL",
    "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/4.5_day.geojson",
)


# ─── Signal Kinds ────────────────────────────────────────────────────────────

# Kept as plain strings here so config has no dependency on models/
SIGNAL_KIND_NAMES = [
    "protest", "military_flight", "military_vessel", "earthquake", "outage",
    "news_cluster", "conflict", "displacement", "climate",
]

# Per-kind retention windows. Position data ages fast, displacement slowly.
RETENTION: dict[str, timedelta] = {
    "protest": timedelta(days=14),
    "military_flight": timedelta(hours=2),
    "military_vessel": timedelta(hours=6),
    "earthquake": timedelta(days=7),
    "outage": timedelta(hours=48),
    "news_cluster": timedelta(hours=24),
    "conflict": timedelta(days=7),
    "displacement": timedelta(days=30),
    "climate": timedelta(days=7),
}

# Kinds that cannot exist without coordinates. News clusters and displacement
# figures may arrive with a country only and still feed the CII.
SPATIAL_REQUIRED_KINDS = {
    "protest", "military_flight", "military_vessel", "earthquake",
    "outage", "conflict", "climate",
}


# ─── Spatial Grid ────────────────────────────────────────────────────────────

GRID_BUCKET_DEGREES = 2.0      # 2° × 2° cells; smaller = better precision, fewer hits
MAX_EVENTS_PER_CELL = 500      # oldest entries drop first once a cell is full
GEOCODE_MAX_KM = 900.0         # nearest-centroid country attribution cut-off


# ─── Geo-Convergence ─────────────────────────────────────────────────────────

CONVERGENCE_MIN_KINDS = 3
CONVERGENCE_WINDOW = timedelta(hours=24)
CONVERGENCE_RADIUS_CELLS = 0   # same cell only; neighbours would re-report one incident
ALERT_COOLDOWN = timedelta(hours=6)


# ─── Signal Aggregator ───────────────────────────────────────────────────────

CLUSTER_MIN_KINDS = 2
REGIONAL_RADIUS_KM = 1500.0


# ─── Country Instability Index ───────────────────────────────────────────────

# Component → SignalKinds feeding it. Earthquakes are not a CII component.
CII_COMPONENT_KINDS: dict[str, list[str]] = {
    "protests": ["protest"],
    "military": ["military_flight", "military_vessel"],
    "outages": ["outage"],
    "conflict": ["conflict"],
    "displacement": ["displacement"],
    "climate": ["climate"],
    "news": ["news_cluster"],
}

CII_WEIGHTS: dict[str, float] = {
    "conflict": 0.25,
    "military": 0.20,
    "protests": 0.15,
    "news": 0.15,
    "outages": 0.10,
    "displacement": 0.10,
    "climate": 0.05,
}

CII_NEUTRAL_SCORE = 20.0
CII_Z_SCALE = 12.0             # score points per weighted standard deviation
CII_Z_CLIP = (-3.0, 6.0)
CII_STD_FLOOR = 1.0            # a flat baseline still needs one event to move a sigma
CII_ZERO_SIGNAL_DECAY = 0.85   # fraction of the distance to neutral kept per cycle
CII_TREND_THRESHOLD = 2.0
CII_MIN_BASELINE_SAMPLES = 24
CII_SAMPLE_INTERVAL = timedelta(hours=1)
CII_BASELINE_WINDOW = 168      # one week of hourly samples
CII_HISTORY_LENGTH = 96        # score ring buffer, ~4 days at hourly samples

CII_LEVEL_THRESHOLDS = [
    (75.0, "critical"),
    (55.0, "high"),
    (35.0, "elevated"),
    (0.0, "low"),
]


# ─── Hotspot Escalation ──────────────────────────────────────────────────────

ESCALATION_BASELINE = 1.0
ESCALATION_MAX_SCORE = 5.0
ESCALATION_DECAY = 0.7
ESCALATION_MATCH_WEIGHT = 0.3
ESCALATION_BREAKING_BONUS = 0.8
ESCALATION_VELOCITY_WEIGHT = 0.1
ESCALATION_MILITARY_WEIGHT = 0.1
ESCALATION_MILITARY_CAP = 0.6
ESCALATION_CII_WEIGHT = 0.5    # applied to cii_score / 100
ESCALATION_CONVERGENCE_BONUS = 0.7
ESCALATION_CONVERGENCE_CAP = 1.0
ESCALATION_CONVERGENCE_KM = 300.0
ESCALATION_MILITARY_RADIUS_CELLS = 1
ESCALATION_NEWS_WINDOW = timedelta(hours=2)

ESCALATION_LEVEL_THRESHOLDS = [
    (4.0, "high"),
    (2.0, "elevated"),
    (0.0, "low"),
]


# ─── Refresh Scheduling ──────────────────────────────────────────────────────

JITTER_FRACTION = 0.1
MIN_REFRESH_SECONDS = 1.0
SUSPENDED_REFRESH_MULTIPLIER = 4

REFRESH_INTERVALS: dict[str, float] = {
    "military": 5 * 60,
    "natural": 5 * 60,
    "protests": 15 * 60,
    "outages": 60 * 60,
    "news": 5 * 60,
}


@dataclass
class EngineSettings:
    """All engine tunables in one place. Defaults mirror the module constants."""
    grid_bucket_degrees: float = GRID_BUCKET_DEGREES
    max_events_per_cell: int = MAX_EVENTS_PER_CELL
    retention: dict[str, timedelta] = field(default_factory=lambda: dict(RETENTION))

    convergence_min_kinds: int = CONVERGENCE_MIN_KINDS
    convergence_window: timedelta = CONVERGENCE_WINDOW
    convergence_radius_cells: int = CONVERGENCE_RADIUS_CELLS
    alert_cooldown: timedelta = ALERT_COOLDOWN

    cluster_min_kinds: int = CLUSTER_MIN_KINDS
    regional_radius_km: float = REGIONAL_RADIUS_KM

    cii_weights: dict[str, float] = field(default_factory=lambda: dict(CII_WEIGHTS))
    cii_neutral_score: float = CII_NEUTRAL_SCORE
    cii_z_scale: float = CII_Z_SCALE
    cii_std_floor: float = CII_STD_FLOOR
    cii_zero_signal_decay: float = CII_ZERO_SIGNAL_DECAY
    cii_trend_threshold: float = CII_TREND_THRESHOLD
    cii_min_baseline_samples: int = CII_MIN_BASELINE_SAMPLES
    cii_sample_interval: timedelta = CII_SAMPLE_INTERVAL
    cii_baseline_window: int = CII_BASELINE_WINDOW
    cii_history_length: int = CII_HISTORY_LENGTH

    escalation_decay: float = ESCALATION_DECAY
    escalation_baseline: float = ESCALATION_BASELINE
    escalation_max_score: float = ESCALATION_MAX_SCORE

    # Convergence alerts are held back while every tracked country is learning
    suppress_alerts_while_learning: bool = True

    def __post_init__(self) -> None:
        if self.grid_bucket_degrees <= 0:
            raise ValueError("grid_bucket_degrees must be positive")
        if self.convergence_min_kinds < 1:
            raise ValueError("convergence_min_kinds must be at least 1")
        if not 0.0 < self.escalation_decay < 1.0:
            raise ValueError("escalation_decay must be in (0, 1)")
        if not 0.0 <= self.cii_zero_signal_decay < 1.0:
            raise ValueError("cii_zero_signal_decay must be in [0, 1)")
        missing = set(SIGNAL_KIND_NAMES) - set(self.retention)
        if missing:
            raise ValueError(f"retention missing kinds: {sorted(missing)}")
