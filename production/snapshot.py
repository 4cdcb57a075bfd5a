"""
Snapshot Export — getter outputs to parquet for the playback store.

Only what the public getters return is serialised (CII scores, country
clusters, regional convergence, hotspot escalations, freshness). The
engine's internal stores (grid cells, baselines, seen_alerts) never leave
the process.

One directory per snapshot: <out_dir>/<YYYYmmdd_HHMMSS>/<table>.parquet
"""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import polars as pl

from config.settings import SNAPSHOT_DIR
from ingestion.freshness import SourceState
from models.signals import CountryCluster, CountryInstabilityScore, HotspotEscalation, RegionalConvergence
from processing.engine import SignalEngine

logger = logging.getLogger(__name__)

_CII_SCHEMA = {
    "country_code": pl.Utf8,
    "country_name": pl.Utf8,
    "score": pl.Float64,
    "level": pl.Utf8,
    "trend": pl.Utf8,
    "change_24h": pl.Float64,
    "learning": pl.Boolean,
    "samples": pl.Int64,
    "snapshot_at": pl.Utf8,
}

_CLUSTER_SCHEMA = {
    "country_code": pl.Utf8,
    "country_name": pl.Utf8,
    "signal_types": pl.List(pl.Utf8),
    "convergence_score": pl.Float64,
    "event_count": pl.Int64,
    "center_lat": pl.Float64,
    "center_lon": pl.Float64,
    "snapshot_at": pl.Utf8,
}

_REGION_SCHEMA = {
    "countries": pl.List(pl.Utf8),
    "description": pl.Utf8,
    "signal_types": pl.List(pl.Utf8),
    "center_lat": pl.Float64,
    "center_lon": pl.Float64,
    "snapshot_at": pl.Utf8,
}

_ESCALATION_SCHEMA = {
    "hotspot_id": pl.Utf8,
    "score": pl.Float64,
    "level": pl.Utf8,
    "last_match_count": pl.Int64,
    "velocity": pl.Float64,
    "has_breaking_flag": pl.Boolean,
    "snapshot_at": pl.Utf8,
}

_FRESHNESS_SCHEMA = {
    "source_id": pl.Utf8,
    "name": pl.Utf8,
    "status": pl.Utf8,
    "item_count": pl.Int64,
    "last_update": pl.Utf8,
    "last_error": pl.Utf8,
    "snapshot_at": pl.Utf8,
}


def cii_frame(scores: list[CountryInstabilityScore], snapshot_at: str) -> pl.DataFrame:
    rows = [
        {
            "country_code": s.country_code,
            "country_name": s.country_name,
            "score": s.score,
            "level": s.level.value,
            "trend": s.trend.value,
            "change_24h": s.change_24h,
            "learning": s.learning,
            "samples": s.samples,
            "snapshot_at": snapshot_at,
        }
        for s in scores
    ]
    return pl.DataFrame(rows, schema=_CII_SCHEMA)


def clusters_frame(clusters: list[CountryCluster], snapshot_at: str) -> pl.DataFrame:
    rows = [
        {
            "country_code": c.country_code,
            "country_name": c.country_name,
            "signal_types": sorted(k.value for k in c.signal_types),
            "convergence_score": c.convergence_score,
            "event_count": c.event_count,
            "center_lat": c.center_lat,
            "center_lon": c.center_lon,
            "snapshot_at": snapshot_at,
        }
        for c in clusters
    ]
    return pl.DataFrame(rows, schema=_CLUSTER_SCHEMA)


def regions_frame(regions: list[RegionalConvergence], snapshot_at: str) -> pl.DataFrame:
    rows = [
        {
            "countries": list(r.countries),
            "description": r.description,
            "signal_types": sorted(k.value for k in r.signal_types),
            "center_lat": r.center_lat,
            "center_lon": r.center_lon,
            "snapshot_at": snapshot_at,
        }
        for r in regions
    ]
    return pl.DataFrame(rows, schema=_REGION_SCHEMA)


def escalations_frame(escalations: list[HotspotEscalation], snapshot_at: str) -> pl.DataFrame:
    rows = [
        {
            "hotspot_id": e.hotspot_id,
            "score": e.score,
            "level": e.level.value,
            "last_match_count": e.last_match_count,
            "velocity": e.velocity,
            "has_breaking_flag": e.has_breaking_flag,
            "snapshot_at": snapshot_at,
        }
        for e in escalations
    ]
    return pl.DataFrame(rows, schema=_ESCALATION_SCHEMA)


def freshness_frame(sources: list[SourceState], snapshot_at: str) -> pl.DataFrame:
    rows = [
        {
            "source_id": s.source_id,
            "name": s.name,
            "status": s.status.value,
            "item_count": s.item_count,
            "last_update": s.last_update.isoformat() if s.last_update else None,
            "last_error": s.last_error,
            "snapshot_at": snapshot_at,
        }
        for s in sources
    ]
    return pl.DataFrame(rows, schema=_FRESHNESS_SCHEMA)


def write_snapshot(
    engine: SignalEngine,
    out_dir: Path = SNAPSHOT_DIR,
    now: Optional[datetime] = None,
) -> dict[str, Path]:
    """Write every getter table for the current engine state. Returns table → path."""
    now = now or engine.now()
    snapshot_at = now.isoformat()
    target = Path(out_dir) / now.strftime("%Y%m%d_%H%M%S")
    target.mkdir(parents=True, exist_ok=True)

    tables = {
        "cii": cii_frame(engine.calculate_cii(), snapshot_at),
        "country_clusters": clusters_frame(engine.get_country_clusters(now), snapshot_at),
        "regional_convergence": regions_frame(engine.get_regional_convergence(now), snapshot_at),
        "hotspot_escalations": escalations_frame(engine.get_all_escalations(), snapshot_at),
        "freshness": freshness_frame(engine.freshness.get_all_sources(now), snapshot_at),
    }

    paths: dict[str, Path] = {}
    for name, frame in tables.items():
        path = target / f"{name}.parquet"
        frame.write_parquet(path, compression="zstd")
        paths[name] = path

    logger.info(
        "Snapshot written to %s (%s)",
        target, ", ".join(f"{name}={len(frame)}" for name, frame in tables.items()),
    )
    return paths
