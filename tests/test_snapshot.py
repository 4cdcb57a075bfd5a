from __future__ import annotations
from datetime import datetime, timedelta, timezone

import polars as pl

from config.settings import EngineSettings
from processing.engine import SignalEngine
from production.snapshot import clusters_frame, write_snapshot

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _engine_with_activity() -> SignalEngine:
    engine = SignalEngine(
        EngineSettings(cii_min_baseline_samples=1, cii_sample_interval=timedelta(0)),
        clock=lambda: NOW,
    )
    engine.ingest("protest", [
        {"id": "p1", "lat": 48.5, "lon": 35.0, "time": NOW, "country": "UA", "severity": "high"},
    ])
    engine.ingest("military_flight", [{"id": "f1", "lat": 48.6, "lon": 35.2, "lastSeen": NOW}])
    engine.recompute()
    engine.update_hotspot_activity([{"title": "Kyiv on alert", "pubDate": NOW}])
    return engine


def test_write_snapshot_tables(tmp_path):
    paths = write_snapshot(_engine_with_activity(), out_dir=tmp_path)
    assert set(paths) == {"cii", "country_clusters", "regional_convergence", "hotspot_escalations", "freshness"}
    assert all(p.parent == tmp_path / "20260301_120000" for p in paths.values())

    cii = pl.read_parquet(paths["cii"])
    assert cii["country_code"].to_list() == ["UA"]
    assert cii["snapshot_at"][0] == NOW.isoformat()

    clusters = pl.read_parquet(paths["country_clusters"])
    assert clusters["signal_types"][0].to_list() == ["military_flight", "protest"]

    escalations = pl.read_parquet(paths["hotspot_escalations"])
    assert escalations["hotspot_id"][0] == "kyiv"

    freshness = pl.read_parquet(paths["freshness"])
    assert set(freshness.filter(pl.col("status") == "fresh")["source_id"].to_list()) == {"acled", "opensky", "rss"}


def test_empty_engine_writes_empty_tables(tmp_path):
    engine = SignalEngine(clock=lambda: NOW)
    paths = write_snapshot(engine, out_dir=tmp_path)
    assert pl.read_parquet(paths["cii"]).height == 0
    regions = pl.read_parquet(paths["regional_convergence"])
    assert regions.height == 0
    assert regions.schema["countries"] == pl.List(pl.Utf8)


def test_frame_builders_keep_schema_when_empty():
    frame = clusters_frame([], NOW.isoformat())
    assert frame.height == 0
    assert frame.schema["convergence_score"] == pl.Float64
