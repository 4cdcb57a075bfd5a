"""
Signal Convergence Engine — Main Entry Point

Modes:
  demo  Synthetic walk-through: builds a CII baseline from a day of
        background activity, then drops protests, military flights and an
        earthquake into one grid cell in eastern Ukraine and shows the
        resulting convergence alert, clusters, CII and hotspot escalation.
  live  Runs the refresh scheduler against the OpenSky relay and the USGS
        feed for --duration seconds, writing parquet snapshots as it goes.

Usage:
    python main.py --mode demo
    python main.py --mode demo --snapshot

    # requires OPENSKY_BASE_URL for flights; USGS needs no key
    python main.py --mode live --duration 3600
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from config.countries import get_country
from config.settings import REFRESH_INTERVALS, SNAPSHOT_DIR
from ingestion.fetchers.opensky import OpenSkyFetcher
from ingestion.fetchers.usgs import UsgsEarthquakeFetcher
from ingestion.scheduler import RefreshScheduler
from models.signals import SignalKind
from processing.engine import SignalEngine
from production.snapshot import write_snapshot

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("main")

_BACKGROUND_COUNTRIES = ["UA", "RU", "IR", "IL", "SD", "TW", "VE"]

DEMO_HEADLINES = [
    "Explosions reported in Kyiv as air defences engage drones",
    "Ukraine says front line near Zaporizhzhia under heavy shelling",
    "Zelensky calls for more air defence after overnight strikes",
    "Houthis claim new attack on Red Sea shipping",
    "Taiwan reports PLA aircraft crossing median line of Taiwan Strait",
]


def _background_hour(engine: SignalEngine, now: datetime, hour: int, rng: np.random.Generator) -> None:
    """One hour of ordinary activity: a few flights and news clusters per country."""
    flights, news = [], []
    for code in _BACKGROUND_COUNTRIES:
        country = get_country(code)
        for i in range(int(rng.poisson(2))):
            flights.append({
                "id": f"bg-{code}-{hour}-{i}",
                "lat": country.lat + float(rng.uniform(-0.8, 0.8)),
                "lon": country.lon + float(rng.uniform(-0.8, 0.8)),
                "lastSeen": now,
                "isInteresting": False,
            })
        for i in range(int(rng.poisson(1))):
            news.append({
                "id": f"news-{code}-{hour}-{i}",
                "primaryTitle": f"{country.name} officials comment on regional developments",
                "threat": {"level": "low"},
                "lastUpdated": now,
            })
    engine.ingest(SignalKind.MILITARY_FLIGHT, flights, now=now)
    engine.ingest(SignalKind.NEWS_CLUSTER, news, now=now)
    engine.recompute(now)


def _scenario_events(now: datetime) -> dict[SignalKind, list[dict]]:
    """Protests, flights and one quake inside the 2° cell at 48-50°N, 36-38°E."""
    return {
        SignalKind.PROTEST: [
            {"id": f"demo-protest-{i}", "lat": 48.3 + i * 0.3, "lon": 36.4 + i * 0.2,
             "time": now - timedelta(hours=i), "country": "UA", "severity": "high",
             "title": "Protest against mobilisation"}
            for i in range(5)
        ],
        SignalKind.MILITARY_FLIGHT: [
            {"id": f"demo-flight-{i}", "lat": 49.0 + i * 0.1, "lon": 37.0 + i * 0.15,
             "lastSeen": now, "isInteresting": True}
            for i in range(4)
        ],
        SignalKind.EARTHQUAKE: [
            {"id": "demo-quake-1", "lat": 49.1, "lon": 37.2, "magnitude": 4.8,
             "place": "Eastern Ukraine", "time": now - timedelta(minutes=30)},
        ],
    }


def run_demo(write: bool = False) -> None:
    rng = np.random.default_rng(42)
    start = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) - timedelta(hours=30)
    sim = {"now": start}
    engine = SignalEngine(clock=lambda: sim["now"])

    logger.info("=" * 70)
    logger.info("PHASE 1: BASELINE (%d simulated hours)", 30)
    logger.info("=" * 70)
    for hour in range(30):
        sim["now"] = start + timedelta(hours=hour)
        _background_hour(engine, sim["now"], hour, rng)
    logger.info("  Learning mode: %s", engine.is_learning())

    logger.info("\n" + "=" * 70)
    logger.info("PHASE 2: CONVERGENCE SCENARIO")
    logger.info("=" * 70)
    sim["now"] = start + timedelta(hours=30)
    now = sim["now"]
    for kind, events in _scenario_events(now).items():
        engine.ingest(kind, events, now=now)
    for signal in engine.recompute(now):
        logger.info("  ALERT %s", signal.title)
        logger.info("        %s (confidence %.2f)", signal.description, signal.confidence)

    logger.info("\n" + "=" * 70)
    logger.info("COUNTRY INSTABILITY INDEX (top 10)")
    logger.info("=" * 70)
    for row in engine.calculate_cii()[:10]:
        logger.info(
            "  %-22s %5s  %-17s %-8s Δ24h %+.1f",
            row.country_name, "—" if row.score is None else f"{row.score:.1f}",
            row.level.value, row.trend.value, row.change_24h,
        )

    logger.info("\n" + "=" * 70)
    logger.info("COUNTRY CLUSTERS / REGIONAL CONVERGENCE")
    logger.info("=" * 70)
    for cluster in engine.get_country_clusters(now):
        logger.info(
            "  %-22s score %5.1f  kinds=%s  events=%d",
            cluster.country_name, cluster.convergence_score,
            ",".join(sorted(k.value for k in cluster.signal_types)), cluster.event_count,
        )
    for region in engine.get_regional_convergence(now):
        logger.info("  REGION %s", region.description)

    logger.info("\n" + "=" * 70)
    logger.info("HOTSPOT ESCALATION")
    logger.info("=" * 70)
    headlines = [{"title": t, "pubDate": now - timedelta(minutes=20 * i)} for i, t in enumerate(DEMO_HEADLINES)]
    engine.update_hotspot_activity(headlines, now)
    for esc in engine.get_all_escalations()[:6]:
        logger.info(
            "  %-16s %.2f  %-9s matches=%d velocity=%.1f",
            esc.hotspot_id, esc.score, esc.level.value, esc.last_match_count, esc.velocity,
        )

    summary = engine.freshness.get_summary(now)
    logger.info("\n  Data coverage: %s (%d%%)", summary.overall_status, summary.coverage_percent)
    for gap in engine.freshness.get_intelligence_gaps(now)[:5]:
        logger.info("  [%s] %s", gap.severity.upper(), gap.message)

    if write:
        paths = write_snapshot(engine, SNAPSHOT_DIR, now)
        logger.info("  Snapshot: %s", paths["cii"].parent)


async def run_live(duration: float) -> None:
    engine = SignalEngine()
    opensky = OpenSkyFetcher()
    usgs = UsgsEarthquakeFetcher()
    scheduler = RefreshScheduler()

    scheduler.schedule(
        "military", lambda: engine.refresh_from(opensky),
        REFRESH_INTERVALS["military"], condition=lambda: opensky.enabled,
    )
    scheduler.schedule("natural", lambda: engine.refresh_from(usgs), REFRESH_INTERVALS["natural"])
    scheduler.schedule("escalation_tick", engine.tick_escalation, 15 * 60)
    scheduler.schedule("snapshot", lambda: write_snapshot(engine, SNAPSHOT_DIR), 15 * 60)

    logger.info("=" * 70)
    logger.info("LIVE MODE: %d jobs for %.0fs", len(scheduler.jobs), duration)
    logger.info("=" * 70)
    if not opensky.enabled:
        engine.freshness.set_enabled("opensky", False)
    for name in ("military", "natural"):
        await scheduler.trigger(name)

    await scheduler.run_for(duration)

    paths = write_snapshot(engine, SNAPSHOT_DIR)
    logger.info("=" * 70)
    logger.info("LIVE RUN COMPLETE")
    logger.info("=" * 70)
    for job in scheduler.jobs.values():
        logger.info("  %-16s runs=%d failures=%d skipped=%d", job.name, job.runs, job.failures, job.skipped)
    logger.info("  Final snapshot: %s", paths["cii"].parent)


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Signal Convergence Engine")
    parser.add_argument("--mode", choices=["demo", "live"], default="demo", help="Execution mode")
    parser.add_argument("--duration", type=float, default=3600.0, help="Live mode run time in seconds")
    parser.add_argument("--snapshot", action="store_true", help="Write a parquet snapshot in demo mode")
    args = parser.parse_args()

    SNAPSHOT_DIR.mkdir(parents=True, exist_ok=True)

    if args.mode == "demo":
        run_demo(write=args.snapshot)
        return

    await run_live(args.duration)


if __name__ == "__main__":
    asyncio.run(main())
