"""
USGS earthquake feed fetcher.

Endpoint: https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/<feed>.geojson
Docs: https://earthquake.usgs.gov/earthquakes/feed/v1.0/geojson.php

No API key. The summary feeds are regenerated every minute; the default
(M4.5+, past day) keeps batch sizes small.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from config.settings import USGS_FEED_URL
from ingestion.fetchers.base import BaseFetcher, Payload

logger = logging.getLogger(__name__)


def parse_usgs_features(data: dict[str, Any]) -> list[Payload]:
    """Inbound earthquake payloads from a GeoJSON FeatureCollection."""
    quakes: list[Payload] = []
    for feature in data.get("features") or []:
        geometry = feature.get("geometry") or {}
        coords = geometry.get("coordinates") or []
        props = feature.get("properties") or {}
        if len(coords) < 2:
            continue
        quakes.append({
            "id": feature.get("id"),
            "lat": coords[1],
            "lon": coords[0],
            "depth": coords[2] if len(coords) > 2 else None,
            "magnitude": props.get("mag"),
            "place": props.get("place", ""),
            "time": props.get("time"),        # epoch milliseconds
            "url": props.get("url", ""),
        })
    return quakes


class UsgsEarthquakeFetcher(BaseFetcher):
    """Recent earthquakes from the USGS summary feed."""

    provider_name = "usgs"
    source_id = "usgs"
    signal_kind = "earthquake"

    def __init__(
        self,
        feed_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self._feed_url = feed_url or USGS_FEED_URL

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                resp = await client.get(self._feed_url)
                return resp.status_code == 200
        except Exception as exc:
            logger.error("USGS health check failed: %s", exc)
            return False

    async def fetch(self) -> list[Payload]:
        try:
            async with self._client() as client:
                resp = await client.get(self._feed_url)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("USGS HTTP error: %s", exc.response.status_code)
            self.last_error = f"HTTP {exc.response.status_code}"
            return []
        except Exception as exc:
            logger.error("USGS fetch failed: %s", exc)
            self.last_error = str(exc) or type(exc).__name__
            return []

        self.last_error = None
        quakes = parse_usgs_features(data)
        logger.info("USGS: %d earthquakes", len(quakes))
        return quakes
