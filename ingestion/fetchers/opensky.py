"""
OpenSky Network military flight fetcher.

Endpoint: <OPENSKY_BASE_URL>?lamin=..&lamax=..&lomin=..&lomax=..
OpenSky blocks most cloud egress, so the base URL points at a relay
(OPENSKY_BASE_URL env var). With no relay configured the fetcher is
disabled and returns [].

Queries one bounding box per military hotspot, three boxes at a time with a
short pause between batches to stay under the relay's rate limit. State
vectors are filtered down to military-looking aircraft:
  - callsign with a well-known military prefix (any origin country), or
  - an extended military callsign pattern from a country whose air force
    flies with recognisable callsigns.
Aircraft seen in several overlapping boxes are deduplicated by ICAO hex.

State vector layout (OpenSky /states/all):
  [0] icao24  [1] callsign  [2] origin_country  [3] time_position
  [4] last_contact  [5] longitude  [6] latitude  [7] baro_altitude
  [8] on_ground  [9] velocity  [10] true_track  [11] vertical_rate ...
  [14] squawk
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from config.hotspots import MILITARY_HOTSPOTS, MilitaryHotspot, get_military_hotspot_near
from config.settings import OPENSKY_BASE_URL
from ingestion.fetchers.base import BaseFetcher, Payload

logger = logging.getLogger(__name__)

_BATCH_SIZE = 3
_BATCH_PAUSE_SECONDS = 0.2

_METRES_TO_FEET = 3.28084
_MS_TO_KNOTS = 1.94384

# Military regardless of registration country
_CORE_CALLSIGN = re.compile(r"^(RCH|REACH|NATO|FORTE|HOMER|JAKE|SNTRY|DUKE|ASCOT|CNV|HMX|SPAR)", re.I)

_EXTENDED_CALLSIGN = re.compile(
    r"^(RCH|REACH|DUKE|KING|GOLD|NAVY|ARMY|MARINE|NATO|RAF|GAF|FAF|IAF|THK|TUR|RSAF|UAF|JPN|"
    r"JASDF|ROKAF|KAF|RAAF|CANFORCE|CFC|AME|PLF|HAF|EGY|PAF|FORTE|HAWK|REAPER|COBRA|RIVET|"
    r"OLIVE|SNTRY|DRAGN|BONE|DEATH|DOOM|TRIDENT|ASCOT|CNV|HMX|DUSTOFF|EVAC|MOOSE|HERKY)",
    re.I,
)

_MILITARY_COUNTRIES = {
    "United States", "United Kingdom", "France", "Germany", "Israel",
    "Turkey", "Saudi Arabia", "United Arab Emirates", "Qatar", "Kuwait",
    "Japan", "South Korea", "Australia", "Canada", "Italy", "Spain",
    "Netherlands", "Poland", "Greece", "Norway", "Sweden", "India",
    "Pakistan", "Egypt", "Singapore", "Taiwan",
}


def is_military_state(state: list[Any]) -> bool:
    callsign = (state[1] or "").strip()
    if not callsign:
        return False
    if _CORE_CALLSIGN.match(callsign):
        return True
    return state[2] in _MILITARY_COUNTRIES and bool(_EXTENDED_CALLSIGN.match(callsign))


def parse_opensky_states(data: dict[str, Any], now: Optional[datetime] = None) -> list[Payload]:
    """Military flights from one OpenSky /states response."""
    now = now or datetime.now(timezone.utc)
    flights: list[Payload] = []
    for state in data.get("states") or []:
        if not isinstance(state, list) or len(state) < 12:
            continue
        if not is_military_state(state):
            continue
        lat, lon = state[6], state[5]
        if lat is None or lon is None:
            continue

        icao24 = str(state[0])
        callsign = (state[1] or "").strip()
        nearby = get_military_hotspot_near(lat, lon)
        altitude, velocity = state[7], state[9]

        flights.append({
            "id": f"opensky-{icao24}",
            "callsign": callsign or f"UNKN-{icao24[:4].upper()}",
            "hexCode": icao24.upper(),
            "lat": lat,
            "lon": lon,
            "altitude": round(altitude * _METRES_TO_FEET) if altitude else 0,
            "heading": state[10] or 0,
            "speed": round(velocity * _MS_TO_KNOTS) if velocity else 0,
            "onGround": bool(state[8]),
            "operatorCountry": state[2],
            "lastSeen": now,
            "isInteresting": nearby is not None and nearby.priority == "high",
            "note": f"Near {nearby.name}" if nearby else None,
        })
    return flights


class OpenSkyFetcher(BaseFetcher):
    """Military aircraft over the configured hotspot boxes."""

    provider_name = "opensky"
    source_id = "opensky"
    signal_kind = "military_flight"

    def __init__(
        self,
        base_url: Optional[str] = None,
        hotspots: Optional[list[MilitaryHotspot]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        batch_pause: float = _BATCH_PAUSE_SECONDS,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self._base_url = (base_url if base_url is not None else OPENSKY_BASE_URL).rstrip("/")
        self._hotspots = hotspots if hotspots is not None else MILITARY_HOTSPOTS
        self._batch_pause = batch_pause
        if not self._base_url:
            logger.warning("No OpenSky relay configured. Set OPENSKY_BASE_URL to enable flight tracking.")

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    async def health_check(self) -> bool:
        if not self.enabled:
            return False
        try:
            async with self._client() as client:
                resp = await client.get(self._base_url, params={"lamin": 0, "lamax": 1, "lomin": 0, "lomax": 1})
                return resp.status_code == 200
        except Exception as exc:
            logger.error("OpenSky health check failed: %s", exc)
            return False

    async def _fetch_region(
        self,
        client: httpx.AsyncClient,
        hotspot: MilitaryHotspot,
        errors: list[str],
    ) -> list[Payload]:
        params = {
            "lamin": hotspot.lat - hotspot.radius,
            "lamax": hotspot.lat + hotspot.radius,
            "lomin": hotspot.lon - hotspot.radius,
            "lomax": hotspot.lon + hotspot.radius,
        }
        try:
            resp = await client.get(self._base_url, params=params)
            if resp.status_code == 429:
                logger.warning("OpenSky rate limited for %s", hotspot.name)
                errors.append(f"{hotspot.name}: rate limited")
                return []
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("OpenSky HTTP error for %s: %s", hotspot.name, exc.response.status_code)
            errors.append(f"{hotspot.name}: HTTP {exc.response.status_code}")
            return []
        except Exception as exc:
            logger.error("OpenSky fetch failed for %s: %s", hotspot.name, exc)
            errors.append(f"{hotspot.name}: {exc}")
            return []
        return parse_opensky_states(data)

    async def fetch(self) -> list[Payload]:
        if not self.enabled:
            return []

        flights: list[Payload] = []
        seen_hex: set[str] = set()
        errors: list[str] = []
        async with self._client() as client:
            for start in range(0, len(self._hotspots), _BATCH_SIZE):
                batch = self._hotspots[start:start + _BATCH_SIZE]
                results = await asyncio.gather(*(self._fetch_region(client, h, errors) for h in batch))
                for region_flights in results:
                    for flight in region_flights:
                        if flight["hexCode"] not in seen_hex:
                            seen_hex.add(flight["hexCode"])
                            flights.append(flight)
                if start + _BATCH_SIZE < len(self._hotspots) and self._batch_pause > 0:
                    await asyncio.sleep(self._batch_pause)

        # Partial coverage still counts as a successful refresh
        self.last_error = (
            f"all {len(errors)} regions failed ({errors[0]})"
            if self._hotspots and len(errors) == len(self._hotspots) else None
        )
        logger.info(
            "OpenSky: %d military aircraft from %d regions",
            len(flights), len(self._hotspots),
        )
        return flights
