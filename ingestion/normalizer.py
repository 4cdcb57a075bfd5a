"""
Event Normalizer — converts raw producer payloads into NormalizedEvents.

Each producer has its own payload shape (protest reports, OpenSky flights,
AIS vessels, USGS quakes, outage reports, news clusters, conflict events,
displacement figures, climate anomalies). normalize() maps any of them to
the common {id, lat, lon, timestamp, kind, severity, country_code} shape.

Pure function, no side effects. A record that cannot be placed (missing or
out-of-range coordinates for a spatial kind, unparseable timestamp) returns
None and is logged at debug level; the caller keeps going with the batch.

Severity by kind (all clamped to 0..1):
  protest         severity label   low 0.3 / medium 0.6 / high 0.9, otherwise 0.5
  earthquake      magnitude / 8
  military_*      0.7 when isInteresting, else 0.4
  outage          total 0.9 / major 0.7 / partial 0.4, otherwise 0.6
  news_cluster    threat level     critical 1.0 / high 0.8 / medium 0.5 / low 0.3 / info 0.1
  conflict        0.4 + fatalities / 50
  displacement    log10(1 + persons) / 7   (10M displaced ≈ 1.0)
  climate         extreme|severe 0.9 / moderate 0.5 / normal 0.2
"""
from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional, Union

from config.countries import match_countries_in_text, resolve_country_code
from config.settings import GEOCODE_MAX_KM, SPATIAL_REQUIRED_KINDS
from models.signals import NormalizedEvent, SignalKind
from processing.geo import nearest_country, valid_coordinates

logger = logging.getLogger(__name__)

_PROTEST_SEVERITY = {"low": 0.3, "medium": 0.6, "high": 0.9}
_OUTAGE_SEVERITY = {"total": 0.9, "major": 0.7, "partial": 0.4}
_THREAT_SEVERITY = {"critical": 1.0, "high": 0.8, "medium": 0.5, "low": 0.3, "info": 0.1}
_CLIMATE_SEVERITY = {"extreme": 0.9, "severe": 0.9, "moderate": 0.5, "normal": 0.2}

# Epoch values above this are milliseconds (1e11 s is the year 5138)
_EPOCH_MS_THRESHOLD = 1e11

_TIME_FIELDS: dict[SignalKind, tuple[str, ...]] = {
    SignalKind.PROTEST: ("time", "timestamp", "date"),
    SignalKind.MILITARY_FLIGHT: ("lastSeen", "last_seen", "time"),
    SignalKind.MILITARY_VESSEL: ("lastAisUpdate", "last_ais_update", "lastSeen", "time"),
    SignalKind.EARTHQUAKE: ("time", "timestamp"),
    SignalKind.OUTAGE: ("time", "pubDate", "timestamp"),
    SignalKind.NEWS_CLUSTER: ("lastUpdated", "last_updated", "firstSeen", "time"),
    SignalKind.CONFLICT: ("time", "date", "timestamp"),
    SignalKind.DISPLACEMENT: ("time", "date", "timestamp"),
    SignalKind.CLIMATE: ("time", "timestamp", "date"),
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def get_field(raw: Any, *names: str, default: Any = None) -> Any:
    """First non-None field among names, from a mapping or an object."""
    for name in names:
        if isinstance(raw, Mapping):
            value = raw.get(name)
        else:
            value = getattr(raw, name, None)
        if value is not None:
            return value
    return default


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a producer timestamp into an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), epoch seconds or
    milliseconds, and ISO-8601 strings (including a trailing 'Z').
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        seconds = value / 1000.0 if abs(value) > _EPOCH_MS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return parse_timestamp(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            numeric = _as_float(text)
            return parse_timestamp(numeric) if numeric is not None else None
    return None


# ─── Severity Mapping ────────────────────────────────────────────────────────

def _severity(raw: Any, kind: SignalKind) -> float:
    if kind == SignalKind.PROTEST:
        label = str(get_field(raw, "severity", default="")).lower()
        return _PROTEST_SEVERITY.get(label, 0.5)

    if kind == SignalKind.EARTHQUAKE:
        magnitude = _as_float(get_field(raw, "magnitude", "mag"))
        return _clamp((magnitude or 0.0) / 8.0)

    if kind in (SignalKind.MILITARY_FLIGHT, SignalKind.MILITARY_VESSEL):
        return 0.7 if get_field(raw, "isInteresting", "is_interesting", default=False) else 0.4

    if kind == SignalKind.OUTAGE:
        label = str(get_field(raw, "severity", default="")).lower()
        return _OUTAGE_SEVERITY.get(label, 0.6)

    if kind == SignalKind.NEWS_CLUSTER:
        threat = get_field(raw, "threat", default={})
        level = get_field(threat, "level", default="") if threat else ""
        return _THREAT_SEVERITY.get(str(level).lower(), 0.3)

    if kind == SignalKind.CONFLICT:
        fatalities = _as_float(get_field(raw, "fatalities", "deaths")) or 0.0
        return _clamp(0.4 + max(fatalities, 0.0) / 50.0)

    if kind == SignalKind.DISPLACEMENT:
        persons = _as_float(get_field(raw, "persons", "refugees", "count")) or 0.0
        return _clamp(math.log10(1.0 + max(persons, 0.0)) / 7.0)

    if kind == SignalKind.CLIMATE:
        label = str(get_field(raw, "severity", default="")).lower()
        return _CLIMATE_SEVERITY.get(label, 0.5)

    return 0.5


# ─── Country Resolution ──────────────────────────────────────────────────────

def _resolve_country(
    raw: Any,
    kind: SignalKind,
    lat: Optional[float],
    lon: Optional[float],
) -> Optional[str]:
    # Operator country of a flight/vessel is not where it is; use position only
    if kind not in (SignalKind.MILITARY_FLIGHT, SignalKind.MILITARY_VESSEL):
        explicit = resolve_country_code(get_field(raw, "countryCode", "country_code", "country", "iso2", "iso3"))
        if explicit:
            return explicit

    if kind == SignalKind.NEWS_CLUSTER:
        matches = match_countries_in_text(str(get_field(raw, "primaryTitle", "primary_title", "title", default="")))
        if matches:
            return matches[0]

    if lat is not None and lon is not None:
        return nearest_country(lat, lon, GEOCODE_MAX_KM)
    return None


def _event_id(raw: Any, kind: SignalKind, country: Optional[str], lat, lon, ts: datetime) -> str:
    explicit = get_field(raw, "id")
    if explicit is not None and str(explicit):
        return str(explicit)
    if kind in (SignalKind.OUTAGE, SignalKind.DISPLACEMENT):
        return f"{kind.value}-{country or 'xx'}-{ts.isoformat()}"
    position = f"{lat:.3f}_{lon:.3f}" if lat is not None else "nopos"
    return f"{kind.value}-{position}-{ts.isoformat()}"


def normalize(raw: Any, kind: Union[SignalKind, str]) -> Optional[NormalizedEvent]:
    """
    Convert one producer record into a NormalizedEvent, or None to drop it.

    Raises ValueError only for an unknown kind string (a programming error).
    """
    kind = SignalKind(kind)

    if raw is None:
        logger.debug("Dropping empty %s record", kind.value)
        return None

    lat = get_field(raw, "lat", "latitude")
    lon = get_field(raw, "lon", "lng", "longitude")
    lat = _as_float(lat) if lat is not None else None
    lon = _as_float(lon) if lon is not None else None

    has_position = lat is not None and lon is not None
    if has_position and not valid_coordinates(lat, lon):
        logger.debug("Dropping %s %s: coordinates out of range (%s, %s)",
                     kind.value, get_field(raw, "id"), lat, lon)
        return None
    if not has_position:
        lat = lon = None
        if kind.value in SPATIAL_REQUIRED_KINDS:
            logger.debug("Dropping %s %s: no resolvable coordinates", kind.value, get_field(raw, "id"))
            return None

    timestamp = parse_timestamp(get_field(raw, *_TIME_FIELDS[kind]))
    if timestamp is None:
        logger.debug("Dropping %s %s: unparseable timestamp", kind.value, get_field(raw, "id"))
        return None

    country = _resolve_country(raw, kind, lat, lon)
    if not has_position and country is None:
        logger.debug("Dropping %s %s: neither position nor country", kind.value, get_field(raw, "id"))
        return None

    return NormalizedEvent(
        id=_event_id(raw, kind, country, lat, lon, timestamp),
        lat=lat,
        lon=lon,
        timestamp=timestamp,
        kind=kind,
        severity=_severity(raw, kind),
        country_code=country,
    )
