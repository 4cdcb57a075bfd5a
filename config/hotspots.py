"""
Hotspot Registry — fixed points of ongoing interest.

Two registries:
  - INTEL_HOTSPOTS: named locations with an escalation score driven by
    keyword-matched news velocity, nearby military activity, CII and
    convergence alerts.
  - MILITARY_HOTSPOTS: bounding regions queried for military aircraft. A
    flight inside a high-priority region is flagged as interesting.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class IntelHotspot:
    """A named location whose escalation score is tracked over time."""
    hotspot_id: str
    name: str
    lat: float
    lon: float
    country_code: Optional[str]         # ISO-2, used to read the country's CII
    keywords: list[str] = field(default_factory=list)  # matched case-insensitively in headlines
    description: str = ""


@dataclass
class MilitaryHotspot:
    """A query box for military flight tracking (radius in degrees)."""
    name: str
    lat: float
    lon: float
    radius: float
    priority: str = "medium"            # "high" | "medium" | "low"


INTEL_HOTSPOTS: list[IntelHotspot] = [
    IntelHotspot(
        hotspot_id="kyiv", name="Kyiv", lat=50.45, lon=30.52, country_code="UA",
        keywords=["kyiv", "kiev", "ukraine", "zelensky", "donbas", "zaporizhzhia"],
        description="Russia-Ukraine war, front line and strike campaign",
    ),
    IntelHotspot(
        hotspot_id="moscow", name="Moscow", lat=55.75, lon=37.62, country_code="RU",
        keywords=["kremlin", "moscow", "putin"],
        description="Russian leadership and internal security",
    ),
    IntelHotspot(
        hotspot_id="gaza", name="Gaza", lat=31.5, lon=34.47, country_code="PS",
        keywords=["gaza", "hamas", "rafah", "khan younis"],
        description="Israel-Hamas conflict",
    ),
    IntelHotspot(
        hotspot_id="beirut", name="Beirut", lat=33.89, lon=35.5, country_code="LB",
        keywords=["beirut", "hezbollah", "lebanon"],
        description="Israel-Hezbollah front",
    ),
    IntelHotspot(
        hotspot_id="tehran", name="Tehran", lat=35.69, lon=51.39, country_code="IR",
        keywords=["tehran", "iran", "irgc", "khamenei"],
        description="Iranian nuclear programme and regional proxies",
    ),
    IntelHotspot(
        hotspot_id="sanaa", name="Sanaa", lat=15.37, lon=44.19, country_code="YE",
        keywords=["houthi", "houthis", "sanaa", "red sea", "yemen"],
        description="Houthi maritime attacks and strikes",
    ),
    IntelHotspot(
        hotspot_id="taipei", name="Taipei", lat=25.03, lon=121.57, country_code="TW",
        keywords=["taiwan", "taipei", "taiwan strait"],
        description="Cross-strait military pressure",
    ),
    IntelHotspot(
        hotspot_id="pyongyang", name="Pyongyang", lat=39.04, lon=125.76, country_code="KP",
        keywords=["pyongyang", "north korea", "kim jong un", "dprk"],
        description="Missile testing and peninsula tension",
    ),
    IntelHotspot(
        hotspot_id="khartoum", name="Khartoum", lat=15.5, lon=32.56, country_code="SD",
        keywords=["khartoum", "sudan", "rsf", "darfur", "el fasher"],
        description="Sudanese civil war",
    ),
    IntelHotspot(
        hotspot_id="sahel", name="Sahel", lat=14.5, lon=-1.5, country_code="BF",
        keywords=["sahel", "mali", "burkina", "niger", "wagner"],
        description="Jihadist insurgency and junta governments",
    ),
    IntelHotspot(
        hotspot_id="caracas", name="Caracas", lat=10.49, lon=-66.88, country_code="VE",
        keywords=["venezuela", "caracas", "maduro"],
        description="Political crisis and US pressure campaign",
    ),
    IntelHotspot(
        hotspot_id="south_china_sea", name="South China Sea", lat=12.0, lon=114.0, country_code=None,
        keywords=["south china sea", "spratly", "scarborough", "second thomas shoal"],
        description="Maritime territorial disputes",
    ),
]

INTEL_HOTSPOT_BY_ID: dict[str, IntelHotspot] = {h.hotspot_id: h for h in INTEL_HOTSPOTS}


MILITARY_HOTSPOTS: list[MilitaryHotspot] = [
    MilitaryHotspot("Black Sea", 44.0, 34.0, 5.0, "high"),
    MilitaryHotspot("Baltic", 57.0, 20.0, 5.0, "high"),
    MilitaryHotspot("Eastern Mediterranean", 34.0, 33.0, 4.0, "high"),
    MilitaryHotspot("Persian Gulf", 26.5, 52.0, 4.0, "high"),
    MilitaryHotspot("Red Sea", 17.0, 40.0, 5.0, "high"),
    MilitaryHotspot("Taiwan Strait", 24.0, 120.0, 4.0, "high"),
    MilitaryHotspot("Korean Peninsula", 38.0, 127.0, 4.0, "high"),
    MilitaryHotspot("South China Sea", 14.0, 115.0, 6.0, "medium"),
    MilitaryHotspot("Arctic", 70.0, 25.0, 8.0, "medium"),
    MilitaryHotspot("Caribbean", 15.0, -70.0, 6.0, "medium"),
]


def get_intel_hotspot(hotspot_id: str) -> Optional[IntelHotspot]:
    """Look up an intel hotspot by id."""
    return INTEL_HOTSPOT_BY_ID.get(hotspot_id)


def get_military_hotspot_near(lat: float, lon: float) -> Optional[MilitaryHotspot]:
    """Return the first military hotspot whose box contains the point."""
    for hotspot in MILITARY_HOTSPOTS:
        if abs(lat - hotspot.lat) <= hotspot.radius and abs(lon - hotspot.lon) <= hotspot.radius:
            return hotspot
    return None
