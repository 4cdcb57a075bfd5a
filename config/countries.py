"""
Country Registry — ISO codes, reference points and headline keywords.

The reference point is where an event with no explicit country gets
attributed: nearest reference point within GEOCODE_MAX_KM wins. For very
large countries the point sits in the populated west/centre rather than at
the geometric centroid, which keeps border regions attributed sensibly.

Keywords are matched as whole words against lowercased news titles to give
non-geolocated news clusters a country for the CII news component.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Country:
    """A country the engine can attribute signals to."""
    iso2: str
    iso3: str
    name: str
    lat: float
    lon: float
    keywords: list[str] = field(default_factory=list)  # lowercase, name included automatically


COUNTRY_REGISTRY: list[Country] = [
    # ── Americas ─────────────────────────────────────────────────────────
    Country("US", "USA", "United States", 39.8, -98.6, ["u.s.", "usa", "american", "pentagon", "washington"]),
    Country("CA", "CAN", "Canada", 50.0, -96.0, ["canadian", "ottawa"]),
    Country("MX", "MEX", "Mexico", 23.6, -102.5, ["mexican"]),
    Country("CU", "CUB", "Cuba", 21.5, -77.8, ["cuban", "havana"]),
    Country("HT", "HTI", "Haiti", 18.97, -72.3, ["haitian", "port-au-prince"]),
    Country("VE", "VEN", "Venezuela", 6.4, -66.6, ["venezuelan", "caracas", "maduro"]),
    Country("CO", "COL", "Colombia", 4.6, -74.1, ["colombian", "bogota"]),
    Country("EC", "ECU", "Ecuador", -1.8, -78.2, ["ecuadorian", "quito"]),
    Country("PE", "PER", "Peru", -9.2, -75.0, ["peruvian", "lima"]),
    Country("BR", "BRA", "Brazil", -14.2, -51.9, ["brazilian", "brasilia"]),
    Country("AR", "ARG", "Argentina", -34.6, -63.6, ["argentine", "buenos aires"]),
    Country("CL", "CHL", "Chile", -33.4, -71.5, ["chilean", "santiago"]),

    # ── Europe ───────────────────────────────────────────────────────────
    Country("GB", "GBR", "United Kingdom", 54.0, -2.5, ["uk", "britain", "british", "london"]),
    Country("FR", "FRA", "France", 46.2, 2.2, ["french", "paris"]),
    Country("DE", "DEU", "Germany", 51.2, 10.5, ["german", "berlin"]),
    Country("IT", "ITA", "Italy", 41.9, 12.6, ["italian", "rome"]),
    Country("ES", "ESP", "Spain", 40.5, -3.7, ["spanish", "madrid"]),
    Country("PL", "POL", "Poland", 51.9, 19.1, ["polish", "warsaw"]),
    Country("LT", "LTU", "Lithuania", 55.2, 23.9, ["lithuanian", "vilnius"]),
    Country("LV", "LVA", "Latvia", 56.9, 24.6, ["latvian", "riga"]),
    Country("EE", "EST", "Estonia", 58.6, 25.0, ["estonian", "tallinn"]),
    Country("FI", "FIN", "Finland", 61.9, 25.7, ["finnish", "helsinki"]),
    Country("SE", "SWE", "Sweden", 60.1, 18.6, ["swedish", "stockholm"]),
    Country("NO", "NOR", "Norway", 60.5, 8.5, ["norwegian", "oslo"]),
    Country("BY", "BLR", "Belarus", 53.7, 27.95, ["belarusian", "minsk", "lukashenko"]),
    Country("UA", "UKR", "Ukraine", 48.4, 31.2, ["ukrainian", "kyiv", "kiev", "zelensky", "donbas", "kharkiv", "odesa"]),
    Country("MD", "MDA", "Moldova", 47.4, 28.4, ["moldovan", "chisinau", "transnistria"]),
    Country("RO", "ROU", "Romania", 45.9, 24.97, ["romanian", "bucharest"]),
    Country("RS", "SRB", "Serbia", 44.0, 21.0, ["serbian", "belgrade"]),
    Country("XK", "XKX", "Kosovo", 42.6, 20.9, ["kosovar", "pristina"]),
    Country("GR", "GRC", "Greece", 39.07, 21.8, ["greek", "athens"]),
    Country("TR", "TUR", "Turkey", 38.96, 35.2, ["turkish", "turkiye", "ankara", "erdogan"]),
    Country("GE", "GEO", "Georgia", 42.3, 43.4, ["georgian", "tbilisi"]),
    Country("AM", "ARM", "Armenia", 40.07, 45.04, ["armenian", "yerevan"]),
    Country("AZ", "AZE", "Azerbaijan", 40.14, 47.58, ["azerbaijani", "baku"]),
    Country("RU", "RUS", "Russia", 55.75, 44.0, ["russian", "kremlin", "moscow", "putin"]),

    # ── Middle East & North Africa ───────────────────────────────────────
    Country("IL", "ISR", "Israel", 31.05, 34.85, ["israeli", "idf", "netanyahu", "tel aviv"]),
    Country("PS", "PSE", "Palestine", 31.95, 35.23, ["palestinian", "gaza", "west bank", "hamas"]),
    Country("LB", "LBN", "Lebanon", 33.85, 35.86, ["lebanese", "beirut", "hezbollah"]),
    Country("SY", "SYR", "Syria", 34.8, 38.99, ["syrian", "damascus", "aleppo"]),
    Country("JO", "JOR", "Jordan", 30.6, 36.2, ["jordanian", "amman"]),
    Country("IQ", "IRQ", "Iraq", 33.2, 43.68, ["iraqi", "baghdad"]),
    Country("IR", "IRN", "Iran", 32.4, 53.7, ["iranian", "tehran", "irgc"]),
    Country("SA", "SAU", "Saudi Arabia", 23.9, 45.1, ["saudi", "riyadh"]),
    Country("AE", "ARE", "United Arab Emirates", 23.4, 53.8, ["uae", "emirati", "abu dhabi", "dubai"]),
    Country("QA", "QAT", "Qatar", 25.35, 51.18, ["qatari", "doha"]),
    Country("YE", "YEM", "Yemen", 15.55, 48.5, ["yemeni", "houthi", "houthis", "sanaa", "aden"]),
    Country("EG", "EGY", "Egypt", 26.8, 30.8, ["egyptian", "cairo"]),
    Country("LY", "LBY", "Libya", 26.3, 17.2, ["libyan", "tripoli", "benghazi"]),

    # ── Sub-Saharan Africa ───────────────────────────────────────────────
    Country("SD", "SDN", "Sudan", 15.5, 30.2, ["sudanese", "khartoum", "darfur", "rsf"]),
    Country("SS", "SSD", "South Sudan", 6.9, 31.3, ["juba"]),
    Country("ET", "ETH", "Ethiopia", 9.15, 40.5, ["ethiopian", "addis ababa", "tigray", "amhara"]),
    Country("SO", "SOM", "Somalia", 5.15, 46.2, ["somali", "mogadishu", "al-shabaab"]),
    Country("KE", "KEN", "Kenya", -0.02, 37.9, ["kenyan", "nairobi"]),
    Country("NG", "NGA", "Nigeria", 9.08, 8.68, ["nigerian", "abuja", "lagos"]),
    Country("ML", "MLI", "Mali", 17.57, -4.0, ["malian", "bamako"]),
    Country("BF", "BFA", "Burkina Faso", 12.24, -1.56, ["burkinabe", "ouagadougou"]),
    Country("NE", "NER", "Niger", 17.6, 8.08, ["nigerien", "niamey"]),
    Country("CD", "COD", "DR Congo", -4.04, 21.76, ["congolese", "kinshasa", "goma", "drc"]),
    Country("MZ", "MOZ", "Mozambique", -18.67, 35.53, ["mozambican", "maputo", "cabo delgado"]),
    Country("ZA", "ZAF", "South Africa", -30.56, 22.94, ["south african", "pretoria", "johannesburg"]),

    # ── Asia-Pacific ─────────────────────────────────────────────────────
    Country("AF", "AFG", "Afghanistan", 33.94, 67.71, ["afghan", "kabul", "taliban"]),
    Country("PK", "PAK", "Pakistan", 30.38, 69.35, ["pakistani", "islamabad", "karachi"]),
    Country("IN", "IND", "India", 22.0, 78.96, ["indian", "new delhi", "modi"]),
    Country("BD", "BGD", "Bangladesh", 23.68, 90.36, ["bangladeshi", "dhaka"]),
    Country("MM", "MMR", "Myanmar", 21.9, 95.96, ["burma", "burmese", "naypyidaw", "yangon"]),
    Country("CN", "CHN", "China", 34.0, 110.0, ["chinese", "beijing", "pla", "xi jinping"]),
    Country("TW", "TWN", "Taiwan", 23.7, 120.96, ["taiwanese", "taipei"]),
    Country("KP", "PRK", "North Korea", 40.34, 127.51, ["pyongyang", "dprk", "kim jong un"]),
    Country("KR", "KOR", "South Korea", 36.4, 127.77, ["seoul"]),
    Country("JP", "JPN", "Japan", 36.2, 138.25, ["japanese", "tokyo"]),
    Country("PH", "PHL", "Philippines", 12.88, 121.77, ["philippine", "filipino", "manila"]),
    Country("VN", "VNM", "Vietnam", 14.06, 108.28, ["vietnamese", "hanoi"]),
    Country("TH", "THA", "Thailand", 15.87, 100.99, ["thai", "bangkok"]),
    Country("ID", "IDN", "Indonesia", -2.5, 113.92, ["indonesian", "jakarta"]),
    Country("AU", "AUS", "Australia", -25.27, 133.78, ["australian", "canberra"]),
]

COUNTRY_BY_CODE: dict[str, Country] = {c.iso2: c for c in COUNTRY_REGISTRY}

_LOOKUP: dict[str, str] = {}
for _c in COUNTRY_REGISTRY:
    _LOOKUP[_c.iso2.lower()] = _c.iso2
    _LOOKUP[_c.iso3.lower()] = _c.iso2
    _LOOKUP[_c.name.lower()] = _c.iso2

# Producer spellings that differ from the registry names
_LOOKUP.update({
    "russian federation": "RU",
    "iran (islamic republic of)": "IR",
    "syrian arab republic": "SY",
    "democratic republic of the congo": "CD",
    "congo, dem. rep.": "CD",
    "state of palestine": "PS",
    "occupied palestinian territory": "PS",
    "republic of korea": "KR",
    "korea, republic of": "KR",
    "korea, democratic people's republic of": "KP",
    "turkiye": "TR",
    "türkiye": "TR",
    "uk": "GB",
    "usa": "US",
    "united states of america": "US",
    "viet nam": "VN",
})

_KEYWORD_PATTERNS: list[tuple[str, re.Pattern]] = [
    (
        c.iso2,
        re.compile(
            r"(?<![\w.])(" + "|".join(
                re.escape(k) for k in sorted({c.name.lower(), *c.keywords}, key=len, reverse=True)
            ) + r")(?![\w])"
        ),
    )
    for c in COUNTRY_REGISTRY
]


def resolve_country_code(value: Optional[str]) -> Optional[str]:
    """Map an ISO-2/ISO-3 code or a country name to the registry's ISO-2 code."""
    if not value or not isinstance(value, str):
        return None
    return _LOOKUP.get(value.strip().lower())


def get_country(code: str) -> Optional[Country]:
    """Look up a registry entry by ISO-2 code."""
    return COUNTRY_BY_CODE.get(code)


def match_countries_in_text(text: str) -> list[str]:
    """Return ISO-2 codes whose name or keywords appear in the text, in registry order."""
    if not text:
        return []
    lowered = text.lower()
    return [code for code, pattern in _KEYWORD_PATTERNS if pattern.search(lowered)]
