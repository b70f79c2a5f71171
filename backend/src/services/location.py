from __future__ import annotations

import re
from typing import List, Optional

from loguru import logger

from config import Configuration
from errors import LocationNotFound, ProviderCapabilityError
from models import GeocodeResult, LocationSuggestion, ProviderKind
from services.cache import ResultCache, geocode_cache_key
from services.google_places import GooglePlacesClient
from services.openstreetmap import OpenStreetMapClient
from utils import normalize_text


# City names shared by several states; a bare mention usually needs a state.
CITIES_NEEDING_STATE = [
    "kansas city", "springfield", "franklin", "georgetown", "madison",
    "washington", "arlington", "richmond", "chester", "clinton",
    "marion", "salem", "lexington", "auburn", "cambridge", "newport",
    "portland", "jackson", "nashville", "charlotte", "rochester",
    "columbia", "manchester", "birmingham", "savannah", "tallahassee",
]

US_STATES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA", "west virginia": "WV",
    "wisconsin": "WI", "wyoming": "WY",
}

_STATE_NAME_RE = re.compile(r"\b(" + "|".join(sorted(US_STATES, key=len, reverse=True)) + r")\b", re.IGNORECASE)
_STATE_ABBR_RE = re.compile(r"\b(" + "|".join(sorted(set(US_STATES.values()))) + r")\b")
_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")


def _mentions_state(text: str, city: str) -> bool:
    # ignore the city's own words so "Kansas City" does not count as naming Kansas
    rest = re.sub(re.escape(city), " ", text, count=1, flags=re.IGNORECASE)
    return bool(_STATE_NAME_RE.search(rest) or _STATE_ABBR_RE.search(rest))


def is_state_only(text: str) -> bool:
    lower = normalize_text(text)
    if lower.endswith(" state"):
        lower = lower[: -len(" state")]
    return lower in US_STATES


def is_possibly_ambiguous(text: str) -> bool:
    """Single, purely alphabetic words (a bare city or state) are often ambiguous."""
    stripped = (text or "").strip()
    return bool(stripped) and stripped.isalpha()


def location_suggestions(location_text: str) -> List[str]:
    """Textual hints for a location that failed to resolve."""
    text = (location_text or "").strip()
    lower = normalize_text(text)
    suggestions: list[str] = []
    if not text:
        return suggestions

    if is_state_only(text):
        suggestions.append(f'"{text}" is a state - try a specific city, e.g. "City, {text}"')
        suggestions.append(f"Or search for a city or neighborhood within {text}")
        return suggestions

    city = next((c for c in CITIES_NEEDING_STATE if lower == c or lower.startswith(c + " ")), None)
    if city and not _mentions_state(text, city):
        suggestions.append(f'Try adding a state: "{text}, [state]" (e.g. "{text}, Missouri")')

    if is_possibly_ambiguous(text):
        suggestions.append(
            'Try being more specific - add a state or neighborhood (e.g. "City, State" or "Street Address, City")'
        )

    if _ZIP_RE.match(text):
        suggestions.append("Try adding a city name along with the zip code for better results")

    return suggestions


class LocationResolver:
    """Free-text location to coordinates through the request's provider."""

    def __init__(
        self,
        provider: ProviderKind,
        cfg: Configuration,
        cache: ResultCache,
        *,
        google: Optional[GooglePlacesClient] = None,
        osm: Optional[OpenStreetMapClient] = None,
    ) -> None:
        self.provider = provider
        self.cfg = cfg
        self.cache = cache
        self.google = google
        self.osm = osm

    def _geocode(self, text: str) -> Optional[GeocodeResult]:
        if self.provider is ProviderKind.PREMIUM:
            assert self.google is not None
            return self.google.geocode(text)
        assert self.osm is not None
        return self.osm.geocode(text)

    def resolve(self, text: str) -> Optional[GeocodeResult]:
        if not normalize_text(text):
            return None
        key = geocode_cache_key(self.provider, text, "geocode")
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        result = self._geocode(text)
        if result is None:
            if is_possibly_ambiguous(text):
                logger.info("location {!r} not found (possibly ambiguous)", text)
            return None
        self.cache.put(key, result)
        return result

    def require(self, text: str) -> GeocodeResult:
        result = self.resolve(text)
        if result is None:
            raise LocationNotFound(text, location_suggestions(text))
        return result

    def suggest(self, text: str) -> List[LocationSuggestion]:
        if self.provider is ProviderKind.FREE:
            raise ProviderCapabilityError(
                ProviderKind.FREE.value,
                "Location autocomplete is not available with OpenStreetMap (usage policy)",
            )
        if len(normalize_text(text)) < self.cfg.autocomplete_min_chars:
            return []
        key = geocode_cache_key(self.provider, text, "autocomplete")
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        assert self.google is not None
        suggestions = self.google.geocode_candidates(text)
        self.cache.put(key, suggestions)
        return suggestions
