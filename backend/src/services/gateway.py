from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from config import Configuration
from errors import ProviderError
from models import Place, ProviderKind, SearchQuery, SearchResult, UserEntitlement
from services.google_places import GooglePlacesClient
from services.openstreetmap import ATTRIBUTION, OpenStreetMapClient, OsmElement
from utils import miles_to_meters

GOOGLE_PREFIX = "google_"
OSM_PREFIX = "osm_"
GOOGLE_MAX_RADIUS_M = 40000.0

FREE_LIMITATIONS = [
    "Ratings, price levels and photos are not available with OpenStreetMap data.",
    "Price filters are not applied to OpenStreetMap results.",
    "Location autocomplete is not available with OpenStreetMap.",
]


def choose_provider(entitlement: Optional[UserEntitlement], cfg: Configuration) -> ProviderKind:
    """Premium only for an authenticated, entitled caller with Google configured."""
    if entitlement is None or not entitlement.authenticated:
        return ProviderKind.FREE
    if not entitlement.google_api_access:
        return ProviderKind.FREE
    if not cfg.has_google():
        return ProviderKind.FREE
    return ProviderKind.PREMIUM


def is_degraded(entitlement: Optional[UserEntitlement], provider: ProviderKind) -> bool:
    """True when an entitled caller is served by the free provider."""
    return bool(
        entitlement is not None
        and entitlement.authenticated
        and entitlement.google_api_access
        and provider is ProviderKind.FREE
    )


def price_bounds(tiers: Iterable[int]) -> Optional[Tuple[int, int]]:
    """1-based tiers to Google's 0-based (minprice, maxprice)."""
    selected = [int(t) for t in tiers]
    if not selected:
        return None
    return min(selected) - 1, max(selected) - 1


def _coerce_rating(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not 0.0 <= float(value) <= 5.0:
        return None
    return float(value)


def _coerce_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return None
    return int(value)


def _coerce_tier(price_level: Any) -> Optional[int]:
    # Google reports 0 (free) to 4 (very expensive)
    if isinstance(price_level, bool) or not isinstance(price_level, int):
        return None
    if price_level < 0:
        return None
    return min(price_level + 1, 4)


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_google_place(raw: Dict[str, Any]) -> Optional[Place]:
    place_id = _text_or_none(raw.get("place_id"))
    name = _text_or_none(raw.get("name"))
    if not place_id or not name:
        return None
    location = (raw.get("geometry") or {}).get("location") or {}
    photos = raw.get("photos") or []
    rating = _coerce_rating(raw.get("rating"))
    count = _coerce_count(raw.get("user_ratings_total"))
    if rating is not None and count == 0:
        rating = None
    return Place(
        place_id=f"{GOOGLE_PREFIX}{place_id}",
        name=name,
        rating=rating,
        user_ratings_total=count or None,
        price_level=_coerce_tier(raw.get("price_level")),
        vicinity=_text_or_none(raw.get("vicinity")),
        formatted_address=_text_or_none(raw.get("formatted_address")),
        photo_ref=_text_or_none(photos[0].get("photo_reference")) if photos else None,
        lat=location.get("lat"),
        lng=location.get("lng"),
    )


def normalize_osm_element(el: OsmElement) -> Place:
    return Place(
        place_id=f"{OSM_PREFIX}{el.osm_type}_{el.osm_id}",
        name=el.name,
        vicinity=el.vicinity,
        formatted_address=el.formatted_address,
        lat=el.lat,
        lng=el.lng,
    )


def google_place_id(place_id: str) -> Optional[str]:
    """Strip the namespace prefix; None for ids that are not Google's."""
    if place_id.startswith(GOOGLE_PREFIX):
        return place_id[len(GOOGLE_PREFIX):]
    return None


class ProviderGateway:
    def __init__(
        self,
        cfg: Configuration,
        *,
        google: Optional[GooglePlacesClient] = None,
        osm: Optional[OpenStreetMapClient] = None,
    ) -> None:
        self.cfg = cfg
        self.google = google
        self.osm = osm

    def search(self, query: SearchQuery, provider: ProviderKind, lat: float, lng: float) -> SearchResult:
        if provider is ProviderKind.PREMIUM:
            places = self._search_google(query, lat, lng)
            return SearchResult(places=places[: self.cfg.max_results], provider=provider)
        if provider is ProviderKind.FREE:
            places = self._search_osm(query, lat, lng)
            return SearchResult(
                places=places[: self.cfg.max_results],
                provider=provider,
                attribution=ATTRIBUTION,
                limitations=list(FREE_LIMITATIONS),
            )
        raise ValueError(f"unknown provider: {provider}")

    def _search_google(self, query: SearchQuery, lat: float, lng: float) -> List[Place]:
        if self.google is None:
            raise ProviderError(ProviderKind.PREMIUM.value, "Google Places client is not configured")
        bounds = price_bounds(query.effective_price_tiers())
        raw = self.google.nearby(
            lat,
            lng,
            radius_m=min(miles_to_meters(query.radius_miles), GOOGLE_MAX_RADIUS_M),
            keyword=query.effective_cuisine(),
            minprice=bounds[0] if bounds else None,
            maxprice=bounds[1] if bounds else None,
        )
        places: list[Place] = []
        for item in raw:
            try:
                place = normalize_google_place(item)
            except ValueError as exc:
                logger.warning("dropping malformed google place {}: {}", item.get("place_id"), exc)
                continue
            if place is not None:
                places.append(place)
        return places

    def _search_osm(self, query: SearchQuery, lat: float, lng: float) -> List[Place]:
        if self.osm is None:
            raise ProviderError(ProviderKind.FREE.value, "OpenStreetMap client is not configured")
        elements = self.osm.nearby(
            lat,
            lng,
            radius_m=miles_to_meters(query.radius_miles),
            cuisine=query.effective_cuisine(),
        )
        seen: set[str] = set()
        places: list[Place] = []
        for el in elements:
            place = normalize_osm_element(el)
            if place.place_id in seen:
                continue
            seen.add(place.place_id)
            places.append(place)
        return places

    def place_details(self, place_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot fields for a Google place; None when not a Google id."""
        raw_id = google_place_id(place_id)
        if raw_id is None or self.google is None:
            return None
        raw = self.google.details(raw_id)
        if not raw:
            return None
        opening = raw.get("opening_hours") or {}
        return {
            "place_id": place_id,
            "name": _text_or_none(raw.get("name")),
            "formatted_address": _text_or_none(raw.get("formatted_address")),
            "rating": _coerce_rating(raw.get("rating")),
            "user_ratings_total": _coerce_count(raw.get("user_ratings_total")),
            "price_level": _coerce_tier(raw.get("price_level")),
            "website": _text_or_none(raw.get("website")),
            "open_now": opening.get("open_now"),
        }
