from __future__ import annotations

from dataclasses import replace
from typing import List, Optional, Union

from loguru import logger

from config import Configuration
from errors import (
    JustChooseError,
    ProviderCapabilityError,
    ProviderError,
    ProviderQuotaOrTransientError,
    SearchFailed,
    ValidationError,
)
from models import GeocodeResult, LocationSuggestion, ProviderKind, SearchQuery, SearchResult, UserEntitlement
from services.cache import ResultCache, search_cache_key
from services.gateway import ProviderGateway, choose_provider, is_degraded
from services.google_places import GooglePlacesClient
from services.location import LocationResolver
from services.openstreetmap import ATTRIBUTION, OpenStreetMapClient
from utils import is_blank

MIN_RADIUS_MILES = 1
MAX_RADIUS_MILES = 25


def validate_query(query: SearchQuery) -> None:
    """Reject malformed queries before any I/O."""
    radius = query.radius_miles
    if radius is None or isinstance(radius, bool):
        raise ValidationError("Radius must be between 1 and 25 miles")
    try:
        radius = float(radius)
    except (TypeError, ValueError):
        raise ValidationError("Radius must be between 1 and 25 miles")
    if not MIN_RADIUS_MILES <= radius <= MAX_RADIUS_MILES:
        raise ValidationError("Radius must be between 1 and 25 miles")

    if (query.lat is None) != (query.lng is None):
        if is_blank(query.location_text):
            raise ValidationError("Both latitude and longitude are required")
    if not query.has_coordinates() and is_blank(query.location_text):
        raise ValidationError("Location is required")
    if query.has_coordinates():
        if not -90.0 <= float(query.lat) <= 90.0 or not -180.0 <= float(query.lng) <= 180.0:
            raise ValidationError("Coordinates are out of range")

    for tier in query.effective_price_tiers():
        if tier not in (1, 2, 3, 4):
            raise ValidationError("Price ranges must be between 1 and 4")


class SearchOrchestrator:
    """Validate, choose provider, consult cache, resolve, search, write through."""

    def __init__(
        self,
        cfg: Configuration,
        cache: ResultCache,
        *,
        google: Optional[GooglePlacesClient] = None,
        osm: Optional[OpenStreetMapClient] = None,
    ) -> None:
        self.cfg = cfg
        self.cache = cache
        self.google = google
        self.osm = osm

    def resolver_for(self, provider: ProviderKind) -> LocationResolver:
        return LocationResolver(provider, self.cfg, self.cache, google=self.google, osm=self.osm)

    def gateway(self) -> ProviderGateway:
        return ProviderGateway(self.cfg, google=self.google, osm=self.osm)

    def execute(self, query: SearchQuery, entitlement: Optional[UserEntitlement] = None) -> SearchResult:
        validate_query(query)
        if query.has_coordinates():
            # coordinates are authoritative; drop text so it cannot leak into the key
            query = replace(query, location_text=None)

        provider = choose_provider(entitlement, self.cfg)
        degraded = is_degraded(entitlement, provider)
        if degraded:
            logger.warning("user {} entitled to premium search but no Google key; using OpenStreetMap", entitlement.user_id)

        key = search_cache_key(provider, query, self.cfg.cache_coord_precision)
        cached = self.cache.get(key)
        if cached is not None:
            return replace(cached, cached=True, degraded=degraded)

        try:
            if query.has_coordinates():
                lat, lng = float(query.lat), float(query.lng)
            else:
                geo = self.resolver_for(provider).require(query.location_text or "")
                lat, lng = geo.lat, geo.lng
            result = self.gateway().search(query, provider, lat, lng)
        except ProviderQuotaOrTransientError as exc:
            logger.warning("search provider unavailable ({}): {}", exc.reason, exc)
            raise
        except ProviderError as exc:
            logger.warning("search failed: {}", exc)
            raise SearchFailed() from exc
        except JustChooseError:
            raise
        except Exception as exc:
            logger.exception("unexpected error while searching: {}", exc)
            raise SearchFailed() from exc

        logger.info(
            "search provider={} radius={} cuisine={} results={}",
            provider.value,
            query.radius_miles,
            query.effective_cuisine() or "any",
            len(result.places),
        )
        self.cache.put(key, result)
        return replace(result, degraded=degraded)

    def geocode(
        self,
        text: str,
        kind: str = "geocode",
        entitlement: Optional[UserEntitlement] = None,
    ) -> Union[GeocodeResult, List[LocationSuggestion]]:
        if is_blank(text):
            raise ValidationError("Location text is required")
        if kind not in ("geocode", "autocomplete"):
            raise ValidationError("type must be 'geocode' or 'autocomplete'")
        provider = choose_provider(entitlement, self.cfg)
        resolver = self.resolver_for(provider)
        try:
            if kind == "autocomplete":
                return resolver.suggest(text)
            return resolver.require(text)
        except (ProviderCapabilityError, ProviderQuotaOrTransientError):
            raise
        except ProviderError as exc:
            logger.warning("geocode failed: {}", exc)
            raise SearchFailed("Failed to geocode location. Please try again.") from exc
        except JustChooseError:
            raise
        except Exception as exc:
            logger.exception("unexpected error while geocoding: {}", exc)
            raise SearchFailed("Failed to geocode location. Please try again.") from exc

    @staticmethod
    def attribution_for(provider: ProviderKind) -> Optional[str]:
        return ATTRIBUTION if provider is ProviderKind.FREE else None
