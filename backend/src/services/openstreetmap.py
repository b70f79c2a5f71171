"""Nominatim geocoding and Overpass restaurant lookups.

Both services share one rate limiter. Nominatim's usage policy forbids
autocomplete-style querying, so this client only offers single-shot geocoding.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import List, Optional

import requests
from loguru import logger

from config import Configuration
from errors import ProviderError, ProviderQuotaOrTransientError
from models import GeocodeResult
from services.rate_limiter import RateLimiter

PROVIDER = "openstreetmap"
ATTRIBUTION = "© OpenStreetMap contributors (ODbL)"

_ADDRESS_KEYS = ("addr:housenumber", "addr:street", "addr:city", "addr:state", "addr:postcode")


@dataclass
class OsmElement:
    osm_type: str
    osm_id: int
    name: str
    lat: float
    lng: float
    formatted_address: Optional[str]
    vicinity: Optional[str]
    cuisine: Optional[str] = None


def escape_overpass_regex(value: str) -> str:
    """Escape a user string so Overpass treats it as a literal substring."""
    escaped = re.sub(r"([\\.^$|?*+()\[\]{}])", r"\\\1", value)
    return escaped.replace('"', '\\"')


def build_overpass_query(lat: float, lng: float, radius_m: int, cuisine: Optional[str] = None) -> str:
    cuisine_filter = ""
    if cuisine:
        cuisine_filter = f'["cuisine"~"{escape_overpass_regex(cuisine)}",i]'
    around = f"(around:{radius_m},{lat},{lng})"
    return (
        "[out:json][timeout:25];\n"
        "(\n"
        f'  node["amenity"="restaurant"]{cuisine_filter}{around};\n'
        f'  way["amenity"="restaurant"]{cuisine_filter}{around};\n'
        f'  relation["amenity"="restaurant"]{cuisine_filter}{around};\n'
        ");\n"
        "out center;\n"
    )


class OpenStreetMapClient:
    def __init__(
        self,
        cfg: Configuration,
        limiter: RateLimiter,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.cfg = cfg
        self.limiter = limiter
        self.session = session or requests.Session()
        self.headers = {
            "User-Agent": cfg.osm_user_agent,
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.9",
        }

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        attempt = 0
        while True:
            attempt += 1
            self.limiter.wait()
            try:
                return self.session.request(method, url, headers=self.headers, timeout=self.cfg.http_timeout, **kwargs)
            except requests.RequestException as exc:
                if attempt <= max(0, self.cfg.http_retries):
                    time.sleep(0.5 * attempt)
                    continue
                raise ProviderQuotaOrTransientError(PROVIDER, f"request error: {exc}")

    def _json(self, resp: requests.Response):
        if resp.status_code == 429:
            raise ProviderQuotaOrTransientError(PROVIDER, "rate limited", reason="quota")
        if resp.status_code >= 500:
            raise ProviderQuotaOrTransientError(PROVIDER, f"upstream {resp.status_code}")
        if not resp.ok:
            raise ProviderError(PROVIDER, f"upstream {resp.status_code}: {resp.text[:300]}")
        try:
            return resp.json()
        except ValueError:
            raise ProviderError(PROVIDER, "invalid json response")

    def geocode(self, text: str) -> Optional[GeocodeResult]:
        url = f"{self.cfg.nominatim_base_url.rstrip('/')}/search"
        params = {
            "format": "json",
            "q": text,
            "limit": 1,
            "addressdetails": 1,
            "countrycodes": "us",
        }
        data = self._json(self._request("GET", url, params=params))
        if not isinstance(data, list) or not data:
            logger.debug("nominatim: no results for {!r}", text)
            return None
        first = data[0]
        try:
            lat = float(first["lat"])
            lng = float(first["lon"])
        except (KeyError, TypeError, ValueError):
            return None
        place_id = first.get("place_id")
        return GeocodeResult(
            lat=lat,
            lng=lng,
            formatted_address=first.get("display_name"),
            place_id=f"osm_{place_id}" if place_id is not None else None,
        )

    def _parse_elements(self, elements: List[dict]) -> List[OsmElement]:
        out: list[OsmElement] = []
        for el in elements:
            tags = el.get("tags") or {}
            if tags.get("amenity") != "restaurant":
                continue
            name = (tags.get("name") or "").strip()
            if not name:
                continue
            if el.get("id") is None:
                continue
            lat = el.get("lat")
            lng = el.get("lon")
            if lat is None or lng is None:
                center = el.get("center") or {}
                lat, lng = center.get("lat"), center.get("lon")
            try:
                osm_id, lat, lng = int(el["id"]), float(lat), float(lng)
            except (TypeError, ValueError):
                logger.debug("overpass: skipping malformed element {}", el.get("id"))
                continue
            parts = [str(tags[k]).strip() for k in _ADDRESS_KEYS if tags.get(k)]
            vicinity = tags.get("addr:street") or tags.get("addr:city") or None
            out.append(
                OsmElement(
                    osm_type=str(el.get("type") or "node"),
                    osm_id=osm_id,
                    name=name,
                    lat=lat,
                    lng=lng,
                    formatted_address=" ".join(parts) if parts else None,
                    vicinity=vicinity,
                    cuisine=tags.get("cuisine") or None,
                )
            )
        return out

    def nearby(self, lat: float, lng: float, *, radius_m: float, cuisine: Optional[str] = None) -> List[OsmElement]:
        query = build_overpass_query(lat, lng, int(round(radius_m)), cuisine)
        data = self._json(self._request("POST", self.cfg.overpass_url, data={"data": query}))
        elements = (data.get("elements") or []) if isinstance(data, dict) else []
        results = self._parse_elements(elements)
        logger.debug("overpass: {} elements, {} restaurants at {:.4f},{:.4f}", len(elements), len(results), lat, lng)
        return results
