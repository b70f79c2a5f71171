from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests
from loguru import logger

from config import Configuration
from errors import ProviderError, ProviderQuotaOrTransientError
from models import GeocodeResult, LocationSuggestion

PROVIDER = "google"

# statuses returned in the JSON body of Maps web services
_OK_STATUSES = {"OK", "ZERO_RESULTS"}
_QUOTA_STATUSES = {"OVER_QUERY_LIMIT", "OVER_DAILY_LIMIT"}
_TRANSIENT_STATUSES = {"UNKNOWN_ERROR"}

DETAIL_FIELDS = [
    "place_id",
    "name",
    "formatted_address",
    "website",
    "rating",
    "user_ratings_total",
    "price_level",
    "opening_hours",
    "geometry",
    "photos",
]


@dataclass
class _RetryPolicy:
    retries: int = 1
    base_delay: float = 0.5


class GooglePlacesClient:
    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.google_maps_base_url.rstrip("/")
        self.session = session or requests.Session()

    def _send(self, path: str, params: dict) -> requests.Response:
        url = f"{self.base}{path}"
        params = {**params, "key": self.cfg.google_maps_api_key}
        policy = _RetryPolicy(retries=max(0, self.cfg.http_retries))
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.session.get(url, params=params, timeout=self.cfg.http_timeout)
            except requests.RequestException as exc:  # network error
                if attempt <= policy.retries:
                    time.sleep(policy.base_delay * attempt)
                    continue
                raise ProviderQuotaOrTransientError(PROVIDER, f"request error: {exc}")

    def _check_http(self, resp: requests.Response) -> None:
        if resp.status_code == 429:
            raise ProviderQuotaOrTransientError(PROVIDER, "rate limited", reason="quota")
        if resp.status_code >= 500:
            raise ProviderQuotaOrTransientError(PROVIDER, f"upstream {resp.status_code}")
        if not resp.ok:
            raise ProviderError(PROVIDER, f"upstream {resp.status_code}: {resp.text[:300]}")

    def _get(self, path: str, params: dict) -> dict:
        resp = self._send(path, params)
        self._check_http(resp)
        try:
            payload = resp.json()
        except ValueError:
            raise ProviderError(PROVIDER, "invalid json response")

        if not isinstance(payload, dict):
            raise ProviderError(PROVIDER, "unexpected response body")
        status = payload.get("status", "OK")
        if status in _OK_STATUSES:
            return payload
        message = payload.get("error_message") or status
        if status in _QUOTA_STATUSES:
            raise ProviderQuotaOrTransientError(PROVIDER, message, reason="quota")
        if status in _TRANSIENT_STATUSES:
            raise ProviderQuotaOrTransientError(PROVIDER, message)
        raise ProviderError(PROVIDER, message)

    def _geocode_results(self, text: str) -> List[dict]:
        payload = self._get("/geocode/json", {"address": text, "region": "us"})
        return payload.get("results") or []

    def geocode(self, text: str) -> Optional[GeocodeResult]:
        results = self._geocode_results(text)
        if not results:
            logger.debug("google geocode: no results for {!r}", text)
            return None
        first = results[0]
        loc = (first.get("geometry") or {}).get("location") or {}
        if loc.get("lat") is None or loc.get("lng") is None:
            return None
        formatted = first.get("formatted_address")
        if formatted and text.lower() not in formatted.lower() and formatted.lower() not in text.lower():
            logger.debug("google geocode: {!r} resolved to {!r}, may not match input", text, formatted)
        return GeocodeResult(
            lat=float(loc["lat"]),
            lng=float(loc["lng"]),
            formatted_address=formatted,
            place_id=first.get("place_id"),
        )

    def geocode_candidates(self, text: str, limit: int = 5) -> List[LocationSuggestion]:
        """Suggestions built from geocoding results (region biased to the US)."""
        results = self._geocode_results(text)
        out: list[LocationSuggestion] = []
        for item in results[:limit]:
            description = item.get("formatted_address")
            if not description:
                continue
            out.append(
                LocationSuggestion(
                    description=str(description),
                    place_id=item.get("place_id"),
                    types=[str(t) for t in (item.get("types") or [])],
                )
            )
        return out

    def nearby(
        self,
        lat: float,
        lng: float,
        *,
        radius_m: float,
        keyword: Optional[str] = None,
        minprice: Optional[int] = None,
        maxprice: Optional[int] = None,
    ) -> List[dict]:
        params: Dict[str, Any] = {
            "location": f"{lat},{lng}",
            "radius": int(round(radius_m)),
            "type": "restaurant",
        }
        if keyword:
            params["keyword"] = keyword
        if minprice is not None:
            params["minprice"] = minprice
        if maxprice is not None:
            params["maxprice"] = maxprice
        payload = self._get("/place/nearbysearch/json", params)
        results = payload.get("results") or []
        logger.debug("google nearby: {} results at {:.4f},{:.4f} r={}m", len(results), lat, lng, params["radius"])
        return results

    def details(self, place_id: str) -> dict:
        payload = self._get(
            "/place/details/json",
            {"place_id": place_id, "fields": ",".join(DETAIL_FIELDS)},
        )
        return payload.get("result") or {}

    def photo(self, photo_ref: str, max_width: int = 800) -> Tuple[bytes, str]:
        """Fetch photo bytes; returns (content, mime type)."""
        resp = self._send("/place/photo", {"photoreference": photo_ref, "maxwidth": max_width})
        self._check_http(resp)
        mime = resp.headers.get("content-type") or "image/jpeg"
        return resp.content, mime
