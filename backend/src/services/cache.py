from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

from loguru import logger

from models import CacheEntry, ProviderKind, SearchQuery
from utils import normalize_text

ANY = "any"


def _scaled(value: float, precision: int) -> int:
    # integer form avoids "-0.0000" vs "0.0000" fragmentation
    return int(round(float(value) * (10 ** precision)))


def _format_number(value: float) -> str:
    return f"{float(value):g}"


def search_cache_key(provider: ProviderKind, query: SearchQuery, precision: int = 4) -> str:
    if query.has_coordinates():
        location = f"{_scaled(query.lat, precision)}|{_scaled(query.lng, precision)}"
    else:
        location = f"text:{normalize_text(query.location_text)}"
    cuisine = normalize_text(query.effective_cuisine()) or ANY
    tiers = ",".join(str(t) for t in query.effective_price_tiers()) or ANY
    return f"search:{provider.value}|{location}|{_format_number(query.radius_miles)}|{cuisine}|{tiers}"


def geocode_cache_key(provider: ProviderKind, text: str, kind: str = "geocode") -> str:
    return f"geocode:{provider.value}:{normalize_text(text)}:{kind}"


class ResultCache:
    """Time-expiring key/value store for search and geocode payloads.

    Expired entries are treated as absent and overwritten by the next ``put``.
    """

    def __init__(
        self,
        ttl_sec: float = 24 * 60 * 60,
        *,
        max_entries: Optional[int] = 2048,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_sec = ttl_sec
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("cache miss {}", key)
                return None
            if self._clock() >= entry.expires_at:
                logger.debug("cache expired {}", key)
                return None
            logger.debug("cache hit {}", key)
            return entry.payload

    def put(self, key: str, payload: Any, ttl: Optional[float] = None) -> CacheEntry:
        expires_at = self._clock() + (self.ttl_sec if ttl is None else ttl)
        entry = CacheEntry(key=key, payload=payload, expires_at=expires_at)
        with self._lock:
            self._entries.pop(key, None)
            if self.max_entries and len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = entry
        return entry

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
