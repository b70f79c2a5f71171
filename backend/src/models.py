"""Data models for Just Choose Already."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class ProviderKind(str, enum.Enum):
    PREMIUM = "google"
    FREE = "openstreetmap"


@dataclass
class Place:
    place_id: str
    name: str
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None  # tier 1-4
    vicinity: Optional[str] = None
    formatted_address: Optional[str] = None
    photo_ref: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.place_id or not str(self.place_id).strip():
            raise ValueError("place_id is required")
        if not self.name or not str(self.name).strip():
            raise ValueError("name is required")
        if self.rating is not None and not 0.0 <= self.rating <= 5.0:
            raise ValueError(f"rating out of range: {self.rating}")
        if self.price_level is not None and self.price_level not in (1, 2, 3, 4):
            raise ValueError(f"price tier out of range: {self.price_level}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Place":
        known = {k: data.get(k) for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass
class SearchQuery:
    radius_miles: float
    location_text: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    cuisine: Optional[str] = None
    price: Optional[int] = None  # legacy single tier
    price_ranges: List[int] = field(default_factory=list)

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def effective_price_tiers(self) -> List[int]:
        """Selected tiers, sorted and de-duplicated; empty means any."""
        tiers = list(self.price_ranges or [])
        if not tiers and self.price:
            tiers = [self.price]
        return sorted({int(t) for t in tiers})

    def effective_cuisine(self) -> Optional[str]:
        cuisine = (self.cuisine or "").strip()
        if not cuisine or cuisine.lower() == "any":
            return None
        return cuisine


@dataclass
class GeocodeResult:
    lat: float
    lng: float
    formatted_address: Optional[str] = None
    place_id: Optional[str] = None


@dataclass
class LocationSuggestion:
    description: str
    place_id: Optional[str] = None
    types: List[str] = field(default_factory=list)


@dataclass
class SearchResult:
    places: List[Place]
    provider: ProviderKind
    attribution: Optional[str] = None
    limitations: List[str] = field(default_factory=list)
    degraded: bool = False
    cached: bool = False


@dataclass
class CacheEntry:
    key: str
    payload: Any
    expires_at: float


@dataclass(frozen=True)
class SpinOutcome:
    seed: str
    winner_index: int
    winner: Place
    rotation: float


@dataclass
class SpinRecord:
    id: str
    seed: str
    options: List[Place]
    selected_id: str
    created_at: datetime
    user_id: Optional[str] = None
    query: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FavoriteRecord:
    id: str
    user_id: str
    place_id: str
    snapshot: Dict[str, Any]
    created_at: datetime
    updated_at: Optional[datetime] = None


@dataclass
class UserRecord:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    google_api_access: bool = False
    created_at: Optional[datetime] = None


@dataclass
class UserEntitlement:
    user_id: Optional[str]
    google_api_access: bool = False

    @property
    def authenticated(self) -> bool:
        return bool(self.user_id)
