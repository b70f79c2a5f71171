from __future__ import annotations

import abc
import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from errors import PersistenceError
from models import FavoriteRecord, Place, SpinRecord, UserRecord


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PersistenceFacade(abc.ABC):
    """User-scoped spin history, favorites and entitlements."""

    @abc.abstractmethod
    def ensure_user(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> UserRecord:
        """Create on first login (no premium access); later calls refresh the name.

        A stored email is never replaced; admin checks read it.
        """

    @abc.abstractmethod
    def get_user(self, user_id: str) -> Optional[UserRecord]: ...

    @abc.abstractmethod
    def list_users(self) -> List[UserRecord]: ...

    @abc.abstractmethod
    def set_entitlement(self, user_id: str, google_api_access: bool) -> UserRecord: ...

    @abc.abstractmethod
    def record_spin(self, record: SpinRecord) -> SpinRecord: ...

    @abc.abstractmethod
    def list_spins(self, user_id: str, limit: int = 50) -> List[SpinRecord]: ...

    @abc.abstractmethod
    def upsert_favorite(self, user_id: str, place_id: str, snapshot: Dict[str, Any]) -> FavoriteRecord: ...

    @abc.abstractmethod
    def delete_favorite(self, user_id: str, place_id: str) -> bool: ...

    @abc.abstractmethod
    def list_favorites(self, user_id: str) -> List[FavoriteRecord]: ...

    def get_entitlement(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        user = self.get_user(user_id)
        return bool(user and user.google_api_access)


class InMemoryStore(PersistenceFacade):
    """Process-local store; every method takes the lock."""

    def __init__(self) -> None:
        self._users: Dict[str, UserRecord] = {}
        self._spins: List[SpinRecord] = []
        self._favorites: Dict[Tuple[str, str], FavoriteRecord] = {}
        self._lock = threading.Lock()

    def ensure_user(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> UserRecord:
        if not user_id:
            raise PersistenceError("user id is required")
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                user = UserRecord(id=user_id, email=email, name=name, google_api_access=False, created_at=_now())
                self._users[user_id] = user
                logger.info("created user {}", user_id)
            else:
                # email and google_api_access are left untouched
                user.email = user.email or email
                user.name = name or user.name
            return copy.copy(user)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.copy(user) if user else None

    def list_users(self) -> List[UserRecord]:
        with self._lock:
            users = [copy.copy(u) for u in self._users.values()]
        return sorted(users, key=lambda u: u.created_at or _now(), reverse=True)

    def set_entitlement(self, user_id: str, google_api_access: bool) -> UserRecord:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise PersistenceError(f"unknown user {user_id}")
            user.google_api_access = bool(google_api_access)
            return copy.copy(user)

    def record_spin(self, record: SpinRecord) -> SpinRecord:
        if not any(p.place_id == record.selected_id for p in record.options):
            raise PersistenceError("selected id is not among the spin options")
        stored = copy.deepcopy(record)
        with self._lock:
            self._spins.append(stored)
        return copy.deepcopy(stored)

    def list_spins(self, user_id: str, limit: int = 50) -> List[SpinRecord]:
        if not user_id:
            return []
        with self._lock:
            mine = [copy.deepcopy(s) for s in self._spins if s.user_id == user_id]
        mine.sort(key=lambda s: s.created_at, reverse=True)
        return mine[: max(0, limit)]

    def upsert_favorite(self, user_id: str, place_id: str, snapshot: Dict[str, Any]) -> FavoriteRecord:
        if not user_id or not place_id:
            raise PersistenceError("user id and place id are required")
        key = (user_id, place_id)
        with self._lock:
            existing = self._favorites.get(key)
            if existing is None:
                record = FavoriteRecord(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    place_id=place_id,
                    snapshot=dict(snapshot),
                    created_at=_now(),
                )
                self._favorites[key] = record
            else:
                existing.snapshot = dict(snapshot)
                existing.updated_at = _now()
                record = existing
            return copy.deepcopy(record)

    def delete_favorite(self, user_id: str, place_id: str) -> bool:
        with self._lock:
            return self._favorites.pop((user_id, place_id), None) is not None

    def list_favorites(self, user_id: str) -> List[FavoriteRecord]:
        with self._lock:
            mine = [copy.deepcopy(f) for (uid, _), f in self._favorites.items() if uid == user_id]
        mine.sort(key=lambda f: f.created_at, reverse=True)
        return mine


def new_spin_record(
    seed: str,
    options: Sequence[Place],
    selected_id: str,
    user_id: Optional[str] = None,
    query: Optional[Dict[str, Any]] = None,
) -> SpinRecord:
    """Build a record holding its own copy of the options."""
    return SpinRecord(
        id=str(uuid.uuid4()),
        seed=seed,
        options=[copy.deepcopy(p) for p in options],
        selected_id=selected_id,
        created_at=_now(),
        user_id=user_id,
        query=dict(query or {}),
    )


def favorite_snapshot(place: Place) -> Dict[str, Any]:
    return {
        "place_id": place.place_id,
        "name": place.name,
        "formatted_address": place.formatted_address or place.vicinity,
        "rating": place.rating,
        "user_ratings_total": place.user_ratings_total,
        "price_level": place.price_level,
    }


def record_spin_safely(store: PersistenceFacade, record: SpinRecord) -> Optional[SpinRecord]:
    """Write a spin without letting a storage failure reach the caller."""
    try:
        return store.record_spin(record)
    except PersistenceError as exc:
        logger.warning("failed to save spin {}: {}", record.id, exc)
    except Exception as exc:
        logger.exception("unexpected error saving spin {}: {}", record.id, exc)
    return None


def upsert_favorite_safely(
    store: PersistenceFacade, user_id: str, place_id: str, snapshot: Dict[str, Any]
) -> Optional[FavoriteRecord]:
    try:
        return store.upsert_favorite(user_id, place_id, snapshot)
    except PersistenceError as exc:
        logger.warning("failed to save favorite {} for {}: {}", place_id, user_id, exc)
    return None
