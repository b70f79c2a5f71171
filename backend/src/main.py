from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

import errors
from config import Configuration
from models import GeocodeResult, Place, ProviderKind, SearchQuery, UserEntitlement, UserRecord
from services.cache import ResultCache
from services.gateway import ProviderGateway, choose_provider
from services.google_places import GooglePlacesClient
from services.openstreetmap import OpenStreetMapClient
from services.rate_limiter import RateLimiter
from services.search import SearchOrchestrator
from services.spin import DEFAULT_ROTATION, Wheel, verify_selection
from services.store import (
    InMemoryStore,
    PersistenceFacade,
    new_spin_record,
    record_spin_safely,
    upsert_favorite_safely,
)

load_dotenv()

app = FastAPI(title="Just Choose Already")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_boot_cfg = Configuration.from_env()

# process-wide shared state
result_cache = ResultCache(_boot_cfg.cache_ttl_sec, max_entries=_boot_cfg.cache_max_entries)
store: PersistenceFacade = InMemoryStore()
osm_limiter = RateLimiter(_boot_cfg.osm_min_interval_sec)
# one connection pool per provider, reused across requests
google_session = requests.Session()
osm_session = requests.Session()


# --- dependencies -----------------------------------------------------------


def get_config() -> Configuration:
    return Configuration.from_env()


def get_cache() -> ResultCache:
    return result_cache


def get_store() -> PersistenceFacade:
    return store


def get_limiter() -> RateLimiter:
    return osm_limiter


def get_orchestrator(
    cfg: Configuration = Depends(get_config),
    cache: ResultCache = Depends(get_cache),
    limiter: RateLimiter = Depends(get_limiter),
) -> SearchOrchestrator:
    google = GooglePlacesClient(cfg, session=google_session) if cfg.has_google() else None
    osm = OpenStreetMapClient(cfg, limiter, session=osm_session)
    return SearchOrchestrator(cfg, cache, google=google, osm=osm)


def get_caller(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    db: PersistenceFacade = Depends(get_store),
) -> Optional[UserRecord]:
    """Identity forwarded by the OAuth proxy in front of this service.

    The X-User-* headers are trusted as-is, so the service must only be reachable
    through that proxy. Unknown users are created without premium access; the
    email stored at first login is the one checked for admin rights.
    """
    if not x_user_id:
        return None
    try:
        return db.ensure_user(x_user_id, x_user_email, x_user_name)
    except errors.PersistenceError as exc:
        logger.warning("could not sync user {}: {}", x_user_id, exc)
        return UserRecord(id=x_user_id, email=x_user_email, name=x_user_name)


def require_caller(caller: Optional[UserRecord] = Depends(get_caller)) -> UserRecord:
    if caller is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return caller


def require_admin(
    caller: UserRecord = Depends(require_caller),
    cfg: Configuration = Depends(get_config),
) -> UserRecord:
    if not cfg.is_admin(caller.email):
        raise HTTPException(status_code=403, detail="Unauthorized - Admin access required")
    return caller


def _entitlement(caller: Optional[UserRecord]) -> Optional[UserEntitlement]:
    if caller is None:
        return None
    return UserEntitlement(user_id=caller.id, google_api_access=caller.google_api_access)


# --- error mapping ----------------------------------------------------------


def _status_for(exc: errors.JustChooseError) -> int:
    if isinstance(exc, errors.ProviderQuotaOrTransientError):
        return 429 if exc.is_quota else 503
    if isinstance(exc, (errors.ValidationError, errors.ProviderCapabilityError, errors.InsufficientOptions)):
        return 400
    if isinstance(exc, errors.LocationNotFound):
        return 404
    if isinstance(exc, (errors.SearchFailed, errors.ProviderError)):
        return 502
    return 500


def _public_message(exc: errors.JustChooseError) -> str:
    if isinstance(exc, errors.ProviderQuotaOrTransientError):
        return "Search service temporarily unavailable. Please try again later."
    if isinstance(exc, errors.ProviderError) and not isinstance(exc, errors.ProviderCapabilityError):
        return "The places provider returned an error. Please try again."
    if isinstance(exc, errors.PersistenceError):
        return "Storage error"
    return str(exc)


@app.exception_handler(errors.JustChooseError)
async def handle_domain_error(request: Request, exc: errors.JustChooseError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.warning("{} {} failed: {}", request.method, request.url.path, exc)
    body: Dict[str, Any] = {"error": _public_message(exc), "code": exc.code, "retryable": exc.retryable}
    if isinstance(exc, errors.LocationNotFound):
        body["suggestions"] = exc.suggestions
    return JSONResponse(status_code=status, content=body)


def _describe_request_error(err: Dict[str, Any]) -> str:
    loc = [str(part) for part in err.get("loc", ()) if part != "body"]
    field = ".".join(loc) or "request"
    return f"Invalid {field}: {err.get('msg', 'invalid value')}"


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [_describe_request_error(err) for err in exc.errors()]
    logger.debug("{} {} rejected: {}", request.method, request.url.path, messages)
    body = {
        "error": "; ".join(messages) or "Invalid request",
        "code": errors.ValidationError.code,
        "retryable": False,
    }
    return JSONResponse(status_code=400, content=body)


# --- payloads ---------------------------------------------------------------


class PlacePayload(BaseModel):
    place_id: str
    name: str
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    vicinity: Optional[str] = None
    formatted_address: Optional[str] = None
    photo_ref: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location_text: Optional[str] = Field(None, alias="locationText", description="Free-text location")
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_miles: Optional[float] = Field(None, alias="radiusMiles", description="1-25 miles")
    cuisine: Optional[str] = None
    price: Optional[int] = Field(None, description="Single price tier (legacy)")
    price_ranges: List[int] = Field(default_factory=list, alias="priceRanges")


class SearchResponse(BaseModel):
    places: List[PlacePayload]
    provider: str
    attribution: Optional[str] = None
    limitations: List[str] = []
    degraded: bool = False
    cached: bool = False


class GeocodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location_text: Optional[str] = Field(None, alias="locationText")
    type: str = Field("geocode", description="'geocode' or 'autocomplete'")


class SpinRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    options: List[PlacePayload]
    seed: Optional[str] = None
    selected_id: Optional[str] = Field(None, alias="selectedId")
    prior_rotation: Optional[float] = Field(None, alias="priorRotation")
    query: Dict[str, Any] = Field(default_factory=dict)


class SpinResponse(BaseModel):
    id: str
    selected: str
    seed: str
    winner_index: int = Field(..., serialization_alias="winnerIndex")
    rotation: float
    winner: PlacePayload


class FavoriteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    place_id: str = Field(..., alias="placeId")
    name: Optional[str] = None
    formatted_address: Optional[str] = None
    vicinity: Optional[str] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None


class AccessUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    google_api_access: bool = Field(..., alias="googleApiAccess")


def to_payload(p: Place) -> PlacePayload:
    return PlacePayload(**p.to_dict())


def to_place(p: PlacePayload) -> Place:
    try:
        return Place.from_dict(p.model_dump())
    except ValueError as exc:
        raise errors.ValidationError(f"Invalid option {p.place_id}: {exc}")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# --- routes -----------------------------------------------------------------


@app.get("/healthz")
def healthz(cfg: Configuration = Depends(get_config)) -> dict:
    logger.info("cfg: {}", cfg.log_summary())
    return {"status": "ok", "google": cfg.has_google()}


@app.post("/api/search", response_model=SearchResponse)
async def search(
    req: SearchRequest,
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    caller: Optional[UserRecord] = Depends(get_caller),
) -> SearchResponse:
    query = SearchQuery(
        radius_miles=req.radius_miles,  # type: ignore[arg-type]
        location_text=req.location_text,
        lat=req.lat,
        lng=req.lng,
        cuisine=req.cuisine,
        price=req.price,
        price_ranges=list(req.price_ranges),
    )
    result = await asyncio.to_thread(orchestrator.execute, query, _entitlement(caller))
    return SearchResponse(
        places=[to_payload(p) for p in result.places],
        provider=result.provider.value,
        attribution=result.attribution,
        limitations=result.limitations,
        degraded=result.degraded,
        cached=result.cached,
    )


@app.post("/api/geocode")
async def geocode(
    req: GeocodeRequest,
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    caller: Optional[UserRecord] = Depends(get_caller),
) -> dict:
    entitlement = _entitlement(caller)
    result = await asyncio.to_thread(orchestrator.geocode, req.location_text or "", req.type, entitlement)
    provider = choose_provider(entitlement, orchestrator.cfg)
    attribution = orchestrator.attribution_for(provider)
    if isinstance(result, GeocodeResult):
        body: Dict[str, Any] = {
            "type": "geocode",
            "lat": result.lat,
            "lng": result.lng,
            "formattedAddress": result.formatted_address,
            "placeId": result.place_id,
        }
    else:
        body = {
            "type": "autocomplete",
            "suggestions": [
                {"description": s.description, "placeId": s.place_id, "types": s.types} for s in result
            ],
        }
    if attribution:
        body["attribution"] = attribution
    return body


@app.post("/api/spin", response_model=SpinResponse, response_model_by_alias=True)
def submit_spin(
    req: SpinRequest,
    background_tasks: BackgroundTasks,
    cfg: Configuration = Depends(get_config),
    db: PersistenceFacade = Depends(get_store),
    caller: Optional[UserRecord] = Depends(get_caller),
) -> SpinResponse:
    options = [to_place(o) for o in req.options]
    wheel = Wheel(
        options,
        rotation=req.prior_rotation if req.prior_rotation is not None else DEFAULT_ROTATION,
        extra_turns=cfg.spin_extra_turns,
    )
    if len(wheel.options) != len(options):
        raise errors.ValidationError("Options must have unique place ids")
    if len(options) < 2:
        raise errors.InsufficientOptions(len(options))
    if req.selected_id:
        if not req.seed:
            raise errors.ValidationError("seed is required when selectedId is given")
        verify_selection(options, req.seed, req.selected_id)

    outcome = wheel.spin(req.seed)
    record = new_spin_record(
        outcome.seed,
        wheel.options,
        outcome.winner.place_id,
        user_id=caller.id if caller else None,
        query=req.query,
    )
    background_tasks.add_task(record_spin_safely, db, record)
    return SpinResponse(
        id=record.id,
        selected=outcome.winner.place_id,
        seed=outcome.seed,
        winner_index=outcome.winner_index,
        rotation=outcome.rotation,
        winner=to_payload(outcome.winner),
    )


@app.get("/api/spin")
def spin_history(
    cfg: Configuration = Depends(get_config),
    db: PersistenceFacade = Depends(get_store),
    caller: UserRecord = Depends(require_caller),
) -> List[dict]:
    spins = db.list_spins(caller.id, limit=cfg.spin_history_limit)
    return [
        {
            "id": s.id,
            "seed": s.seed,
            "options": [p.to_dict() for p in s.options],
            "selected_id": s.selected_id,
            "created_at": _iso(s.created_at),
            "query": s.query,
        }
        for s in spins
    ]


@app.post("/api/favorites")
async def add_favorite(
    req: FavoriteRequest,
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    db: PersistenceFacade = Depends(get_store),
    caller: UserRecord = Depends(require_caller),
) -> dict:
    snapshot: Optional[Dict[str, Any]] = None
    if req.name:
        snapshot = req.model_dump()
    elif choose_provider(_entitlement(caller), orchestrator.cfg) is ProviderKind.PREMIUM:
        gateway: ProviderGateway = orchestrator.gateway()
        snapshot = await asyncio.to_thread(gateway.place_details, req.place_id)
    if not snapshot:
        raise errors.ValidationError("Place snapshot fields (at least name) are required")

    record = upsert_favorite_safely(db, caller.id, req.place_id, snapshot)
    return {"success": True, "id": record.id if record else None}


@app.delete("/api/favorites")
def remove_favorite(
    place_id: str = Query(..., min_length=1),
    db: PersistenceFacade = Depends(get_store),
    caller: UserRecord = Depends(require_caller),
) -> dict:
    try:
        db.delete_favorite(caller.id, place_id)
    except errors.PersistenceError as exc:
        logger.warning("failed to remove favorite {} for {}: {}", place_id, caller.id, exc)
    return {"success": True}


@app.get("/api/favorites")
def list_favorites(
    db: PersistenceFacade = Depends(get_store),
    caller: UserRecord = Depends(require_caller),
) -> List[dict]:
    return [
        {
            "id": f.id,
            "place_id": f.place_id,
            "snapshot": f.snapshot,
            "created_at": _iso(f.created_at),
        }
        for f in db.list_favorites(caller.id)
    ]


@app.get("/api/photo")
async def place_photo(
    ref: str = Query(..., min_length=1),
    max_width: int = Query(800, alias="maxWidth", ge=1, le=1600),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    caller: Optional[UserRecord] = Depends(get_caller),
) -> Response:
    if choose_provider(_entitlement(caller), orchestrator.cfg) is not ProviderKind.PREMIUM or orchestrator.google is None:
        raise errors.ProviderCapabilityError(ProviderKind.FREE.value, "Photos are not available with OpenStreetMap")
    content, mime = await asyncio.to_thread(orchestrator.google.photo, ref, max_width)
    return Response(content=content, media_type=mime)


@app.get("/api/user/access")
def user_access(caller: UserRecord = Depends(require_caller)) -> dict:
    return {"googleApiAccess": bool(caller.google_api_access)}


@app.get("/api/admin/users")
def admin_list_users(
    db: PersistenceFacade = Depends(get_store),
    _admin: UserRecord = Depends(require_admin),
) -> List[dict]:
    return [
        {
            "id": u.id,
            "email": u.email,
            "name": u.name,
            "google_api_access": u.google_api_access,
            "created_at": _iso(u.created_at),
        }
        for u in db.list_users()
    ]


@app.patch("/api/admin/users")
def admin_update_access(
    req: AccessUpdateRequest,
    db: PersistenceFacade = Depends(get_store),
    admin: UserRecord = Depends(require_admin),
) -> dict:
    if db.get_user(req.user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    db.set_entitlement(req.user_id, req.google_api_access)
    logger.info("admin {} set google_api_access={} for {}", admin.email, req.google_api_access, req.user_id)
    return {"success": True}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8010, reload=True)
