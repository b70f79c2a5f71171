from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from config import Configuration
from errors import ProviderError, ProviderQuotaOrTransientError
from models import ProviderKind, SearchQuery, UserEntitlement
from services.cache import ResultCache
from services.gateway import (
    GOOGLE_MAX_RADIUS_M,
    ProviderGateway,
    choose_provider,
    normalize_google_place,
    price_bounds,
)
from services.google_places import GooglePlacesClient
from services.openstreetmap import ATTRIBUTION, OpenStreetMapClient, build_overpass_query
from services.rate_limiter import RateLimiter
from services.search import SearchOrchestrator

from fakes import FakeClock, FakeGoogle, FakeOsm, google_result, osm_element

KEYED = Configuration(google_maps_api_key="test-key")
UNKEYED = Configuration()


@pytest.mark.parametrize(
    "entitlement,cfg,expected",
    [
        (None, KEYED, ProviderKind.FREE),
        (UserEntitlement(user_id=None, google_api_access=True), KEYED, ProviderKind.FREE),
        (UserEntitlement(user_id="u1", google_api_access=False), KEYED, ProviderKind.FREE),
        (UserEntitlement(user_id="u1", google_api_access=True), UNKEYED, ProviderKind.FREE),
        (UserEntitlement(user_id="u1", google_api_access=True), KEYED, ProviderKind.PREMIUM),
    ],
)
def test_choose_provider(entitlement, cfg, expected) -> None:
    assert choose_provider(entitlement, cfg) is expected


def test_price_bounds() -> None:
    assert price_bounds([1, 2]) == (0, 1)
    assert price_bounds([4, 1]) == (0, 3)
    assert price_bounds([3]) == (2, 2)
    assert price_bounds([]) is None


def test_premium_search_translates_filters() -> None:
    google = FakeGoogle(results=[google_result("abc", "Thai Palace", rating=4.5, price_level=1)])
    gateway = ProviderGateway(KEYED, google=google)
    query = SearchQuery(radius_miles=25, lat=39.1, lng=-94.58, cuisine="thai", price_ranges=[2, 1])

    result = gateway.search(query, ProviderKind.PREMIUM, 39.1, -94.58)

    _, lat, lng, kwargs = google.calls[0]
    assert (lat, lng) == (39.1, -94.58)
    assert kwargs["keyword"] == "thai"
    assert kwargs["minprice"] == 0
    assert kwargs["maxprice"] == 1
    assert kwargs["radius_m"] == GOOGLE_MAX_RADIUS_M
    assert result.provider is ProviderKind.PREMIUM
    assert result.attribution is None
    assert result.places[0].place_id == "google_abc"
    assert result.places[0].price_level == 2


def test_premium_search_without_filters() -> None:
    google = FakeGoogle(results=[])
    gateway = ProviderGateway(KEYED, google=google)
    gateway.search(SearchQuery(radius_miles=1, cuisine="any"), ProviderKind.PREMIUM, 1.0, 2.0)
    kwargs = google.calls[0][3]
    assert kwargs["keyword"] is None
    assert kwargs["minprice"] is None and kwargs["maxprice"] is None
    assert round(kwargs["radius_m"]) == 1609


def test_google_normalization_keeps_unknowns_unknown() -> None:
    place = normalize_google_place(google_result("x1", "No Ratings Yet"))
    assert place.rating is None
    assert place.user_ratings_total is None
    assert place.price_level is None
    assert place.vicinity is None

    rated = normalize_google_place(
        google_result(
            "x2",
            "Rated",
            rating=4.1,
            user_ratings_total=120,
            price_level=0,
            vicinity="Main St",
            photos=[{"photo_reference": "ref-1"}],
        )
    )
    assert rated.rating == 4.1
    assert rated.price_level == 1
    assert rated.photo_ref == "ref-1"

    zero_reviews = normalize_google_place(google_result("x3", "Fresh", rating=0, user_ratings_total=0))
    assert zero_reviews.rating is None

    assert normalize_google_place({"place_id": "x4"}) is None


def test_free_search_discloses_attribution_and_limits() -> None:
    osm = FakeOsm(
        elements=[
            osm_element(1, "Joe's", vicinity="Main St"),
            osm_element(1, "Joe's duplicate"),
            osm_element(2, "Taco Place", osm_type="way"),
        ]
    )
    gateway = ProviderGateway(UNKEYED, osm=osm)
    result = gateway.search(SearchQuery(radius_miles=5, cuisine="Mexican"), ProviderKind.FREE, 39.1, -94.58)

    assert result.attribution == ATTRIBUTION
    assert result.limitations
    assert [p.place_id for p in result.places] == ["osm_node_1", "osm_way_2"]
    assert all(p.rating is None and p.price_level is None and p.photo_ref is None for p in result.places)
    assert osm.calls[0][3]["cuisine"] == "Mexican"


def test_results_are_capped() -> None:
    cfg = Configuration(max_results=2)
    osm = FakeOsm(elements=[osm_element(i, f"R{i}") for i in range(5)])
    result = ProviderGateway(cfg, osm=osm).search(SearchQuery(radius_miles=5), ProviderKind.FREE, 0.0, 0.0)
    assert len(result.places) == 2


def test_provider_failure_is_not_rerouted() -> None:
    google = FakeGoogle(error=ProviderQuotaOrTransientError("google", "quota", reason="quota"))
    osm = FakeOsm()
    gateway = ProviderGateway(KEYED, google=google, osm=osm)
    with pytest.raises(ProviderQuotaOrTransientError):
        gateway.search(SearchQuery(radius_miles=5), ProviderKind.PREMIUM, 0.0, 0.0)
    assert osm.calls == []


def test_place_details_only_for_google_ids() -> None:
    google = FakeGoogle()
    gateway = ProviderGateway(KEYED, google=google)
    assert gateway.place_details("osm_node_1") is None
    snapshot = gateway.place_details("google_abc")
    assert snapshot["place_id"] == "google_abc"
    assert snapshot["name"] == "Details Diner"
    assert google.calls == [("details", "abc")]


# --- HTTP clients -------------------------------------------------------------


def _response(status: int = 200, payload=None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.json.return_value = payload
    resp.text = ""
    return resp


def test_google_quota_status_is_retryable() -> None:
    session = MagicMock()
    session.get.return_value = _response(payload={"status": "OVER_QUERY_LIMIT", "results": []})
    client = GooglePlacesClient(KEYED, session=session)
    with pytest.raises(ProviderQuotaOrTransientError) as excinfo:
        client.nearby(1.0, 2.0, radius_m=1000)
    assert excinfo.value.is_quota
    assert session.get.call_count == 1


def test_google_denied_is_permanent() -> None:
    session = MagicMock()
    session.get.return_value = _response(payload={"status": "REQUEST_DENIED", "error_message": "bad key"})
    client = GooglePlacesClient(KEYED, session=session)
    with pytest.raises(ProviderError) as excinfo:
        client.geocode("Kansas City")
    assert not isinstance(excinfo.value, ProviderQuotaOrTransientError)


def test_google_zero_results_geocode() -> None:
    session = MagicMock()
    session.get.return_value = _response(payload={"status": "ZERO_RESULTS", "results": []})
    client = GooglePlacesClient(KEYED, session=session)
    assert client.geocode("nowhere") is None
    params = session.get.call_args.kwargs["params"]
    assert params["region"] == "us"
    assert params["key"] == "test-key"


def test_google_nearby_params() -> None:
    session = MagicMock()
    session.get.return_value = _response(payload={"status": "OK", "results": [google_result("a", "A")]})
    client = GooglePlacesClient(KEYED, session=session)
    results = client.nearby(39.1, -94.58, radius_m=16093.4, keyword="thai", minprice=0, maxprice=1)
    params = session.get.call_args.kwargs["params"]
    assert params["location"] == "39.1,-94.58"
    assert params["radius"] == 16093
    assert params["type"] == "restaurant"
    assert params["minprice"] == 0 and params["maxprice"] == 1
    assert len(results) == 1


def test_overpass_query_escapes_cuisine() -> None:
    query = build_overpass_query(39.1, -94.58, 1609, 'thai"; out;')
    assert '["cuisine"~"thai\\"; out;",i]' in query
    assert "(around:1609,39.1,-94.58)" in query
    assert "out center;" in query
    plain = build_overpass_query(39.1, -94.58, 1609)
    assert "cuisine" not in plain
    assert build_overpass_query(0, 0, 1, "a.b").count("a\\.b") == 3


def test_osm_client_parses_and_waits_on_limiter() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
    session = MagicMock()
    session.request.return_value = _response(
        payload={
            "elements": [
                {"type": "node", "id": 1, "lat": 39.1, "lon": -94.5, "tags": {"amenity": "restaurant", "name": "A", "addr:street": "Main St", "addr:housenumber": "12"}},
                {"type": "node", "id": 2, "lat": 39.1, "lon": -94.5, "tags": {"amenity": "restaurant"}},
                {"type": "way", "id": 3, "center": {"lat": 39.2, "lon": -94.6}, "tags": {"amenity": "restaurant", "name": "B"}},
                {"type": "node", "id": 4, "lat": 39.1, "lon": -94.5, "tags": {"amenity": "cafe", "name": "C"}},
            ]
        }
    )
    client = OpenStreetMapClient(UNKEYED, limiter, session=session)

    first = client.nearby(39.1, -94.5, radius_m=1609.34)
    client.nearby(39.1, -94.5, radius_m=1609.34)

    assert [e.name for e in first] == ["A", "B"]
    assert first[0].formatted_address == "12 Main St"
    assert first[0].vicinity == "Main St"
    assert first[1].formatted_address is None
    assert first[1].vicinity is None
    assert (first[1].lat, first[1].lng) == (39.2, -94.6)
    assert clock.sleeps == [1.0]
    headers = session.request.call_args.kwargs["headers"]
    assert headers["User-Agent"].startswith("JustChooseAlready")


def test_osm_geocode_prefixes_place_id() -> None:
    limiter = RateLimiter(0.0)
    session = MagicMock()
    session.request.return_value = _response(
        payload=[{"lat": "39.0997", "lon": "-94.5786", "display_name": "Kansas City, MO", "place_id": 42}]
    )
    client = OpenStreetMapClient(UNKEYED, limiter, session=session)
    geo = client.geocode("Kansas City, MO")
    assert geo.place_id == "osm_42"
    assert geo.lat == pytest.approx(39.0997)
    params = session.request.call_args.kwargs["params"]
    assert params["countrycodes"] == "us"
    assert params["limit"] == 1


def test_osm_rate_limited_status() -> None:
    session = MagicMock()
    session.request.return_value = _response(status=429)
    client = OpenStreetMapClient(UNKEYED, RateLimiter(0.0), session=session)
    with pytest.raises(ProviderQuotaOrTransientError) as excinfo:
        client.geocode("Kansas City")
    assert excinfo.value.is_quota


def test_osm_elements_without_id_or_coordinates_are_skipped() -> None:
    session = MagicMock()
    session.request.return_value = _response(
        payload={
            "elements": [
                {"type": "node", "lat": 1, "lon": 2, "tags": {"amenity": "restaurant", "name": "No Id"}},
                {"type": "node", "id": 5, "lat": "north", "lon": 2, "tags": {"amenity": "restaurant", "name": "Bad Lat"}},
                {"type": "way", "id": 6, "tags": {"amenity": "restaurant", "name": "No Center"}},
                {"type": "node", "id": 7, "lat": 1, "lon": 2, "tags": {"amenity": "restaurant", "name": "Good"}},
            ]
        }
    )
    client = OpenStreetMapClient(UNKEYED, RateLimiter(0.0), session=session)
    assert [e.osm_id for e in client.nearby(1.0, 2.0, radius_m=1609.34)] == [7]


def test_osm_reply_without_ids_yields_empty_search() -> None:
    session = MagicMock()
    session.request.return_value = _response(
        payload={"elements": [{"type": "node", "lat": 1, "lon": 2, "tags": {"amenity": "restaurant", "name": "X"}}]}
    )
    osm = OpenStreetMapClient(UNKEYED, RateLimiter(0.0), session=session)
    orch = SearchOrchestrator(UNKEYED, ResultCache(ttl_sec=60, clock=FakeClock()), osm=osm)
    result = orch.execute(SearchQuery(radius_miles=5, lat=1.0, lng=2.0))
    assert result.places == []


def test_google_non_object_body_is_provider_error() -> None:
    session = MagicMock()
    session.get.return_value = _response(payload=["not", "an", "object"])
    client = GooglePlacesClient(KEYED, session=session)
    with pytest.raises(ProviderError):
        client.nearby(1.0, 2.0, radius_m=1000)
