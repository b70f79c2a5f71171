from __future__ import annotations

from models import ProviderKind, SearchQuery
from services.cache import ResultCache, geocode_cache_key, search_cache_key

from fakes import FakeClock


def _key(**kwargs) -> str:
    params = {"radius_miles": 10, "lat": 39.0997, "lng": -94.5786}
    params.update(kwargs)
    return search_cache_key(ProviderKind.FREE, SearchQuery(**params))


def test_price_tier_order_does_not_matter() -> None:
    assert _key(price_ranges=[4, 1]) == _key(price_ranges=[1, 4])
    assert _key(price_ranges=[1, 4, 1]) == _key(price_ranges=[1, 4])
    assert _key(price_ranges=[1, 4]) != _key(price_ranges=[1, 3])


def test_no_tiers_and_no_cuisine_use_any_token() -> None:
    key = _key()
    assert key.endswith("|any|any")
    assert _key(cuisine="any") == key
    assert _key(cuisine="") == key
    assert _key(cuisine="Thai") == _key(cuisine=" thai ")


def test_legacy_single_price_folds_into_tiers() -> None:
    assert _key(price=2) == _key(price_ranges=[2])


def test_coordinates_collapse_below_precision() -> None:
    assert _key(lat=39.09971, lng=-94.57862) == _key(lat=39.099712, lng=-94.578618)
    assert _key(lat=39.0997) != _key(lat=39.0998)
    assert _key(lat=-0.00001, lng=0.00001) == _key(lat=0.00001, lng=-0.00001)


def test_radius_and_provider_are_part_of_the_key() -> None:
    assert _key(radius_miles=10) == _key(radius_miles=10.0)
    assert _key(radius_miles=10) != _key(radius_miles=5)
    query = SearchQuery(radius_miles=10, lat=39.0997, lng=-94.5786)
    assert search_cache_key(ProviderKind.FREE, query) != search_cache_key(ProviderKind.PREMIUM, query)


def test_text_queries_are_normalized() -> None:
    a = search_cache_key(ProviderKind.FREE, SearchQuery(radius_miles=10, location_text="Kansas City"))
    b = search_cache_key(ProviderKind.FREE, SearchQuery(radius_miles=10, location_text="  kansas   CITY "))
    assert a == b
    assert geocode_cache_key(ProviderKind.FREE, "Kansas City") == geocode_cache_key(ProviderKind.FREE, "kansas city ")


def test_entry_expires_and_is_overwritten() -> None:
    clock = FakeClock()
    cache = ResultCache(ttl_sec=60, clock=clock)
    cache.put("k", "first")
    assert cache.get("k") == "first"

    clock.advance(60)
    assert cache.get("k") is None

    cache.put("k", "second")
    assert cache.get("k") == "second"
    assert len(cache) == 1


def test_custom_ttl_and_purge() -> None:
    clock = FakeClock()
    cache = ResultCache(ttl_sec=60, clock=clock)
    cache.put("short", 1, ttl=5)
    cache.put("long", 2)
    clock.advance(10)
    assert cache.get("short") is None
    assert cache.get("long") == 2
    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_bounded_cache_drops_oldest() -> None:
    cache = ResultCache(ttl_sec=60, max_entries=2, clock=FakeClock())
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("c", 3)
    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3
