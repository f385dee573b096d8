"""
API tests for the Where-Am-I reverse geocoding endpoints.
Covers the response envelope, error status mapping and cache provenance.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from api.server import app, get_ip_locator, get_resolver
from engine.cache import MemoryCacheStore, build_cache_store
from engine.errors import LocationUnavailable, UpstreamError
from engine.resolver import ReverseGeocodeResolver
from fakes import BrokenStore, FakeGeocoder, FakeIpLocator
from shared.config import Settings

client = TestClient(app)


@pytest.fixture
def geocoder():
    return FakeGeocoder("New York, NY")


@pytest.fixture
def ip_locator():
    return FakeIpLocator(lat=37.4, lon=-122.1)


@pytest.fixture
def resolver(geocoder, ip_locator):
    resolver = ReverseGeocodeResolver(store=MemoryCacheStore(), geocoder=geocoder, ip_locator=ip_locator)
    app.dependency_overrides[get_resolver] = lambda: resolver
    app.dependency_overrides[get_ip_locator] = lambda: ip_locator
    yield resolver
    app.dependency_overrides.clear()


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["timestamp"].endswith("Z")


# -----------------------------------------------------------------------------
# Scenario 1: cache miss then hit
# -----------------------------------------------------------------------------
def test_reverse_miss_then_hit(resolver, geocoder):
    first = client.get("/api/v1/reverse", params={"lat": "40.7128", "lon": "-74.0060"})
    assert first.status_code == 200
    data = first.json()
    assert data["address"] == "New York, NY"
    assert data["source"] == "live"
    assert data["coordinates"] == {"lat": 40.7128, "lon": -74.006}
    assert "timestamp" in data

    second = client.get("/api/v1/reverse", params={"lat": "40.7128", "lon": "-74.0060"})
    assert second.status_code == 200
    assert second.json()["source"] == "cache"
    assert second.json()["address"] == "New York, NY"
    assert len(geocoder.calls) == 1


# -----------------------------------------------------------------------------
# Scenario 2: validation errors (400)
# -----------------------------------------------------------------------------
def test_reverse_invalid_lat(resolver):
    response = client.get("/api/v1/reverse", params={"lat": "invalid", "lon": "-74.0060"})
    assert response.status_code == 400
    assert response.json()["error"].startswith("INVALID_COORDINATES")


def test_reverse_missing_input(resolver):
    response = client.get("/api/v1/reverse")
    assert response.status_code == 400
    assert list(response.json()) == ["error"]
    assert response.json()["error"].startswith("MISSING_INPUT")


def test_reverse_missing_lon(resolver):
    response = client.get("/api/v1/reverse", params={"lat": "45.678"})
    assert response.status_code == 400
    assert "error" in response.json()


# -----------------------------------------------------------------------------
# Scenario 3: IP fallback
# -----------------------------------------------------------------------------
def test_reverse_ip_fallback(resolver, ip_locator):
    response = client.get("/api/v1/reverse", params={"ip": "8.8.8.8"})
    assert response.status_code == 200
    assert response.json()["coordinates"] == {"lat": 37.4, "lon": -122.1}
    assert ip_locator.calls == ["8.8.8.8"]


def test_reverse_ip_unavailable(resolver, ip_locator):
    ip_locator.exc = LocationUnavailable("Could not determine location for this IP address")
    response = client.get("/api/v1/reverse", params={"ip": "10.0.0.1"})
    assert response.status_code == 400
    assert response.json()["error"].startswith("LOCATION_UNAVAILABLE")


# -----------------------------------------------------------------------------
# Scenario 4: upstream failure keeps the provider status
# -----------------------------------------------------------------------------
def test_reverse_upstream_503(resolver, geocoder):
    geocoder.exc = UpstreamError("Upstream geocoding service error", status_code=503)
    response = client.get("/api/v1/reverse", params={"lat": "40.7128", "lon": "-74.0060"})
    assert response.status_code == 503
    assert response.json() == {"error": "UPSTREAM_ERROR: Upstream geocoding service error"}
    assert len(resolver.store) == 0


# -----------------------------------------------------------------------------
# Scenario 5: store outage degrades gracefully
# -----------------------------------------------------------------------------
def test_reverse_store_outage_still_answers(geocoder, ip_locator):
    resolver = ReverseGeocodeResolver(store=BrokenStore(), geocoder=geocoder, ip_locator=ip_locator)
    app.dependency_overrides[get_resolver] = lambda: resolver
    try:
        response = client.get("/api/v1/reverse", params={"lat": "40.7128", "lon": "-74.0060"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["source"] == "live"


# -----------------------------------------------------------------------------
# Strict writes: store outage on write-back is a 503
# -----------------------------------------------------------------------------
def test_reverse_strict_write_failure_is_cache_unavailable(geocoder, ip_locator):
    resolver = ReverseGeocodeResolver(
        store=BrokenStore(fail_get=False, fail_put=True),
        geocoder=geocoder,
        ip_locator=ip_locator,
        strict_writes=True,
    )
    app.dependency_overrides[get_resolver] = lambda: resolver
    try:
        response = client.get("/api/v1/reverse", params={"lat": "40.7128", "lon": "-74.0060"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json()["error"].startswith("CACHE_UNAVAILABLE: ")


# -----------------------------------------------------------------------------
# Scenario 6: unexpected failure is a generic 500
# -----------------------------------------------------------------------------
def test_reverse_internal_error(resolver):
    with patch.object(resolver, "resolve", AsyncMock(side_effect=RuntimeError("boom"))):
        response = client.get("/api/v1/reverse", params={"lat": "40.7128", "lon": "-74.0060"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


# -----------------------------------------------------------------------------
# IP to coordinates
# -----------------------------------------------------------------------------
def test_ip_to_coords(resolver):
    response = client.get("/api/v1/ip-to-coords", params={"ip": "8.8.8.8"})
    assert response.status_code == 200
    data = response.json()
    assert data["ip"] == "8.8.8.8"
    assert data["coordinates"] == {"lat": 37.4, "lon": -122.1}
    assert set(data["location"]) == {"city", "region", "country", "timezone"}


def test_ip_to_coords_requires_ip(resolver):
    response = client.get("/api/v1/ip-to-coords")
    assert response.status_code == 400
    assert "ip parameter is required" in response.json()["error"]


def test_unhandled_dependency_error_uses_envelope():
    def broken_locator():
        raise RuntimeError("boom")

    app.dependency_overrides[get_ip_locator] = broken_locator
    try:
        response = TestClient(app, raise_server_exceptions=False).get("/api/v1/ip-to-coords", params={"ip": "8.8.8.8"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


# -----------------------------------------------------------------------------
# Lifespan: one resolver and one store per process
# -----------------------------------------------------------------------------
def test_concurrent_first_requests_share_one_store(geocoder):
    params = {"lat": "40.7128", "lon": "-74.0060"}
    with patch("api.server.settings", Settings(CACHE_BACKEND="memory")), \
            patch("api.server.NominatimGeocoder", return_value=geocoder), \
            patch("api.server.build_cache_store", wraps=build_cache_store) as build_store:
        with TestClient(app) as c:
            with ThreadPoolExecutor(max_workers=2) as pool:
                responses = list(pool.map(lambda _: c.get("/api/v1/reverse", params=params), range(2)))
            follow_up = c.get("/api/v1/reverse", params=params)
            store = app.state.resolver.store

    assert [r.status_code for r in responses] == [200, 200]
    assert build_store.call_count == 1
    assert follow_up.json()["source"] == "cache"
    assert len(geocoder.calls) <= 2
    assert asyncio.run(store.get("40.7128:-74.006")).address == "New York, NY"


def test_redis_backend_without_table_fails_at_startup():
    with patch("api.server.settings", Settings(CACHE_BACKEND="redis", CACHE_TABLE="")):
        with pytest.raises(ValueError, match="CACHE_TABLE"):
            with TestClient(app):
                pass


def test_shutdown_closes_store():
    store = MemoryCacheStore()
    with patch("api.server.build_cache_store", return_value=store), \
            patch.object(store, "close", AsyncMock()) as close:
        with TestClient(app):
            close.assert_not_awaited()
        close.assert_awaited_once()
