"""
API tests.

The lifespan is not entered (no ``with TestClient``), so no Redis or Toast
clients are created; every service is swapped in through
``app.dependency_overrides``.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from ordersync.main import app, get_optional_toast_api
from ordersync.services.feed import OrderFeedService, get_order_feed_service
from ordersync.services.kv import get_kv_store
from ordersync.services.menu import get_menu_repository
from ordersync.services.orders.timestamps import to_toast_iso
from ordersync.services.toast import UpstreamError, get_toast_api
from ordersync.services.toast.auth import TOKEN_CACHE_KEY, TOKEN_STATS_KEY


def minutes_ago(minutes: int) -> str:
    return to_toast_iso(datetime.now(timezone.utc) - timedelta(minutes=minutes))


@pytest.fixture
def client(kv, fake_api, collector, menu_repository, settings, make_order):
    fake_api.orders = [
        make_order("order-1", opened=minutes_ago(10)),
        make_order("order-2", opened=minutes_ago(5)),
    ]
    feed = OrderFeedService(collector, menu_repository, settings)
    app.dependency_overrides[get_order_feed_service] = lambda: feed
    app.dependency_overrides[get_menu_repository] = lambda: menu_repository
    app.dependency_overrides[get_kv_store] = lambda: kv
    app.dependency_overrides[get_toast_api] = lambda: fake_api
    app.dependency_overrides[get_optional_toast_api] = lambda: fake_api
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root_lists_routes(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["expanded"] == "/api/orders/expanded"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "operational"
    assert body["kv_store"] == "healthy"
    assert body["toast_api"] == "healthy"


# =============================================================================
# LATEST
# =============================================================================

def test_latest_returns_newest_first(client):
    response = client.get("/api/orders/latest", params={"limit": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["ids"] == ["order-2"]
    assert body["route"] == "/api/orders/latest"
    assert [o["guid"] for o in body["data"]] == ["order-2"]
    assert "debug" not in body


def test_latest_ids_only(client):
    response = client.get("/api/orders/latest", params={"limit": 2, "detail": "ids", "pageSize": 10})

    body = response.json()
    assert body["ids"] == ["order-2", "order-1"]
    assert body["pageSize"] == 10
    assert body["detail"] == "ids"
    assert "data" not in body


def test_latest_with_debug_trace(client):
    body = client.get("/api/orders/latest", params={"limit": 2, "debug": "true"}).json()

    assert body["debug"]["totals"]["finalReturned"] == 2


def test_latest_requires_both_window_ends(client):
    response = client.get("/api/orders/latest", params={"start": "2024-05-01T00:00:00Z"})

    assert response.status_code == 400


def test_latest_rejects_bad_limit(client):
    assert client.get("/api/orders/latest", params={"limit": 0}).status_code == 422


def test_latest_upstream_failure_without_cache_is_502(client, fake_api):
    fake_api.orders_error = UpstreamError("orders down", status=503, request_id="req-9")

    response = client.get("/api/orders/latest")

    assert response.status_code == 502
    assert response.json() == {
        "error": {"message": "orders down", "code": "UPSTREAM_UNAVAILABLE"},
        "debug": {"status": 503, "requestId": "req-9", "route": "/api/orders/latest"},
    }


# =============================================================================
# EXPANDED
# =============================================================================

def test_expanded_orders(client):
    response = client.get("/api/orders/expanded", params={"limit": 5})

    assert response.status_code == 200
    body = response.json()
    assert [o["orderData"]["orderId"] for o in body["orders"]] == ["order-2", "order-1"]
    assert body["cacheInfo"]["menu"] == "miss-network"
    assert "debug" not in body


def test_expanded_fulfillment_filter(client):
    response = client.get(
        "/api/orders/expanded",
        params=[("fulfillmentStatus", "READY_FOR_PICKUP"), ("debug", "true")],
    )

    body = response.json()
    assert body["orders"] == []
    assert body["debug"]["ordersSource"] == "network"


def test_expanded_upstream_failure_is_502(client, fake_api):
    fake_api.orders_error = UpstreamError("rate limited", status=429)

    response = client.get("/api/orders/expanded")

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "UPSTREAM_RATE_LIMITED"


# =============================================================================
# SINGLE ORDER / MENUS / SYNC
# =============================================================================

def test_single_order(client):
    assert client.get("/api/orders/order-1").json()["guid"] == "order-1"
    assert client.get("/api/orders/missing").status_code == 404


def test_menus(client):
    first = client.get("/api/menus").json()
    second = client.get("/api/menus").json()

    assert first["cacheStatus"] == "miss-network"
    assert first["cacheHit"] is False
    assert second["cacheStatus"] == "hit-fresh"
    assert second["metadata"]["lastUpdated"] == "2024-05-01T00:00:00.000+0000"


def test_menu_failure_without_cache(client, fake_api):
    fake_api.menu_error = UpstreamError("menus down", status=503)

    response = client.get("/api/menus")

    assert response.status_code == 502
    assert response.json()["error"] == {"message": "menus down", "code": "MENU_FETCH_FAILED"}
    assert response.json()["debug"]["route"] == "/api/menus"


def test_sync_queues_task(client, mocker):
    task = mocker.patch("ordersync.main.sync_recent_orders")
    task.delay.return_value.id = "task-1"

    response = client.post("/api/orders/sync")

    assert response.status_code == 200
    assert response.json() == {"queued": True, "task_id": "task-1"}
    task.delay.assert_called_once_with()


def test_health_without_credentials_is_degraded(client, mocker):
    app.dependency_overrides.pop(get_optional_toast_api)
    mocker.patch("ordersync.main.get_toast_api", side_effect=ValueError("TOAST_CLIENT_ID is not set"))

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["toast_api"] == "unhealthy: not configured"
    assert body["kv_store"] == "healthy"


def test_health_reports_toast_health_check_errors(client, fake_api, mocker):
    mocker.patch.object(fake_api, "health_check", side_effect=RuntimeError("token refresh failed"))

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["toast_api"] == "unhealthy: token refresh failed"


# =============================================================================
# BY DATE / BY RANGE
# =============================================================================

def test_orders_by_date_serves_the_cached_index(client):
    client.get("/api/orders/latest", params={"limit": 2})

    ids = client.get("/api/orders/by-date", params={"date": "2024-05-01"}).json()
    full = client.get("/api/orders/by-date", params={"date": "20240501", "detail": "full"}).json()

    assert ids["ids"] == ["order-2", "order-1"]
    assert ids["businessDate"] == 20240501
    assert ids["source"] == "cache"
    assert "data" not in ids
    assert [o["guid"] for o in full["data"]] == ["order-2", "order-1"]


def test_orders_by_date_for_an_uncached_date_is_empty(client):
    body = client.get("/api/orders/by-date", params={"date": "2024-04-30"}).json()

    assert body["count"] == 0
    assert body["ids"] == []


@pytest.mark.parametrize("date", ["yesterday", "2024-13-01", "20240230", "2024051"])
def test_orders_by_date_rejects_bad_dates(client, date):
    assert client.get("/api/orders/by-date", params={"date": date}).status_code == 400


def test_orders_by_range_defaults_to_recent_hours(client, fake_api):
    response = client.get("/api/orders/by-range", params={"detail": "ids"})

    assert response.status_code == 200
    body = response.json()
    assert body["route"] == "/api/orders/by-range"
    assert body["ids"] == ["order-2", "order-1"]
    assert len(fake_api.bulk_calls) >= 1


def test_orders_by_range_with_explicit_bounds(client):
    now = datetime.now(timezone.utc)
    params = {
        "start": (now - timedelta(minutes=7)).isoformat(),
        "end": now.isoformat(),
        "detail": "ids",
    }

    body = client.get("/api/orders/by-range", params=params).json()

    assert body["ids"] == ["order-2"]


def test_orders_by_range_validates_bounds(client):
    now = datetime.now(timezone.utc)

    only_start = client.get("/api/orders/by-range", params={"start": now.isoformat()})
    reversed_bounds = client.get(
        "/api/orders/by-range",
        params={"start": now.isoformat(), "end": (now - timedelta(hours=1)).isoformat()},
    )
    too_wide = client.get(
        "/api/orders/by-range",
        params={"start": (now - timedelta(days=8)).isoformat(), "end": now.isoformat()},
    )

    assert only_start.status_code == 400
    assert reversed_bounds.status_code == 400
    assert too_wide.status_code == 400
    assert client.get("/api/orders/by-range", params={"hours": 0}).status_code == 422


# =============================================================================
# KITCHEN / DEBUG
# =============================================================================

def test_prep_stations(client, fake_api):
    fake_api.prep_stations = [{"guid": "ps-1", "name": "Grill"}]
    fake_api.prep_stations_next_token = "page-2"

    response = client.get("/api/kitchen/prep-stations", params={"pageToken": "page-1", "lastModified": "  "})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["prepStations"][0]["name"] == "Grill"
    assert body["nextPageToken"] == "page-2"
    assert body["request"] == {"pageToken": "page-1", "lastModified": None}
    assert fake_api.prep_station_calls == [("page-1", None)]


def test_prep_stations_upstream_failure_is_502(client, fake_api):
    fake_api.prep_stations_error = UpstreamError("kitchen down", status=500, request_id="req-4")

    response = client.get("/api/kitchen/prep-stations")

    assert response.status_code == 502
    body = response.json()
    assert body["error"]["code"] == "PREP_STATIONS_FETCH_FAILED"
    assert body["debug"]["route"] == "/api/kitchen/prep-stations"


@pytest.mark.asyncio
async def test_auth_stats_shows_only_a_token_prefix(client, kv):
    expires_at = int(datetime.now(timezone.utc).timestamp() * 1000) + 600_000
    await kv.put_json(TOKEN_CACHE_KEY, {"accessToken": "abcdefghijklmnopqrstuvwxyz", "expiresAt": expires_at})
    await kv.put_json(TOKEN_STATS_KEY, {"refreshAttempts": 3, "refreshSuccess": 2, "refreshFail": 1, "lastError": "HTTP 401"})

    body = client.get("/api/debug/auth-stats").json()

    assert body["ok"] is True
    assert body["tokenPreview"] == "abcdefghijkl..."
    assert "abcdefghijklmnopqrstuvwxyz" not in str(body)
    assert body["tokenExpiresAt"] == expires_at
    assert 590 <= body["tokenSecondsLeft"] <= 600
    assert body["stats"]["refreshAttempts"] == 3
    assert body["stats"]["lastError"] == "HTTP 401"


def test_auth_stats_without_a_cached_token(client):
    body = client.get("/api/debug/auth-stats").json()

    assert body["tokenPreview"] is None
    assert body["tokenSecondsLeft"] is None
    assert body["stats"]["refreshAttempts"] == 0
