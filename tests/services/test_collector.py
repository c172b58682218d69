from datetime import datetime, timedelta, timezone

import pytest

from ordersync.services.orders import IncrementalCollector, LookbackLadder, OrderCursor, resolve_fetch_window
from ordersync.services.toast.base import OrdersPage

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# WINDOWS
# =============================================================================

def test_window_precedence():
    cursor = OrderCursor(ts="2024-05-01T11:00:00.000+0000")
    explicit = (NOW - timedelta(hours=3), NOW - timedelta(hours=1))

    assert resolve_fetch_window(NOW, window=explicit, minutes=5).source == "override"
    assert resolve_fetch_window(NOW, since=NOW - timedelta(hours=2), minutes=5).source == "since"
    assert resolve_fetch_window(NOW, minutes=5, cursor=cursor, use_cursor=True).source == "minutes"
    assert resolve_fetch_window(NOW, cursor=cursor, use_cursor=True).source == "cursor"
    assert resolve_fetch_window(NOW, cursor=cursor).source == "default"


def test_default_window_starts_at_local_midnight():
    window = resolve_fetch_window(NOW, timezone_name="America/New_York")

    assert window.start == datetime(2024, 5, 1, 4, 0, tzinfo=timezone.utc)
    assert window.end == NOW


def test_non_positive_cursor_window_falls_back_to_a_minute():
    cursor = OrderCursor(ts="2024-05-01T13:00:00.000+0000")

    window = resolve_fetch_window(NOW, cursor=cursor, use_cursor=True)

    assert window.start == NOW - timedelta(seconds=60)
    assert window.source == "cursor"


def test_non_positive_window_falls_back_to_a_day():
    window = resolve_fetch_window(NOW, since=NOW + timedelta(hours=1))

    assert window.minutes == 24 * 60


def test_ladder_steps_respect_primary_and_ceiling():
    ladder = LookbackLadder([1440, 60, 240, 60, 0])

    assert ladder.steps == [60, 240, 1440]
    assert ladder.steps_for(primary_minutes=120, ceiling=1440) == [240, 1440]
    assert ladder.steps_for(primary_minutes=10, ceiling=200) == [60]


# =============================================================================
# COLLECTION
# =============================================================================

@pytest.mark.asyncio
async def test_latest_order_wins_with_limit_one(collector, fake_api, make_order):
    fake_api.orders = [
        make_order("order-1", opened="2024-05-01T10:00:00.000+0000"),
        make_order("order-2", opened="2024-05-01T10:05:00.000+0000"),
    ]

    result = await collector.collect(1, now=NOW)

    assert result.order_ids == ["order-2"]


@pytest.mark.asyncio
async def test_orders_are_sorted_newest_first(collector, fake_api, make_order):
    fake_api.orders = [
        make_order("order-1", opened="2024-05-01T10:00:00.000+0000"),
        make_order("order-2", opened="2024-05-01T10:05:00.000+0000"),
    ]

    result = await collector.collect(2, now=NOW)

    assert result.order_ids == ["order-2", "order-1"]
    assert result.window == {"start": "2024-05-01T00:00:00.000+0000", "end": "2024-05-01T12:00:00.000+0000"}


@pytest.mark.asyncio
async def test_voided_and_deleted_orders_never_reach_the_cache(collector, order_cache, fake_api, make_order):
    fake_api.orders = [
        make_order("kept", opened="2024-05-01T10:00:00.000+0000"),
        make_order("voided", opened="2024-05-01T10:01:00.000+0000", voided=True),
        make_order("deleted", opened="2024-05-01T10:02:00.000+0000", deleted=True),
    ]

    result = await collector.collect(1, now=NOW, debug=True)

    assert result.order_ids == ["kept"]
    assert await order_cache.get_recent_index() == ["kept"]
    assert await order_cache.get_index_for_date(20240501) == ["kept"]
    assert await order_cache.get_order("voided") is None
    assert result.debug["totals"]["filtered"]["voided"] == 1
    assert result.debug["totals"]["filtered"]["deleted"] == 1


@pytest.mark.asyncio
async def test_location_and_status_filters_are_case_insensitive(collector, fake_api, make_order):
    fake_api.orders = [
        make_order("a", opened="2024-05-01T10:00:00.000+0000", restaurantLocationGuid="LOC-1", status="OPEN"),
        make_order("b", opened="2024-05-01T10:01:00.000+0000", restaurantLocationGuid="loc-2", status="OPEN"),
        make_order("c", opened="2024-05-01T10:02:00.000+0000", restaurantLocationGuid="loc-1", status="CLOSED"),
    ]

    result = await collector.collect(10, location_id=" loc-1 ", status="open", now=NOW)

    assert result.order_ids == ["a"]


@pytest.mark.asyncio
async def test_pagination_stops_once_limit_is_met(collector, fake_api, make_order):
    fake_api.orders = [
        make_order(f"order-{i:02d}", opened=f"2024-05-01T10:{i:02d}:00.000+0000") for i in range(10)
    ]

    result = await collector.collect(3, page_size=2, now=NOW)

    assert result.pages_fetched == 2
    assert len(result.orders) == 3


@pytest.mark.asyncio
async def test_repeated_page_stops_pagination(mocker, order_cache, settings, make_order):
    api = mocker.Mock()
    api.get_orders_bulk = mocker.AsyncMock(
        return_value=OrdersPage(orders=[make_order("order-1")], page=1, next_page=2)
    )
    collector = IncrementalCollector(api, order_cache, settings)

    result = await collector.collect(10, window=(NOW - timedelta(hours=1), NOW), now=NOW)

    assert api.get_orders_bulk.await_count == 2
    assert result.order_ids == ["order-1"]


@pytest.mark.asyncio
async def test_lookback_ladder_widens_short_windows(collector, fake_api, make_order):
    fake_api.orders = [
        make_order("today", opened="2024-05-01T09:00:00.000+0000"),
        make_order("yesterday", opened="2024-04-30T20:00:00.000+0000", businessDate=20240430),
    ]

    result = await collector.collect(2, now=NOW, debug=True)

    assert result.order_ids == ["today", "yesterday"]
    assert result.lookback_minutes_tried == [1440]
    assert result.window["start"] == "2024-04-30T12:00:00.000+0000"
    assert [w["source"] for w in result.debug["windows"]] == ["default", "lookback"]


@pytest.mark.asyncio
async def test_explicit_minutes_cap_the_ladder(collector, fake_api, make_order):
    fake_api.orders = [make_order("old", opened="2024-04-30T20:00:00.000+0000")]

    result = await collector.collect(5, minutes=30, now=NOW)

    assert result.lookback_minutes_tried == []
    assert result.orders == []


@pytest.mark.asyncio
async def test_override_window_skips_the_ladder(collector, fake_api, make_order):
    fake_api.orders = [make_order("old", opened="2024-04-30T20:00:00.000+0000")]

    result = await collector.collect(5, window=(NOW - timedelta(hours=1), NOW), now=NOW)

    assert result.lookback_minutes_tried == []
    assert len(fake_api.bulk_calls) == 1


@pytest.mark.asyncio
async def test_cursor_only_moves_forward(collector, order_cache, fake_api, make_order):
    fake_api.orders = [make_order("order-2", opened="2024-05-01T10:05:00.000+0000")]
    first = await collector.collect(5, now=NOW)

    assert first.cursor_advanced
    assert (await order_cache.get_cursor()).order_guid == "order-2"

    cursor, advanced = await collector.merge(
        [make_order("order-1", opened="2024-05-01T10:00:00.000+0000")], first.cursor
    )

    assert not advanced
    assert cursor.order_guid == "order-2"
    assert (await order_cache.get_cursor()).ts == "2024-05-01T10:05:00.000+0000"


@pytest.mark.asyncio
async def test_failed_cache_write_keeps_cursor(mocker, collector, order_cache, fake_api, make_order):
    fake_api.orders = [make_order("order-1")]
    mocker.patch.object(order_cache, "upsert_recent_index", side_effect=RuntimeError("redis down"))

    result = await collector.collect(5, now=NOW)

    assert result.order_ids == ["order-1"]
    assert not result.cursor_advanced
    assert await order_cache.get_cursor() is None


@pytest.mark.asyncio
async def test_incremental_run_tops_up_from_cache(collector, fake_api, make_order):
    fake_api.orders = [
        make_order("order-1", opened="2024-05-01T10:00:00.000+0000"),
        make_order("order-2", opened="2024-05-01T10:05:00.000+0000"),
    ]
    await collector.collect(5, now=NOW)
    fake_api.bulk_calls.clear()

    result = await collector.collect(2, use_cursor=True, now=NOW, debug=True)

    assert result.debug["initialWindow"]["source"] == "cursor"
    assert result.debug["initialWindow"]["start"] == "2024-05-01T10:05:00.000+0000"
    assert result.order_ids == ["order-2", "order-1"]
    assert result.from_cache == 1
    assert result.lookback_minutes_tried == []


@pytest.mark.asyncio
async def test_two_polls_without_new_data_are_stable(collector, order_cache, kv, fake_api, make_order):
    fake_api.orders = [
        make_order(guid, opened="2024-05-01T10:00:00.000+0000") for guid in ("c", "a", "b")
    ]

    await collector.collect(10, now=NOW)
    first = await kv.get("orders:recentIndex")
    await collector.collect(10, now=NOW)
    second = await kv.get("orders:recentIndex")

    assert first == second == '["a","b","c"]'


@pytest.mark.asyncio
async def test_order_voided_upstream_is_evicted_from_the_cache(collector, order_cache, fake_api, make_order):
    fake_api.orders = [
        make_order("order-1", opened="2024-05-01T10:00:00.000+0000"),
        make_order("order-2", opened="2024-05-01T10:05:00.000+0000"),
    ]
    await collector.collect(5, now=NOW)
    assert await order_cache.get_recent_index() == ["order-2", "order-1"]

    fake_api.orders[1]["voided"] = True
    result = await collector.collect(5, use_cursor=True, now=NOW)

    assert result.order_ids == ["order-1"]
    assert await order_cache.get_recent_index() == ["order-1"]
    assert await order_cache.get_index_for_date(20240501) == ["order-1"]
    assert await order_cache.get_order("order-2") is None
    assert [o["guid"] for o in await order_cache.recent_orders()] == ["order-1"]


@pytest.mark.asyncio
async def test_truthy_voided_and_deleted_flags_are_honored(collector, fake_api, make_order):
    fake_api.orders = [
        make_order("kept", opened="2024-05-01T10:00:00.000+0000"),
        make_order("voided", opened="2024-05-01T10:01:00.000+0000", voided=1),
        make_order("deleted", opened="2024-05-01T10:02:00.000+0000", deleted="true"),
    ]

    result = await collector.collect(5, minutes=720, now=NOW)

    assert result.order_ids == ["kept"]


@pytest.mark.asyncio
async def test_failed_cursor_write_does_not_fail_the_run(mocker, collector, order_cache, fake_api, make_order):
    fake_api.orders = [make_order("order-1")]
    mocker.patch.object(order_cache, "set_cursor", side_effect=RuntimeError("redis down"))

    result = await collector.collect(5, now=NOW)

    assert result.order_ids == ["order-1"]
    assert not result.cursor_advanced
    assert result.cursor is None


@pytest.mark.asyncio
async def test_filtered_runs_leave_the_cursor_alone(collector, order_cache, fake_api, make_order):
    fake_api.orders = [
        make_order("a", opened="2024-05-01T10:00:00.000+0000", restaurantLocationGuid="loc-1"),
        make_order("b", opened="2024-05-01T10:05:00.000+0000", restaurantLocationGuid="loc-2"),
    ]

    filtered = await collector.collect(5, location_id="loc-1", now=NOW)

    assert filtered.order_ids == ["a"]
    assert not filtered.cursor_advanced
    assert await order_cache.get_cursor() is None

    unfiltered = await collector.collect(5, now=NOW)

    assert unfiltered.order_ids == ["b", "a"]
    assert (await order_cache.get_cursor()).order_guid == "b"
