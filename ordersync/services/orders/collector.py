"""
Incremental Collector

Answers "give me the latest N orders" with as few upstream pages as
possible:

    1. Resolve a fetch window (explicit > since > minutes > cursor > today)
    2. Page through ordersBulk, filtering voided/deleted/location/status
    3. Top up from the cached recent index on short cursor runs
    4. Widen along the lookback ladder while still short
    5. Sort newest first, truncate, merge into the cache, advance the cursor

Author: Your Name
Version: 2.0.0
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from ordersync.core.config import Settings, get_settings
from ordersync.services.orders.cache import CachedOrderRecord, OrderCache, OrderCursor, sort_records
from ordersync.services.orders.fields import (
    extract_order_location,
    extract_order_status,
    is_order_deleted,
    is_order_voided,
    resolve_business_date,
)
from ordersync.services.orders.timestamps import ms_to_toast_iso, to_toast_iso
from ordersync.services.toast.base import BaseToastApi

logger = logging.getLogger(__name__)

CURSOR_FALLBACK = timedelta(seconds=60)
DEFAULT_FALLBACK = timedelta(hours=24)


# ==============================================================================
# WINDOWS
# ==============================================================================

@dataclass
class FetchWindow:
    """
    A closed time range to page through.

    Attributes:
        start: Window start (UTC)
        end: Window end (UTC)
        source: What anchored it: override, since, minutes, cursor, default, lookback
    """
    start: datetime
    end: datetime
    source: str

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    @property
    def start_iso(self) -> str:
        return to_toast_iso(self.start)

    @property
    def end_iso(self) -> str:
        return to_toast_iso(self.end)

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start_iso, "end": self.end_iso, "source": self.source}


def start_of_day(now: datetime, timezone_name: str = "UTC") -> datetime:
    """Midnight of ``now``'s date in the restaurant's timezone, as UTC."""
    local = now.astimezone(ZoneInfo(timezone_name))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def resolve_fetch_window(
    now: datetime,
    *,
    window: Optional[tuple[datetime, datetime]] = None,
    since: Optional[datetime] = None,
    minutes: Optional[int] = None,
    cursor: Optional[OrderCursor] = None,
    use_cursor: bool = False,
    timezone_name: str = "UTC",
) -> FetchWindow:
    """
    Pick the primary fetch window; the first applicable rule wins.

    A non-positive window collapses to the last minute when it came from
    the cursor, and to the last day otherwise.
    """
    if window is not None:
        resolved = FetchWindow(window[0], window[1], "override")
    elif since is not None:
        resolved = FetchWindow(since, now, "since")
    elif minutes is not None and minutes > 0:
        resolved = FetchWindow(now - timedelta(minutes=minutes), now, "minutes")
    elif use_cursor and cursor is not None and cursor.ts_ms is not None:
        resolved = FetchWindow(
            datetime.fromtimestamp(cursor.ts_ms / 1000, tz=timezone.utc), now, "cursor"
        )
    else:
        resolved = FetchWindow(start_of_day(now, timezone_name), now, "default")

    if resolved.end <= resolved.start:
        fallback = CURSOR_FALLBACK if resolved.source == "cursor" else DEFAULT_FALLBACK
        logger.debug(f"Non-positive {resolved.source} window, falling back to {fallback}")
        resolved = FetchWindow(resolved.end - fallback, resolved.end, resolved.source)
    return resolved


class LookbackLadder:
    """
    Progressively wider windows used when the primary window comes up short.

    Example:
        >>> ladder = LookbackLadder([60, 240, 1440])
        >>> ladder.steps_for(primary_minutes=120, ceiling=1440)
        [240, 1440]
    """

    def __init__(self, steps: Iterable[int]):
        self.steps = sorted({int(s) for s in steps if int(s) > 0})

    def steps_for(self, primary_minutes: float, ceiling: int) -> list[int]:
        """Steps that widen the primary window without passing the ceiling."""
        return [step for step in self.steps if primary_minutes < step <= ceiling]

    @staticmethod
    def satisfied(collected: int, limit: int) -> bool:
        return collected >= limit


# ==============================================================================
# RESULT
# ==============================================================================

@dataclass
class CollectResult:
    """
    Outcome of one collection run.

    Attributes:
        orders: Raw orders, newest first, at most ``limit``
        window: Widest range covered, as Toast ISO strings
        pages_fetched: Upstream pages requested across all windows
        lookback_minutes_tried: Ladder steps that were fetched
        from_cache: Orders added from the recent index
        cursor_advanced: Whether the merge moved the cursor
        debug: Window/filter trace when requested
    """
    orders: list[dict[str, Any]]
    window: dict[str, str]
    minutes: float
    pages_fetched: int = 0
    lookback_minutes_tried: list[int] = field(default_factory=list)
    from_cache: int = 0
    cursor: Optional[OrderCursor] = None
    cursor_advanced: bool = False
    debug: Optional[dict[str, Any]] = None

    @property
    def order_ids(self) -> list[str]:
        return [order["guid"] for order in self.orders]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "orderIds": self.order_ids,
            "window": self.window,
            "minutes": self.minutes,
            "pagesFetched": self.pages_fetched,
            "lookbackMinutesTried": self.lookback_minutes_tried,
            "fromCache": self.from_cache,
            "cursor": self.cursor.to_dict() if self.cursor else None,
            "cursorAdvanced": self.cursor_advanced,
        }
        if self.debug is not None:
            data["debug"] = self.debug
        return data


class OrderFilter:
    """
    Which orders a request wants: never voided or deleted, optionally one
    location and one status (both compared case-insensitively).
    """

    def __init__(self, location_id: Optional[str] = None, status: Optional[str] = None):
        self.location_id = location_id.strip().lower() if location_id and location_id.strip() else None
        self.status = status.strip().lower() if status and status.strip() else None

    @property
    def narrowed(self) -> bool:
        """True when a location or status filter applies."""
        return self.location_id is not None or self.status is not None

    def reject_reason(self, order: dict[str, Any]) -> Optional[str]:
        if is_order_voided(order):
            return "voided"
        if is_order_deleted(order):
            return "deleted"
        if self.location_id is not None:
            location = extract_order_location(order)
            if location is None or location.lower() != self.location_id:
                return "location"
        if self.status is not None:
            status = extract_order_status(order)
            if status is None or status.lower() != self.status:
                return "status"
        return None

    def matches(self, order: Any) -> bool:
        return isinstance(order, dict) and self.reject_reason(order) is None


class _Accumulator:
    """Distinct kept orders plus per-reason skip counts."""

    def __init__(self, order_filter: OrderFilter):
        self.order_filter = order_filter
        self.kept: dict[str, dict[str, Any]] = {}
        self.removed: dict[str, dict[str, Any]] = {}
        self.returned = 0
        self.filtered = {"voided": 0, "deleted": 0, "location": 0, "status": 0}

    def consider(self, order: Any) -> bool:
        """Keep or count one order; returns True when it was kept."""
        self.returned += 1
        guid = order.get("guid") if isinstance(order, dict) else None
        if not isinstance(guid, str) or not guid:
            logger.debug("Skipping order without a guid")
            return False
        reason = self.order_filter.reject_reason(order)
        if reason is not None:
            self.filtered[reason] += 1
            self.kept.pop(guid, None)
            if reason in ("voided", "deleted"):
                self.removed[guid] = order
            return False
        self.removed.pop(guid, None)
        self.kept[guid] = order
        return True


# ==============================================================================
# COLLECTOR
# ==============================================================================

class IncrementalCollector:
    """
    Fetches the latest orders and keeps the order cache current.

    Example:
        >>> collector = IncrementalCollector(get_toast_api(), OrderCache(kv))
        >>> result = await collector.collect(limit=50, use_cursor=True)
        >>> print(result.order_ids)
    """

    def __init__(
        self,
        api: BaseToastApi,
        cache: OrderCache,
        settings: Optional[Settings] = None,
        ladder: Optional[LookbackLadder] = None,
    ):
        self.api = api
        self.cache = cache
        self.settings = settings or get_settings()
        self.ladder = ladder or LookbackLadder(self.settings.lookback_ladder)

    async def _fetch_window(
        self,
        window: FetchWindow,
        acc: _Accumulator,
        limit: int,
        page_size: int,
    ) -> dict[str, Any]:
        """Page through one window; returns its trace entry."""
        signatures: set[str] = set()
        returned_before = acc.returned
        pages = 0
        page = 1

        while page <= self.settings.orders_max_pages:
            result = await self.api.get_orders_bulk(window.start_iso, window.end_iso, page, page_size)
            pages += 1
            orders = result.orders
            logger.debug(
                f"{window.source} window page={page}: {len(orders)} orders "
                f"(next={result.next_page})"
            )
            if not orders:
                break

            signature = json.dumps([orders[0].get("guid"), orders[-1].get("guid"), result.next_page])
            if signature in signatures:
                logger.warning(f"⚠️ Repeated ordersBulk page {page}, stopping pagination")
                break
            signatures.add(signature)

            for order in orders:
                acc.consider(order)

            if LookbackLadder.satisfied(len(acc.kept), limit):
                break
            if result.next_page is None or result.next_page <= page:
                break
            page = result.next_page

        return {
            **window.to_dict(),
            "pagesFetched": pages,
            "totalOrders": acc.returned - returned_before,
            "uniqueCollected": len(acc.kept),
        }

    async def _fill_from_cache(self, acc: _Accumulator, limit: int) -> int:
        added = 0
        for order in await self.cache.recent_orders():
            if LookbackLadder.satisfied(len(acc.kept), limit):
                break
            guid = order.get("guid")
            if guid in acc.kept or guid in acc.removed:
                continue
            if acc.consider(order):
                added += 1
        return added

    async def merge(
        self,
        orders: list[dict[str, Any]],
        previous: Optional[OrderCursor] = None,
        removed: Iterable[dict[str, Any]] = (),
        advance_cursor: bool = True,
    ) -> tuple[Optional[OrderCursor], bool]:
        """
        Write orders and indices, then move the cursor forward.

        Orders in ``removed`` (reported voided or deleted upstream) are
        dropped from the cache first. The cursor only moves when
        ``advance_cursor`` is set and the newest order is newer than
        ``previous``.

        Returns the cursor now in effect and whether it moved. A failed
        cache write leaves the cursor untouched.
        """
        removed = list(removed)
        if not orders and not removed:
            return previous, False

        records = {order["guid"]: CachedOrderRecord.from_order(order) for order in orders}
        by_date: dict[int, list[CachedOrderRecord]] = {}
        for guid, record in records.items():
            business_date = resolve_business_date(record.order, record.opened_at_ms)
            if business_date is not None:
                by_date.setdefault(business_date, []).append(record)

        cursor = None
        if advance_cursor:
            newest = next((r for r in sort_records(records.values()) if r.opened_at_ms is not None), None)
            previous_ms = previous.ts_ms if previous else None
            if newest is not None and (previous_ms is None or newest.opened_at_ms > previous_ms):
                cursor = OrderCursor(
                    ts=ms_to_toast_iso(newest.opened_at_ms),
                    order_guid=newest.guid,
                    business_date=resolve_business_date(newest.order, newest.opened_at_ms),
                )

        try:
            if removed:
                await self.cache.remove_orders(removed)
            for order in orders:
                await self.cache.put_order(order)
            for business_date, entries in by_date.items():
                await self.cache.upsert_into_date_index(business_date, entries, known=records)
            if records:
                await self.cache.upsert_recent_index(records.values(), known=records)
            if cursor is not None:
                await self.cache.set_cursor(cursor)
        except Exception as e:
            logger.error(f"❌ Order cache merge failed, cursor not advanced: {e}")
            return previous, False

        if cursor is None:
            return previous, False
        logger.info(f"Order cursor advanced to {cursor.ts} ({cursor.order_guid})")
        return cursor, True

    async def collect(
        self,
        limit: Optional[int] = None,
        *,
        location_id: Optional[str] = None,
        status: Optional[str] = None,
        page_size: Optional[int] = None,
        since: Optional[datetime] = None,
        window: Optional[tuple[datetime, datetime]] = None,
        minutes: Optional[int] = None,
        use_cursor: bool = False,
        debug: bool = False,
        now: Optional[datetime] = None,
    ) -> CollectResult:
        """
        Collect the latest orders.

        Args:
            limit: Maximum orders to return (default from settings)
            location_id: Keep only orders for this location
            status: Keep only orders with this status
            page_size: ordersBulk page size
            since: Fetch from this instant to now
            window: Explicit (start, end) override
            minutes: Fetch the last N minutes; also caps the lookback ladder
            use_cursor: Start from the persisted sync cursor
            debug: Attach a window/filter trace
            now: Override the clock (tests)

        Raises:
            UpstreamError: When the upstream API fails
        """
        started = time.monotonic()
        limit = max(1, limit if limit is not None else self.settings.default_orders_limit)
        page_size = max(1, min(page_size or self.settings.orders_page_size, 100))
        now = now or datetime.now(timezone.utc)

        cursor = await self.cache.get_cursor()
        primary = resolve_fetch_window(
            now,
            window=window,
            since=since,
            minutes=minutes,
            cursor=cursor,
            use_cursor=use_cursor,
            timezone_name=self.settings.restaurant_timezone,
        )

        order_filter = OrderFilter(location_id, status)
        acc = _Accumulator(order_filter)
        traces = [await self._fetch_window(primary, acc, limit, page_size)]
        widest = primary

        from_cache = 0
        if primary.source == "cursor" and not LookbackLadder.satisfied(len(acc.kept), limit):
            from_cache = await self._fill_from_cache(acc, limit)

        tried: list[int] = []
        if primary.source not in ("override", "since"):
            ceiling = minutes if minutes and minutes > 0 else self.settings.max_lookback_minutes
            for step in self.ladder.steps_for(primary.minutes, ceiling):
                if LookbackLadder.satisfied(len(acc.kept), limit):
                    break
                lookback = FetchWindow(now - timedelta(minutes=step), now, "lookback")
                traces.append(await self._fetch_window(lookback, acc, limit, page_size))
                tried.append(step)
                widest = lookback

        records = sort_records(CachedOrderRecord.from_order(o) for o in acc.kept.values())
        kept_orders = [record.order for record in records]
        final = kept_orders[:limit]

        new_cursor, advanced = await self.merge(
            kept_orders,
            cursor,
            removed=acc.removed.values(),
            advance_cursor=not order_filter.narrowed,
        )

        result = CollectResult(
            orders=final,
            window={"start": widest.start_iso, "end": widest.end_iso},
            minutes=round(widest.minutes, 2),
            pages_fetched=sum(t["pagesFetched"] for t in traces),
            lookback_minutes_tried=tried,
            from_cache=from_cache,
            cursor=new_cursor,
            cursor_advanced=advanced,
        )
        if debug:
            last = records[min(limit, len(records)) - 1] if records else None
            result.debug = {
                "initialWindow": primary.to_dict(),
                "windows": traces,
                "totals": {
                    "returned": acc.returned,
                    "filtered": dict(acc.filtered),
                    "uniqueKept": len(acc.kept),
                    "finalReturned": len(final),
                    "fromCache": from_cache,
                    "lastSortKey": {"guid": last.guid, "openedAtMs": last.opened_at_ms} if last else None,
                },
                "cursor": new_cursor.to_dict() if new_cursor else None,
                "elapsedMs": round((time.monotonic() - started) * 1000, 1),
            }

        logger.info(
            f"Collected {len(final)}/{limit} orders "
            f"({result.pages_fetched} pages, {from_cache} from cache, "
            f"lookback={tried or 'none'})"
        )
        return result
