"""
Order Cache & Cursor Store

Persists raw order documents and the indices that make "most recent N
orders" cheap to answer:

    orders:byId:<guid>          full order document (TTL)
    orders:index:<yyyyMMdd>     GUIDs opened on one business date
    orders:recentIndex          newest GUIDs across dates (capped)
    orders:lastFulfilledCursor  incremental sync cursor

Index order is newest opened first, unknown timestamps after that, GUID
ascending as a tiebreak. Writes are read-modify-write with no locking; the
cache is an accelerator and the upstream API stays the source of truth.

Author: Your Name
Version: 2.0.0
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from ordersync.services.kv.base import BaseKeyValueStore
from ordersync.services.orders.fields import parse_business_date, resolve_business_date, resolve_order_opened_at
from ordersync.services.orders.timestamps import parse_toast_timestamp

logger = logging.getLogger(__name__)

ORDER_KEY_PREFIX = "orders:byId:"
DATE_INDEX_PREFIX = "orders:index:"
RECENT_INDEX_KEY = "orders:recentIndex"
CURSOR_KEY = "orders:lastFulfilledCursor"

DEFAULT_RECENT_LIMIT = 300
DEFAULT_ORDER_TTL_SECONDS = 3 * 24 * 60 * 60


# ==============================================================================
# RECORDS
# ==============================================================================

@dataclass
class CachedOrderRecord:
    """
    A GUID plus what is needed to place it in an index.

    Attributes:
        guid: Order GUID
        opened_at_ms: Opened timestamp, None when unknown
        order: Full order document when loaded
    """
    guid: str
    opened_at_ms: Optional[int] = None
    order: Optional[dict[str, Any]] = None

    @classmethod
    def from_order(cls, order: dict[str, Any]) -> "CachedOrderRecord":
        return cls(guid=order["guid"], opened_at_ms=resolve_order_opened_at(order), order=order)


@dataclass
class OrderCursor:
    """
    Position of the incremental sync.

    Attributes:
        ts: ISO-8601 timestamp of the newest synced order
        order_guid: GUID of that order
        business_date: Its business date (yyyyMMdd)
    """
    ts: Optional[str] = None
    order_guid: Optional[str] = None
    business_date: Optional[int] = None

    @property
    def ts_ms(self) -> Optional[int]:
        return parse_toast_timestamp(self.ts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ts": self.ts,
            "orderGuid": self.order_guid,
            "businessDate": self.business_date,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["OrderCursor"]:
        """
        Validate a persisted cursor field by field.

        Invalid fields become None. A non-object payload yields None.
        """
        if not isinstance(payload, dict):
            return None
        ts = payload.get("ts")
        guid = payload.get("orderGuid")
        return cls(
            ts=ts if isinstance(ts, str) and parse_toast_timestamp(ts) is not None else None,
            order_guid=guid if isinstance(guid, str) and guid else None,
            business_date=parse_business_date(payload.get("businessDate")),
        )


def _sort_key(record: CachedOrderRecord) -> tuple:
    if record.opened_at_ms is None:
        return (1, 0, record.guid)
    return (0, -record.opened_at_ms, record.guid)


def sort_records(records: Iterable[CachedOrderRecord]) -> list[CachedOrderRecord]:
    """Newest first, unknown timestamps last, GUID ascending on ties."""
    return sorted(records, key=_sort_key)


def merge_record(
    new: CachedOrderRecord,
    known: Optional[CachedOrderRecord],
) -> CachedOrderRecord:
    """
    Combine a fresh record with a previously known one for the same GUID.

    The record with a timestamp wins; on a tie the fresh one wins. An order
    document is kept from either side.
    """
    if known is None:
        return new
    if new.opened_at_ms is None and known.opened_at_ms is not None:
        winner, other = known, new
    else:
        winner, other = new, known
    return CachedOrderRecord(
        guid=winner.guid,
        opened_at_ms=winner.opened_at_ms,
        order=winner.order if winner.order is not None else other.order,
    )


# ==============================================================================
# CACHE
# ==============================================================================

class OrderCache:
    """
    Order documents, date indices, recent index and cursor on top of a
    key-value store.

    Example:
        >>> cache = OrderCache(get_kv_store())
        >>> await cache.put_order(order)
        >>> await cache.upsert_recent_index([CachedOrderRecord.from_order(order)])
    """

    def __init__(
        self,
        kv: BaseKeyValueStore,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
        ttl_seconds: int = DEFAULT_ORDER_TTL_SECONDS,
    ):
        self.kv = kv
        self.recent_limit = recent_limit
        self.ttl_seconds = ttl_seconds

    # --------------------------------------------------------------------------
    # Orders
    # --------------------------------------------------------------------------

    async def get_order(self, guid: str) -> Optional[dict[str, Any]]:
        data = await self.kv.get_json(f"{ORDER_KEY_PREFIX}{guid}")
        return data if isinstance(data, dict) else None

    async def put_order(self, order: dict[str, Any]) -> None:
        guid = order.get("guid") if isinstance(order, dict) else None
        if not isinstance(guid, str) or not guid:
            raise ValueError("Cannot cache an order without a guid")
        await self.kv.put_json(f"{ORDER_KEY_PREFIX}{guid}", order, ttl_seconds=self.ttl_seconds)

    # --------------------------------------------------------------------------
    # Indices
    # --------------------------------------------------------------------------

    async def _read_index(self, key: str) -> list[str]:
        data = await self.kv.get_json(key)
        if not isinstance(data, list):
            return []
        return [guid for guid in data if isinstance(guid, str)]

    async def get_index_for_date(self, business_date: int) -> list[str]:
        return await self._read_index(f"{DATE_INDEX_PREFIX}{business_date}")

    async def get_recent_index(self) -> list[str]:
        return await self._read_index(RECENT_INDEX_KEY)

    async def _resolve(
        self,
        guid: str,
        known: dict[str, CachedOrderRecord],
    ) -> Optional[CachedOrderRecord]:
        if guid in known:
            return known[guid]
        order = await self.get_order(guid)
        if order is None:
            return None
        return CachedOrderRecord(guid=guid, opened_at_ms=resolve_order_opened_at(order), order=order)

    async def _upsert_index(
        self,
        key: str,
        entries: Iterable[CachedOrderRecord],
        known: Optional[dict[str, CachedOrderRecord]],
        limit: Optional[int],
        ttl_seconds: Optional[int],
    ) -> list[str]:
        known = dict(known or {})
        fresh: dict[str, CachedOrderRecord] = {}
        for entry in entries:
            fresh[entry.guid] = merge_record(entry, fresh.get(entry.guid))

        existing = await self._read_index(key)
        combined = list(fresh) + [guid for guid in existing if guid not in fresh]

        records = []
        seen = set()
        for guid in combined:
            if guid in seen:
                continue
            seen.add(guid)
            if guid in fresh:
                records.append(merge_record(fresh[guid], known.get(guid)))
                continue
            record = await self._resolve(guid, known)
            if record is not None:
                records.append(record)

        ordered = [record.guid for record in sort_records(records)]
        if limit is not None:
            ordered = ordered[:max(limit, 0)]
        await self.kv.put_json(key, ordered, ttl_seconds=ttl_seconds)
        return ordered

    async def upsert_into_date_index(
        self,
        business_date: int,
        entries: Iterable[CachedOrderRecord],
        known: Optional[dict[str, CachedOrderRecord]] = None,
    ) -> list[str]:
        """Merge ``entries`` into one business date's index."""
        return await self._upsert_index(
            f"{DATE_INDEX_PREFIX}{business_date}",
            entries,
            known,
            limit=None,
            ttl_seconds=self.ttl_seconds,
        )

    async def upsert_recent_index(
        self,
        entries: Iterable[CachedOrderRecord],
        known: Optional[dict[str, CachedOrderRecord]] = None,
        limit: Optional[int] = None,
    ) -> list[str]:
        """Merge ``entries`` into the recent index, evicting the oldest past the cap."""
        return await self._upsert_index(
            RECENT_INDEX_KEY,
            entries,
            known,
            limit=limit if limit is not None else self.recent_limit,
            ttl_seconds=None,
        )

    async def _strip_index(self, key: str, guids: set[str], ttl_seconds: Optional[int]) -> None:
        existing = await self._read_index(key)
        remaining = [guid for guid in existing if guid not in guids]
        if len(remaining) != len(existing):
            await self.kv.put_json(key, remaining, ttl_seconds=ttl_seconds)

    async def remove_orders(self, orders: Iterable[dict[str, Any]]) -> list[str]:
        """
        Forget orders upstream now reports as voided or deleted.

        Drops their documents, their recent-index entries and their entries
        in the business-date index each one resolves to.

        Returns:
            list[str]: GUIDs removed
        """
        guids: set[str] = set()
        dates: set[int] = set()
        for order in orders:
            guid = order.get("guid") if isinstance(order, dict) else None
            if not isinstance(guid, str) or not guid:
                continue
            guids.add(guid)
            business_date = resolve_business_date(order, resolve_order_opened_at(order))
            if business_date is not None:
                dates.add(business_date)
        if not guids:
            return []

        for guid in guids:
            await self.kv.delete(f"{ORDER_KEY_PREFIX}{guid}")
        await self._strip_index(RECENT_INDEX_KEY, guids, ttl_seconds=None)
        for business_date in dates:
            await self._strip_index(f"{DATE_INDEX_PREFIX}{business_date}", guids, ttl_seconds=self.ttl_seconds)
        logger.info(f"Removed {len(guids)} voided/deleted orders from the cache")
        return sorted(guids)

    # --------------------------------------------------------------------------
    # Cursor
    # --------------------------------------------------------------------------

    async def get_cursor(self) -> Optional[OrderCursor]:
        return OrderCursor.from_payload(await self.kv.get_json(CURSOR_KEY))

    async def set_cursor(self, cursor: OrderCursor) -> None:
        await self.kv.put_json(CURSOR_KEY, cursor.to_dict())

    async def recent_orders(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Load cached order documents in recent-index order, skipping expired ones."""
        orders = []
        for guid in await self.get_recent_index():
            if limit is not None and len(orders) >= limit:
                break
            order = await self.get_order(guid)
            if order is not None:
                orders.append(order)
        return orders
