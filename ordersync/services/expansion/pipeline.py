"""
Order Expansion Pipeline

Turns raw Toast orders into the flat, financially reconciled shape the
order board renders: one ExpandedOrder per (order, check), newest first.

Work is time-budgeted. The deadline is checked between orders and between
checks; once it passes no new work starts and the partial result is
returned with ``timed_out=True``.

Built checks are memoized in a small per-process LRU keyed by
``orderId::checkId`` and validated against a fingerprint of the check and
the menu revision.

Author: Your Name
Version: 2.0.0
"""

import copy
import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from ordersync.services.expansion.dining import (
    DiningOption,
    build_dining_option_lookup,
    enrich_dining_option,
)
from ordersync.services.expansion.extractors import (
    extract_number,
    extract_order_meta,
    extract_order_time,
    get_special_request,
    is_voided,
    normalize_quantity,
    pick_string,
    pick_string_paths,
    resolve_line_item_id,
)
from ordersync.services.expansion.fulfillment import (
    is_line_item,
    normalize_item_fulfillment_status,
    normalize_status_token,
    parse_fulfillment_filter,
    resolve_fulfillment_status,
)
from ordersync.services.expansion.models import (
    Diagnostics,
    ExpandedOrder,
    ExpandedOrderItem,
    ExpansionResult,
    ItemMoney,
    OrderTotals,
)
from ordersync.services.expansion.money import (
    DISCOUNT_FIELDS,
    SERVICE_CHARGE_FIELDS,
    TIP_FIELDS,
    collect_modifier_details,
    resolve_item_total,
    sum_amounts,
    to_cents,
)
from ordersync.services.expansion.sorting import build_item_sort_meta, sort_items
from ordersync.services.menu.index import MenuIndex

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60
CACHE_MAX_ENTRIES = 250


# ==============================================================================
# EXPANDED ORDER CACHE
# ==============================================================================

@dataclass
class _CacheEntry:
    fingerprint: str
    menu_version: Optional[str]
    stored_at: float
    order: ExpandedOrder


class ExpandedOrderCache:
    """
    LRU of built checks. Reads and writes are deep copies so callers can
    mutate what they get back.
    """

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(order_id: str, check_id: Optional[str]) -> str:
        return f"{order_id}::{check_id or ''}"

    def get(self, key: str, fingerprint: str, menu_version: Optional[str]) -> Optional[ExpandedOrder]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry.stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        if entry.fingerprint != fingerprint or entry.menu_version != menu_version:
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return copy.deepcopy(entry.order)

    def put(self, key: str, fingerprint: str, menu_version: Optional[str], order: ExpandedOrder) -> None:
        now = self.clock()
        for stale in [k for k, e in self._entries.items() if now - e.stored_at > self.ttl_seconds]:
            del self._entries[stale]
        self._entries[key] = _CacheEntry(fingerprint, menu_version, now, copy.deepcopy(order))
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        self.misses += 1

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    @property
    def stats(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "size": len(self._entries)}


_expanded_cache = ExpandedOrderCache()


def get_expanded_order_cache() -> ExpandedOrderCache:
    return _expanded_cache


def _selections(check: dict[str, Any]) -> list[Any]:
    selections = check.get("selections")
    return selections if isinstance(selections, list) else []


def _digest(value: Any) -> str:
    payload = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:16]


def _modifier_signature(selection: dict[str, Any]) -> str:
    modifiers = selection.get("modifiers")
    if not isinstance(modifiers, list):
        return ""
    parts = []
    for modifier in modifiers:
        if not isinstance(modifier, dict):
            parts.append("invalid")
            continue
        item = modifier.get("item") if isinstance(modifier.get("item"), dict) else {}
        price = extract_number(modifier, ("price", "receiptLinePrice"))
        parts.append(",".join(str(p) for p in (
            modifier.get("guid") if isinstance(modifier.get("guid"), str) else "",
            item.get("guid") if isinstance(item.get("guid"), str) else "",
            price if price is not None else "",
            normalize_quantity(modifier.get("quantity")),
            "voided" if is_voided(modifier) else "active",
            f"[{_modifier_signature(modifier)}]",
        )))
    return ";".join(parts)


def compute_check_fingerprint(
    order_id: str,
    check_id: Optional[str],
    check: dict[str, Any],
    order: Optional[dict[str, Any]] = None,
) -> str:
    """
    Everything about a check that can change its expanded form.

    Selections and their modifier trees are fingerprinted field by field.
    The remaining check fields and the order-level fields (fulfillment
    status and history, customer, dining option, times) are folded in as
    digests.
    """
    parts = []
    for index, selection in enumerate(_selections(check)):
        if not isinstance(selection, dict):
            parts.append("invalid")
            continue
        renderable = is_line_item(selection)
        price = extract_number(selection, ("receiptLinePrice", "price"))
        explicit = to_cents(selection.get("price"))
        item = selection.get("item") if isinstance(selection.get("item"), dict) else {}
        parts.append(":".join(str(p) for p in (
            selection.get("guid") if isinstance(selection.get("guid"), str) else "",
            item.get("guid") if isinstance(item.get("guid"), str) else "",
            resolve_line_item_id(order_id, check_id, selection, index) if renderable else "",
            "voided" if is_voided(selection) else "active",
            "line" if renderable else "other",
            normalize_quantity(selection.get("quantity")),
            price if price is not None else "",
            explicit if explicit is not None else "",
            sum_amounts(selection.get("appliedDiscounts"), DISCOUNT_FIELDS),
            normalize_item_fulfillment_status(selection.get("fulfillmentStatus")) or "",
            _modifier_signature(selection),
            _digest({k: v for k, v in selection.items() if k != "modifiers"}),
        )))

    version = check.get("version")
    return "::".join(str(p) for p in (
        check.get("lastModifiedDate") if isinstance(check.get("lastModifiedDate"), str) else "",
        version if isinstance(version, (str, int)) and not isinstance(version, bool) else "",
        sum_amounts(check.get("appliedServiceCharges"), SERVICE_CHARGE_FIELDS),
        sum_amounts(check.get("payments"), TIP_FIELDS),
        sum_amounts(check.get("appliedDiscounts"), DISCOUNT_FIELDS),
        _digest({k: v for k, v in check.items() if k != "selections"}),
        _digest({k: v for k, v in (order or {}).items() if k != "checks"}),
        "|".join(parts),
    ))


# ==============================================================================
# BUILDING ONE CHECK
# ==============================================================================

@dataclass
class _Candidate:
    order: dict[str, Any]
    check: dict[str, Any]
    order_time: str
    time_ms: Optional[int]
    order_id: str
    check_id: Optional[str]

    def sort_key(self) -> tuple:
        if self.time_ms is None:
            return (1, 0, self.order_id, self.check_id or "")
        return (0, -self.time_ms, self.order_id, self.check_id or "")


def build_check(
    candidate: _Candidate,
    menu_index: MenuIndex,
    diagnostics: Diagnostics,
) -> Optional[ExpandedOrder]:
    """Expand one check; None when it has nothing to show."""
    order, check = candidate.order, candidate.check
    order_id, check_id = candidate.order_id, candidate.check_id

    items: list[ExpandedOrderItem] = []
    metas = []
    item_statuses = []
    base_subtotal = 0
    modifier_subtotal = 0
    discount_total = 0

    for index, selection in enumerate(_selections(check)):
        if not isinstance(selection, dict):
            continue
        if is_voided(selection):
            diagnostics.selections_voided += 1
            continue
        if not is_line_item(selection):
            diagnostics.selections_filtered += 1
            continue

        line_item_id = resolve_line_item_id(order_id, check_id, selection, index)
        item_ref = selection.get("item") if isinstance(selection.get("item"), dict) else {}
        entry = menu_index.find_item(item_ref)
        menu_item = entry.item if entry else {}
        item_name = pick_string([
            menu_item.get("kitchenName"),
            menu_item.get("name"),
            selection.get("displayName"),
            selection.get("name"),
            item_ref.get("name"),
            item_ref.get("kitchenName"),
            item_ref.get("guid"),
        ]) or "Unknown item"
        menu_item_id = pick_string([item_ref.get("guid")])
        quantity = normalize_quantity(selection.get("quantity"))

        modifiers, modifiers_cents = collect_modifier_details(selection, menu_index, quantity)
        modifier_subtotal += modifiers_cents

        unit_cents = to_cents(extract_number(selection, ("receiptLinePrice", "price")))
        base_cents = unit_cents * quantity if unit_cents is not None else None
        if base_cents is not None:
            base_subtotal += base_cents

        total_cents = resolve_item_total(base_cents, modifiers_cents, to_cents(selection.get("price")))
        if total_cents is not None and base_cents is None:
            base_subtotal += max(total_cents - modifiers_cents, 0)

        discount_total += sum_amounts(selection.get("appliedDiscounts"), DISCOUNT_FIELDS)

        status = normalize_item_fulfillment_status(selection.get("fulfillmentStatus"))
        item_statuses.append(status)

        items.append(ExpandedOrderItem(
            line_item_id=line_item_id,
            menu_item_id=menu_item_id,
            item_name=item_name,
            quantity=quantity,
            modifiers=modifiers,
            money=ItemMoney(
                base_item_price_cents=base_cents,
                modifier_total_cents=modifiers_cents if modifiers_cents > 0 else None,
                total_item_price_cents=total_cents,
            ),
            fulfillment_status=status,
            special_instructions=pick_string([
                selection.get("specialInstructions"),
                get_special_request(selection, item_name),
            ]),
        ))
        metas.append(build_item_sort_meta(selection, item_name, menu_item_id, line_item_id, index))

    if not items and base_subtotal == 0 and modifier_subtotal == 0 and discount_total == 0:
        return None

    discount_total += sum_amounts(check.get("appliedDiscounts"), DISCOUNT_FIELDS)
    service_charge = sum_amounts(check.get("appliedServiceCharges"), SERVICE_CHARGE_FIELDS)
    tips = sum_amounts(check.get("payments"), TIP_FIELDS)
    grand_total = max(base_subtotal + modifier_subtotal - discount_total + service_charge + tips, 0)

    meta = extract_order_meta(order, check)
    order_data: dict[str, Any] = {
        "orderId": order_id,
        "location": {"locationId": meta["locationId"]} if meta["locationId"] else {},
        "orderTime": candidate.order_time,
        "timeDue": meta["timeDue"],
        "orderNumber": meta["orderNumber"],
        "checkId": check_id,
        "status": meta["status"],
        "fulfillmentStatus": resolve_fulfillment_status(order, check, item_statuses),
        "customerName": meta["customerName"],
        "orderType": meta["orderType"],
        "orderTypeNormalized": meta["orderType"],
        "diningOptionGuid": meta["diningOptionGuid"],
    }
    for key in ("deliveryState", "deliveryInfo", "curbsidePickupInfo", "table", "employee",
                "promisedDate", "estimatedFulfillmentDate"):
        if meta[key]:
            order_data[key] = meta[key]
    if meta["seats"]:
        order_data["seats"] = meta["seats"]

    return ExpandedOrder(
        order_data=order_data,
        currency=meta["currency"],
        items=sort_items(items, metas),
        totals=OrderTotals(
            base_items_subtotal_cents=base_subtotal,
            modifiers_subtotal_cents=modifier_subtotal,
            discount_total_cents=discount_total,
            service_charge_cents=service_charge,
            tip_cents=tips,
            grand_total_cents=grand_total,
        ),
    )


# ==============================================================================
# PIPELINE
# ==============================================================================

def build_expanded_orders(
    orders: Iterable[Any],
    menu_index: Optional[MenuIndex],
    *,
    limit: int,
    time_budget_ms: int = 10_000,
    started_at: Optional[float] = None,
    fulfillment_status: Any = None,
    dining_options: Optional[Iterable[dict[str, Any]]] = None,
    menu_version: Optional[str] = None,
    cache: Optional[ExpandedOrderCache] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ExpansionResult:
    """
    Expand raw orders into at most ``limit`` order-board entries.

    Args:
        orders: Raw Toast order documents
        menu_index: Index for name resolution (an empty one when None)
        limit: Maximum entries to return
        time_budget_ms: Work budget measured from ``started_at``
        started_at: ``clock()`` value the budget starts from (defaults to now)
        fulfillment_status: Keep only these check statuses (str, comma list or list)
        dining_options: Configured dining options for order-type enrichment
        menu_version: Menu revision; part of the memo validation
        cache: Expanded-order memo (the process-wide one by default)

    Returns:
        ExpansionResult: entries newest first, diagnostics, and the timeout flag
    """
    menu_index = menu_index or MenuIndex()
    cache = cache or _expanded_cache
    started_at = clock() if started_at is None else started_at
    deadline = started_at + time_budget_ms / 1000
    diagnostics = Diagnostics()
    status_filter = parse_fulfillment_filter(fulfillment_status)
    dining_lookup: dict[str, DiningOption] = build_dining_option_lookup(dining_options or [])
    timed_out = False

    candidates: list[_Candidate] = []
    for order in orders:
        if clock() > deadline:
            timed_out = True
            break
        if not isinstance(order, dict):
            continue
        order_id = pick_string([order.get("guid"), order.get("id")])
        if not order_id:
            continue
        diagnostics.orders_seen += 1
        if is_voided(order):
            diagnostics.orders_voided += 1
            continue
        order_time = extract_order_time(order)
        if order_time is None:
            diagnostics.orders_time_parse += 1
            continue

        checks = order.get("checks") if isinstance(order.get("checks"), list) else []
        for check in checks:
            if clock() > deadline:
                timed_out = True
                break
            if not isinstance(check, dict):
                continue
            diagnostics.checks_seen += 1
            if is_voided(check):
                diagnostics.orders_voided += 1
                continue
            candidates.append(_Candidate(
                order=order,
                check=check,
                order_time=order_time[0],
                time_ms=order_time[1],
                order_id=order_id,
                check_id=pick_string_paths(order, check, ("check.guid", "check.id")),
            ))
        if timed_out:
            break

    candidates.sort(key=_Candidate.sort_key)

    built: list[ExpandedOrder] = []
    for candidate in candidates:
        if len(built) >= limit:
            break
        if clock() > deadline:
            timed_out = True
            break

        key = ExpandedOrderCache.key(candidate.order_id, candidate.check_id)
        fingerprint = compute_check_fingerprint(
            candidate.order_id, candidate.check_id, candidate.check, candidate.order
        )
        expanded = cache.get(key, fingerprint, menu_version)
        if expanded is None:
            expanded = build_check(candidate, menu_index, diagnostics)
            if expanded is None:
                continue
            cache.put(key, fingerprint, menu_version, expanded)

        enrich_dining_option(expanded.order_data, candidate.order, candidate.check, dining_lookup)

        if status_filter and normalize_status_token(expanded.order_data.get("fulfillmentStatus")) not in status_filter:
            continue

        diagnostics.items_included += len(expanded.items)
        diagnostics.totals.add(expanded.totals)
        built.append(expanded)

    diagnostics.cache = cache.stats
    if timed_out:
        logger.warning(
            f"⚠️ Expansion budget of {time_budget_ms}ms exhausted after "
            f"{len(built)} orders"
        )
    logger.debug(
        f"Expanded {len(built)} orders from {diagnostics.orders_seen} raw "
        f"(cache {cache.stats})"
    )
    return ExpansionResult(orders=built, diagnostics=diagnostics, timed_out=timed_out)
