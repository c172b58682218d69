"""
Item ordering within a check.

Items keep the order the POS displayed them in when it says so, then fall
back to when they were rung in, their receipt position, and finally name
and ids so the result is stable across requests.
"""

from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any, Optional

from ordersync.services.expansion.extractors import extract_number, extract_timestamp
from ordersync.services.expansion.models import ExpandedOrderItem

DISPLAY_ORDER_FIELDS = (
    "displaySequence", "displayOrder", "displayIndex", "displayPosition",
    "sequence", "sequenceNumber", "position", "context.displayOrder", "context.displaySequence",
)
CREATED_TIME_FIELDS = ("createdDate", "createdAt", "creationDate", "createdTime", "fireTime", "timestamp", "time")
RECEIPT_POSITION_FIELDS = ("receiptLinePosition", "receiptLineIndex", "receiptPosition", "receiptIndex")
SEAT_FIELDS = ("seatNumber", "seat", "seatPosition", "seatNum", "context.seatNumber")

PRESENT_FIRST_KEYS = ("display_order", "created_time", "receipt_position", "selection_index")


@dataclass
class ItemSortMeta:
    display_order: Optional[float]
    created_time: Optional[int]
    receipt_position: Optional[float]
    selection_index: Optional[float]
    iteration: int
    seat_number: Optional[float]
    item_name_lower: str
    menu_item_id: Optional[str]
    line_item_id: str


def build_item_sort_meta(
    selection: dict[str, Any],
    item_name: str,
    menu_item_id: Optional[str],
    line_item_id: str,
    iteration: int,
) -> ItemSortMeta:
    created = extract_timestamp(selection, CREATED_TIME_FIELDS)
    return ItemSortMeta(
        display_order=extract_number(selection, DISPLAY_ORDER_FIELDS),
        created_time=created[1] if created else None,
        receipt_position=extract_number(selection, RECEIPT_POSITION_FIELDS),
        selection_index=extract_number(selection, ("selectionIndex",)),
        iteration=iteration,
        seat_number=extract_number(selection, SEAT_FIELDS),
        item_name_lower=item_name.lower(),
        menu_item_id=menu_item_id,
        line_item_id=line_item_id,
    )


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def compare_item_meta(a: ItemSortMeta, b: ItemSortMeta) -> int:
    for key in PRESENT_FIRST_KEYS:
        left, right = getattr(a, key), getattr(b, key)
        if left is not None and right is not None and left != right:
            return _cmp(left, right)
        if left is not None and right is None:
            return -1
        if left is None and right is not None:
            return 1
    if a.iteration != b.iteration:
        return _cmp(a.iteration, b.iteration)
    if a.seat_number is not None or b.seat_number is not None:
        if a.seat_number is not None and b.seat_number is not None and a.seat_number != b.seat_number:
            return _cmp(a.seat_number, b.seat_number)
        if a.seat_number is not None and b.seat_number is None:
            return -1
        if b.seat_number is not None and a.seat_number is None:
            return 1
    if a.item_name_lower != b.item_name_lower:
        return _cmp(a.item_name_lower, b.item_name_lower)
    if (a.menu_item_id or "") != (b.menu_item_id or ""):
        return _cmp(a.menu_item_id or "", b.menu_item_id or "")
    return _cmp(a.line_item_id, b.line_item_id)


def sort_items(items: list[ExpandedOrderItem], metas: list[ItemSortMeta]) -> list[ExpandedOrderItem]:
    paired = sorted(zip(items, metas), key=cmp_to_key(lambda x, y: compare_item_meta(x[1], y[1])))
    return [item for item, _ in paired]
