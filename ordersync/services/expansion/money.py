"""
Money and modifier aggregation.

Amounts arrive as decimal dollars and are converted to integer cents,
rounding half up on the decimal text of the value. Modifier trees are
flattened first (every nested modifier becomes a FlatModifier pointing at
its parent selection; voided or deleted modifiers and their subtrees are
skipped), then collapsed by (id or name, group, unit price) so the same
add-on ordered twice shows up once with quantity 2.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional

from ordersync.services.expansion.extractors import (
    extract_number,
    is_number,
    is_voided,
    normalize_quantity,
    pick_string,
)
from ordersync.services.expansion.models import ModifierAggregate
from ordersync.services.menu.index import MenuIndex

DISCOUNT_FIELDS = ("discountAmount", "amount", "value")
SERVICE_CHARGE_FIELDS = ("chargeAmount", "amount")
TIP_FIELDS = ("tipAmount", "tip", "gratuity")


def to_cents(value: Any) -> Optional[int]:
    if not is_number(value):
        return None
    return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def sum_amounts(collection: Any, fields: Iterable[str]) -> int:
    """Sum the first numeric field of every entry, ignoring negatives."""
    if not isinstance(collection, list):
        return 0
    fields = tuple(fields)
    total = 0
    for entry in collection:
        cents = to_cents(extract_number(entry, fields))
        if cents is not None:
            total += max(cents, 0)
    return total


@dataclass
class FlatModifier:
    """
    A single modifier from anywhere in a selection's tree.

    ``price_cents`` is already multiplied by the modifier's own quantity and
    every ancestor quantity.
    """
    id: Optional[str]
    name: str
    group_name: Optional[str]
    unit_price_cents: Optional[int]
    quantity: int
    price_cents: int
    parent_selection_id: Optional[str]
    depth: int


def flatten_modifiers(
    selection: dict[str, Any],
    menu_index: MenuIndex,
    parent_quantity: int,
    depth: int = 0,
) -> list[FlatModifier]:
    modifiers = selection.get("modifiers")
    if not isinstance(modifiers, list):
        return []

    parent_id = selection.get("guid") if isinstance(selection.get("guid"), str) else None
    flat = []
    for modifier in modifiers:
        if not isinstance(modifier, dict) or is_voided(modifier):
            continue
        item_ref = modifier.get("item") if isinstance(modifier.get("item"), dict) else {}
        base = menu_index.find_modifier(item_ref) or {}

        name = pick_string([
            base.get("kitchenName"),
            base.get("name"),
            modifier.get("displayName"),
            modifier.get("name"),
            item_ref.get("name"),
            item_ref.get("guid"),
        ]) or "Unknown modifier"
        modifier_id = pick_string([item_ref.get("guid"), base.get("guid"), modifier.get("guid")])
        group_name = pick_string([
            (modifier.get("optionGroup") or {}).get("name") if isinstance(modifier.get("optionGroup"), dict) else None,
            base.get("optionGroupName"),
            base.get("groupName"),
            (base.get("menuOptionGroup") or {}).get("name") if isinstance(base.get("menuOptionGroup"), dict) else None,
            menu_index.option_group_names.get(modifier_id) if modifier_id else None,
        ])
        quantity = normalize_quantity(modifier.get("quantity"))
        unit = to_cents(extract_number(modifier, ("price", "receiptLinePrice")))

        flat.append(FlatModifier(
            id=modifier_id,
            name=name,
            group_name=group_name,
            unit_price_cents=unit,
            quantity=quantity,
            price_cents=unit * quantity * parent_quantity if unit is not None else 0,
            parent_selection_id=parent_id,
            depth=depth,
        ))
        flat.extend(flatten_modifiers(modifier, menu_index, parent_quantity * quantity, depth + 1))
    return flat


def _collapse_key(modifier: FlatModifier) -> tuple:
    identifier = f"id:{modifier.id}" if modifier.id else f"name:{modifier.name.lower()}"
    unit = modifier.unit_price_cents if modifier.unit_price_cents is not None else -1
    return (identifier, (modifier.group_name or "").lower(), unit)


def _modifier_order(modifier: ModifierAggregate) -> tuple:
    return ((modifier.group_name or "").lower(), modifier.name.lower(), modifier.id or "")


def collapse_modifiers(flat: Iterable[FlatModifier]) -> list[ModifierAggregate]:
    """Merge identical modifiers, summing quantity and price; sorted for display."""
    merged: dict[tuple, ModifierAggregate] = {}
    for modifier in flat:
        key = _collapse_key(modifier)
        existing = merged.get(key)
        if existing is None:
            merged[key] = ModifierAggregate(
                id=modifier.id,
                name=modifier.name,
                group_name=modifier.group_name,
                price_cents=modifier.price_cents,
                quantity=modifier.quantity,
            )
            continue
        existing.quantity += modifier.quantity
        existing.price_cents += modifier.price_cents
        if not existing.group_name and modifier.group_name:
            existing.group_name = modifier.group_name
    return sorted(merged.values(), key=_modifier_order)


def collect_modifier_details(
    selection: dict[str, Any],
    menu_index: MenuIndex,
    parent_quantity: int,
) -> tuple[list[ModifierAggregate], int]:
    """Collapsed modifiers for a selection and their total in cents."""
    collapsed = collapse_modifiers(flatten_modifiers(selection, menu_index, parent_quantity))
    return collapsed, sum(m.price_cents for m in collapsed)


def resolve_item_total(
    base_total: Optional[int],
    modifiers_total: int,
    explicit_total: Optional[int],
) -> Optional[int]:
    if explicit_total is not None and base_total is not None:
        return max(explicit_total, base_total + modifiers_total)
    if explicit_total is not None:
        return explicit_total
    if base_total is not None:
        return base_total + modifiers_total
    return modifiers_total if modifiers_total > 0 else None
