"""
Dining-option enrichment.

Toast orders usually carry only a dining option GUID. The configured
dining options map that GUID to a behavior (TAKE_OUT, DINE_IN, ...) and a
display name, which give a better order type than free-text fields.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from ordersync.services.expansion.extractors import first_non_empty, get_value, normalize_order_type

DIRECT_GUID_FIELDS = (
    "check.diningOptionGuid",
    "check.diningOption.guid",
    "check.diningOption.id",
    "order.diningOptionGuid",
    "order.diningOption.guid",
    "order.diningOption.id",
    "order.context.diningOption.guid",
    "order.context.diningOption.id",
)

DIRECT_BEHAVIOR_FIELDS = tuple(
    f"{root}.{name}"
    for root in ("check", "order", "order.context")
    for name in ("diningOption.behavior", "diningOption.type", "diningOption.mode", "diningOptionType")
)

DIRECT_NAME_FIELDS = tuple(
    f"{root}.diningOption.{name}"
    for root in ("check", "order", "order.context")
    for name in ("name", "displayName")
)


@dataclass
class DiningOption:
    guid: str
    behavior: Optional[str]
    name: Optional[str]


def build_dining_option_lookup(options: Iterable[Any]) -> dict[str, DiningOption]:
    """Configured options keyed by lowercased GUID; the first entry per GUID wins."""
    lookup: dict[str, DiningOption] = {}
    for option in options or []:
        if not isinstance(option, dict):
            continue
        guid = first_non_empty(option.get("guid"))
        if not guid or guid.lower() in lookup:
            continue
        lookup[guid.lower()] = DiningOption(
            guid=guid,
            behavior=first_non_empty(option.get("behavior"), option.get("type"), option.get("mode")),
            name=first_non_empty(option.get("name"), option.get("displayName")),
        )
    return lookup


def _first(order: dict[str, Any], check: dict[str, Any], paths: Iterable[str]) -> Optional[str]:
    return first_non_empty(*(get_value(order, check, path) for path in paths))


def enrich_dining_option(
    order_data: dict[str, Any],
    order: dict[str, Any],
    check: dict[str, Any],
    lookup: Optional[dict[str, DiningOption]],
) -> None:
    """
    Fill ``orderTypeNormalized``, ``diningOptionName`` and
    ``diningOptionBehavior`` on an expanded order's data block in place.
    """
    guid = order_data.get("diningOptionGuid") or _first(order, check, DIRECT_GUID_FIELDS)
    behavior = _first(order, check, DIRECT_BEHAVIOR_FIELDS)
    name = _first(order, check, DIRECT_NAME_FIELDS)
    normalized = normalize_order_type(behavior) if behavior else None

    config = lookup.get(guid.lower()) if guid and lookup else None
    if config is not None:
        if config.behavior:
            behavior = config.behavior
            normalized = normalize_order_type(config.behavior) or normalized
        if config.name:
            name = config.name

    if guid and not order_data.get("diningOptionGuid"):
        order_data["diningOptionGuid"] = guid
    if name:
        order_data["diningOptionName"] = name
    if behavior:
        order_data["diningOptionBehavior"] = behavior
    order_data["orderTypeNormalized"] = normalized or order_data.get("orderType")
