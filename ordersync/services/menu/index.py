"""
Menu Index

Flattens a published menus document into GUID lookups so the expansion
pipeline can resolve item and modifier names in O(1).

Items are reachable by ``guid``, ``multiLocationId`` and ``referenceId``.
Modifier options come from ``modifierOptionReferences`` and from every
``modifierGroupReferences`` group's options; pre-modifiers from
``preModifierGroupReferences``.

Author: Your Name
Version: 2.0.0
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

ALIAS_FIELDS = ("multiLocationId", "referenceId")


@dataclass
class MenuItemEntry:
    """An item with the menu and group it was found under."""
    menu: dict[str, Any]
    group: dict[str, Any]
    item: dict[str, Any]


@dataclass
class MenuIndex:
    """
    GUID lookups over one menu revision.

    Attributes:
        items: Item GUID -> (menu, group, item)
        modifier_groups: Modifier group GUID -> group
        modifier_options: Modifier option GUID -> option
        pre_modifiers: Pre-modifier GUID -> option
    """
    items: dict[str, MenuItemEntry] = field(default_factory=dict)
    modifier_groups: dict[str, dict[str, Any]] = field(default_factory=dict)
    modifier_options: dict[str, dict[str, Any]] = field(default_factory=dict)
    pre_modifiers: dict[str, dict[str, Any]] = field(default_factory=dict)
    item_aliases: dict[str, MenuItemEntry] = field(default_factory=dict)
    modifier_aliases: dict[str, dict[str, Any]] = field(default_factory=dict)
    option_group_names: dict[str, str] = field(default_factory=dict)

    def find_item(self, ref: Any) -> Optional[MenuItemEntry]:
        """Look up an item by a selection's ``item`` reference or a bare GUID."""
        if isinstance(ref, str):
            return self.items.get(ref) or self.item_aliases.get(ref)
        if not isinstance(ref, dict):
            return None
        guid = ref.get("guid")
        if isinstance(guid, str) and guid in self.items:
            return self.items[guid]
        for key in _alias_keys(ref):
            if key in self.item_aliases:
                return self.item_aliases[key]
        return None

    def find_modifier(self, ref: Any) -> Optional[dict[str, Any]]:
        """Look up a modifier option (or pre-modifier) by reference or GUID."""
        if isinstance(ref, str):
            return self.modifier_options.get(ref) or self.pre_modifiers.get(ref) or self.modifier_aliases.get(ref)
        if not isinstance(ref, dict):
            return None
        guid = ref.get("guid")
        if isinstance(guid, str):
            found = self.modifier_options.get(guid) or self.pre_modifiers.get(guid)
            if found is not None:
                return found
        for key in _alias_keys(ref):
            if key in self.modifier_aliases:
                return self.modifier_aliases[key]
        return None

    @property
    def stats(self) -> dict[str, int]:
        return {
            "items": len(self.items),
            "modifierGroups": len(self.modifier_groups),
            "modifierOptions": len(self.modifier_options),
            "preModifiers": len(self.pre_modifiers),
        }


def _alias_keys(obj: dict[str, Any]) -> list[str]:
    keys = []
    for name in ALIAS_FIELDS:
        value = obj.get(name)
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, (str, int)) and str(value):
            keys.append(str(value))
    return keys


def _references(value: Any) -> Iterable[dict[str, Any]]:
    """Reference tables arrive as ``{id: obj}`` maps or plain lists."""
    if isinstance(value, dict):
        return [v for v in value.values() if isinstance(v, dict)]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, dict)]
    return []


def _reference_table(value: Any) -> dict[str, dict[str, Any]]:
    if isinstance(value, dict):
        return {str(k): v for k, v in value.items() if isinstance(v, dict)}
    return {}


def build_menu_index(document: Any) -> MenuIndex:
    """
    Build a MenuIndex from a published menus document.

    Nested ``menuGroups`` are walked iteratively. Malformed parts are
    skipped rather than failing the whole index.
    """
    index = MenuIndex()
    if not isinstance(document, dict):
        return index

    def add_item(entry: MenuItemEntry) -> None:
        guid = entry.item.get("guid")
        if isinstance(guid, str) and guid:
            index.items[guid] = entry
        for key in _alias_keys(entry.item):
            index.item_aliases.setdefault(key, entry)

    def add_option(option: dict[str, Any], target: dict[str, dict[str, Any]]) -> None:
        guid = option.get("guid")
        if isinstance(guid, str) and guid:
            target[guid] = option
        for key in _alias_keys(option):
            index.modifier_aliases.setdefault(key, option)

    for menu in _references(document.get("menus")):
        stack = [g for g in reversed(menu.get("menuGroups") or []) if isinstance(g, dict)]
        while stack:
            group = stack.pop()
            for item in group.get("items") or []:
                if isinstance(item, dict):
                    add_item(MenuItemEntry(menu=menu, group=group, item=item))
            stack.extend(g for g in reversed(group.get("menuGroups") or []) if isinstance(g, dict))

    option_table = _reference_table(document.get("modifierOptionReferences"))
    for option in option_table.values():
        add_option(option, index.modifier_options)

    for group in _references(document.get("modifierGroupReferences")):
        guid = group.get("guid")
        if isinstance(guid, str) and guid:
            index.modifier_groups[guid] = group
        for option in _group_options(group, option_table):
            add_option(option, index.modifier_options)
            option_guid = option.get("guid")
            if isinstance(option_guid, str) and isinstance(group.get("name"), str):
                index.option_group_names.setdefault(option_guid, group["name"])

    for group in _references(document.get("preModifierGroupReferences")):
        for option in _group_options(group, option_table, keys=("preModifiers", "options")):
            add_option(option, index.pre_modifiers)

    logger.debug(f"Built menu index: {index.stats}")
    return index


def _group_options(
    group: dict[str, Any],
    option_table: dict[str, dict[str, Any]],
    keys: tuple[str, ...] = ("options", "modifierOptionReferences"),
) -> list[dict[str, Any]]:
    """Inline option objects, or ids pointing into ``modifierOptionReferences``."""
    options = []
    for key in keys:
        for value in group.get(key) or []:
            if isinstance(value, dict):
                options.append(value)
            elif isinstance(value, (str, int)) and not isinstance(value, bool):
                resolved = option_table.get(str(value))
                if resolved is not None:
                    options.append(resolved)
    return options


# ==============================================================================
# INDEX CACHE
# ==============================================================================

class MenuIndexCache:
    """
    Single-entry cache of the last built index.

    Keyed by the identity of the document object plus a fingerprint
    (menu revision), so a re-fetched document with the same revision is
    rebuilt only when it is a different object.
    """

    def __init__(self):
        self._key: Optional[tuple[int, Optional[str]]] = None
        self._index: Optional[MenuIndex] = None
        self.hits = 0
        self.misses = 0

    def get_or_build(self, document: Any, fingerprint: Optional[str] = None) -> MenuIndex:
        key = (id(document), fingerprint)
        if self._index is not None and self._key == key:
            self.hits += 1
            return self._index
        self.misses += 1
        self._index = build_menu_index(document)
        self._key = key
        return self._index

    def clear(self) -> None:
        self._key = None
        self._index = None
        self.hits = 0
        self.misses = 0

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "cached": self._index is not None,
            "fingerprint": self._key[1] if self._key else None,
        }


_index_cache = MenuIndexCache()


def get_or_build_index(document: Any, fingerprint: Optional[str] = None) -> MenuIndex:
    """Return the process-wide cached index for ``document``."""
    return _index_cache.get_or_build(document, fingerprint)


def get_menu_index_cache() -> MenuIndexCache:
    return _index_cache
