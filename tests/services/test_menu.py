import pytest

from ordersync.services.menu import MenuIndexCache, build_menu_index, menu_revision
from ordersync.services.menu.repository import DINING_OPTIONS_KEY, MENU_BODY_KEY
from ordersync.services.toast.errors import UpstreamError


# =============================================================================
# INDEX
# =============================================================================

def test_index_walks_nested_groups(menu_document):
    index = build_menu_index(menu_document)

    latte = index.find_item({"guid": "item-latte"})
    bagel = index.find_item("item-bagel")

    assert latte.item["kitchenName"] == "LATTE"
    assert latte.group["name"] == "Drinks"
    assert latte.menu["name"] == "All Day"
    assert bagel.group["name"] == "Food"
    assert index.stats == {"items": 2, "modifierGroups": 2, "modifierOptions": 2, "preModifiers": 1}


def test_items_resolve_through_aliases(menu_document):
    index = build_menu_index(menu_document)

    found = index.find_item({"guid": "unknown", "multiLocationId": "ml-latte"})

    assert found.item["guid"] == "item-latte"
    assert index.find_item({"guid": "unknown"}) is None
    assert index.find_item(None) is None


def test_modifier_options_by_reference_and_inline(menu_document):
    index = build_menu_index(menu_document)

    assert index.find_modifier({"guid": "mod-oat"})["kitchenName"] == "OAT"
    assert index.find_modifier("mod-shot")["price"] == 1.0
    assert index.find_modifier({"guid": "pre-light"})["name"] == "Light"
    assert index.option_group_names == {"mod-oat": "Milk", "mod-shot": "Espresso"}


def test_building_leaves_the_document_untouched(menu_document):
    before = repr(menu_document)

    build_menu_index(menu_document)

    assert repr(menu_document) == before


@pytest.mark.parametrize("document", [None, [], "menu", {"menus": "nope", "modifierGroupReferences": 5}])
def test_malformed_documents_give_an_empty_index(document):
    index = build_menu_index(document)

    assert index.stats == {"items": 0, "modifierGroups": 0, "modifierOptions": 0, "preModifiers": 0}


def test_index_cache_rebuilds_on_new_revision(menu_document):
    cache = MenuIndexCache()

    first = cache.get_or_build(menu_document, "rev-1")
    again = cache.get_or_build(menu_document, "rev-1")
    changed = cache.get_or_build(menu_document, "rev-2")

    assert first is again
    assert changed is not first
    assert cache.stats["hits"] == 1
    assert cache.stats["misses"] == 2
    assert cache.stats["fingerprint"] == "rev-2"


def test_revision_ignores_key_order():
    assert menu_revision({"a": 1, "b": 2}) == menu_revision({"b": 2, "a": 1})
    assert menu_revision({"a": 1}) != menu_revision({"a": 2})


# =============================================================================
# REPOSITORY
# =============================================================================

@pytest.mark.asyncio
async def test_first_fetch_downloads_then_serves_fresh(menu_repository, fake_api):
    first = await menu_repository.get_menu()
    second = await menu_repository.get_menu()

    assert first.cache_status == "miss-network"
    assert second.cache_status == "hit-fresh"
    assert second.cache_hit
    assert second.updated_at == "2024-05-01T00:00:00.000+0000"
    assert fake_api.menu_calls == 1
    assert fake_api.metadata_calls == 2


@pytest.mark.asyncio
async def test_index_is_reused_while_revision_is_unchanged(menu_repository):
    first = await menu_repository.get_menu()
    second = await menu_repository.get_menu()

    assert first.index is second.index


@pytest.mark.asyncio
async def test_metadata_change_triggers_download(menu_repository, fake_api):
    await menu_repository.get_menu()
    fake_api.metadata = {"lastUpdated": "2024-05-02T00:00:00.000+0000"}

    snapshot = await menu_repository.get_menu()

    assert snapshot.cache_status == "miss-network"
    assert fake_api.menu_calls == 2


@pytest.mark.asyncio
async def test_refresh_forces_download(menu_repository, fake_api):
    await menu_repository.get_menu()

    snapshot = await menu_repository.get_menu(refresh=True)

    assert snapshot.cache_status == "miss-network"
    assert fake_api.menu_calls == 2


@pytest.mark.asyncio
async def test_upstream_failure_serves_stale_body(menu_repository, fake_api):
    await menu_repository.get_menu()
    fake_api.menu_error = UpstreamError("menus unavailable", status=503)

    snapshot = await menu_repository.get_menu()

    assert snapshot.cache_status == "hit-stale"
    assert snapshot.to_dict()["cacheHit"] is True
    assert snapshot.document["menus"][0]["guid"] == "menu-1"


@pytest.mark.asyncio
async def test_upstream_failure_without_cache_raises(menu_repository, fake_api):
    fake_api.menu_error = UpstreamError("menus unavailable", status=503)

    with pytest.raises(UpstreamError):
        await menu_repository.get_menu()


@pytest.mark.asyncio
async def test_empty_menu_body_without_cache_raises(menu_repository, fake_api):
    fake_api.menu = None

    with pytest.raises(UpstreamError):
        await menu_repository.get_menu()


@pytest.mark.asyncio
async def test_corrupt_cached_body_is_refetched(menu_repository, fake_api, kv):
    await kv.put(MENU_BODY_KEY, "{broken")

    snapshot = await menu_repository.get_menu()

    assert snapshot.cache_status == "miss-network"


@pytest.mark.asyncio
async def test_dining_options_are_cached(menu_repository, fake_api, kv):
    fake_api.dining_options = [{"guid": "dine-1", "behavior": "DINE_IN"}]

    first = await menu_repository.get_dining_options()
    second = await menu_repository.get_dining_options()

    assert first == second == [{"guid": "dine-1", "behavior": "DINE_IN"}]
    assert fake_api.dining_calls == 1
    assert await kv.get_json(DINING_OPTIONS_KEY) == first
