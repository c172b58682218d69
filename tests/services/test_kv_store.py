import pytest

from ordersync.services.kv import InMemoryKeyValueStore, RedisKeyValueStore, create_kv_store


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_memory_store_expires_keys():
    clock = FakeClock()
    store = InMemoryKeyValueStore(clock=clock)

    await store.put("a", "1", ttl_seconds=10)
    await store.put("b", "2")
    clock.now = 11

    assert await store.get("a") is None
    assert await store.get("b") == "2"
    assert store.keys() == ["b"]


@pytest.mark.asyncio
async def test_memory_store_sweeps_expired_keys_on_write():
    clock = FakeClock()
    store = InMemoryKeyValueStore(clock=clock, sweep_interval=30)

    for i in range(5):
        await store.put(f"order:{i}", "x", ttl_seconds=10)
    clock.now = 31
    await store.put("fresh", "y")

    assert list(store._data) == ["fresh"]


@pytest.mark.asyncio
async def test_put_if_absent_only_writes_once():
    store = InMemoryKeyValueStore()

    assert await store.put_if_absent("lock", "x", ttl_seconds=30) is True
    assert await store.put_if_absent("lock", "y", ttl_seconds=30) is False
    assert await store.get("lock") == "x"

    await store.delete("lock")
    assert await store.put_if_absent("lock", "z", ttl_seconds=30) is True


@pytest.mark.asyncio
async def test_get_json_treats_corruption_as_miss():
    store = InMemoryKeyValueStore()
    await store.put("bad", "{not json")
    await store.put_json("good", {"a": [1, 2]})

    assert await store.get_json("bad") is None
    assert await store.get_json("missing") is None
    assert await store.get_json("good") == {"a": [1, 2]}


@pytest.mark.asyncio
async def test_redis_store_prefixes_keys_and_sets_ttl(mocker):
    client = mocker.AsyncMock()
    client.get.return_value = "value"
    client.set.return_value = True
    store = RedisKeyValueStore(redis_url="redis://test", key_prefix="t:", client=client)

    assert await store.get("k") == "value"
    client.get.assert_called_once_with("t:k")

    await store.put("k", "v", ttl_seconds=60)
    client.set.assert_called_with("t:k", "v", ex=60)

    assert await store.put_if_absent("lock", "1", ttl_seconds=30) is True
    client.set.assert_called_with("t:lock", "1", ex=30, nx=True)

    await store.delete("k")
    client.delete.assert_called_once_with("t:k")


@pytest.mark.asyncio
async def test_redis_put_if_absent_reports_existing_key(mocker):
    client = mocker.AsyncMock()
    client.set.return_value = None
    store = RedisKeyValueStore(redis_url="redis://test", key_prefix="", client=client)

    assert await store.put_if_absent("lock", "1", ttl_seconds=30) is False


def test_factory_uses_memory_store_in_development(settings):
    store = create_kv_store(settings)

    assert store.provider_name == "memory"
