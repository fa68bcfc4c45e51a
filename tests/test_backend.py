import asyncio
from unittest import mock

import pytest
import redis

from backend import (
    TTL_MISSING,
    TTL_PERSISTENT,
    MemoryBackend,
    RedisBackend,
    build_store,
    run_expiry_sweep,
)


def test_hash_with_ttl_expires(store, clock):
    store.set_hash("room:meta:X", {"status": "pending", "created_at": 1, "skipped": None}, ttl=60)

    assert store.get_hash("room:meta:X") == {"status": "pending", "created_at": "1"}
    assert store.get_ttl("room:meta:X") == 60

    clock.advance(59)
    assert store.exists("room:meta:X")
    assert store.get_ttl("room:meta:X") == 1

    clock.advance(1)
    assert not store.exists("room:meta:X")
    assert store.get_hash("room:meta:X") == {}
    assert store.get_ttl("room:meta:X") == TTL_MISSING


def test_ttl_of_key_without_expiry(store):
    store.add_to_set("members", "t1")
    assert store.get_ttl("members") == TTL_PERSISTENT


def test_set_ttl_on_missing_key_is_noop(store):
    assert store.set_ttl("nothing", 10) is False
    assert not store.exists("nothing")


def test_non_positive_ttl_deletes_key(store):
    store.append_to_list("messages", "a")
    assert store.set_ttl("messages", 0) is True
    assert not store.exists("messages")


def test_set_operations(store):
    assert store.add_to_set("members", "t1") is True
    assert store.add_to_set("members", "t1") is False
    store.add_to_set("members", "t2")

    assert store.is_set_member("members", "t1")
    assert not store.is_set_member("members", "t3")
    assert not store.is_set_member("other", "t1")
    assert store.set_cardinality("members") == 2
    assert store.set_cardinality("other") == 0


def test_list_range_is_inclusive(store):
    for value in "abcd":
        store.append_to_list("messages", value)

    assert store.get_list_range("messages") == ["a", "b", "c", "d"]
    assert store.get_list_range("messages", 1, 2) == ["b", "c"]
    assert store.get_list_range("missing") == []


def test_set_list_element(store):
    store.append_to_list("messages", "a")
    store.append_to_list("messages", "b")

    store.set_list_element("messages", 1, "B")
    assert store.get_list_range("messages") == ["a", "B"]

    with pytest.raises(IndexError):
        store.set_list_element("messages", 5, "x")
    with pytest.raises(IndexError):
        store.set_list_element("missing", 0, "x")


def test_delete_counts_existing_keys(store, clock):
    store.set_hash("a", {"x": 1})
    store.add_to_set("b", "m")
    store.set_hash("c", {"x": 1}, ttl=1)
    clock.advance(5)

    assert store.delete("a", "b", "c", "d") == 2
    assert not store.exists("a")
    assert store.delete() == 0


def test_wrong_type_raises(store):
    store.add_to_set("members", "t1")
    with pytest.raises(TypeError):
        store.append_to_list("members", "x")


def test_sweep_removes_only_expired_keys(store, clock):
    store.set_hash("short", {"x": 1}, ttl=10)
    store.set_hash("long", {"x": 1}, ttl=100)
    store.add_to_set("forever", "m")
    clock.advance(50)

    assert store.sweep() == 1
    assert "short" not in store._data
    assert store.exists("long")
    assert store.exists("forever")


def test_run_expiry_sweep_task(store, clock):
    store.set_hash("short", {"x": 1}, ttl=1)
    clock.advance(2)

    async def scenario():
        task = asyncio.create_task(run_expiry_sweep(store, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert store._data == {}


def test_build_store():
    assert isinstance(build_store("memory"), MemoryBackend)
    assert MemoryBackend.native_ttl is False
    assert RedisBackend.native_ttl is True
    with pytest.raises(ValueError):
        build_store("sqlite")


def test_redis_set_hash_writes_hash_and_ttl_in_one_transaction():
    client = mock.MagicMock()
    pipe = client.pipeline.return_value
    backend = RedisBackend(redis_client=client)

    backend.set_hash("room:meta:X", {"status": "pending", "started_at": None}, ttl=3600)

    client.pipeline.assert_called_once_with(transaction=True)
    pipe.hset.assert_called_once_with("room:meta:X", mapping={"status": "pending"})
    pipe.expire.assert_called_once_with("room:meta:X", 3600)
    pipe.execute.assert_called_once()


def test_redis_lset_errors_become_index_errors():
    client = mock.MagicMock()
    client.lset.side_effect = redis.ResponseError("ERR no such key")
    backend = RedisBackend(redis_client=client)

    with pytest.raises(IndexError):
        backend.set_list_element("room:messages:X", 0, "{}")


def test_redis_reads_map_to_contract():
    client = mock.MagicMock()
    client.exists.return_value = 1
    client.ttl.return_value = -2
    client.sismember.return_value = 1
    client.scard.return_value = 3
    backend = RedisBackend(redis_client=client)

    assert backend.exists("k") is True
    assert backend.get_ttl("k") == TTL_MISSING
    assert backend.is_set_member("k", "m") is True
    assert backend.set_cardinality("k") == 3
    assert backend.delete() == 0
    client.delete.assert_not_called()
