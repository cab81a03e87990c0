"""Tests for the in-memory TTL cache"""
import threading

from peoplefinder.utils.cache import TTLCache


def test_set_then_get_is_a_hit():
    cache = TTLCache(ttl_seconds=60)
    cache.set("k", "v")

    assert cache.get("k") == "v"
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 0
    assert stats["size"] == 1
    assert stats["hit_rate"] == 1.0


def test_missing_key_is_a_miss():
    cache = TTLCache()

    assert cache.get("nope") is None
    assert cache.stats()["misses"] == 1
    assert cache.stats()["hit_rate"] == 0.0


def test_expired_entry_is_dropped_on_read():
    cache = TTLCache(ttl_seconds=60)
    cache.set("k", "v", ttl=0)

    assert cache.get("k") is None
    assert cache.stats()["size"] == 0
    assert cache.stats()["misses"] == 1


def test_delete_and_clear():
    cache = TTLCache()
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.delete("a") is True
    assert cache.delete("a") is False
    assert cache.get("b") == 2

    cache.clear()
    assert cache.stats() == {
        "type": "memory",
        "hits": 0,
        "misses": 0,
        "size": 0,
        "hit_rate": 0.0,
        "ttl_seconds": 300,
    }


def test_concurrent_writers_do_not_lose_entries():
    cache = TTLCache()

    def writer(start: int):
        for i in range(start, start + 200):
            cache.set(i, i)

    threads = [threading.Thread(target=writer, args=(n * 200,)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.stats()["size"] == 1000
