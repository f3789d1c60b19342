import pytest

from core.cache import TTLCache


class _FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return _FakeClock()


def test_get_returns_value_until_expiry(clock):
    cache = TTLCache(max_entries=10, default_ttl_s=30, clock=clock)
    cache.set("admin:stats", {"users": 3})

    clock.advance(30)
    assert cache.get("admin:stats") == {"users": 3}

    clock.advance(0.001)
    assert cache.get("admin:stats") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default(clock):
    cache = TTLCache(max_entries=10, default_ttl_s=30, clock=clock)
    cache.set("short", 1, ttl_s=5)
    cache.set("long", 2)

    clock.advance(10)

    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_missing_key_is_none(clock):
    assert TTLCache(clock=clock).get("nope") is None


def test_capacity_evicts_oldest_insertion(clock):
    cache = TTLCache(max_entries=2, default_ttl_s=60, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert len(cache) == 2
    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_expired_entries_are_purged_before_live_ones(clock):
    cache = TTLCache(max_entries=2, default_ttl_s=60, clock=clock)
    cache.set("old_live", 1)
    cache.set("short", 2, ttl_s=1)
    clock.advance(5)

    cache.set("new", 3)

    assert cache.get("old_live") == 1
    assert cache.get("new") == 3
    assert "short" not in cache


def test_resetting_a_key_refreshes_its_position(clock):
    cache = TTLCache(max_entries=2, default_ttl_s=60, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.get("a") == 10
    assert cache.get("b") is None


def test_invalidate_by_substring(clock):
    cache = TTLCache(clock=clock)
    cache.set("admin:stats", 1)
    cache.set("admin:activity:1", 2)
    cache.set("pricing:plans", 3)

    removed = cache.invalidate("admin:")

    assert removed == 2
    assert cache.get("admin:stats") is None
    assert cache.get("pricing:plans") == 3


def test_invalidate_without_pattern_clears_everything(clock):
    cache = TTLCache(clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.invalidate() == 2
    assert len(cache) == 0


def test_get_or_set_calls_factory_once_per_ttl(clock):
    cache = TTLCache(default_ttl_s=10, clock=clock)
    calls = []

    def _factory():
        calls.append(1)
        return {"n": len(calls)}

    assert cache.get_or_set("k", _factory) == {"n": 1}
    assert cache.get_or_set("k", _factory) == {"n": 1}
    clock.advance(11)
    assert cache.get_or_set("k", _factory) == {"n": 2}
    assert len(calls) == 2


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        TTLCache(max_entries=0)
