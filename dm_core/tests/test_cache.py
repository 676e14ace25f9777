from dm_core.resilience.cache import TTLCache, make_cache_key


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_cache_hit_then_expiry_on_read():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("k", "v", ttl=30)
    clock.now += 30
    assert cache.get("k") == "v"
    clock.now += 0.5
    assert cache.get("k") is None
    assert len(cache) == 0


def test_cache_lookup_distinguishes_falsy_values():
    cache = TTLCache(clock=FakeClock())
    cache.set("flag", False, ttl=10)
    assert cache.lookup("flag") == (True, False)
    assert cache.lookup("missing") == (False, None)


def test_disabled_cache_stores_nothing():
    cache = TTLCache(enabled=False)
    cache.set("k", 1, ttl=10)
    assert len(cache) == 0
    assert cache.get("k", "default") == "default"


def test_clear():
    cache = TTLCache(clock=FakeClock())
    cache.set("a", 1, ttl=10)
    cache.set("b", 2, ttl=10)
    cache.clear()
    assert len(cache) == 0


def test_make_cache_key_is_order_independent():
    assert make_cache_key("test_connection") == "test_connection:"
    assert make_cache_key("m", {"b": 1, "a": 2}) == make_cache_key("m", {"a": 2, "b": 1})
    assert make_cache_key("m", {"a": 1}) == 'm:{"a": 1}'
