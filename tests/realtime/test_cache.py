import threading

from arch_drift.core.models import DriftResult
from arch_drift.realtime.cache import ResultCache, fingerprint


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _result(make_observation, name: str) -> DriftResult:
    return DriftResult.failed(f"dr-{name}", make_observation(name), "model_not_trained", "untrained")


def test_fingerprint_depends_on_path_and_content() -> None:
    base = fingerprint("src/a.py", "import jwt\n")

    assert base == fingerprint("src/a.py", "import jwt\n")
    assert base != fingerprint("src/b.py", "import jwt\n")
    assert base != fingerprint("src/a.py", "import jwt \n")
    assert len(base) == 64


def test_hit_and_miss_are_counted(make_observation) -> None:
    cache = ResultCache(clock=FakeClock())
    results = (_result(make_observation, "a"),)
    cache.put("k1", results)

    assert cache.get("k1").results == results
    assert cache.get("missing") is None

    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)
    assert stats.hit_ratio == 0.5


def test_entries_expire_after_ttl(make_observation) -> None:
    """Expired entries are dropped on lookup and counted as misses."""
    clock = FakeClock()
    cache = ResultCache(ttl_seconds=10.0, clock=clock)
    cache.put("k1", (_result(make_observation, "a"),))

    clock.now += 9.9
    assert cache.get("k1") is not None

    clock.now += 0.2
    assert cache.get("k1") is None
    assert len(cache) == 0
    assert cache.stats().expirations == 1


def test_least_recently_used_entry_is_evicted(make_observation) -> None:
    cache = ResultCache(max_entries=2, clock=FakeClock())
    cache.put("a", ())
    cache.put("b", ())
    cache.get("a")  # refreshes "a"
    cache.put("c", ())

    assert cache.get("b") is None
    assert cache.get("a") is not None
    assert cache.get("c") is not None
    assert cache.stats().evictions == 1


def test_invalidate_and_clear() -> None:
    cache = ResultCache(clock=FakeClock())
    cache.put("a", ())
    cache.put("b", ())

    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    cache.clear()
    assert len(cache) == 0


def test_concurrent_puts_respect_cap() -> None:
    cache = ResultCache(max_entries=25)

    def writer(prefix: str) -> None:
        for i in range(100):
            cache.put(f"{prefix}-{i}", ())
            cache.get(f"{prefix}-{i // 2}")

    threads = [threading.Thread(target=writer, args=(str(n),)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(cache) == 25
    assert cache.stats().evictions == 375
