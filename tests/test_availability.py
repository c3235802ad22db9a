"""
Availability Cache Tests
------------------------
Tests for TTL caching of method availability probes.
"""

import pytest
from pathlib import Path
import sys
import threading

sys.path.insert(0, str(Path(__file__).parent.parent))

from execution.availability import AvailabilityCache
from execution.stubs import ScriptedMethod


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestAvailabilityCache:

    def test_probe_is_cached_within_ttl(self):
        clock = FakeClock()
        cache = AvailabilityCache(ttl_seconds=5.0, clock=clock)
        method = ScriptedMethod("m", 1, {"tap"})

        assert cache.is_available(method)
        clock.now = 4.9
        assert cache.is_available(method)

        assert method.probe_count == 1

    def test_probe_repeats_after_ttl(self):
        clock = FakeClock()
        cache = AvailabilityCache(ttl_seconds=5.0, clock=clock)
        method = ScriptedMethod("m", 1, {"tap"})

        cache.is_available(method)
        method.available = False
        clock.now = 5.0

        assert cache.is_available(method) is False
        assert method.probe_count == 2

    def test_refresh_forces_probe(self):
        cache = AvailabilityCache(ttl_seconds=60.0, clock=FakeClock())
        method = ScriptedMethod("m", 1, {"tap"})

        cache.is_available(method)
        method.available = False

        assert cache.refresh(method) is False
        assert cache.snapshot() == {"m": False}

    def test_zero_ttl_always_probes(self):
        cache = AvailabilityCache(ttl_seconds=0, clock=FakeClock())
        method = ScriptedMethod("m", 1, {"tap"})

        cache.is_available(method)
        cache.is_available(method)

        assert method.probe_count == 2

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValueError):
            AvailabilityCache(ttl_seconds=-1)

    def test_invalidate(self):
        cache = AvailabilityCache(ttl_seconds=60.0, clock=FakeClock())
        a = ScriptedMethod("a", 1, {"tap"})
        b = ScriptedMethod("b", 1, {"tap"})
        cache.refresh_all([a, b])

        cache.invalidate("a")
        assert cache.snapshot() == {"b": True}

        cache.invalidate()
        assert cache.snapshot() == {}

    def test_concurrent_refreshes_keep_every_entry(self):
        cache = AvailabilityCache(ttl_seconds=60.0)
        methods = [ScriptedMethod(f"m{i}", i, {"tap"}) for i in range(20)]

        threads = [threading.Thread(target=cache.refresh, args=(m,)) for m in methods]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache.snapshot()) == 20
