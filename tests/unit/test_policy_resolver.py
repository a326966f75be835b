"""Tests for PolicyRegistry and PolicyResolver.

Tests:
  - built-in registration under short and dotted names
  - custom policy registration
  - one policy instance per (policy_class, policy_param), built exactly once
    even under concurrent first use
  - unknown / failing policies resolve to None and deny (fail-closed),
    and the failure is cached
  - a broken whitelist file still allows (fail-open) — the asymmetry
  - evaluate_origin() never raises
  - invalidate() closes cached policies and starts a new epoch
  - a miss under a stale epoch is denied and never rebuilt
"""

from __future__ import annotations

import threading
import time

import pytest

from corsgate.errors import PolicyResolutionError
from corsgate.policy.builtin import AllowAll, AllowMatching, Whitelist
from corsgate.policy.resolver import PolicyConfig, PolicyRegistry, PolicyResolver


class CountingPolicy:
    """Allows origins equal to the parameter; counts constructions."""

    instances = 0

    def __init__(self, param: str) -> None:
        type(self).instances += 1
        self.param = param
        self.closed = False

    def is_allowed(self, origin):
        return origin == self.param

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def counting_registry() -> PolicyRegistry:
    CountingPolicy.instances = 0
    registry = PolicyRegistry.builtin()
    registry.register("Counting", CountingPolicy)
    return registry


# ─── PolicyRegistry ───────────────────────────────────────────────────────────


class TestPolicyRegistry:
    def test_builtin_short_names(self):
        registry = PolicyRegistry.builtin()
        for name in ("AllowAll", "AllowMatching", "Whitelist"):
            assert name in registry

    def test_builtin_dotted_names(self):
        registry = PolicyRegistry.builtin()
        assert isinstance(registry.create("corsgate.AllowAll", ""), AllowAll)
        assert isinstance(registry.create("corsgate.AllowMatching", "^a$"), AllowMatching)

    def test_whitelist_factory_binds_watcher_options(self, write_whitelist):
        registry = PolicyRegistry.builtin(debounce_ms=10, watch_ready_timeout_s=5.0)
        policy = registry.create("Whitelist", write_whitelist())
        try:
            assert isinstance(policy, Whitelist)
            assert policy.source._debounce_ms == 10
        finally:
            policy.close()

    def test_iter_is_sorted(self):
        names = list(PolicyRegistry.builtin())
        assert names == sorted(names)

    def test_register_custom(self):
        registry = PolicyRegistry()
        registry.register("Custom", lambda param: AllowMatching(param))
        policy = registry.create("Custom", "^x$")
        assert policy.is_allowed("x")

    def test_register_rejects_empty_name(self):
        with pytest.raises(ValueError):
            PolicyRegistry().register("", AllowAll)

    def test_register_rejects_non_callable(self):
        with pytest.raises(TypeError):
            PolicyRegistry().register("Broken", "not callable")  # type: ignore[arg-type]

    def test_unregister(self):
        registry = PolicyRegistry.builtin()
        registry.unregister("AllowAll")
        assert "AllowAll" not in registry
        registry.unregister("AllowAll")  # no error when absent

    def test_create_unknown_raises(self):
        with pytest.raises(PolicyResolutionError) as exc_info:
            PolicyRegistry.builtin().create("NoSuchPolicy", "")
        assert exc_info.value.policy_class == "NoSuchPolicy"

    def test_create_wraps_factory_error(self):
        with pytest.raises(PolicyResolutionError) as exc_info:
            PolicyRegistry.builtin().create("AllowMatching", "^(unclosed$")
        assert exc_info.value.__cause__ is not None


# ─── Caching ──────────────────────────────────────────────────────────────────


class TestResolverCache:
    def test_same_config_same_instance(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        first = resolver.resolve("Counting", "a")
        assert resolver.resolve("Counting", "a") is first
        assert CountingPolicy.instances == 1

    def test_different_param_different_instance(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        a = resolver.resolve("Counting", "a")
        b = resolver.resolve("Counting", "b")
        assert a is not b
        assert CountingPolicy.instances == 2
        assert set(resolver.cached_configs()) == {
            PolicyConfig("Counting", "a"),
            PolicyConfig("Counting", "b"),
        }

    def test_none_param_is_empty_param(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        assert resolver.resolve("Counting", None) is resolver.resolve("Counting", "")

    def test_default_registry_is_builtin(self):
        resolver = PolicyResolver()
        assert isinstance(resolver.resolve("AllowAll"), AllowAll)

    def test_concurrent_first_use_builds_once(self):
        constructions = 0
        lock = threading.Lock()

        def slow_factory(param):
            nonlocal constructions
            with lock:
                constructions += 1
            time.sleep(0.05)
            return AllowAll()

        registry = PolicyRegistry()
        registry.register("Slow", slow_factory)
        resolver = PolicyResolver(registry)

        workers = 16
        barrier = threading.Barrier(workers)
        results = []

        def worker():
            barrier.wait()
            results.append(resolver.resolve("Slow", "p"))

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5.0)

        assert constructions == 1
        assert len(results) == workers
        assert all(result is results[0] for result in results)


# ─── Fail-closed / fail-open ──────────────────────────────────────────────────


class TestFailurePosture:
    def test_unknown_policy_denies(self):
        resolver = PolicyResolver()
        assert resolver.resolve("NoSuchPolicy", "") is None
        assert resolver.evaluate_origin("NoSuchPolicy", "", "https://example.org") is False

    def test_invalid_regex_param_denies(self):
        resolver = PolicyResolver()
        assert resolver.evaluate_origin("AllowMatching", "^(unclosed$", "https://a.test") is False

    def test_failure_is_cached(self):
        calls = 0

        def failing(param):
            nonlocal calls
            calls += 1
            raise RuntimeError("cannot build")

        registry = PolicyRegistry()
        registry.register("Failing", failing)
        resolver = PolicyResolver(registry)
        for _ in range(5):
            assert resolver.evaluate_origin("Failing", "", "https://a.test") is False
        assert calls == 1

    def test_broken_whitelist_allows(self, write_whitelist):
        resolver = PolicyResolver(PolicyRegistry.builtin())
        path = write_whitelist("[not a regex\n")
        try:
            assert resolver.evaluate_origin("Whitelist", path, "https://anything.test") is True
        finally:
            resolver.close()

    def test_asymmetry(self, write_whitelist):
        # Resolution failure denies; a broken whitelist file allows.
        resolver = PolicyResolver(PolicyRegistry.builtin())
        try:
            broken_file = write_whitelist("")
            origin = "https://anything.test"
            assert resolver.evaluate_origin("Whitelist", broken_file, origin) is True
            assert resolver.evaluate_origin("Whitelistt", broken_file, origin) is False
        finally:
            resolver.close()

    def test_is_allowed_error_denies(self):
        class Raising:
            def __init__(self, param):
                pass

            def is_allowed(self, origin):
                raise RuntimeError("boom")

        registry = PolicyRegistry()
        registry.register("Raising", Raising)
        resolver = PolicyResolver(registry)
        assert resolver.evaluate_origin("Raising", "", "https://a.test") is False


# ─── evaluate_origin semantics ────────────────────────────────────────────────


class TestEvaluateOrigin:
    def test_allow_all(self):
        resolver = PolicyResolver()
        assert resolver.evaluate_origin("AllowAll", "", "https://x.test") is True
        assert resolver.evaluate_origin("AllowAll", "", None) is True

    def test_allow_matching(self):
        resolver = PolicyResolver()
        param = "^https://(www\\.)?example\\.org$"
        assert resolver.evaluate_origin("AllowMatching", param, "https://example.org")
        assert resolver.evaluate_origin("AllowMatching", param, "https://www.example.org")
        assert not resolver.evaluate_origin("AllowMatching", param, "http://example.org")
        assert not resolver.evaluate_origin("AllowMatching", param, "https://api.example.org")
        assert not resolver.evaluate_origin("AllowMatching", param, "https://example.com")
        assert not resolver.evaluate_origin("AllowMatching", param, None)

    def test_whitelist(self, write_whitelist):
        resolver = PolicyResolver(PolicyRegistry.builtin())
        path = write_whitelist()
        try:
            assert resolver.evaluate_origin("Whitelist", path, "http://example.net")
            assert not resolver.evaluate_origin("Whitelist", path, "https://example.net")
            assert not resolver.evaluate_origin("Whitelist", path, None)
        finally:
            resolver.close()

    def test_custom_policy(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        assert resolver.evaluate_origin("Counting", "https://a.test", "https://a.test")
        assert not resolver.evaluate_origin("Counting", "https://a.test", "https://b.test")


# ─── Invalidation ─────────────────────────────────────────────────────────────


class TestInvalidate:
    def test_invalidate_closes_and_clears(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        policy = resolver.resolve("Counting", "a")
        resolver.invalidate()
        assert policy.closed
        assert resolver.cached_configs() == []

    def test_rebuild_after_invalidate(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        first = resolver.resolve("Counting", "a")
        resolver.invalidate()
        second = resolver.resolve("Counting", "a")
        assert first is not second
        assert CountingPolicy.instances == 2

    def test_invalidate_clears_cached_failure(self):
        registry = PolicyRegistry()
        resolver = PolicyResolver(registry)
        assert resolver.resolve("Late", "") is None
        registry.register("Late", AllowAll)
        assert resolver.resolve("Late", "") is None
        resolver.invalidate()
        assert isinstance(resolver.resolve("Late", ""), AllowAll)

    def test_close_stops_whitelist_watchers(self, write_whitelist):
        registry = PolicyRegistry.builtin(debounce_ms=50, watch_ready_timeout_s=5.0)
        resolver = PolicyResolver(registry)
        policy = resolver.resolve("Whitelist", write_whitelist())
        assert policy.source.watching
        resolver.close()
        assert not policy.source.watching


# ─── Epochs ───────────────────────────────────────────────────────────────────


class TestEpoch:
    def test_invalidate_advances_epoch(self):
        resolver = PolicyResolver()
        assert resolver.epoch == 0
        assert resolver.invalidate() == 1
        assert resolver.invalidate() == 2
        assert resolver.epoch == 2

    def test_current_epoch_builds_and_caches(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        policy = resolver.resolve("Counting", "a", resolver.epoch)
        assert policy is not None
        assert resolver.cached_configs() == [PolicyConfig("Counting", "a")]

    def test_stale_epoch_is_not_rebuilt(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        stale = resolver.epoch
        resolver.invalidate()

        assert resolver.resolve("Counting", "a", stale) is None
        assert resolver.evaluate_origin("Counting", "a", "a", stale) is False
        assert resolver.cached_configs() == []
        assert CountingPolicy.instances == 0

    def test_stale_epoch_still_gets_cached_hits(self, counting_registry):
        resolver = PolicyResolver(counting_registry)
        stale = resolver.epoch
        resolver.invalidate()
        current = resolver.resolve("Counting", "a", resolver.epoch)
        assert resolver.resolve("Counting", "a", stale) is current

    def test_stale_whitelist_starts_no_watcher(self, write_whitelist):
        resolver = PolicyResolver(PolicyRegistry.builtin())
        stale = resolver.epoch
        resolver.invalidate()
        try:
            assert resolver.resolve("Whitelist", write_whitelist(), stale) is None
            assert resolver.cached_configs() == []
        finally:
            resolver.close()
