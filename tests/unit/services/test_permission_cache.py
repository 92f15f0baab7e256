"""Unit tests for the in-memory permission cache"""

import threading

import pytest

from realty_access.services.permission_cache import (
    InMemoryPermissionCache,
    PlatformScope,
    TenantScope,
    scope_for,
)


def _entry(cache, keys, role_ids=(), universe=False):
    return cache.build_entry(frozenset(keys), frozenset(role_ids), universe=universe)


@pytest.mark.unit
def test_scope_for_builds_tagged_keys():
    assert scope_for(None) == PlatformScope()
    assert scope_for("") == PlatformScope()
    assert scope_for("t1") == TenantScope("t1")
    assert TenantScope("t1") != TenantScope("t2")


@pytest.mark.unit
def test_get_returns_whole_entry(cache):
    cache.set("u1", TenantScope("t1"), _entry(cache, {"A", "B"}, {"r1"}))

    entry = cache.get("u1", TenantScope("t1"))

    assert entry.permissions == frozenset({"A", "B"})
    assert entry.role_ids == frozenset({"r1"})
    assert cache.get("u1", TenantScope("t2")) is None
    assert cache.get("u1", PlatformScope()) is None


@pytest.mark.unit
def test_entry_expires_after_ttl(cache, clock):
    cache.set("u1", PlatformScope(), _entry(cache, {"A"}))

    clock.advance(299)
    assert cache.get("u1", PlatformScope()) is not None

    clock.advance(2)
    assert cache.get("u1", PlatformScope()) is None
    assert len(cache) == 0


@pytest.mark.unit
def test_invalidate_drops_every_scope_of_user(cache):
    cache.set("u1", PlatformScope(), _entry(cache, {"A"}))
    cache.set("u1", TenantScope("t1"), _entry(cache, {"B"}))
    cache.set("u1", TenantScope("t2"), _entry(cache, {"C"}))
    cache.set("u2", TenantScope("t1"), _entry(cache, {"B"}))

    assert cache.invalidate("u1") == 3

    assert cache.get("u1", PlatformScope()) is None
    assert cache.get("u1", TenantScope("t1")) is None
    assert cache.get("u1", TenantScope("t2")) is None
    assert cache.get("u2", TenantScope("t1")) is not None


@pytest.mark.unit
def test_invalidate_by_role_drops_only_dependent_entries(cache):
    cache.set("u1", TenantScope("t1"), _entry(cache, {"A"}, {"agent"}))
    cache.set("u2", TenantScope("t2"), _entry(cache, {"A"}, {"agent", "manager"}))
    cache.set("u3", TenantScope("t1"), _entry(cache, {"B"}, {"accountant"}))

    assert cache.invalidate_by_role("agent") == 2

    assert cache.get("u1", TenantScope("t1")) is None
    assert cache.get("u2", TenantScope("t2")) is None
    assert cache.get("u3", TenantScope("t1")) is not None


@pytest.mark.unit
def test_invalidate_universe_drops_super_admin_entries(cache):
    cache.set("admin", TenantScope("t1"), _entry(cache, {"A", "B"}, universe=True))
    cache.set("agent", TenantScope("t1"), _entry(cache, {"A"}, {"r1"}))

    assert cache.invalidate_universe() == 1

    assert cache.get("admin", TenantScope("t1")) is None
    assert cache.get("agent", TenantScope("t1")) is not None


@pytest.mark.unit
def test_stale_write_is_discarded_after_invalidation(cache):
    """A resolve that started before an invalidation must not repopulate the cache."""
    generation = cache.generation()
    cache.invalidate("u1")

    stored = cache.set("u1", TenantScope("t1"), _entry(cache, {"OLD"}), generation=generation)

    assert stored is False
    assert cache.get("u1", TenantScope("t1")) is None


@pytest.mark.unit
def test_write_with_current_generation_is_kept(cache):
    generation = cache.generation()

    assert cache.set("u1", TenantScope("t1"), _entry(cache, {"A"}), generation=generation) is True
    assert cache.get("u1", TenantScope("t1")) is not None


@pytest.mark.unit
def test_clear_drops_everything(cache):
    cache.set("u1", PlatformScope(), _entry(cache, {"A"}))
    cache.set("u2", TenantScope("t1"), _entry(cache, {"B"}))

    cache.clear()

    assert len(cache) == 0


@pytest.mark.unit
def test_concurrent_readers_never_see_partial_entries():
    cache = InMemoryPermissionCache(ttl_seconds=300)
    full = frozenset(f"P{i}" for i in range(50))
    seen = []
    errors = []

    def writer():
        for _ in range(200):
            cache.set("u1", TenantScope("t1"), cache.build_entry(full, frozenset({"r1"})))
            cache.invalidate("u1")

    def reader():
        for _ in range(200):
            entry = cache.get("u1", TenantScope("t1"))
            if entry is not None:
                seen.append(entry.permissions)

    threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for permissions in seen:
        if permissions != full:
            errors.append(permissions)
    assert errors == []
