# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for SessionPool: per-actor reuse, LRU capacity eviction, idle eviction."""

from __future__ import annotations

import asyncio

import pytest

from chatbrowse.backend import BackendKind
from chatbrowse.page_cache import PageCache
from chatbrowse.session_pool import PoolHealth, SessionPool
from tests._fakes import FakeSelector, make_page

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_pool(max_sessions: int = 2, idle_timeout: float = 600.0, **selector_kwargs):
    selector = FakeSelector(**selector_kwargs)
    cache = PageCache()
    pool = SessionPool(selector, cache, max_sessions=max_sessions, idle_timeout=idle_timeout)
    return pool, selector, cache


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError, match="max_sessions"):
            SessionPool(FakeSelector(), PageCache(), max_sessions=0, idle_timeout=1.0)

    async def test_empty_health(self):
        pool, _selector, _cache = _make_pool()
        health = pool.health()
        assert isinstance(health, PoolHealth)
        assert health.active == 0
        assert health.max_sessions == 2
        assert health.backend is None


# ---------------------------------------------------------------------------
# get_or_create
# ---------------------------------------------------------------------------


class TestGetOrCreate:
    async def test_same_actor_reuses_backend(self):
        pool, selector, _cache = _make_pool()
        first = await pool.get_or_create("A")
        second = await pool.get_or_create("A")
        assert first is second
        assert len(selector.created) == 1
        assert pool.active_count == 1

    async def test_distinct_actors_get_distinct_backends(self):
        pool, _selector, _cache = _make_pool()
        a = await pool.get_or_create("A")
        b = await pool.get_or_create("B")
        assert a is not b
        assert "A" in pool and "B" in pool

    async def test_get_does_not_create(self):
        pool, selector, _cache = _make_pool()
        assert pool.get("A") is None
        assert selector.created == []

    async def test_touch_updates_last_used(self):
        pool, _selector, _cache = _make_pool()
        await pool.get_or_create("A")
        first = pool.last_used_at("A")
        await asyncio.sleep(0.01)
        await pool.get_or_create("A")
        assert pool.last_used_at("A") >= first

    async def test_health_reports_backend_family(self):
        pool, _selector, _cache = _make_pool(remote_available=True)
        await pool.get_or_create("A")
        assert pool.health().backend is BackendKind.REMOTE

    async def test_concurrent_first_access_keeps_one_backend(self):
        pool, selector, _cache = _make_pool()
        a1, a2 = await asyncio.gather(pool.get_or_create("A"), pool.get_or_create("A"))
        assert a1 is a2
        assert pool.active_count == 1
        # the losing instance was released
        assert sum(b.cleanup_calls for b in selector.created) == len(selector.created) - 1


# ---------------------------------------------------------------------------
# Capacity eviction
# ---------------------------------------------------------------------------


class TestCapacityEviction:
    async def test_lru_evicted_at_capacity(self):
        pool, selector, cache = _make_pool(max_sessions=2)
        a = await pool.get_or_create("A")
        cache.put("A", make_page("https://a.example"))
        await pool.get_or_create("B")
        await pool.get_or_create("C")

        assert "A" not in pool
        assert "B" in pool and "C" in pool
        assert pool.active_count == 2
        assert a.cleanup_calls == 1
        assert "A" not in cache

    async def test_recent_access_protects_from_eviction(self):
        pool, _selector, _cache = _make_pool(max_sessions=2)
        await pool.get_or_create("A")
        b = await pool.get_or_create("B")
        await pool.get_or_create("A")  # A is now most recent
        await pool.get_or_create("C")
        assert "A" in pool
        assert "B" not in pool
        assert b.cleanup_calls == 1

    async def test_capacity_one(self):
        pool, _selector, _cache = _make_pool(max_sessions=1)
        await pool.get_or_create("A")
        await pool.get_or_create("B")
        assert pool.active_count == 1
        assert "B" in pool

    async def test_never_exceeds_capacity_under_concurrency(self):
        pool, _selector, _cache = _make_pool(max_sessions=3)
        await asyncio.gather(*(pool.get_or_create(f"actor-{i}") for i in range(10)))
        assert pool.active_count == 3

    async def test_evicted_actor_gets_fresh_backend(self):
        pool, _selector, _cache = _make_pool(max_sessions=1)
        a1 = await pool.get_or_create("A")
        await pool.get_or_create("B")
        a2 = await pool.get_or_create("A")
        assert a1 is not a2

    async def test_cleanup_failure_is_swallowed(self):
        pool, _selector, _cache = _make_pool(max_sessions=1, fail_cleanup=True)
        await pool.get_or_create("A")
        await pool.get_or_create("B")
        assert "B" in pool
        assert "A" not in pool


# ---------------------------------------------------------------------------
# Idle eviction
# ---------------------------------------------------------------------------


class TestIdleEviction:
    async def test_idle_entry_evicted(self):
        pool, _selector, cache = _make_pool(idle_timeout=0.05)
        a = await pool.get_or_create("A")
        cache.put("A", make_page("https://a.example"))
        await asyncio.sleep(0.15)
        assert "A" not in pool
        assert "A" not in cache
        assert a.cleanup_calls == 1

    async def test_access_rearms_timer(self):
        pool, _selector, _cache = _make_pool(idle_timeout=0.1)
        await pool.get_or_create("A")
        for _ in range(4):
            await asyncio.sleep(0.05)
            await pool.get_or_create("A")
        assert "A" in pool

    async def test_idle_timer_cancelled_by_explicit_evict(self):
        pool, _selector, _cache = _make_pool(idle_timeout=0.05)
        a = await pool.get_or_create("A")
        assert await pool.evict("A") is True
        await asyncio.sleep(0.1)
        assert a.cleanup_calls == 1

    async def test_stale_timer_does_not_evict_new_entry(self):
        pool, _selector, _cache = _make_pool(idle_timeout=0.2)
        await pool.get_or_create("A")
        await pool.evict("A")
        new_a = await pool.get_or_create("A")
        await asyncio.sleep(0.05)
        assert pool.get("A") is new_a


# ---------------------------------------------------------------------------
# Explicit eviction and shutdown
# ---------------------------------------------------------------------------


class TestEvict:
    async def test_evict_is_idempotent(self):
        pool, _selector, cache = _make_pool()
        a = await pool.get_or_create("A")
        cache.put("A", make_page("https://a.example"))
        assert await pool.evict("A") is True
        assert await pool.evict("A") is False
        assert a.cleanup_calls == 1
        assert "A" not in cache

    async def test_evict_unknown_actor(self):
        pool, _selector, _cache = _make_pool()
        assert await pool.evict("nobody") is False


class TestShutdown:
    async def test_releases_everything(self):
        pool, selector, cache = _make_pool(max_sessions=3)
        backends = [await pool.get_or_create(actor) for actor in ("A", "B", "C")]
        cache.put("A", make_page("https://a.example"))
        await pool.shutdown()
        assert pool.active_count == 0
        assert len(cache) == 0
        assert all(b.cleanup_calls == 1 for b in backends)

    async def test_resets_selector(self):
        pool, selector, _cache = _make_pool()
        await pool.get_or_create("A")
        await pool.shutdown()
        assert selector.kind is None
        await pool.get_or_create("A")
        assert selector.probe_count == 2

    async def test_waits_for_pending_idle_cleanups(self):
        pool, _selector, _cache = _make_pool(idle_timeout=0.01)
        a = await pool.get_or_create("A")
        await asyncio.sleep(0.02)
        await pool.shutdown()
        assert a.cleanup_calls == 1

    async def test_shutdown_with_failing_cleanup(self):
        pool, _selector, _cache = _make_pool(fail_cleanup=True)
        await pool.get_or_create("A")
        await pool.shutdown()
        assert pool.active_count == 0
