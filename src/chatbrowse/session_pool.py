# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""SessionPool - at most one live backend per actor, at most ``max_sessions`` overall.

Two removal paths only:
- idle eviction: a per-entry ``call_later`` timer, rearmed on every access
- capacity eviction: least-recently-used entry when a new actor needs a slot

Both also drop the actor's page-cache entry. Map mutations never span an
``await`` so no lock is needed under the event loop; cleanup of the removed
backend happens after the entry is already gone.

The pool does not serialize calls for one actor. The chat protocol is one
action per turn; two concurrent actions for the same actor share a backend.

Dependencies: selector.py, page_cache.py - no router imports.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Hashable
from dataclasses import dataclass, field

from .backend import BackendKind, BrowserBackend
from .page_cache import PageCache
from .selector import BackendSelector

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Health snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PoolHealth:
    """Immutable snapshot of pool state for monitoring."""

    active: int
    max_sessions: int
    backend: BackendKind | None


# ---------------------------------------------------------------------------
# Internal: pooled entry
# ---------------------------------------------------------------------------


@dataclass(slots=True, eq=False)
class _SessionEntry:
    """Tracks a single actor's backend within the pool."""

    actor: Hashable
    backend: BrowserBackend
    created_at: float = field(default_factory=time.monotonic)
    last_used_at: float = field(default_factory=time.monotonic)
    use_seq: int = 0  # strictly increasing access order, breaks clock ties
    idle_handle: asyncio.TimerHandle | None = None


# ---------------------------------------------------------------------------
# SessionPool
# ---------------------------------------------------------------------------


class SessionPool:
    """Owns every live ``BrowserBackend``; the only place they are created or released."""

    def __init__(
        self,
        selector: BackendSelector,
        cache: PageCache,
        *,
        max_sessions: int,
        idle_timeout: float,
    ) -> None:
        if max_sessions < 1:
            raise ValueError(f"max_sessions must be >= 1, got {max_sessions}")
        self._selector = selector
        self._cache = cache
        self._max_sessions = max_sessions
        self._idle_timeout = idle_timeout
        self._entries: dict[Hashable, _SessionEntry] = {}
        self._cleanup_tasks: set[asyncio.Task] = set()
        self._use_counter = itertools.count(1)

    # ── Access ───────────────────────────────────────────────────────

    async def get_or_create(self, actor: Hashable) -> BrowserBackend:
        """Return *actor*'s backend, creating one (and evicting LRU) if needed."""
        entry = self._entries.get(actor)
        if entry is not None:
            self._touch(entry)
            return entry.backend

        backend = await self._selector.create_backend()

        # Re-check after the await: another turn may have filled the slot.
        entry = self._entries.get(actor)
        if entry is not None:
            await self._release(_SessionEntry(actor=actor, backend=backend))
            self._touch(entry)
            return entry.backend

        victims = []
        while len(self._entries) >= self._max_sessions:
            victim = min(self._entries.values(), key=lambda e: e.use_seq)
            self._detach(victim, reason="capacity")
            victims.append(victim)

        entry = _SessionEntry(actor=actor, backend=backend, use_seq=next(self._use_counter))
        self._entries[actor] = entry
        self._arm_idle_timer(entry)
        logger.info("Session created: actor=%s (active=%d/%d)", actor, len(self._entries), self._max_sessions)

        for victim in victims:
            await self._release(victim)
        return backend

    def get(self, actor: Hashable) -> BrowserBackend | None:
        """Return *actor*'s live backend without creating or touching it."""
        entry = self._entries.get(actor)
        return entry.backend if entry is not None else None

    def last_used_at(self, actor: Hashable) -> float | None:
        entry = self._entries.get(actor)
        return entry.last_used_at if entry is not None else None

    # ── Eviction ─────────────────────────────────────────────────────

    async def evict(self, actor: Hashable, reason: str = "explicit") -> bool:
        """Remove *actor*'s entry and release its backend.

        Idempotent: returns False if the actor had no live entry.
        """
        entry = self._entries.get(actor)
        if entry is None:
            return False
        self._detach(entry, reason=reason)
        await self._release(entry)
        return True

    def _detach(self, entry: _SessionEntry, *, reason: str) -> None:
        """Synchronously cancel the timer and drop the entry plus its cached page."""
        if entry.idle_handle is not None:
            entry.idle_handle.cancel()
            entry.idle_handle = None
        if self._entries.get(entry.actor) is not entry:
            return
        del self._entries[entry.actor]
        self._cache.invalidate(entry.actor)
        logger.info(
            "Session evicted: actor=%s reason=%s (active=%d/%d)",
            entry.actor,
            reason,
            len(self._entries),
            self._max_sessions,
        )

    async def _release(self, entry: _SessionEntry) -> None:
        """Run backend cleanup; failures are logged, never raised."""
        try:
            await entry.backend.cleanup()
        except Exception:
            logger.debug("Backend cleanup failed for actor=%s", entry.actor, exc_info=True)

    # ── Idle timers ──────────────────────────────────────────────────

    def _touch(self, entry: _SessionEntry) -> None:
        entry.last_used_at = time.monotonic()
        entry.use_seq = next(self._use_counter)
        self._arm_idle_timer(entry)

    def _arm_idle_timer(self, entry: _SessionEntry) -> None:
        if entry.idle_handle is not None:
            entry.idle_handle.cancel()
        loop = asyncio.get_running_loop()
        entry.idle_handle = loop.call_later(self._idle_timeout, self._on_idle, entry)

    def _on_idle(self, entry: _SessionEntry) -> None:
        # A stale timer for a replaced or already-evicted entry must not fire.
        if self._entries.get(entry.actor) is not entry:
            return
        entry.idle_handle = None
        self._detach(entry, reason="idle")
        task = asyncio.get_running_loop().create_task(self._release(entry), name=f"chatbrowse-idle-{entry.actor}")
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    # ── Monitoring ───────────────────────────────────────────────────

    def health(self) -> PoolHealth:
        """Return a snapshot of pool health."""
        return PoolHealth(
            active=len(self._entries),
            max_sessions=self._max_sessions,
            backend=self._selector.kind,
        )

    @property
    def active_count(self) -> int:
        return len(self._entries)

    @property
    def capacity(self) -> int:
        return self._max_sessions

    def __contains__(self, actor: object) -> bool:
        return actor in self._entries

    # ── Shutdown ─────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Evict every entry, wait for pending cleanups, reset the backend choice."""
        entries = list(self._entries.values())
        for entry in entries:
            self._detach(entry, reason="teardown")
        await asyncio.gather(*(self._release(entry) for entry in entries))
        if self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks), return_exceptions=True)
        self._cache.invalidate_all()
        self._selector.reset()
        logger.info("Session pool shut down (%d sessions released)", len(entries))
