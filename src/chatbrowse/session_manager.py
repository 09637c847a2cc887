# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BrowseSessionManager - the caller-facing browsing contract.

One explicitly constructed instance owns the backend selector, the session
pool and the page cache, and is handed to the router by reference::

    async with BrowseSessionManager(BrowseConfig.from_env()) as manager:
        info = await manager.navigate(chat_id, "example.com")
        info = await manager.click(chat_id, "3")

Every method returns a result or raises a ``ChatBrowseError`` subclass. A
failed action never evicts the actor's session; the next turn (e.g. back)
may recover.

Dependencies: session_pool.py, selector.py, page_cache.py, url_guard.py.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Hashable
from types import TracebackType
from typing import TypeVar

import structlog

from . import PageInfo
from .backend import BrowserBackend
from .config import BrowseConfig
from .errors import CaptureError, ChatBrowseError, NavigationError
from .page_cache import PageCache
from .selector import BackendSelector
from .session_pool import PoolHealth, SessionPool
from .url_guard import check_url, check_url_with_dns

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BrowseSessionManager:
    """Per-actor browsing over a shared, bounded pool of backends."""

    def __init__(
        self,
        config: BrowseConfig | None = None,
        *,
        selector: BackendSelector | None = None,
        cache: PageCache | None = None,
    ) -> None:
        self.config = config or BrowseConfig()
        self.cache = cache or PageCache()
        self.selector = selector or BackendSelector(self.config)
        self.pool = SessionPool(
            self.selector,
            self.cache,
            max_sessions=self.config.max_sessions,
            idle_timeout=self.config.idle_timeout,
        )

    async def __aenter__(self) -> BrowseSessionManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.teardown()

    # ── Internal ─────────────────────────────────────────────────────

    async def _check(self, url: str) -> str:
        if self.config.resolve_dns:
            return await check_url_with_dns(url)
        return check_url(url)

    async def _invoke(
        self, actor: Hashable, action: str, backend: BrowserBackend, call: Callable[[BrowserBackend], Awaitable[T]]
    ) -> T:
        """Run *call* on *backend*, normalizing failures to ``ChatBrowseError``.

        ``actor`` and ``action`` are bound into the structlog context for
        every log line emitted while the call runs.
        """
        with structlog.contextvars.bound_contextvars(actor=actor, action=action):
            try:
                return await call(backend)
            except ChatBrowseError as exc:
                logger.warning("Browse %s failed: actor=%s error=%s", action, actor, exc)
                raise
            except Exception as exc:
                logger.warning("Browse %s failed unexpectedly: actor=%s", action, actor, exc_info=True)
                raise NavigationError(f"{action} failed: {exc}") from exc

    async def _run(self, actor: Hashable, action: str, call: Callable[[BrowserBackend], Awaitable[T]]) -> T:
        backend = await self.pool.get_or_create(actor)
        return await self._invoke(actor, action, backend, call)

    async def _run_page(
        self, actor: Hashable, action: str, call: Callable[[BrowserBackend], Awaitable[PageInfo]]
    ) -> PageInfo:
        backend = await self.pool.get_or_create(actor)
        info = await self._invoke(actor, action, backend, call)
        # The session may have been evicted while the call was in flight.
        if self.pool.get(actor) is backend:
            self.cache.put(actor, info)
        else:
            logger.debug("Session ended during %s, not caching: actor=%s", action, actor)
        return info

    # ── Caller-facing contract ───────────────────────────────────────

    async def navigate(self, actor: Hashable, url: str) -> PageInfo:
        """Guard *url*, then load it in the actor's browser.

        Raises:
            GuardRejection: before any session is created or touched.
        """
        target = await self._check(url)
        return await self._run_page(actor, "navigate", lambda b: b.navigate(target))

    async def click(self, actor: Hashable, ref: str) -> PageInfo:
        return await self._run_page(actor, "click", lambda b: b.click(ref))

    async def type(self, actor: Hashable, ref: str, text: str) -> PageInfo:
        return await self._run_page(actor, "type", lambda b: b.type(ref, text))

    async def back(self, actor: Hashable) -> PageInfo:
        return await self._run_page(actor, "back", lambda b: b.back())

    async def refresh(self, actor: Hashable) -> PageInfo:
        """Reload the actor's cached page (re-checked by the guard)."""
        cached = self.cache.get(actor)
        if cached is None:
            raise NavigationError("Nothing to refresh. Open a page first.")
        return await self.navigate(actor, cached.url)

    async def screenshot(self, actor: Hashable) -> bytes:
        """Capture the actor's viewport. The returned bytes belong to the caller."""
        if actor not in self.pool:
            raise CaptureError("No page is open. Navigate somewhere first.")
        return await self._run(actor, "screenshot", lambda b: b.screenshot())

    async def get_text(self, actor: Hashable) -> str:
        if actor not in self.pool:
            raise NavigationError("No page is open. Navigate somewhere first.")
        return await self._run(actor, "get_text", lambda b: b.get_text())

    def cached_page(self, actor: Hashable) -> PageInfo | None:
        """Last observed page for *actor*, without touching the browser."""
        return self.cache.get(actor)

    async def close(self, actor: Hashable) -> bool:
        """End *actor*'s session now. Returns False if none was live."""
        return await self.pool.evict(actor, reason="closed")

    def health(self) -> PoolHealth:
        return self.pool.health()

    async def teardown(self) -> None:
        """Release every backend and forget the backend choice."""
        await self.pool.shutdown()
