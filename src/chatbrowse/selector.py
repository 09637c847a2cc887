# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BackendSelector - one-time, process-wide choice of backend family.

The first caller starts the remote-service probe; every concurrent or later
caller awaits the same task, so the whole process agrees on one family until
``reset()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .backend import BackendKind, BrowserBackend
from .config import BrowseConfig
from .errors import BackendUnavailableError
from .local_backend import PlaywrightBackend
from .remote_backend import RemoteBackend, is_remote_available

logger = logging.getLogger(__name__)

ProbeFn = Callable[[BrowseConfig], Awaitable[bool]]


class BackendSelector:
    """Memoized backend-family decision plus a factory for that family."""

    def __init__(self, config: BrowseConfig | None = None, *, probe: ProbeFn | None = None) -> None:
        self.config = config or BrowseConfig()
        self._probe = probe or is_remote_available
        self._decision: asyncio.Task[BackendKind] | None = None
        self.probe_count = 0

    @property
    def kind(self) -> BackendKind | None:
        """The resolved family, or None while undecided."""
        task = self._decision
        if task is None or not task.done() or task.cancelled() or task.exception() is not None:
            return None
        return task.result()

    async def select(self) -> BackendKind:
        """Return the backend family, probing only on the first call."""
        if self._decision is None:
            self._decision = asyncio.get_running_loop().create_task(self._detect(), name="chatbrowse-backend-probe")
        # A cancelled caller must not cancel the probe other callers share.
        return await asyncio.shield(self._decision)

    async def _detect(self) -> BackendKind:
        self.probe_count += 1
        try:
            available = await self._probe(self.config)
        except Exception:
            logger.warning("Remote browser probe raised, falling back to local engine", exc_info=True)
            available = False
        kind = BackendKind.REMOTE if available else BackendKind.LOCAL
        logger.info("Browser backend selected: %s (remote_url=%s)", kind, self.config.remote_url)
        return kind

    async def create_backend(self) -> BrowserBackend:
        """Construct a fresh backend instance of the selected family.

        Raises:
            BackendUnavailableError: the backend could not be constructed.
        """
        kind = await self.select()
        try:
            if kind is BackendKind.REMOTE:
                return RemoteBackend(self.config)
            return PlaywrightBackend(self.config)
        except Exception as exc:
            raise BackendUnavailableError(f"Could not create {kind} backend: {exc}") from exc

    def reset(self) -> None:
        """Forget the decision so the next ``select()`` probes again."""
        task, self._decision = self._decision, None
        if task is not None and not task.done():
            task.cancel()
