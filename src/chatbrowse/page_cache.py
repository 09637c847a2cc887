# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Last observed ``PageInfo`` per actor.

Pure Python module - no browser dependencies. Read-side only: it feeds
"show page" / "show links" / "refresh" without a re-fetch and never gates a
backend's lifecycle. Actions always go through the live backend.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable

from . import PageInfo

logger = logging.getLogger(__name__)


class PageCache:
    """Map of actor -> most recent ``PageInfo``."""

    def __init__(self) -> None:
        self._pages: dict[Hashable, PageInfo] = {}

    def get(self, actor: Hashable) -> PageInfo | None:
        return self._pages.get(actor)

    def put(self, actor: Hashable, info: PageInfo) -> None:
        self._pages[actor] = info

    def invalidate(self, actor: Hashable) -> bool:
        """Drop *actor*'s entry. Returns True if one existed."""
        return self._pages.pop(actor, None) is not None

    def invalidate_all(self) -> None:
        count = len(self._pages)
        self._pages.clear()
        if count:
            logger.debug("Page cache cleared (%d entries)", count)

    def __len__(self) -> int:
        return len(self._pages)

    def __contains__(self, actor: object) -> bool:
        return actor in self._pages
