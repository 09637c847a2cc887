# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""chatbrowse: turn-based remote browsing for chat actors.

A chat drives one headless browser page at a time (navigate, click a link,
fill a field, go back, screenshot) through stateless request/response turns.
Each observed page is summarised as a ``PageInfo``:
- links: ordered ``PageLink`` entries, addressed by position
- inputs: ordered ``PageInput`` entries, addressed by position
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlparse


@dataclass(frozen=True, slots=True)
class PageLink:
    """A followable link on the observed page."""

    label: str
    url: str


@dataclass(frozen=True, slots=True)
class PageInput:
    """A form control on the observed page."""

    ref: str  # backend-specific handle for the control
    type: str  # text, search, password, textarea, select, ...
    placeholder: str


@dataclass(frozen=True, slots=True)
class PageInfo:
    """Immutable snapshot of the page an actor is looking at.

    Refs into ``links`` and ``inputs`` are positional and only valid until
    the next navigate/click/type/back.
    """

    url: str
    title: str
    text: str
    links: tuple[PageLink, ...] = field(default_factory=tuple)
    inputs: tuple[PageInput, ...] = field(default_factory=tuple)

    @property
    def domain(self) -> str:
        try:
            return urlparse(self.url).hostname or self.url
        except ValueError:
            return self.url
