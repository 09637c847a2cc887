# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BrowserBackend - the contract both automation engines implement.

The pool and the router only ever see this protocol, never which engine
is behind it.

Dependencies: leaf module (errors.py, config.py, package data model).
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from typing import Protocol, runtime_checkable

from . import PageInfo, PageInput, PageLink
from .config import MAX_LINK_LABEL_LENGTH, BrowseConfig
from .errors import InvalidReferenceError


class BackendKind(StrEnum):
    """Backend families; exactly one is used per process."""

    REMOTE = "pinchtab"
    LOCAL = "playwright"


@runtime_checkable
class BrowserBackend(Protocol):
    """Interface for one actor's live browser, remote or local."""

    async def navigate(self, url: str) -> PageInfo: ...

    async def click(self, ref: str) -> PageInfo: ...

    async def type(self, ref: str, text: str) -> PageInfo: ...

    async def back(self) -> PageInfo: ...

    async def screenshot(self) -> bytes: ...

    async def get_text(self) -> str: ...

    async def cleanup(self) -> None: ...


# ── Shared helpers ───────────────────────────────────────────────────


def parse_ref(ref: str | int) -> int:
    """Parse a positional ref; must be a non-negative integer.

    Raises:
        InvalidReferenceError: *ref* is not a non-negative integer.
    """
    if isinstance(ref, bool):
        raise InvalidReferenceError(f"ref must be a non-negative integer, got {ref!r}", ref=str(ref))
    if isinstance(ref, int):
        index = ref
    else:
        text = str(ref).strip()
        if not text.isdigit():
            raise InvalidReferenceError(f"ref must be a non-negative integer, got {ref!r}", ref=str(ref))
        index = int(text)
    if index < 0:
        raise InvalidReferenceError(f"ref must be a non-negative integer, got {ref!r}", ref=str(ref))
    return index


def resolve_ref(ref: str | int, items: tuple, kind: str = "link") -> int:
    """Return the index of *ref* within the last observed *items*.

    Raises:
        InvalidReferenceError: malformed or out of range.
    """
    index = parse_ref(ref)
    if index >= len(items):
        raise InvalidReferenceError(
            f"{kind} ref {index} is out of range ({len(items)} {kind}s on the current page)",
            ref=str(ref),
        )
    return index


def truncate_text(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


def build_page_info(
    *,
    url: str,
    title: str,
    text: str,
    links: Iterable[PageLink],
    inputs: Iterable[PageInput],
    config: BrowseConfig,
) -> PageInfo:
    """Assemble a ``PageInfo`` with every text and list bound applied, in document order."""
    bounded_links: list[PageLink] = []
    for link in links:
        if len(bounded_links) >= config.max_links:
            break
        bounded_links.append(PageLink(label=truncate_text(link.label, MAX_LINK_LABEL_LENGTH), url=link.url))
    bounded_inputs = tuple(inputs)[: config.max_inputs]
    return PageInfo(
        url=url,
        title=(title or url).strip(),
        text=truncate_text(text or "", config.max_text_length),
        links=tuple(bounded_links),
        inputs=bounded_inputs,
    )
