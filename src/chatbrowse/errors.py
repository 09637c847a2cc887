# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""chatbrowse exception hierarchy.

All chatbrowse errors inherit from ChatBrowseError so the router can catch
the base class and turn any failure into a reply for a single actor's turn.
"""

from __future__ import annotations

import re


class ChatBrowseError(Exception):
    """Base exception for all chatbrowse errors."""


class GuardRejection(ChatBrowseError):
    """URL rejected before reaching any backend (scheme or private address)."""

    def __init__(self, message: str, *, url: str = "", reason: str = "") -> None:
        super().__init__(message)
        self.url = url
        self.reason = reason or message


class NavigationError(ChatBrowseError):
    """Backend failed to load or reach a page (network failure, timeout)."""


class InvalidReferenceError(ChatBrowseError):
    """Click/type reference is malformed or outside the last observed list."""

    def __init__(self, message: str, *, ref: str = "") -> None:
        super().__init__(message)
        self.ref = ref


class CaptureError(ChatBrowseError):
    """Screenshot requested with no active page, or capture failed."""


class BackendUnavailableError(ChatBrowseError):
    """No browser backend could be selected or constructed."""


# ── User-facing detail scrubbing ─────────────────────────────────────

MAX_DETAIL_LENGTH = 200

_PATH_PATTERN = re.compile(r"(?:/(?:home|Users|root|tmp|var|opt|usr)/[^\s'\"]+|[A-Za-z]:\\[^\s'\"]+)")
_CALL_LOG_PATTERN = re.compile(r"\n=+ logs =+.*", re.DOTALL)


def sanitize_detail(text: str) -> str:
    """Scrub filesystem paths and driver call logs from *text*.

    Truncates to ``MAX_DETAIL_LENGTH`` characters.
    """
    text = _CALL_LOG_PATTERN.sub("", text)
    text = _PATH_PATTERN.sub("<path>", text)
    text = " ".join(text.split())
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text
