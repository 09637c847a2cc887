# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Chat rendering for observed pages: MarkdownV2 text plus inline buttons.

Transport-neutral: buttons are plain ``(label, data)`` pairs that a chat
adapter turns into its own keyboard type. Callback data uses the
``browse:`` prefix understood by ``router.BrowseRouter.handle_callback``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from . import PageInfo, PageLink

MAX_DISPLAY_TEXT = 800
MAX_LINKS_DISPLAY = 10
CALLBACK_PREFIX = "browse:"

_MARKDOWN_SPECIAL = re.compile(r"([\\_*\[\]()~`>#+\-=|{}.!])")


@dataclass(frozen=True, slots=True)
class Button:
    """One inline button: visible label and callback payload."""

    label: str
    data: str


Keyboard = tuple[tuple[Button, ...], ...]


def escape_markdown(text: str) -> str:
    """Escape Telegram MarkdownV2 special characters."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_page(info: PageInfo) -> str:
    """Domain line, bold title (when it differs from the domain), then body text."""
    domain = info.domain
    title = info.title or domain
    text = truncate(info.text.strip(), MAX_DISPLAY_TEXT)

    lines = [f"🌐 {escape_markdown(domain)}", ""]
    if title != domain:
        lines.extend([f"*{escape_markdown(title)}*", ""])
    if text:
        lines.append(escape_markdown(text))
    return "\n".join(lines)


def format_links(links: Sequence[PageLink]) -> str:
    """Numbered (1-based) list of the first ``MAX_LINKS_DISPLAY`` links."""
    displayed = links[:MAX_LINKS_DISPLAY]
    lines = [
        f"{i + 1}\\. {escape_markdown(link.label)}\n   {escape_markdown(link.url)}" for i, link in enumerate(displayed)
    ]
    return "🔗 *Page links*\n\n" + "\n\n".join(lines)


def page_keyboard() -> Keyboard:
    return (
        (
            Button("🔗 Links", f"{CALLBACK_PREFIX}links"),
            Button("📸 Screenshot", f"{CALLBACK_PREFIX}screenshot"),
            Button("🔄 Refresh", f"{CALLBACK_PREFIX}refresh"),
        ),
        (Button("⬅️ Back", f"{CALLBACK_PREFIX}back"),),
    )


def links_keyboard(links: Sequence[PageLink]) -> Keyboard:
    """One button per displayed link (label 1-based, payload 0-based ref)."""
    displayed = links[:MAX_LINKS_DISPLAY]
    rows = [(Button(f"{i + 1}", f"{CALLBACK_PREFIX}click:{i}"),) for i in range(len(displayed))]
    rows.append((Button("⬅️ Back to page", f"{CALLBACK_PREFIX}page"),))
    return tuple(rows)
