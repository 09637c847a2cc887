# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BrowseRouter - turns chat commands and button presses into manager calls.

Commands (text after ``/browse``)::

    <url>              open a page
    click <N>          follow link N
    type <N> <text>    fill input N
    back               previous page
    screenshot         capture the viewport
    close              end the browsing session

Button callbacks: ``browse:links``, ``browse:screenshot``, ``browse:refresh``,
``browse:back``, ``browse:page``, ``browse:click:<N>``.

The router never talks to the chat platform; it returns a ``Reply`` that a
transport adapter sends or uses to edit the message the button belonged to.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from dataclasses import dataclass

from .backend import parse_ref
from .errors import ChatBrowseError, GuardRejection, InvalidReferenceError, sanitize_detail
from .formatting import (
    CALLBACK_PREFIX,
    MAX_LINKS_DISPLAY,
    Keyboard,
    format_links,
    format_page,
    links_keyboard,
    page_keyboard,
)
from .session_manager import BrowseSessionManager

logger = logging.getLogger(__name__)

MARKDOWN_V2 = "MarkdownV2"

USAGE = (
    "🌐 Interactive browser\n\n"
    "/browse <url> - open a page\n"
    "/browse click <N> - follow a link\n"
    "/browse type <N> <text> - fill a field\n"
    "/browse back - previous page\n"
    "/browse screenshot - capture the page\n"
    "/browse close - end the session"
)


@dataclass(frozen=True, slots=True)
class Reply:
    """What to send back for one turn."""

    text: str = ""
    parse_mode: str | None = None
    buttons: Keyboard = ()
    photo: bytes | None = None
    toast: str | None = None  # short callback acknowledgement
    edit: bool = False  # edit the originating message instead of sending a new one


def _failure(action: str, exc: ChatBrowseError) -> str:
    if isinstance(exc, GuardRejection):
        return f"❌ Can't browse this URL (internal network or unsupported scheme): {exc.reason}"
    return f"❌ {action} failed: {sanitize_detail(str(exc))}"


class BrowseRouter:
    """Stateless dispatcher over a ``BrowseSessionManager``."""

    def __init__(self, manager: BrowseSessionManager, *, command: str = "/browse") -> None:
        self.manager = manager
        self.command = command

    # ── Commands ─────────────────────────────────────────────────────

    async def handle_command(self, actor: Hashable, text: str) -> Reply:
        args = text.strip()
        if args.startswith(self.command):
            args = args[len(self.command) :].strip()

        if not args:
            return Reply(text=USAGE)

        verb, _, rest = args.partition(" ")
        verb_lower = verb.lower()
        if verb_lower == "click":
            return await self._click_command(actor, rest.strip())
        if verb_lower == "type":
            return await self._type_command(actor, rest.strip())
        if args.lower() == "back":
            return await self._page_action(actor, "Back", self.manager.back(actor))
        if args.lower() == "screenshot":
            return await self._screenshot(actor)
        if args.lower() == "close":
            closed = await self.manager.close(actor)
            return Reply(text="🛑 Browsing session closed." if closed else "No browsing session is open.")
        return await self._navigate(actor, args)

    async def _navigate(self, actor: Hashable, url: str) -> Reply:
        try:
            info = await self.manager.navigate(actor, url)
        except ChatBrowseError as exc:
            return Reply(text=_failure("Loading", exc))
        return Reply(text=format_page(info), parse_mode=MARKDOWN_V2, buttons=page_keyboard())

    async def _click_command(self, actor: Hashable, ref: str) -> Reply:
        if not ref:
            return Reply(text=f"Usage: {self.command} click <N>")
        try:
            parse_ref(ref)
        except InvalidReferenceError:
            return Reply(text="❌ Please give a link number.")
        return await self._page_action(actor, "Click", self.manager.click(actor, ref))

    async def _type_command(self, actor: Hashable, args: str) -> Reply:
        ref, sep, value = args.partition(" ")
        if not sep:
            return Reply(text=f"Usage: {self.command} type <N> <text>")
        try:
            parse_ref(ref)
        except InvalidReferenceError:
            return Reply(text="❌ Please give a field number.")
        try:
            await self.manager.type(actor, ref, value)
        except ChatBrowseError as exc:
            return Reply(text=_failure("Typing", exc))
        return Reply(text=f"⌨️ Typed: {value}", buttons=page_keyboard())

    async def _page_action(
        self, actor: Hashable, action: str, call, *, edit: bool = False, toast: str | None = None
    ) -> Reply:
        try:
            info = await call
        except ChatBrowseError as exc:
            return Reply(text=_failure(action, exc), toast=toast)
        return Reply(text=format_page(info), parse_mode=MARKDOWN_V2, buttons=page_keyboard(), edit=edit, toast=toast)

    async def _screenshot(self, actor: Hashable, *, toast: str | None = None) -> Reply:
        try:
            image = await self.manager.screenshot(actor)
        except ChatBrowseError as exc:
            return Reply(text=_failure("Screenshot", exc), toast=toast)
        return Reply(text="📸 Browser screenshot", photo=image, toast=toast)

    # ── Button callbacks ─────────────────────────────────────────────

    async def handle_callback(self, actor: Hashable, data: str) -> Reply | None:
        """Handle a ``browse:`` button press; None if *data* is not ours."""
        if not data.startswith(CALLBACK_PREFIX):
            return None
        action = data[len(CALLBACK_PREFIX) :]

        if action == "links":
            cached = self.manager.cached_page(actor)
            if cached is None or not cached.links:
                return Reply(toast="This page has no links")
            displayed = cached.links[:MAX_LINKS_DISPLAY]
            return Reply(
                text=format_links(displayed),
                parse_mode=MARKDOWN_V2,
                buttons=links_keyboard(displayed),
                edit=True,
            )

        if action == "screenshot":
            return await self._screenshot(actor, toast="📸 Capturing...")

        if action == "refresh":
            if self.manager.cached_page(actor) is None:
                return Reply(toast="Nothing to refresh")
            return await self._page_action(
                actor, "Refresh", self.manager.refresh(actor), edit=True, toast="🔄 Refreshing..."
            )

        if action == "back":
            return await self._page_action(
                actor, "Back", self.manager.back(actor), edit=True, toast="⬅️ Going back..."
            )

        if action == "page":
            cached = self.manager.cached_page(actor)
            if cached is None:
                return Reply(toast="No page is open")
            return Reply(text=format_page(cached), parse_mode=MARKDOWN_V2, buttons=page_keyboard(), edit=True)

        if action.startswith("click:"):
            ref = action[len("click:") :]
            try:
                index = parse_ref(ref)
            except InvalidReferenceError:
                return Reply(toast="❌ Invalid link number")
            return await self._page_action(
                actor, "Click", self.manager.click(actor, ref), edit=True, toast=f"🔗 Opening #{index + 1}..."
            )

        logger.debug("Unknown browse callback: %s", data)
        return None
