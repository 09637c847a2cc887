# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""chatbrowse CLI: drive the browse router from a terminal, one turn per line.

Usage:
    chatbrowse [--remote-url URL] [--max-sessions N] [--idle-timeout S] [--actor ID]
    python -m chatbrowse.cli ...

Input lines:
    /browse <args>     or just <args>   command turn
    :cb <data>         or browse:<...>  button press
    :actor <id>                          switch actor
    quit                                 exit
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import BrowseConfig
from .router import BrowseRouter, Reply
from .session_manager import BrowseSessionManager

logger = logging.getLogger(__name__)

_QUIT_WORDS = frozenset({"quit", "exit", ":q"})


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chatbrowse",
        description="Interactive turn-based browser (terminal front end for the chat router)",
    )
    parser.add_argument("--remote-url", default=None, help="Remote browser service base URL (default: $PINCHTAB_URL)")
    parser.add_argument("--max-sessions", type=int, default=None, help="Live session capacity")
    parser.add_argument("--idle-timeout", type=float, default=None, help="Idle eviction timeout in seconds")
    parser.add_argument(
        "--resolve-dns",
        action="store_true",
        default=False,
        help="Also reject hostnames that resolve to private addresses",
    )
    parser.add_argument("--actor", default="cli", help="Actor id for this terminal (default: cli)")
    parser.add_argument(
        "--screenshot-dir",
        default=".",
        help="Directory where screenshots are written (default: current directory)",
    )
    parser.add_argument("--json-logs", action="store_true", default=False, help="Emit JSON log lines")
    parser.add_argument("--log-level", default="WARNING", help="Root log level (default: WARNING)")
    return parser.parse_args(argv)


def _build_config(args: argparse.Namespace) -> BrowseConfig:
    config = BrowseConfig.from_env()
    changes: dict = {}
    if args.remote_url:
        changes["remote_url"] = args.remote_url.rstrip("/")
    if args.max_sessions is not None:
        changes["max_sessions"] = args.max_sessions
    if args.idle_timeout is not None:
        changes["idle_timeout"] = args.idle_timeout
    if args.resolve_dns:
        changes["resolve_dns"] = True
    return config.replace(**changes) if changes else config


class _ScreenshotWriter:
    def __init__(self, directory: Path) -> None:
        self._directory = directory
        self._count = 0

    def write(self, image: bytes) -> Path:
        self._directory.mkdir(parents=True, exist_ok=True)
        self._count += 1
        path = self._directory / f"screenshot-{self._count}.png"
        path.write_bytes(image)
        return path


def render_reply(reply: Reply, screenshots: _ScreenshotWriter | None = None) -> str:
    """Plain-text rendering of a reply for the terminal."""
    lines: list[str] = []
    if reply.toast:
        lines.append(f"[{reply.toast}]")
    if reply.text:
        text = reply.text
        if reply.parse_mode:
            text = text.replace("\\", "")
        lines.append(text)
    if reply.photo is not None:
        if screenshots is not None:
            lines.append(f"(screenshot saved to {screenshots.write(reply.photo)})")
        else:
            lines.append(f"(screenshot, {len(reply.photo)} bytes)")
    for row in reply.buttons:
        lines.append("  ".join(f"[{b.label} → {b.data}]" for b in row))
    return "\n".join(lines)


async def _repl(router: BrowseRouter, actor: str, screenshots: _ScreenshotWriter) -> None:
    print("chatbrowse - type '/browse' for help, 'quit' to exit", file=sys.stderr)
    while True:
        try:
            line = await asyncio.to_thread(input, f"{actor}> ")
        except EOFError:
            return
        line = line.strip()
        if not line:
            continue
        if line.lower() in _QUIT_WORDS:
            return
        if line.startswith(":actor "):
            actor = line[len(":actor ") :].strip() or actor
            continue

        if line.startswith(":cb "):
            reply = await router.handle_callback(actor, line[len(":cb ") :].strip())
        elif line.startswith("browse:"):
            reply = await router.handle_callback(actor, line)
        else:
            reply = await router.handle_command(actor, line)

        if reply is None:
            print("(unhandled callback)")
            continue
        print(render_reply(reply, screenshots))


async def _run(args: argparse.Namespace) -> None:
    config = _build_config(args)
    async with BrowseSessionManager(config) as manager:
        router = BrowseRouter(manager)
        await _repl(router, args.actor, _ScreenshotWriter(Path(args.screenshot_dir)))


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``chatbrowse`` console script."""
    args = _parse_args(argv)

    from .logging_config import configure as configure_logging

    configure_logging(json_output=args.json_logs, level=args.log_level)
    try:
        config_check = _build_config(args)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        sys.exit(2)
    logger.info("Starting chatbrowse (max_sessions=%d)", config_check.max_sessions)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
