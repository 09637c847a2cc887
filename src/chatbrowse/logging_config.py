# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Logging for chatbrowse: stdlib loggers rendered through structlog.

Modules log with ``logging.getLogger(__name__)``; ``configure()`` puts one
stderr handler on the root logger that renders those records (and any
structlog loggers) as console lines or JSON lines. While a session manager
call runs, ``actor`` and ``action`` are bound in ``structlog.contextvars``
and appear on every line logged by the pool, the selector and the backends.

Leaf module - no chatbrowse imports. Safe to call early in startup.
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.typing import EventDict, WrappedLogger

# Per-request lines from the HTTP client stack; only warnings are kept.
_NOISY_LOGGERS = ("httpx", "httpcore")


def _stringify_actor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render the bound actor id as text; chat ids may be ints or tuples."""
    actor = event_dict.get("actor")
    if actor is not None and not isinstance(actor, str):
        event_dict["actor"] = str(actor)
    return event_dict


def _renderer(json_output: bool):
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Install the structlog bridge on the root logger.

    Args:
        json_output: True for JSON lines (bot deployments), False for the
            interactive console.
        level: Root logger level name; unknown names fall back to INFO.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        _stringify_actor,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(json_output)],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
