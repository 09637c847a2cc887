# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Runtime configuration, read from ``CHATBROWSE_*`` environment variables."""

from __future__ import annotations

import dataclasses
import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_URL = "http://localhost:9867"
DEFAULT_MAX_SESSIONS = 5
DEFAULT_IDLE_TIMEOUT = 600.0  # 10 minutes
DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_NAV_TIMEOUT_MS = 30000
DEFAULT_MAX_TEXT_LENGTH = 2000
DEFAULT_MAX_LINKS = 30
DEFAULT_MAX_INPUTS = 20
MAX_LINK_LABEL_LENGTH = 100

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True)
class BrowseConfig:
    """Settings shared by the pool, the selector and both backends."""

    remote_url: str = DEFAULT_REMOTE_URL
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_sessions: int = DEFAULT_MAX_SESSIONS
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    navigation_timeout_ms: int = DEFAULT_NAV_TIMEOUT_MS
    max_text_length: int = DEFAULT_MAX_TEXT_LENGTH
    max_links: int = DEFAULT_MAX_LINKS
    max_inputs: int = DEFAULT_MAX_INPUTS
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    resolve_dns: bool = False

    def __post_init__(self) -> None:
        if self.max_sessions < 1:
            raise ValueError(f"max_sessions must be >= 1, got {self.max_sessions}")
        if not math.isfinite(self.idle_timeout) or self.idle_timeout <= 0:
            raise ValueError(f"idle_timeout must be a finite number > 0, got {self.idle_timeout}")

    def replace(self, **changes) -> BrowseConfig:
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BrowseConfig:
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        remote_url = env.get("CHATBROWSE_REMOTE_URL") or env.get("PINCHTAB_URL") or DEFAULT_REMOTE_URL
        return cls(
            remote_url=remote_url.rstrip("/"),
            probe_timeout=_env_float(env, "CHATBROWSE_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT),
            request_timeout=_env_float(env, "CHATBROWSE_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            max_sessions=_env_int(env, "CHATBROWSE_MAX_SESSIONS", DEFAULT_MAX_SESSIONS),
            idle_timeout=_env_float(env, "CHATBROWSE_IDLE_TIMEOUT", DEFAULT_IDLE_TIMEOUT),
            navigation_timeout_ms=_env_int(env, "CHATBROWSE_NAV_TIMEOUT_MS", DEFAULT_NAV_TIMEOUT_MS),
            max_text_length=_env_int(env, "CHATBROWSE_MAX_TEXT", DEFAULT_MAX_TEXT_LENGTH),
            headless=env.get("CHATBROWSE_HEADLESS", "1").strip().lower() in _TRUE_VALUES,
            resolve_dns=env.get("CHATBROWSE_RESOLVE_DNS", "").strip().lower() in _TRUE_VALUES,
        )


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %d", name, raw, default)
        return default
    if value < 1:
        logger.warning("Ignoring non-positive %s=%r, using %d", name, raw, default)
        return default
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %.1f", name, raw, default)
        return default
    if not math.isfinite(value) or value <= 0:
        logger.warning("Ignoring non-positive or non-finite %s=%r, using %.1f", name, raw, default)
        return default
    return value
