# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import chatbrowse  # noqa: F401
except ImportError:
    raise ImportError("chatbrowse is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _block_real_browser(monkeypatch):
    """Safety net: prevent real Chromium launches and real probes in unit tests.

    Tests that exercise the local backend patch
    ``chatbrowse.local_backend.async_playwright`` themselves; that patch
    takes priority over this fixture.
    """

    def _no_real_playwright():
        raise RuntimeError("Test tried to launch a real browser. Patch 'chatbrowse.local_backend.async_playwright'.")

    async def _no_real_probe(config):
        return False

    monkeypatch.setattr("chatbrowse.local_backend.async_playwright", _no_real_playwright)
    monkeypatch.setattr("chatbrowse.selector.is_remote_available", _no_real_probe)
