# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the memoized backend selector."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from chatbrowse.backend import BackendKind
from chatbrowse.config import BrowseConfig
from chatbrowse.errors import BackendUnavailableError
from chatbrowse.local_backend import PlaywrightBackend
from chatbrowse.remote_backend import RemoteBackend
from chatbrowse.selector import BackendSelector


def _counting_probe(result: bool, delay: float = 0.0):
    calls = []

    async def _probe(config):
        calls.append(config)
        if delay:
            await asyncio.sleep(delay)
        return result

    return _probe, calls


class TestSelect:
    async def test_remote_when_probe_succeeds(self):
        probe, _calls = _counting_probe(True)
        selector = BackendSelector(BrowseConfig(), probe=probe)
        assert await selector.select() is BackendKind.REMOTE
        assert selector.kind is BackendKind.REMOTE

    async def test_local_when_probe_fails(self):
        probe, _calls = _counting_probe(False)
        selector = BackendSelector(BrowseConfig(), probe=probe)
        assert await selector.select() is BackendKind.LOCAL

    async def test_probe_exception_falls_back_to_local(self):
        async def _boom(config):
            raise OSError("connection refused")

        selector = BackendSelector(BrowseConfig(), probe=_boom)
        assert await selector.select() is BackendKind.LOCAL

    async def test_undecided_kind_is_none(self):
        selector = BackendSelector(BrowseConfig(), probe=_counting_probe(True)[0])
        assert selector.kind is None

    async def test_memoized(self):
        probe, calls = _counting_probe(True)
        selector = BackendSelector(BrowseConfig(), probe=probe)
        await selector.select()
        await selector.select()
        await selector.select()
        assert len(calls) == 1
        assert selector.probe_count == 1

    async def test_concurrent_callers_share_one_probe(self):
        probe, calls = _counting_probe(True, delay=0.01)
        selector = BackendSelector(BrowseConfig(), probe=probe)
        results = await asyncio.gather(*(selector.select() for _ in range(10)))
        assert set(results) == {BackendKind.REMOTE}
        assert len(calls) == 1

    async def test_cancelled_caller_does_not_cancel_probe(self):
        probe, calls = _counting_probe(False, delay=0.05)
        selector = BackendSelector(BrowseConfig(), probe=probe)
        first = asyncio.ensure_future(selector.select())
        await asyncio.sleep(0)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert await selector.select() is BackendKind.LOCAL
        assert len(calls) == 1

    async def test_default_probe_used(self):
        # conftest replaces the module-level probe with one that reports unavailable
        selector = BackendSelector(BrowseConfig())
        assert await selector.select() is BackendKind.LOCAL


class TestReset:
    async def test_reset_probes_again(self):
        probe, calls = _counting_probe(True)
        selector = BackendSelector(BrowseConfig(), probe=probe)
        await selector.select()
        selector.reset()
        assert selector.kind is None
        await selector.select()
        assert len(calls) == 2

    async def test_reset_cancels_pending_probe(self):
        probe, _calls = _counting_probe(True, delay=1.0)
        selector = BackendSelector(BrowseConfig(), probe=probe)
        pending = asyncio.ensure_future(selector.select())
        await asyncio.sleep(0.01)
        selector.reset()
        with pytest.raises(asyncio.CancelledError):
            await pending


class TestCreateBackend:
    async def test_remote_instance(self):
        selector = BackendSelector(BrowseConfig(), probe=_counting_probe(True)[0])
        backend = await selector.create_backend()
        assert isinstance(backend, RemoteBackend)
        await backend.cleanup()

    async def test_local_instance_is_lazy(self):
        selector = BackendSelector(BrowseConfig(), probe=_counting_probe(False)[0])
        backend = await selector.create_backend()
        assert isinstance(backend, PlaywrightBackend)
        assert backend.has_page is False

    async def test_fresh_instance_per_call(self):
        selector = BackendSelector(BrowseConfig(), probe=_counting_probe(False)[0])
        assert await selector.create_backend() is not await selector.create_backend()

    async def test_construction_failure(self):
        selector = BackendSelector(BrowseConfig(), probe=_counting_probe(False)[0])
        with patch("chatbrowse.selector.PlaywrightBackend", side_effect=RuntimeError("no driver")):
            with pytest.raises(BackendUnavailableError, match="no driver"):
                await selector.create_backend()
