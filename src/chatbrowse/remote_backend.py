# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Remote-service backend: drives an external browser-control service over HTTP.

The service (Pinchtab-compatible) keeps the real browser; this class only
keeps a URL history stack, because the service has no history API, and the
last observed ``PageInfo`` for ref validation.

Links and inputs are recovered from the service's interactive snapshot by
pattern-matching its markup. That recovery is best-effort: any snapshot
failure degrades to empty lists while text browsing keeps working.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx

from . import PageInfo, PageInput, PageLink
from .backend import BackendKind, build_page_info, resolve_ref, truncate_text
from .config import BrowseConfig
from .errors import CaptureError, GuardRejection, NavigationError
from .url_guard import validate_url

logger = logging.getLogger(__name__)

# Optional "[ref=N] link" prefix carries the service-side handle for a click
_LINK_RE = re.compile(r"(?:\[ref=(\d+)\]\s*(?:link\s*)?)?\[([^\]]*)\]\((https?://[^)\s]+)\)", re.IGNORECASE)
_INPUT_RE = re.compile(
    r"\[ref=(\d+)\]\s*(?:input|textarea)\s*(?:type=\"([^\"]*)\")?\s*(?:placeholder=\"([^\"]*)\")?",
    re.IGNORECASE,
)

_EMPTY_PAGE_URL = "about:blank"


# ── Snapshot parsing ─────────────────────────────────────────────────


def snapshot_content(snapshot: Any) -> str:
    """Flatten a snapshot payload (list of ``{role, content}`` nodes) into text.

    Unknown shapes yield an empty string.
    """
    if isinstance(snapshot, dict):
        snapshot = snapshot.get("nodes", snapshot.get("content", ""))
    if isinstance(snapshot, str):
        return snapshot
    if not isinstance(snapshot, list):
        return ""
    parts = []
    for node in snapshot:
        if isinstance(node, dict):
            content = node.get("content")
            if isinstance(content, str):
                parts.append(content)
        elif isinstance(node, str):
            parts.append(node)
    return "\n".join(parts)


def parse_link_refs(content: str) -> list[tuple[PageLink, str | None]]:
    """Extract ``[label](http...)`` links in document order with their service ref, if any."""
    return [
        (PageLink(label=(m.group(2).strip() or m.group(3)), url=m.group(3)), m.group(1))
        for m in _LINK_RE.finditer(content)
    ]


def parse_links(content: str) -> list[PageLink]:
    return [link for link, _ref in parse_link_refs(content)]


def parse_inputs(content: str) -> list[PageInput]:
    """Extract ``[ref=N] input type="..." placeholder="..."`` declarations."""
    return [
        PageInput(ref=m.group(1), type=m.group(2) or "text", placeholder=m.group(3) or "")
        for m in _INPUT_RE.finditer(content)
    ]


# ── Probe ────────────────────────────────────────────────────────────


async def is_remote_available(config: BrowseConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> bool:
    """Return True if the remote service answers its health endpoint in time."""
    try:
        async with httpx.AsyncClient(
            base_url=config.remote_url,
            timeout=config.probe_timeout,
            transport=transport,
        ) as client:
            response = await client.get("/health")
    except (httpx.HTTPError, OSError) as exc:
        logger.debug("Remote browser service probe failed: %s", exc)
        return False
    return response.is_success


# ── Backend ──────────────────────────────────────────────────────────


class RemoteBackend:
    """``BrowserBackend`` delegating to the remote control service."""

    kind = BackendKind.REMOTE

    def __init__(
        self,
        config: BrowseConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or BrowseConfig()
        self._client = httpx.AsyncClient(
            base_url=self.config.remote_url,
            timeout=self.config.request_timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self._history: list[str] = []
        self._last_page: PageInfo | None = None
        self._link_refs: tuple[str | None, ...] = ()

    @property
    def history(self) -> tuple[str, ...]:
        return tuple(self._history)

    @property
    def current_url(self) -> str:
        return self._history[-1] if self._history else ""

    # ── Transport ───────────────────────────────────────────────────

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise NavigationError(f"Remote browser {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise NavigationError(f"Remote browser {path} unreachable: {exc}") from exc
        if not response.is_success:
            raise NavigationError(f"Remote browser {path} failed: {response.status_code}")
        return response

    async def _fetch_json(self, method: str, path: str, **kwargs) -> Any:
        response = await self._send(method, path, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise NavigationError(f"Remote browser {path} returned invalid JSON") from exc

    async def _fetch_text(self) -> str:
        payload = await self._fetch_json("GET", "/text")
        text = payload.get("text", "") if isinstance(payload, dict) else ""
        return text if isinstance(text, str) else ""

    async def _fetch_snapshot(self) -> str:
        try:
            payload = await self._fetch_json("GET", "/snapshot", params={"filter": "interactive"})
            return snapshot_content(payload)
        except Exception:
            logger.debug("Remote snapshot unavailable, continuing without links/inputs", exc_info=True)
            return ""

    async def _page_info(self, current_url: str) -> PageInfo:
        text, snapshot = await asyncio.gather(self._fetch_text(), self._fetch_snapshot())
        first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
        link_refs = parse_link_refs(snapshot)
        info = build_page_info(
            url=current_url,
            title=first_line or current_url,
            text=text,
            links=[link for link, _ref in link_refs],
            inputs=parse_inputs(snapshot),
            config=self.config,
        )
        self._last_page = info
        self._link_refs = tuple(ref for _link, ref in link_refs[: len(info.links)])
        return info

    # ── BrowserBackend ──────────────────────────────────────────────

    async def navigate(self, url: str) -> PageInfo:
        if not url.startswith(("http://", "https://")):
            raise NavigationError(f"Refusing to navigate to non-HTTP(S) URL: {url}")
        await self._fetch_json("POST", "/navigate", json={"url": url})
        self._history.append(url)
        return await self._page_info(url)

    async def click(self, ref: str) -> PageInfo:
        links = self._last_page.links if self._last_page else ()
        index = resolve_ref(ref, links, "link")
        link = links[index]
        error = validate_url(link.url)
        if error:
            logger.warning("Navigation guard blocked link click: url=%s reason=%s", link.url, error)
            raise GuardRejection(error, url=link.url, reason=error)
        # Without a service-side handle the service resolves the positional ref itself.
        service_ref = self._link_refs[index] if index < len(self._link_refs) else None
        action_ref = service_ref if service_ref is not None else str(index)
        logger.debug("Remote click ref=%s -> action ref=%s", ref, action_ref)
        await self._fetch_json("POST", "/action", json={"action": "click", "ref": action_ref})
        self._history.append(link.url)
        return await self._page_info(link.url)

    async def type(self, ref: str, text: str) -> PageInfo:
        inputs = self._last_page.inputs if self._last_page else ()
        target = inputs[resolve_ref(ref, inputs, "input")]
        await self._fetch_json("POST", "/action", json={"action": "type", "ref": target.ref, "text": text})
        return await self._page_info(self.current_url)

    async def back(self) -> PageInfo:
        if len(self._history) <= 1:
            if self._last_page is not None:
                return self._last_page
            return PageInfo(url=_EMPTY_PAGE_URL, title=_EMPTY_PAGE_URL, text="")
        await self._fetch_json("POST", "/navigate", json={"action": "back"})
        self._history.pop()
        return await self._page_info(self.current_url)

    async def screenshot(self) -> bytes:
        if not self._history:
            raise CaptureError("No page is open. Navigate somewhere first.")
        try:
            response = await self._send("GET", "/screenshot")
        except NavigationError as exc:
            raise CaptureError(str(exc)) from exc
        return response.content

    async def get_text(self) -> str:
        return truncate_text(await self._fetch_text(), self.config.max_text_length)

    async def cleanup(self) -> None:
        """Close the HTTP client. Browser tabs are managed by the service."""
        self._history.clear()
        self._last_page = None
        self._link_refs = ()
        try:
            await self._client.aclose()
        except Exception:
            logger.debug("Remote client close failed", exc_info=True)
