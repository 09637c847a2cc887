# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Local-engine backend: one Playwright Chromium browser and page per actor.

The browser is launched lazily on first use. Links and inputs are extracted
in-page; a ref is the element's position in the filtered list at extraction
time, so click/type re-run the exact same filter expression before acting.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress

from playwright.async_api import Browser, Dialog, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from . import PageInfo, PageInput, PageLink
from .backend import BackendKind, build_page_info, resolve_ref, truncate_text
from .config import MAX_LINK_LABEL_LENGTH, BrowseConfig
from .errors import BackendUnavailableError, CaptureError, GuardRejection, InvalidReferenceError, NavigationError
from .url_guard import validate_url

logger = logging.getLogger(__name__)

_EMPTY_PAGE_URL = "about:blank"
_SETTLE_QUIET_MS = 200
_SETTLE_MAX_MS = 2000

# ── In-page scripts (static, no interpolation of user data) ─────────

# Single source of truth for which anchors count as links; extraction and
# click must agree on it or refs point at the wrong element.
_REAL_LINKS_EXPR = (
    "Array.from(document.querySelectorAll('a[href]'))"
    ".filter((a) => (a.textContent || '').trim() && String(a.href).startsWith('http'))"
)

_INPUTS_EXPR = (
    "Array.from(document.querySelectorAll('input, textarea, select'))"
    ".filter((el) => (el.getAttribute('type') || '').toLowerCase() !== 'hidden')"
)

_BODY_TEXT_JS = "() => (document.body ? document.body.innerText || '' : '')"

_EXTRACT_LINKS_JS = f"""([max, labelMax]) => {_REAL_LINKS_EXPR}
  .slice(0, max)
  .map((a) => ({{label: (a.textContent || '').trim().slice(0, labelMax), url: a.href}}))"""

_EXTRACT_INPUTS_JS = f"""(max) => {_INPUTS_EXPR}
  .slice(0, max)
  .map((el, i) => ({{
    ref: String(i),
    type: el.type || el.tagName.toLowerCase(),
    placeholder: el.placeholder || el.name || ''
  }}))"""

_CLICK_LINK_JS = f"""(idx) => {{
  const target = {_REAL_LINKS_EXPR}[idx];
  if (!target) return false;
  target.click();
  return true;
}}"""

_TYPE_INPUT_JS = f"""([idx, value]) => {{
  const target = {_INPUTS_EXPR}[idx];
  if (!target) return false;
  target.focus();
  target.value = value;
  target.dispatchEvent(new Event('input', {{bubbles: true}}));
  target.dispatchEvent(new Event('change', {{bubbles: true}}));
  return true;
}}"""

_DOM_SETTLE_JS = """([quietMs, maxMs]) => new Promise(resolve => {
  let quietTimer = null;
  const finish = (reason) => {
    observer.disconnect();
    if (quietTimer) clearTimeout(quietTimer);
    resolve(reason);
  };
  const resetQuiet = () => {
    if (quietTimer) clearTimeout(quietTimer);
    quietTimer = setTimeout(() => finish('quiet'), quietMs);
  };
  const observer = new MutationObserver(resetQuiet);
  observer.observe(document.documentElement, {childList: true, subtree: true, characterData: true});
  resetQuiet();
  setTimeout(() => finish('timeout'), maxMs);
})"""


def chromium_launch_args(config: BrowseConfig) -> list[str]:
    """Return hardened Chromium launch arguments sized to the configured viewport."""
    return [
        f"--window-size={config.viewport_width},{config.viewport_height}",
        "--disable-blink-features=AutomationControlled",
        "--disable-extensions",
        "--disable-plugins",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--force-webrtc-ip-handling-policy=disable_non_proxied_udp",
        "--deny-permission-prompts",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
    ]


# ── Chromium auto-install ─────────────────────────────────────────

_INSTALL_TIMEOUT = 300  # seconds

# One install attempt per process, shared by every actor whose launch fails.
_install_task: asyncio.Task[bool] | None = None


async def _install_chromium() -> bool:
    logger.info("Chromium not found, running 'playwright install chromium'")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        async with asyncio.timeout(_INSTALL_TIMEOUT):
            _stdout, stderr = await proc.communicate()
    except TimeoutError:
        logger.warning("Chromium install gave up after %ds", _INSTALL_TIMEOUT)
        return False
    except OSError:
        logger.warning("Could not start the Chromium installer", exc_info=True)
        return False
    if proc.returncode != 0:
        logger.warning("Chromium install exited with %d: %s", proc.returncode, stderr.decode(errors="replace")[:500])
        return False
    logger.info("Chromium installed")
    return True


async def ensure_chromium_installed() -> bool:
    """Install Chromium at most once per process.

    Actors launching concurrently await the same attempt; later callers get
    its result without retrying.
    """
    global _install_task  # noqa: PLW0603
    if _install_task is None:
        _install_task = asyncio.get_running_loop().create_task(_install_chromium(), name="chatbrowse-chromium-install")
    return await asyncio.shield(_install_task)


class PlaywrightBackend:
    """``BrowserBackend`` driving a locally launched headless Chromium."""

    kind = BackendKind.LOCAL

    def __init__(self, config: BrowseConfig | None = None) -> None:
        self.config = config or BrowseConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._page: Page | None = None
        self._pending_popup: Page | None = None
        self._last_page: PageInfo | None = None

    @property
    def _timeout_s(self) -> float:
        return self.config.navigation_timeout_ms / 1000

    @property
    def has_page(self) -> bool:
        return self._page is not None and not self._page.is_closed()

    # ── Lifecycle ───────────────────────────────────────────────────

    async def _launch_browser(self) -> None:
        """Launch Chromium, auto-installing on first 'executable not found' error."""
        args = chromium_launch_args(self.config)
        try:
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)
        except Exception as exc:
            if "executable doesn't exist" in str(exc).lower() and await ensure_chromium_installed():
                self._browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)
                return
            raise BackendUnavailableError(
                f"Chromium could not be launched ({exc}). Please run: playwright install chromium"
            ) from exc

    async def _ensure_page(self) -> Page:
        if self._page is not None and not self._page.is_closed():
            return self._page
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        if self._browser is None or not self._browser.is_connected():
            await self._launch_browser()
            logger.info("Local browser launched (headless=%s)", self.config.headless)
        page = await self._browser.new_page(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
        )
        page.on("dialog", self._on_dialog)
        page.context.on("page", self._on_popup)
        self._page = page
        return page

    async def _on_dialog(self, dialog: Dialog) -> None:
        """Auto-handle JS dialogs: alert/beforeunload accept, confirm/prompt dismiss.

        Must always accept or dismiss, otherwise the page freezes.
        """
        try:
            if dialog.type in ("alert", "beforeunload"):
                await dialog.accept()
            else:
                await dialog.dismiss()
            logger.debug("JS dialog auto-handled: type=%s message=%.100s", dialog.type, dialog.message)
        except Exception:
            logger.debug("JS dialog handler failed, attempting dismiss", exc_info=True)
            with suppress(Exception):
                await dialog.dismiss()

    def _on_popup(self, page: Page) -> None:
        """Remember a page opened by a target=_blank link so click can follow it."""
        if page is not self._page:
            self._pending_popup = page

    async def _adopt_popup(self) -> None:
        """Replace the current page with a popup opened by the last action, if any."""
        popup, self._pending_popup = self._pending_popup, None
        if popup is None or popup.is_closed():
            return
        old, self._page = self._page, popup
        with suppress(PlaywrightError):
            await popup.wait_for_load_state("domcontentloaded", timeout=self.config.navigation_timeout_ms)
        if old is not None and not old.is_closed():
            with suppress(Exception):
                await old.close()
        logger.debug("Switched to popup page: %s", popup.url)

    # ── Extraction ──────────────────────────────────────────────────

    @asynccontextmanager
    async def _translate_errors(self, what: str, url: str = ""):
        target = f" {url}" if url else ""
        try:
            async with asyncio.timeout(self._timeout_s):
                yield
        except (PlaywrightTimeoutError, TimeoutError) as exc:
            raise NavigationError(f"{what}{target} timed out after {self._timeout_s:.0f}s") from exc
        except PlaywrightError as exc:
            raise NavigationError(f"{what}{target} failed: {exc.message}") from exc

    async def _wait_for_settle(self, page: Page) -> None:
        try:
            await page.evaluate(_DOM_SETTLE_JS, [_SETTLE_QUIET_MS, _SETTLE_MAX_MS])
        except PlaywrightError:
            logger.debug("DOM settle failed, continuing", exc_info=True)

    async def _extract(self, page: Page) -> PageInfo:
        title = await page.title()
        text = await page.evaluate(_BODY_TEXT_JS)
        raw_links = await page.evaluate(_EXTRACT_LINKS_JS, [self.config.max_links, MAX_LINK_LABEL_LENGTH])
        raw_inputs = await page.evaluate(_EXTRACT_INPUTS_JS, self.config.max_inputs)
        info = build_page_info(
            url=page.url,
            title=title or page.url,
            text=text or "",
            links=[PageLink(label=item["label"], url=item["url"]) for item in raw_links],
            inputs=[
                PageInput(ref=item["ref"], type=item["type"], placeholder=item["placeholder"]) for item in raw_inputs
            ],
            config=self.config,
        )
        self._last_page = info
        return info

    def _current_or_blank(self) -> PageInfo:
        if self._last_page is not None:
            return self._last_page
        return PageInfo(url=_EMPTY_PAGE_URL, title=_EMPTY_PAGE_URL, text="")

    # ── BrowserBackend ──────────────────────────────────────────────

    async def navigate(self, url: str) -> PageInfo:
        if not url.startswith(("http://", "https://")):
            raise NavigationError(f"Refusing to navigate to non-HTTP(S) URL: {url}")
        page = await self._ensure_page()
        async with self._translate_errors("Loading", url):
            await page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms)
            await self._wait_for_settle(page)
            return await self._extract(page)

    async def click(self, ref: str) -> PageInfo:
        links = self._last_page.links if self._last_page else ()
        index = resolve_ref(ref, links, "link")
        error = validate_url(links[index].url)
        if error:
            logger.warning("Navigation guard blocked link click: url=%s reason=%s", links[index].url, error)
            raise GuardRejection(error, url=links[index].url, reason=error)
        page = await self._ensure_page()
        async with self._translate_errors("Click"):
            clicked = await page.evaluate(_CLICK_LINK_JS, index)
            if not clicked:
                raise InvalidReferenceError(f"link ref {index} no longer exists on the page", ref=str(ref))
            with suppress(PlaywrightError):
                await page.wait_for_load_state("domcontentloaded", timeout=self.config.navigation_timeout_ms)
            await self._adopt_popup()
            await self._wait_for_settle(self._page)
            return await self._extract(self._page)

    async def type(self, ref: str, text: str) -> PageInfo:
        inputs = self._last_page.inputs if self._last_page else ()
        index = resolve_ref(ref, inputs, "input")
        page = await self._ensure_page()
        async with self._translate_errors("Typing"):
            typed = await page.evaluate(_TYPE_INPUT_JS, [index, text])
            if not typed:
                raise InvalidReferenceError(f"input ref {index} no longer exists on the page", ref=str(ref))
            return await self._extract(page)

    async def back(self) -> PageInfo:
        if not self.has_page:
            return self._current_or_blank()
        page = self._page
        async with self._translate_errors("Going back"):
            try:
                response = await page.go_back(wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms)
            except PlaywrightError:
                logger.debug("go_back failed, returning current page", exc_info=True)
                return await self._extract(page)
            if response is None and page.url == (self._last_page.url if self._last_page else page.url):
                return self._current_or_blank()  # no history entry
            await self._wait_for_settle(page)
            return await self._extract(page)

    async def screenshot(self) -> bytes:
        if not self.has_page or self._last_page is None:
            raise CaptureError("No page is open. Navigate somewhere first.")
        try:
            async with asyncio.timeout(self._timeout_s):
                return await self._page.screenshot(type="png")
        except (PlaywrightError, TimeoutError) as exc:
            raise CaptureError(f"Screenshot failed: {exc}") from exc

    async def get_text(self) -> str:
        if not self.has_page:
            return ""
        async with self._translate_errors("Reading text"):
            text = await self._page.evaluate(_BODY_TEXT_JS)
        return truncate_text(text or "", self.config.max_text_length)

    async def cleanup(self) -> None:
        """Close page, then browser, then the driver. Safe on a crashed browser."""
        page, self._page = self._page, None
        popup, self._pending_popup = self._pending_popup, None
        for p in (popup, page):
            if p is not None and not p.is_closed():
                with suppress(Exception):
                    await p.close()
        if self._browser is not None:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
        self._last_page = None
        logger.debug("Local browser stopped")
