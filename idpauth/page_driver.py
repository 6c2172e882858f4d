"""
Page Driver
===========
The narrow browser-automation surface the authentication engine consumes.

Handlers never touch Playwright directly — they talk to a ``PageDriver``:
navigation, element lookup / visibility, text extraction, form
interaction and storage-state snapshot / restore. ``PlaywrightDriver``
implements it over a Playwright ``BrowserContext`` + ``Page``; tests use
an in-memory fake.

Usage::

    factory = PlaywrightDriver.factory(browser)
    driver = await factory(role_config)
    await driver.goto("https://app.example.com/login", timeout_ms=30_000)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

logger = logging.getLogger(__name__)


class PageDriver(Protocol):
    """Automation primitives used by handlers and the login flow."""

    async def goto(self, url: str, timeout_ms: int) -> None: ...

    async def query(self, selector: str) -> Optional[Any]: ...

    async def is_visible(self, selector: str) -> bool: ...

    async def wait_for_visible(self, selector: str, timeout_ms: int) -> bool: ...

    async def fill(self, selector: str, text: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def read_text(self, selector: str) -> Optional[str]: ...

    def current_url(self) -> str: ...

    async def snapshot_storage_state(self) -> Dict[str, Any]: ...

    async def restore_storage_state(self, state: Dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


DriverFactory = Callable[[Any], Awaitable[PageDriver]]


class PlaywrightDriver:
    """``PageDriver`` over a Playwright page.

    Selectors may be comma-separated selector lists; every operation
    targets the first matching element.
    """

    def __init__(self, context: BrowserContext, page: Page, *, owns_context: bool = True):
        self.context = context
        self.page = page
        self._owns_context = owns_context

    @classmethod
    def factory(cls, browser: Browser, **context_kwargs: Any) -> DriverFactory:
        """Return a driver factory opening a fresh context per login."""

        async def _create(_role: Any) -> "PlaywrightDriver":
            context = await browser.new_context(**context_kwargs)
            page = await context.new_page()
            return cls(context, page)

        return _create

    # ── Navigation ────────────────────────────────────────────────

    async def goto(self, url: str, timeout_ms: int) -> None:
        resp = await self.page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        if resp is not None and resp.status >= 400:
            logger.warning(f"[DRIVER] {url[:80]} returned HTTP {resp.status}")

    def current_url(self) -> str:
        return self.page.url

    # ── Elements ──────────────────────────────────────────────────

    async def query(self, selector: str) -> Optional[Any]:
        try:
            return await self.page.query_selector(selector)
        except PlaywrightError:
            return None

    async def is_visible(self, selector: str) -> bool:
        try:
            return await self.page.locator(selector).first.is_visible()
        except PlaywrightError:
            return False

    async def wait_for_visible(self, selector: str, timeout_ms: int) -> bool:
        try:
            await self.page.locator(selector).first.wait_for(
                state="visible", timeout=timeout_ms
            )
            return True
        except PlaywrightTimeout:
            return False

    async def fill(self, selector: str, text: str) -> None:
        await self.page.locator(selector).first.fill(text)

    async def click(self, selector: str) -> None:
        await self.page.locator(selector).first.click(no_wait_after=True)

    async def read_text(self, selector: str) -> Optional[str]:
        locator = self.page.locator(selector).first
        try:
            if not await locator.is_visible():
                return None
            return await locator.inner_text()
        except PlaywrightError:
            return None

    # ── Storage state ─────────────────────────────────────────────

    async def snapshot_storage_state(self) -> Dict[str, Any]:
        return await self.context.storage_state()

    async def restore_storage_state(self, state: Dict[str, Any]) -> None:
        """Load cookies and localStorage into the live context."""
        cookies = state.get("cookies") or []
        if cookies:
            await self.context.add_cookies(cookies)
        for origin in state.get("origins") or []:
            items = {
                entry["name"]: entry["value"]
                for entry in origin.get("localStorage") or []
            }
            if not items:
                continue
            script = (
                "(() => {"
                f"  if (window.location.origin !== {json.dumps(origin['origin'])}) return;"
                f"  const items = {json.dumps(items)};"
                "  for (const [k, v] of Object.entries(items)) window.localStorage.setItem(k, v);"
                "})()"
            )
            await self.context.add_init_script(script=script)
        logger.debug(
            f"[DRIVER] Restored {len(cookies)} cookies, "
            f"{len(state.get('origins') or [])} origins"
        )

    async def close(self) -> None:
        try:
            await self.page.close()
        finally:
            if self._owns_context:
                await self.context.close()
