"""
Tests for the Playwright adapter, using duck-typed stand-ins for the
Playwright page / context objects (no browser is launched).
"""

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from idpauth.page_driver import PlaywrightDriver


class _Locator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    async def is_visible(self):
        if self.selector in self.page.broken:
            raise PlaywrightError("selector parse error")
        return self.selector in self.page.visible

    async def wait_for(self, state, timeout):
        if self.selector not in self.page.visible:
            raise PlaywrightTimeout(f"waiting for {self.selector} timed out")

    async def fill(self, text):
        self.page.log.append(("fill", self.selector, text))

    async def click(self, no_wait_after=False):
        self.page.log.append(("click", self.selector, no_wait_after))

    async def inner_text(self):
        return self.page.texts.get(self.selector, "")


class _Page:
    def __init__(self, visible=(), texts=None, broken=()):
        self.visible = set(visible)
        self.texts = texts or {}
        self.broken = set(broken)
        self.log = []
        self.url = "about:blank"
        self.closed = False

    def locator(self, selector):
        return _Locator(self, selector)

    async def goto(self, url, timeout, wait_until):
        self.url = url
        self.log.append(("goto", url, timeout))
        return None

    async def close(self):
        self.closed = True


class _Context:
    def __init__(self):
        self.cookies = []
        self.scripts = []
        self.closed = False

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)

    async def add_init_script(self, script):
        self.scripts.append(script)

    async def storage_state(self):
        return {"cookies": self.cookies, "origins": []}

    async def close(self):
        self.closed = True


class _Browser:
    def __init__(self):
        self.kwargs = None

    async def new_context(self, **kwargs):
        self.kwargs = kwargs
        context = _Context()

        async def _new_page():
            return _Page()

        context.new_page = _new_page
        return context


class TestPlaywrightDriver:

    @pytest.mark.asyncio
    async def test_interaction(self):
        page = _Page(visible={"#username"}, texts={"#username": "hi"})
        driver = PlaywrightDriver(_Context(), page)
        await driver.goto("https://sso.example.com", timeout_ms=5000)
        await driver.fill("#username", "admin")
        await driver.click("#kc-login")
        assert driver.current_url() == "https://sso.example.com"
        assert page.log == [
            ("goto", "https://sso.example.com", 5000),
            ("fill", "#username", "admin"),
            ("click", "#kc-login", True),
        ]

    @pytest.mark.asyncio
    async def test_visibility(self):
        page = _Page(visible={"#otp"}, broken={"::bad"})
        driver = PlaywrightDriver(_Context(), page)
        assert await driver.is_visible("#otp")
        assert not await driver.is_visible("#password")
        assert not await driver.is_visible("::bad")
        assert await driver.wait_for_visible("#otp", 100)
        assert not await driver.wait_for_visible("#password", 100)

    @pytest.mark.asyncio
    async def test_read_text_only_when_visible(self):
        page = _Page(visible={".alert-error"}, texts={".alert-error": "Invalid password", ".hidden": "x"})
        driver = PlaywrightDriver(_Context(), page)
        assert await driver.read_text(".alert-error") == "Invalid password"
        assert await driver.read_text(".hidden") is None

    @pytest.mark.asyncio
    async def test_restore_storage_state(self):
        context = _Context()
        driver = PlaywrightDriver(context, _Page())
        await driver.restore_storage_state(
            {
                "cookies": [{"name": "sid", "value": "1", "domain": "app.example.com", "path": "/"}],
                "origins": [
                    {"origin": "https://app.example.com", "localStorage": [{"name": "token", "value": "t"}]},
                    {"origin": "https://empty.example.com", "localStorage": []},
                ],
            }
        )
        assert context.cookies[0]["name"] == "sid"
        assert len(context.scripts) == 1
        assert '"https://app.example.com"' in context.scripts[0]
        assert '"token": "t"' in context.scripts[0]
        assert (await driver.snapshot_storage_state())["cookies"] == context.cookies

    @pytest.mark.asyncio
    async def test_factory_opens_fresh_context(self):
        browser = _Browser()
        factory = PlaywrightDriver.factory(browser, locale="en-US")
        driver = await factory(None)
        assert browser.kwargs == {"locale": "en-US"}
        await driver.close()
        assert driver.page.closed
        assert driver.context.closed

    @pytest.mark.asyncio
    async def test_shared_context_left_open(self):
        context = _Context()
        driver = PlaywrightDriver(context, _Page(), owns_context=False)
        await driver.close()
        assert not context.closed
