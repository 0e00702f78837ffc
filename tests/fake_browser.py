"""In-memory stand-ins for the Playwright objects the gateway touches."""

from __future__ import annotations

import asyncio

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app.services.extraction import GlobalStateStrategy, TradesTableStrategy, TradesTextStrategy

LONG_HTML = "<html><body>" + ("<div>market</div>" * 400) + "</body></html>"


class FakePage:
    def __init__(
        self,
        *,
        gon_last=None,
        table_candidates=None,
        body_text: str = "",
        html: str = LONG_HTML,
        final_url: str = "https://grinex.io/trading/usdta7a5",
        goto_errors: dict | None = None,
        evaluate_errors: dict | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.gon_last = gon_last
        self.table_candidates = table_candidates
        self.body_text = body_text
        self.html = html
        self.url = "about:blank"
        self._final_url = final_url
        self.goto_errors = goto_errors or {}
        self.evaluate_errors = evaluate_errors or {}
        self.gate = gate

        self.goto_calls: list[tuple[str, str, float]] = []
        self.waits_ms: list[float] = []
        self.function_waits: list[float] = []
        self.evaluated: list[str] = []

    async def goto(self, url: str, *, wait_until: str, timeout: float):
        self.goto_calls.append((url, wait_until, timeout))
        if self.gate is not None:
            await self.gate.wait()
        error = self.goto_errors.get(url)
        if error is not None:
            raise error
        self.url = self._final_url if "trading" in url else url
        return None

    async def wait_for_timeout(self, timeout: float) -> None:
        self.waits_ms.append(timeout)

    async def wait_for_function(self, expression: str, *, timeout: float):
        self.function_waits.append(timeout)
        if not self.gon_last:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        return True

    async def content(self) -> str:
        return self.html

    async def evaluate(self, expression: str, arg=None):
        if expression == GlobalStateStrategy.READ_SCRIPT:
            name = "read"
        elif expression == GlobalStateStrategy.PROBE_SCRIPT:
            name = "probe"
        elif expression == TradesTableStrategy.ROW_CELLS_SCRIPT:
            name = "table"
        elif expression == TradesTextStrategy.BODY_TEXT_SCRIPT:
            name = "text"
        else:
            raise AssertionError(f"unexpected script: {expression[:40]}")

        self.evaluated.append(name)
        error = self.evaluate_errors.get(name)
        if error is not None:
            raise error
        if name == "read":
            return self.gon_last
        if name == "probe":
            return {"gon": self.gon_last is not None, "keys": [], "ticker_keys": []}
        if name == "table":
            return self.table_candidates
        return self.body_text


class _Closable:
    def __init__(self, name: str, log: list[str], error: Exception | None = None) -> None:
        self.name = name
        self.log = log
        self.error = error

    async def _finish(self) -> None:
        self.log.append(self.name)
        if self.error is not None:
            raise self.error


class FakeContext(_Closable):
    def __init__(self, page: FakePage, log: list[str], error: Exception | None = None, **options) -> None:
        super().__init__("context", log, error)
        self.page = page
        self.options = options

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        await self._finish()


class FakeBrowser(_Closable):
    def __init__(self, owner: "FakePlaywright", **launch_options) -> None:
        super().__init__("browser", owner.log, owner.browser_close_error)
        self.owner = owner
        self.launch_options = launch_options
        self.context: FakeContext | None = None

    async def new_context(self, **options) -> FakeContext:
        if self.owner.new_context_error is not None:
            raise self.owner.new_context_error
        self.context = FakeContext(self.owner.page_factory(), self.log, self.owner.context_close_error, **options)
        return self.context

    async def close(self) -> None:
        self.owner.open_browsers -= 1
        await self._finish()


class _FakeChromium:
    def __init__(self, owner: "FakePlaywright") -> None:
        self.owner = owner

    async def launch(self, **options) -> FakeBrowser:
        self.owner.launches += 1
        self.owner.open_browsers += 1
        self.owner.peak_open_browsers = max(self.owner.peak_open_browsers, self.owner.open_browsers)
        browser = FakeBrowser(self.owner, **options)
        self.owner.browsers.append(browser)
        return browser


class FakePlaywright(_Closable):
    """Factory-compatible fake: pass ``fake.start`` as the playwright factory."""

    def __init__(
        self,
        page_factory,
        *,
        context_close_error: Exception | None = None,
        browser_close_error: Exception | None = None,
        stop_error: Exception | None = None,
        new_context_error: Exception | None = None,
    ) -> None:
        self.log: list[str] = []
        super().__init__("playwright", self.log, stop_error)
        self.page_factory = page_factory
        self.context_close_error = context_close_error
        self.browser_close_error = browser_close_error
        self.new_context_error = new_context_error
        self.chromium = _FakeChromium(self)
        self.browsers: list[FakeBrowser] = []
        self.launches = 0
        self.open_browsers = 0
        self.peak_open_browsers = 0

    async def start(self) -> "FakePlaywright":
        return self

    async def stop(self) -> None:
        await self._finish()
