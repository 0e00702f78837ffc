from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import async_playwright

from app.config.settings import Settings
from app.errors import BlockedError, NavigationError, SessionResourceError

CHROMIUM_LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

BLOCK_REDIRECT_MARKERS = ("exhkqyad", "servicepipe.ru")
BLOCK_VENDOR_MARKER = "servicepipe.ru"
SHORT_PAGE_WARN_CHARS = 3000


@dataclass
class NavigationOutcome:
    step: str
    url: str
    error: Optional[NavigationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BrowserSession:
    playwright: Any
    browser: Any = None
    context: Any = None
    page: Any = None
    navigation: list[NavigationOutcome] = field(default_factory=list)
    released: bool = False


def _default_playwright_factory() -> Awaitable[Any]:
    return async_playwright().start()


class BrowserSessionManager:
    """Launches one isolated Chromium session per acquisition and tears it down."""

    def __init__(
        self,
        settings: Settings,
        *,
        playwright_factory: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        self.settings = settings
        self._playwright_factory = playwright_factory or _default_playwright_factory

    async def acquire_session(self) -> BrowserSession:
        session = BrowserSession(playwright=await self._playwright_factory())
        try:
            session.browser = await session.playwright.chromium.launch(
                headless=True,
                args=CHROMIUM_LAUNCH_ARGS,
            )
            session.context = await session.browser.new_context(
                user_agent=self.settings.QUOTE_USER_AGENT,
                viewport={
                    "width": self.settings.QUOTE_VIEWPORT_WIDTH,
                    "height": self.settings.QUOTE_VIEWPORT_HEIGHT,
                },
            )
            session.page = await session.context.new_page()
        except Exception:
            await self.release_session(session)
            raise
        print("[BROWSER][session_open] headless=1", flush=True)
        return session

    async def _goto(self, page: Any, *, step: str, url: str, wait_until: str, timeout_sec: float) -> NavigationOutcome:
        try:
            await page.goto(url, wait_until=wait_until, timeout=timeout_sec * 1000)
        except Exception as exc:
            error = NavigationError(step, str(exc))
            print(f"[BROWSER][navigate_failed] step={step} url={url} error={exc}", flush=True)
            return NavigationOutcome(step=step, url=url, error=error)
        print(f"[BROWSER][navigate_ok] step={step} url={url}", flush=True)
        return NavigationOutcome(step=step, url=url)

    async def navigate(self, session: BrowserSession) -> list[NavigationOutcome]:
        """Root page for cookies, then the trading page. Failures do not stop the flow."""
        page = session.page
        root = await self._goto(
            page,
            step="root",
            url=self.settings.QUOTE_SITE_ROOT_URL,
            wait_until="domcontentloaded",
            timeout_sec=self.settings.QUOTE_ROOT_NAV_TIMEOUT_SEC,
        )
        session.navigation.append(root)
        if root.ok:
            await page.wait_for_timeout(self.settings.QUOTE_COOKIE_SETTLE_SEC * 1000)

        trading = await self._goto(
            page,
            step="trading",
            url=self.settings.trading_url,
            wait_until="load",
            timeout_sec=self.settings.QUOTE_TRADING_NAV_TIMEOUT_SEC,
        )
        session.navigation.append(trading)

        await page.wait_for_timeout(self.settings.QUOTE_SCRIPT_SETTLE_SEC * 1000)
        return session.navigation

    def detect_block(self, url: str, html: str) -> Optional[str]:
        for marker in BLOCK_REDIRECT_MARKERS:
            if marker in url:
                return f"page blocked by bot protection (redirect): {url}"
        if len(html) < self.settings.QUOTE_BLOCK_PAGE_MAX_CHARS and BLOCK_VENDOR_MARKER in html:
            return f"page blocked by bot protection ({BLOCK_VENDOR_MARKER})"
        return None

    async def ensure_not_blocked(self, session: BrowserSession) -> None:
        page = session.page
        html = await page.content()
        url = page.url
        if len(html) < SHORT_PAGE_WARN_CHARS:
            print(f"[BROWSER][short_page] chars={len(html)} url={url}", flush=True)
        else:
            print(f"[BROWSER][page_loaded] chars={len(html)} url={url}", flush=True)

        reason = self.detect_block(url, html)
        if reason is not None:
            raise BlockedError(reason)

    async def load_trading_page(self, session: BrowserSession) -> list[NavigationOutcome]:
        outcomes = await self.navigate(session)
        await self.ensure_not_blocked(session)
        return outcomes

    async def release_session(self, session: BrowserSession) -> list[SessionResourceError]:
        """Close context, browser, then the driver. Each step is isolated; safe to call twice."""
        if session.released:
            return []
        session.released = True

        errors: list[SessionResourceError] = []
        steps = (
            ("context", session.context, "close"),
            ("browser", session.browser, "close"),
            ("playwright", session.playwright, "stop"),
        )
        for resource, target, method in steps:
            if target is None:
                continue
            try:
                await getattr(target, method)()
            except Exception as exc:
                error = SessionResourceError(resource, str(exc))
                errors.append(error)
                print(f"[BROWSER][release_failed] resource={resource} error={exc}", flush=True)
                continue
            print(f"[BROWSER][release_ok] resource={resource}", flush=True)
        return errors
