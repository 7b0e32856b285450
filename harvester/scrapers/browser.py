"""Browser engine abstraction and its Playwright implementation.

The orchestrator only talks to the ``Page`` and ``BrowserEngine`` protocols,
so tests can drive it with an in-memory page.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Protocol

import structlog
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Page as PlaywrightNativePage

from harvester.scrapers.base import RawRecord
from harvester.scrapers.utils.proxy_manager import ProxyEndpoint

logger = structlog.get_logger(__name__)

DESKTOP_VIEWPORT = {"width": 1920, "height": 1080}

# Default anti-fingerprint overrides; strategies may replace them via config["overrides"]
STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = { runtime: {} };
const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) =>
  parameters.name === 'notifications'
    ? Promise.resolve({ state: Notification.permission })
    : originalQuery(parameters);
"""

STEALTH_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Upgrade-Insecure-Requests": "1",
    "Referer": "https://www.google.com/",
    "sec-ch-ua": '"Not_A Brand";v="8", "Chromium";v="131", "Google Chrome";v="131"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"Windows"',
}


class Page(Protocol):
    """What the orchestrator and behaviour simulator need from a browser tab."""

    @property
    def viewport(self) -> Optional[Dict[str, int]]: ...

    @property
    def url(self) -> str: ...

    async def set_viewport(self, viewport: Dict[str, Any]) -> None: ...

    async def set_identity(self, identity: str) -> None: ...

    async def set_headers(self, headers: Dict[str, str]) -> None: ...

    async def inject_pre_navigation_overrides(self, script: str) -> None: ...

    async def navigate(self, url: str, timeout_ms: int) -> Optional[int]: ...

    async def run_query(self, script: str) -> RawRecord: ...

    async def move_pointer(self, x: float, y: float) -> None: ...

    async def scroll_by(self, dy: int) -> None: ...

    async def focus(self, selector: str) -> None: ...

    async def type_key(self, char: str) -> None: ...

    async def press_key(self, key: str) -> None: ...

    async def add_cookies(self, cookies: List[dict]) -> None: ...

    async def cookies(self) -> List[dict]: ...

    async def close(self) -> None: ...


class BrowserEngine(Protocol):
    async def open_page(self, proxy: Optional[ProxyEndpoint] = None) -> Page: ...

    async def close(self) -> None: ...


class PlaywrightPage:
    """``Page`` backed by a Playwright page that owns its browser context."""

    def __init__(self, context: BrowserContext, page: PlaywrightNativePage):
        self._context = context
        self._page = page
        self._headers: Dict[str, str] = {}

    @property
    def viewport(self) -> Optional[Dict[str, int]]:
        return self._page.viewport_size

    @property
    def url(self) -> str:
        return self._page.url

    async def set_viewport(self, viewport: Dict[str, Any]) -> None:
        # Scale factor and touch are context-level in Playwright; the
        # pre-navigation overrides carry them instead.
        await self._page.set_viewport_size({"width": int(viewport["width"]), "height": int(viewport["height"])})

    async def set_identity(self, identity: str) -> None:
        await self.set_headers({"User-Agent": identity})
        await self._page.add_init_script(
            f"Object.defineProperty(navigator, 'userAgent', {{ get: () => {json.dumps(identity)} }});"
        )

    async def set_headers(self, headers: Dict[str, str]) -> None:
        self._headers.update(headers)
        await self._page.set_extra_http_headers(self._headers)

    async def inject_pre_navigation_overrides(self, script: str) -> None:
        await self._page.add_init_script(script)

    async def navigate(self, url: str, timeout_ms: int) -> Optional[int]:
        response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        return response.status if response else None

    async def run_query(self, script: str) -> RawRecord:
        result = await self._page.evaluate(script)
        return result if isinstance(result, dict) else {"value": result}

    async def move_pointer(self, x: float, y: float) -> None:
        await self._page.mouse.move(x, y)

    async def scroll_by(self, dy: int) -> None:
        await self._page.mouse.wheel(0, dy)

    async def focus(self, selector: str) -> None:
        await self._page.focus(selector)

    async def type_key(self, char: str) -> None:
        await self._page.keyboard.type(char)

    async def press_key(self, key: str) -> None:
        await self._page.keyboard.press(key)

    async def add_cookies(self, cookies: List[dict]) -> None:
        await self._context.add_cookies(cookies)

    async def cookies(self) -> List[dict]:
        return [dict(c) for c in await self._context.cookies()]

    async def close(self) -> None:
        try:
            await self._page.close()
        finally:
            await self._context.close()


class PlaywrightEngine:
    """Chromium via Playwright, launched locally or attached to a Browserless endpoint.

    Every page gets its own context so each can carry its own proxy,
    identity and cookies.
    """

    def __init__(
        self,
        headless: bool = True,
        browserless_url: Optional[str] = None,
        browserless_token: Optional[str] = None,
        block_resources: bool = False,
    ):
        self._headless = headless
        self._browserless_url = browserless_url
        self._browserless_token = browserless_token
        self._block_resources = block_resources
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Launch or connect to the browser. Safe to call repeatedly."""
        async with self._lock:
            if self._browser:
                return
            self._playwright = await async_playwright().start()
            if self._browserless_url:
                endpoint = self._browserless_url
                if self._browserless_token:
                    endpoint = f"{endpoint}?token={self._browserless_token}"
                self._browser = await self._playwright.chromium.connect_over_cdp(endpoint)
                logger.info("browser_connected", endpoint=self._browserless_url)
            else:
                self._browser = await self._playwright.chromium.launch(
                    headless=self._headless,
                    args=[
                        "--disable-blink-features=AutomationControlled",
                        "--disable-dev-shm-usage",
                        "--no-sandbox",
                    ],
                )
                logger.info("browser_started", headless=self._headless)

    async def open_page(self, proxy: Optional[ProxyEndpoint] = None) -> PlaywrightPage:
        """Open a page in a fresh context, routed through ``proxy`` if given."""
        if not self._browser:
            await self.start()

        proxy_config = None
        if proxy:
            proxy_config = {"server": f"{proxy.protocol}://{proxy.host}:{proxy.port}"}
            if proxy.username:
                proxy_config["username"] = proxy.username
                proxy_config["password"] = proxy.password or ""

        context = await self._browser.new_context(
            viewport=DESKTOP_VIEWPORT,
            locale="en-US",
            proxy=proxy_config,
            java_script_enabled=True,
            bypass_csp=True,
        )

        if self._block_resources:
            await context.route(
                "**/*.{woff,woff2,ttf,eot}",
                lambda route: route.abort(),
            )

        page = await context.new_page()
        logger.debug("browser_page_opened", has_proxy=proxy is not None)
        return PlaywrightPage(context, page)

    async def close(self) -> None:
        """Close the browser and stop Playwright."""
        async with self._lock:
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
            logger.info("browser_stopped")
