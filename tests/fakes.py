"""In-memory stand-ins for the browser engine used by the tests."""

from typing import Any, Callable, Dict, List, Optional

from harvester.scrapers.extractors import PAGE_SNAPSHOT_SCRIPT
from harvester.scrapers.utils.behavior import TEXT_LENGTH_SCRIPT


class FakePage:
    """Records every call; answers queries from canned data."""

    def __init__(
        self,
        record: Optional[Dict[str, Any]] = None,
        snapshot_text: str = "",
        status: Optional[int] = 200,
        navigate_error: Optional[Exception] = None,
        text_length: int = 0,
        cookies: Optional[List[dict]] = None,
        close_error: Optional[Exception] = None,
        fail_on: Optional[str] = None,
    ):
        self.record = record or {}
        self.snapshot_text = snapshot_text
        self.status = status
        self.navigate_error = navigate_error
        self.text_length = text_length
        self._cookies = list(cookies or [])
        self.close_error = close_error
        self.fail_on = fail_on

        self.events: List[tuple] = []
        self.headers: Dict[str, str] = {}
        self.identity: Optional[str] = None
        self.overrides: List[str] = []
        self.added_cookies: List[dict] = []
        self.scripts: List[str] = []
        self.closed = False
        self._viewport: Optional[Dict[str, Any]] = {"width": 1280, "height": 720}
        self._url = ""

    def _maybe_fail(self, name: str) -> None:
        if self.fail_on == name:
            raise RuntimeError(f"{name} failed")

    @property
    def viewport(self) -> Optional[Dict[str, Any]]:
        return self._viewport

    @property
    def url(self) -> str:
        return self._url

    async def set_viewport(self, viewport: Dict[str, Any]) -> None:
        self._viewport = dict(viewport)

    async def set_identity(self, identity: str) -> None:
        self.identity = identity

    async def set_headers(self, headers: Dict[str, str]) -> None:
        self.headers.update(headers)

    async def inject_pre_navigation_overrides(self, script: str) -> None:
        self.overrides.append(script)

    async def navigate(self, url: str, timeout_ms: int) -> Optional[int]:
        self.events.append(("navigate", url))
        if self.navigate_error:
            raise self.navigate_error
        self._url = url
        return self.status

    async def run_query(self, script: str) -> Dict[str, Any]:
        self.scripts.append(script)
        if script == PAGE_SNAPSHOT_SCRIPT:
            return {"title": "", "location": self._url, "text": self.snapshot_text}
        if script == TEXT_LENGTH_SCRIPT:
            self._maybe_fail("measure")
            return {"length": self.text_length}
        return dict(self.record)

    async def move_pointer(self, x: float, y: float) -> None:
        self._maybe_fail("move")
        self.events.append(("move", x, y))

    async def scroll_by(self, dy: int) -> None:
        self._maybe_fail("scroll")
        self.events.append(("scroll", dy))

    async def focus(self, selector: str) -> None:
        self.events.append(("focus", selector))

    async def type_key(self, char: str) -> None:
        self.events.append(("type", char))

    async def press_key(self, key: str) -> None:
        self.events.append(("press", key))

    async def add_cookies(self, cookies: List[dict]) -> None:
        self.added_cookies.extend(cookies)

    async def cookies(self) -> List[dict]:
        return list(self._cookies)

    async def close(self) -> None:
        self.closed = True
        if self.close_error:
            raise self.close_error

    def kinds(self) -> List[str]:
        return [e[0] for e in self.events]


class FakeEngine:
    """Hands out pages built by ``page_factory`` and remembers them."""

    def __init__(self, page_factory: Callable[[], FakePage] = FakePage):
        self.page_factory = page_factory
        self.pages: List[FakePage] = []
        self.proxies: List[Any] = []
        self.closed = False

    async def open_page(self, proxy=None) -> FakePage:
        page = self.page_factory()
        self.pages.append(page)
        self.proxies.append(proxy)
        return page

    async def close(self) -> None:
        self.closed = True


async def no_sleep(_seconds: float) -> None:
    """Awaitable sleep replacement that returns immediately."""
    return None
