"""End-to-end tests for the scrape orchestrator over a fake browser."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fakes import FakeEngine, FakePage, no_sleep
from harvester.core.exceptions import FailureKind
from harvester.scrapers.base import Platform, ScrapeJob, ScrapeOptions
from harvester.scrapers.browser import DESKTOP_VIEWPORT, STEALTH_HEADERS, STEALTH_JS
from harvester.scrapers.extractors import search_url
from harvester.scrapers.strategies import Strategy, StrategySelector
from harvester.scrapers.utils.proxy_manager import ProxyEndpoint, ProxyManager
from harvester.scrapers.utils.rate_limiter import SlidingWindowRateLimiter
from harvester.scrapers.utils.session_manager import SessionManager

LISTING_URL = "https://www.alibaba.com/product-detail/headphones_1600.html"


def listing_job(**options) -> ScrapeJob:
    return ScrapeJob(platform=Platform.ALIBABA, url=LISTING_URL, options=ScrapeOptions(**options))


def blocked_page() -> FakePage:
    return FakePage(snapshot_text="Access Denied. You don't have permission to access this page.")


def live_pool(*hosts: str) -> ProxyManager:
    return ProxyManager(
        [ProxyEndpoint(host=h, port=8080) for h in hosts],
        checker=AsyncMock(return_value=True),
    )


class TestSuccessfulScrape:
    """Happy-path behavior."""

    async def test_returns_validated_record(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job())

        assert result.success
        assert result.strategy == "stealth"
        assert result.confidence == 100
        assert result.quality == "excellent"
        assert result.error is None
        assert result.proxy_used is None
        assert result.data["url"] == LISTING_URL
        assert result.data["scrapedAt"]
        assert result.execution_time >= 0
        assert orchestrator.sessions.get(result.session_id) is not None

    async def test_page_is_prepared_and_closed(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job())

        page = engine.pages[0]
        assert page.closed
        assert page.viewport == DESKTOP_VIEWPORT
        assert page.headers["Accept-Language"] == STEALTH_HEADERS["Accept-Language"]
        assert page.identity == orchestrator.sessions.get(result.session_id).identity
        assert ("navigate", LISTING_URL) in page.events
        assert "move" in page.kinds()

    async def test_stealth_overrides_are_injected(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        orchestrator = make_orchestrator(engine)

        await orchestrator.scrape(listing_job(strategy="stealth"))

        assert engine.pages[0].overrides == [STEALTH_JS]

    async def test_device_strategy_keeps_stealth_overrides(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        orchestrator = make_orchestrator(engine)

        await orchestrator.scrape(listing_job(strategy="mobile"))

        overrides = engine.pages[0].overrides
        assert overrides[0] == STEALTH_JS
        assert len(overrides) == 2

    @pytest.mark.parametrize("script, expected", [("window.custom = 1;", ["window.custom = 1;"]), ("", [])])
    async def test_strategy_overrides_replace_defaults(self, make_orchestrator, good_page_factory, script, expected):
        engine = FakeEngine(good_page_factory)
        strategies = StrategySelector([Strategy("custom", 1, 90, config={"overrides": script})], sleep=no_sleep)
        orchestrator = make_orchestrator(engine, strategies=strategies)

        result = await orchestrator.scrape(listing_job())

        assert result.success
        assert engine.pages[0].overrides == expected

    async def test_session_is_touched_and_keeps_cookies(self, make_orchestrator, good_page_factory):
        orchestrator = make_orchestrator(FakeEngine(good_page_factory))

        result = await orchestrator.scrape(listing_job())

        session = orchestrator.sessions.get(result.session_id)
        assert session.request_count == 1
        assert [c["name"] for c in session.cookies] == ["sid"]

    async def test_no_human_simulation_when_disabled(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job(simulate_human=False))

        assert result.success
        assert "move" not in engine.pages[0].kinds()
        assert "scroll" not in engine.pages[0].kinds()

    async def test_search_query_uses_first_result_url(self, make_orchestrator, good_record):
        listing = "https://www.alibaba.com/product-detail/speaker_77.html"
        engine = FakeEngine(lambda: FakePage(record={**good_record, "listingUrl": listing}))
        orchestrator = make_orchestrator(engine)
        job = ScrapeJob(platform=Platform.ALIBABA, query="bluetooth speaker")

        result = await orchestrator.scrape(job)

        assert result.success
        assert ("navigate", search_url(Platform.ALIBABA, "bluetooth speaker")) in engine.pages[0].events
        assert result.data["url"] == listing
        assert "listingUrl" not in result.data

    async def test_recovers_on_second_strategy(self, make_orchestrator, good_page_factory):
        pages = iter([blocked_page(), good_page_factory()])
        engine = FakeEngine(lambda: next(pages))
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job(max_retries=3))

        assert result.success
        assert result.strategy == "mobile"
        assert len(engine.pages) == 2
        assert all(p.closed for p in engine.pages)
        # The mobile strategy emulates a device instead of the desktop viewport
        assert engine.pages[1].viewport["is_mobile"] is True
        assert engine.pages[1].overrides

    async def test_page_close_failure_does_not_fail_scrape(self, make_orchestrator, good_record):
        engine = FakeEngine(lambda: FakePage(record=good_record, close_error=RuntimeError("target closed")))
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job())

        assert result.success


class TestFailures:
    """Failure handling and reporting."""

    async def test_every_strategy_blocked(self, make_orchestrator):
        engine = FakeEngine(blocked_page)
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job(max_retries=3))

        assert not result.success
        assert result.error_kind is FailureKind.BLOCKED
        assert "blocked" in result.error.lower()
        assert result.error.startswith("All strategies failed after 3 attempts")
        assert len(engine.pages) == 3
        assert all(p.closed for p in engine.pages)
        pattern = orchestrator.strategies.failure_patterns()[FailureKind.BLOCKED]
        assert pattern.strategies == ["stealth", "mobile", "api_interception"]
        assert result.strategy == "api_interception"

    async def test_captcha_is_reported(self, make_orchestrator):
        engine = FakeEngine(lambda: FakePage(snapshot_text="Please slide to verify"))
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job(strategy="stealth"))

        assert result.error_kind is FailureKind.CAPTCHA

    async def test_named_strategy_gets_one_attempt(self, make_orchestrator):
        engine = FakeEngine(blocked_page)
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job(strategy="mobile", max_retries=3))

        assert not result.success
        assert result.strategy == "mobile"
        assert len(engine.pages) == 1

    async def test_unknown_strategy(self, make_orchestrator):
        engine = FakeEngine()
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job(strategy="teleport"))

        assert not result.success
        assert result.error == "No scraping strategies available"
        assert engine.pages == []

    async def test_invalid_record_is_a_validation_failure(self, make_orchestrator):
        engine = FakeEngine(lambda: FakePage(record={"title": "", "price": "29.99", "images": ["a.jpg"]}))
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job(strategy="stealth"))

        assert result.error_kind is FailureKind.VALIDATION_ERROR
        assert "title is required" in result.error
        assert result.data is None

    @pytest.mark.parametrize(
        "status, kind, fragment",
        [
            (404, FailureKind.NOT_FOUND, "listing not found"),
            (429, FailureKind.RATE_LIMIT, "rate limit response"),
            (403, FailureKind.BLOCKED, "HTTP 403"),
            (500, FailureKind.UNKNOWN, "unexpected HTTP 500"),
        ],
    )
    async def test_http_status_mapping(self, make_orchestrator, status, kind, fragment):
        engine = FakeEngine(lambda: FakePage(status=status))
        orchestrator = make_orchestrator(engine)

        result = await orchestrator.scrape(listing_job(strategy="stealth"))

        assert result.error_kind is kind
        assert fragment in result.error

    async def test_no_proxy_available(self, make_orchestrator):
        engine = FakeEngine()
        orchestrator = make_orchestrator(engine, proxies=ProxyManager())

        result = await orchestrator.scrape(listing_job(use_proxy=True))

        assert not result.success
        assert result.error_kind is FailureKind.PROXY_ERROR
        assert "No proxy available" in result.error
        assert engine.pages == []

    async def test_rate_limit_exhaustion(self, make_orchestrator):
        limiter = SlidingWindowRateLimiter(max_requests=10, max_concurrent=1, acquire_timeout=0)
        await limiter.acquire()
        engine = FakeEngine()
        orchestrator = make_orchestrator(engine, rate_limiter=limiter)

        result = await orchestrator.scrape(listing_job())

        assert not result.success
        assert result.error_kind is FailureKind.RATE_LIMIT
        assert engine.pages == []

    async def test_slot_is_released_after_failure(self, make_orchestrator):
        limiter = SlidingWindowRateLimiter(max_requests=10, max_concurrent=1, acquire_timeout=0)
        orchestrator = make_orchestrator(FakeEngine(blocked_page), rate_limiter=limiter)

        await orchestrator.scrape(listing_job(strategy="stealth"))

        assert limiter.status()["active_requests"] == 0


class TestProxies:
    """Proxy routing and failure accounting."""

    async def test_proxy_is_used_and_credited(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        proxies = live_pool("10.0.0.1")
        orchestrator = make_orchestrator(engine, proxies=proxies)

        result = await orchestrator.scrape(listing_job(use_proxy=True))

        assert result.success
        assert result.proxy_used == "10.0.0.1:8080"
        assert engine.proxies[0].key == "10.0.0.1:8080"
        assert orchestrator.sessions.get(result.session_id).proxy == "10.0.0.1:8080"

    async def test_proxy_errors_charge_the_proxy(self, make_orchestrator):
        engine = FakeEngine(lambda: FakePage(navigate_error=RuntimeError("net::ERR_PROXY_CONNECTION_FAILED")))
        proxies = live_pool("10.0.0.1")
        orchestrator = make_orchestrator(engine, proxies=proxies)

        result = await orchestrator.scrape(listing_job(use_proxy=True, strategy="stealth"))

        assert result.error_kind is FailureKind.PROXY_ERROR
        assert proxies.failure_count("10.0.0.1:8080") == 1

    async def test_blocked_pages_do_not_charge_the_proxy(self, make_orchestrator):
        proxies = live_pool("10.0.0.1")
        orchestrator = make_orchestrator(FakeEngine(blocked_page), proxies=proxies)

        await orchestrator.scrape(listing_job(use_proxy=True, strategy="stealth"))

        assert proxies.failure_count("10.0.0.1:8080") == 0

    async def test_unusable_socks_transport_is_a_proxy_failure(self, make_orchestrator):
        socks = ProxyEndpoint(host="10.0.0.1", port=1080, protocol="socks5")
        checker = AsyncMock(side_effect=ImportError("Using SOCKS proxy, but the 'socksio' package is not installed."))
        proxies = ProxyManager([socks], checker=checker)
        engine = FakeEngine()
        orchestrator = make_orchestrator(engine, proxies=proxies)

        result = await orchestrator.scrape(listing_job(use_proxy=True))

        assert not result.success
        assert result.error_kind is FailureKind.PROXY_ERROR
        assert "No proxy available" in result.error
        assert proxies.failure_count(socks) == 1
        assert engine.pages == []

    async def test_rotation_into_exhausted_pool_charges_proxy_once(self, make_orchestrator):
        proxies = ProxyManager(
            [ProxyEndpoint(host="10.0.0.1", port=8080)],
            checker=AsyncMock(side_effect=[True, False]),
        )
        engine = FakeEngine()
        orchestrator = make_orchestrator(engine, proxies=proxies)

        result = await orchestrator.scrape(listing_job(use_proxy=True, strategy="proxy_rotation"))

        assert result.error_kind is FailureKind.PROXY_ERROR
        assert "No proxy available" in result.error
        assert proxies.failure_count("10.0.0.1:8080") == 1
        assert engine.pages == []

    async def test_rotating_strategy_draws_a_new_proxy(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        proxies = live_pool("10.0.0.1", "10.0.0.2")
        orchestrator = make_orchestrator(engine, proxies=proxies)

        result = await orchestrator.scrape(listing_job(use_proxy=True, strategy="proxy_rotation"))

        assert result.success
        assert result.proxy_used == "10.0.0.2:8080"
        assert engine.proxies[0].key == "10.0.0.2:8080"

    async def test_rotation_is_ignored_without_proxies(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        orchestrator = make_orchestrator(engine, proxies=live_pool("10.0.0.1"))

        result = await orchestrator.scrape(listing_job(strategy="proxy_rotation"))

        assert result.success
        assert result.proxy_used is None
        assert engine.proxies == [None]


class TestSessionsAndMaintenance:
    """Session refresh, maintenance and aggregated stats."""

    async def test_fresh_session_strategy(self, make_orchestrator, good_page_factory):
        orchestrator = make_orchestrator(FakeEngine(good_page_factory))

        result = await orchestrator.scrape(listing_job(strategy="session_refresh"))

        assert result.success
        stats = orchestrator.sessions.stats()
        assert stats["total"] == 2
        assert stats["inactive"] == 1
        assert orchestrator.sessions.get(result.session_id).active

    async def test_strategy_can_skip_behavior(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        strategies = StrategySelector([Strategy("quiet", 1, 90, config={"simulate_human": False})], sleep=no_sleep)
        orchestrator = make_orchestrator(engine, strategies=strategies)

        result = await orchestrator.scrape(listing_job())

        assert result.strategy == "quiet"
        assert "move" not in engine.pages[0].kinds()

    async def test_run_maintenance(self, make_orchestrator):
        orchestrator = make_orchestrator(FakeEngine())

        summary = orchestrator.run_maintenance()

        assert summary == {"sessions_swept": 0, "proxies_reactivated": 0, "strategies_reenabled": 0}

    async def test_stats_and_close(self, make_orchestrator, good_page_factory):
        engine = FakeEngine(good_page_factory)
        orchestrator = make_orchestrator(engine)
        await orchestrator.scrape(listing_job())

        stats = orchestrator.stats()
        await orchestrator.close()

        assert set(stats) == {"rate_limiter", "proxies", "sessions", "strategies"}
        assert stats["sessions"]["total_requests"] == 1
        assert stats["rate_limiter"]["active_requests"] == 0
        assert engine.closed

    async def test_maintenance_uses_configured_session_age(self, make_orchestrator, clock):
        sessions = SessionManager(clock=clock)
        orchestrator = make_orchestrator(FakeEngine(), sessions=sessions)
        orchestrator.session_max_age = timedelta(hours=1)
        sessions.create("alibaba")
        clock.advance(hours=2)

        summary = orchestrator.run_maintenance()

        assert summary["sessions_swept"] == 1
        assert sessions.stats()["total"] == 0


class HangingPage(FakePage):
    """Page whose navigation never completes."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.navigating = asyncio.Event()

    async def navigate(self, url: str, timeout_ms: int):
        self.events.append(("navigate", url))
        self.navigating.set()
        await asyncio.Event().wait()


class TestCancellation:
    """Cancelled scrapes release what they hold."""

    async def test_cancel_mid_navigation_releases_page_and_slot(self, make_orchestrator):
        limiter = SlidingWindowRateLimiter(max_requests=10, max_concurrent=1)
        engine = FakeEngine(HangingPage)
        orchestrator = make_orchestrator(engine, rate_limiter=limiter)

        task = asyncio.create_task(orchestrator.scrape(listing_job(max_retries=3)))
        while not engine.pages:
            await asyncio.sleep(0)
        await engine.pages[0].navigating.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(engine.pages) == 1
        assert engine.pages[0].closed
        assert limiter.status()["active_requests"] == 0
        assert orchestrator.strategies.get("mobile").success_rate == 75
