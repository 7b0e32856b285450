"""Scrape orchestration: one job in, one ScrapingResult out.

The orchestrator owns no policy of its own. It takes a rate-limiter slot,
optionally a proxy, opens a session, and hands an attempt function to the
strategy selector's retry executor, which decides which strategy each attempt
uses and when to give up.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import structlog

from harvester.core.exceptions import (
    BlockedError,
    FailureKind,
    NoProxyAvailableError,
    NoStrategyAvailable,
    RateLimitExceeded,
    ScraperError,
    SessionError,
    StrategiesExhaustedError,
    ValidationFailedError,
)
from harvester.scrapers.base import RawRecord, ScrapeJob, ScrapeOptions, ScrapingResult
from harvester.scrapers.browser import DESKTOP_VIEWPORT, STEALTH_HEADERS, STEALTH_JS, BrowserEngine, Page
from harvester.scrapers.extractors import PAGE_SNAPSHOT_SCRIPT, check_for_interstitial, extraction_script
from harvester.scrapers.strategies import Strategy, StrategySelector
from harvester.scrapers.utils.behavior import HumanBehaviorSimulator
from harvester.scrapers.utils.device_profiles import DeviceProfileRegistry
from harvester.scrapers.utils.proxy_manager import ProxyEndpoint, ProxyManager
from harvester.scrapers.utils.rate_limiter import SlidingWindowRateLimiter
from harvester.scrapers.utils.session_manager import SessionManager
from harvester.scrapers.validator import DataValidator, ValidationResult

logger = structlog.get_logger(__name__)

_PROXY_FAILURES = (FailureKind.PROXY_ERROR, FailureKind.NETWORK_ERROR)


@dataclass
class _JobContext:
    """Mutable state shared by the attempts of one scrape call."""

    job: ScrapeJob
    options: ScrapeOptions
    session_id: str
    proxy: Optional[ProxyEndpoint] = None
    last_strategy: str = "none"


class ScrapeOrchestrator:
    """Runs scraping jobs end to end across the shared components."""

    def __init__(
        self,
        engine: BrowserEngine,
        rate_limiter: SlidingWindowRateLimiter,
        proxies: ProxyManager,
        sessions: SessionManager,
        strategies: StrategySelector,
        validator: DataValidator,
        devices: DeviceProfileRegistry,
        behavior: HumanBehaviorSimulator,
        navigation_timeout_ms: int = 45000,
        default_max_retries: int = 3,
        session_max_age: timedelta = timedelta(hours=24),
    ):
        self.engine = engine
        self.rate_limiter = rate_limiter
        self.proxies = proxies
        self.sessions = sessions
        self.strategies = strategies
        self.validator = validator
        self.devices = devices
        self.behavior = behavior
        self.navigation_timeout_ms = navigation_timeout_ms
        self.default_max_retries = default_max_retries
        self.session_max_age = session_max_age
        self.logger = logger.bind(service="orchestrator")

    async def scrape(self, job: ScrapeJob, options: Optional[ScrapeOptions] = None) -> ScrapingResult:
        """Scrape one listing URL or search query.

        Never raises for scraping problems: every failure, including rate
        limiter and proxy exhaustion, comes back as an unsuccessful result
        with its failure kind.

        The rate-limiter slot is held for the whole job, backoff between
        strategies included, so ``max_concurrent`` bounds concurrent jobs
        rather than concurrent page loads.

        Args:
            job: The job to run
            options: Overrides for ``job.options``

        Returns:
            ScrapingResult for the job
        """
        options = options or job.options
        started = time.monotonic()
        self.logger.info(
            "scrape_started",
            job_id=job.id,
            platform=job.platform.value,
            target=job.url or job.query,
            strategy=options.strategy,
            use_proxy=options.use_proxy,
        )
        try:
            async with self.rate_limiter.slot():
                result = await self._scrape_in_slot(job, options, started)
        except RateLimitExceeded as e:
            result = self._failure(str(e), FailureKind.RATE_LIMIT, started)
        except SessionError as e:
            result = self._failure(e.message, e.kind, started)

        log = self.logger.info if result.success else self.logger.warning
        log(
            "scrape_finished",
            job_id=job.id,
            success=result.success,
            strategy=result.strategy,
            confidence=result.confidence,
            execution_time_ms=result.execution_time,
            error_kind=result.error_kind.value if result.error_kind else None,
        )
        return result

    async def _scrape_in_slot(self, job: ScrapeJob, options: ScrapeOptions, started: float) -> ScrapingResult:
        proxy = None
        if options.use_proxy:
            proxy = await self._draw_proxy(options.country)
            if proxy is None:
                error = NoProxyAvailableError(options.country)
                return self._failure(error.message, error.kind, started)

        session_id = self.sessions.create(job.platform.value, proxy=proxy.key if proxy else None)
        ctx = _JobContext(job=job, options=options, session_id=session_id, proxy=proxy)

        try:
            candidates = self._candidates(options)
        except NoStrategyAvailable as e:
            return self._failure(e.message, FailureKind.UNKNOWN, started, ctx)

        async def attempt(strategy: Strategy) -> Tuple[str, RawRecord, ValidationResult]:
            ctx.last_strategy = strategy.name
            try:
                record, validation = await self._attempt(ctx, strategy)
            except NoProxyAvailableError:
                # Rotation found the pool exhausted; the probe already charged the endpoint
                raise
            except Exception as e:
                if ctx.proxy and self.strategies.classify(e) in _PROXY_FAILURES:
                    self.proxies.mark_failed(ctx.proxy)
                raise
            return strategy.name, record, validation

        try:
            strategy_name, record, validation = await self.strategies.execute_with_retry(
                attempt, max_retries=len(candidates), candidates=candidates
            )
        except StrategiesExhaustedError as e:
            return self._failure(e.message, e.kind, started, ctx)
        except NoStrategyAvailable as e:
            return self._failure(e.message, FailureKind.UNKNOWN, started, ctx)

        if ctx.proxy:
            self.proxies.mark_success(ctx.proxy)
        return ScrapingResult(
            success=True,
            strategy=strategy_name,
            session_id=ctx.session_id,
            confidence=validation.confidence,
            execution_time=self._elapsed_ms(started),
            data=record,
            warnings=list(validation.warnings),
            quality=validation.quality,
            proxy_used=ctx.proxy.key if ctx.proxy else None,
        )

    def _candidates(self, options: ScrapeOptions) -> List[str]:
        """Distinct strategies to try, in order."""
        if options.strategy:
            if self.strategies.get(options.strategy) is None:
                raise NoStrategyAvailable()
            return [options.strategy]
        return self.strategies.plan(options.max_retries or self.default_max_retries)

    async def _draw_proxy(self, country: Optional[str]) -> Optional[ProxyEndpoint]:
        if country:
            return await self.proxies.by_country(country)
        return await self.proxies.next()

    async def _attempt(self, ctx: _JobContext, strategy: Strategy) -> Tuple[RawRecord, ValidationResult]:
        """One strategy attempt; raises on any failure."""
        config = strategy.config

        if config.get("fresh_session"):
            self.sessions.deactivate(ctx.session_id)
            ctx.session_id = self.sessions.create(
                ctx.job.platform.value, proxy=ctx.proxy.key if ctx.proxy else None
            )
        if config.get("rotate_proxy") and ctx.options.use_proxy:
            proxy = await self._draw_proxy(ctx.options.country)
            if proxy is None:
                raise NoProxyAvailableError(ctx.options.country)
            ctx.proxy = proxy

        session = self.sessions.get(ctx.session_id)
        url = ctx.job.target_url
        page = await self.engine.open_page(proxy=ctx.proxy)
        try:
            await self._prepare_page(page, strategy, session.identity if session else None)
            cookies = self.sessions.get_cookies(ctx.session_id)
            if cookies:
                await page.add_cookies(cookies)

            status = await page.navigate(url, self.navigation_timeout_ms)
            self.sessions.touch(ctx.session_id)
            self._check_status(ctx, status, url)
            check_for_interstitial(await page.run_query(PAGE_SNAPSHOT_SCRIPT), url)

            if ctx.options.simulate_human and config.get("simulate_human", True):
                await self.behavior.simulate(page)

            script = extraction_script(ctx.job.platform, config.get("extraction"), search=not ctx.job.url)
            record = dict(await page.run_query(script))
            record["url"] = record.pop("listingUrl", None) or page.url or url
            record["scrapedAt"] = datetime.now(timezone.utc).isoformat()

            validation = self.validator.validate(record)
            if not validation.is_valid:
                raise ValidationFailedError(validation)

            self.sessions.clear_cookies(ctx.session_id)
            self.sessions.add_cookies(ctx.session_id, await page.cookies())
            return record, validation
        finally:
            try:
                await page.close()
            except Exception as e:
                self.logger.warning("page_close_failed", error=str(e))

    async def _prepare_page(self, page: Page, strategy: Strategy, identity: Optional[str]) -> None:
        await page.set_headers(STEALTH_HEADERS)
        overrides = strategy.config.get("overrides", STEALTH_JS)
        if overrides:
            await page.inject_pre_navigation_overrides(overrides)
        if strategy.config.get("device_emulation"):
            profile = await self.devices.apply(page)
            self.logger.debug("device_profile_applied", strategy=strategy.name, device=profile.name)
            return
        await page.set_viewport(DESKTOP_VIEWPORT)
        if identity:
            await page.set_identity(identity)

    def _check_status(self, ctx: _JobContext, status: Optional[int], url: str) -> None:
        platform = ctx.job.platform.value
        if status is None or status < 400:
            return
        if status == 404:
            raise ScraperError(platform, f"listing not found (HTTP {status})")
        if status == 429:
            raise ScraperError(platform, f"rate limit response (HTTP {status})")
        if status in (401, 403):
            raise BlockedError(url, f"HTTP {status}")
        raise ScraperError(platform, f"unexpected HTTP {status}")

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _failure(
        self,
        error: str,
        kind: FailureKind,
        started: float,
        ctx: Optional[_JobContext] = None,
    ) -> ScrapingResult:
        return ScrapingResult(
            success=False,
            strategy=ctx.last_strategy if ctx else "none",
            session_id=ctx.session_id if ctx else "unknown",
            error=error,
            error_kind=kind,
            execution_time=self._elapsed_ms(started),
            proxy_used=ctx.proxy.key if ctx and ctx.proxy else None,
        )

    def run_maintenance(
        self,
        session_max_age: Optional[timedelta] = None,
        strategy_cooldown_hours: float = 2,
    ) -> dict:
        """Periodic housekeeping across the shared stores.

        Args:
            session_max_age: Sweep sessions older than this, the configured age by default
            strategy_cooldown_hours: Hours a disabled strategy waits before re-enabling

        Returns:
            Counts of swept sessions, reactivated proxies and re-enabled strategies
        """
        summary = {
            "sessions_swept": self.sessions.sweep(session_max_age or self.session_max_age),
            "proxies_reactivated": self.proxies.reactivate_cooled_down(),
            "strategies_reenabled": len(self.strategies.reenable_after_cooldown(strategy_cooldown_hours)),
        }
        self.logger.info("maintenance_completed", **summary)
        return summary

    def stats(self) -> dict:
        return {
            "rate_limiter": self.rate_limiter.status(),
            "proxies": self.proxies.stats(),
            "sessions": self.sessions.stats(),
            "strategies": self.strategies.stats(),
        }

    async def close(self) -> None:
        await self.engine.close()
        self.logger.info("orchestrator_closed")
