"""Wires the shared scraping components together from settings."""

from datetime import timedelta
from typing import Optional

import structlog

from harvester.config import Settings, settings as default_settings
from harvester.scrapers.browser import BrowserEngine, PlaywrightEngine
from harvester.scrapers.orchestrator import ScrapeOrchestrator
from harvester.scrapers.strategies import StrategySelector
from harvester.scrapers.utils.behavior import HumanBehaviorSimulator
from harvester.scrapers.utils.device_profiles import DeviceProfileRegistry
from harvester.scrapers.utils.proxy_manager import ProxyManager
from harvester.scrapers.utils.rate_limiter import SlidingWindowRateLimiter
from harvester.scrapers.utils.session_manager import SessionManager
from harvester.scrapers.validator import DataValidator

logger = structlog.get_logger(__name__)


def build_orchestrator(
    config: Optional[Settings] = None,
    engine: Optional[BrowserEngine] = None,
) -> ScrapeOrchestrator:
    """Create an orchestrator with one instance of every shared store.

    Args:
        config: Settings to read, the module-level settings by default
        engine: Browser engine, a PlaywrightEngine built from settings by default

    Returns:
        Ready-to-use orchestrator
    """
    cfg = config or default_settings

    proxy_urls = cfg.get_proxy_list()
    proxies = ProxyManager.from_urls(
        proxy_urls,
        failure_threshold=cfg.PROXY_FAILURE_THRESHOLD,
        cooldown_minutes=cfg.PROXY_COOLDOWN_MINUTES,
        test_url=cfg.PROXY_TEST_URL,
        test_timeout=cfg.PROXY_TEST_TIMEOUT_SECONDS,
    )
    if proxy_urls:
        logger.info("proxy_manager_initialized", proxy_count=len(proxy_urls))
    else:
        logger.info("proxy_manager_disabled", reason="no_proxies_configured")

    engine = engine or PlaywrightEngine(
        headless=cfg.BROWSER_HEADLESS,
        browserless_url=cfg.BROWSERLESS_URL or None,
        browserless_token=cfg.BROWSERLESS_TOKEN or None,
        block_resources=cfg.BROWSER_BLOCK_RESOURCES,
    )

    return ScrapeOrchestrator(
        engine=engine,
        rate_limiter=SlidingWindowRateLimiter(
            max_requests=cfg.SCRAPER_MAX_REQUESTS_PER_MINUTE,
            max_concurrent=cfg.SCRAPER_MAX_CONCURRENT,
            acquire_timeout=cfg.SCRAPER_ACQUIRE_TIMEOUT_SECONDS,
            poll_interval=cfg.SCRAPER_POLL_INTERVAL_SECONDS,
        ),
        proxies=proxies,
        sessions=SessionManager(rotate_every=cfg.SESSION_ROTATE_EVERY),
        strategies=StrategySelector(
            alpha=cfg.STRATEGY_SMOOTHING_FACTOR,
            max_retries=cfg.STRATEGY_DEFAULT_MAX_RETRIES,
            backoff_max_seconds=cfg.STRATEGY_BACKOFF_MAX_SECONDS,
        ),
        validator=DataValidator(),
        devices=DeviceProfileRegistry(),
        behavior=HumanBehaviorSimulator(),
        navigation_timeout_ms=cfg.NAVIGATION_TIMEOUT_MS,
        default_max_retries=cfg.STRATEGY_DEFAULT_MAX_RETRIES,
        session_max_age=timedelta(hours=cfg.SESSION_MAX_AGE_HOURS),
    )


# Singleton instance
_orchestrator: Optional[ScrapeOrchestrator] = None


def get_orchestrator() -> ScrapeOrchestrator:
    """Get the process-wide orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator
