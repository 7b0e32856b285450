"""Pytest configuration and shared fixtures."""

import random
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock

import pytest
import structlog

from fakes import FakeEngine, FakePage, no_sleep
from harvester.scrapers.orchestrator import ScrapeOrchestrator
from harvester.scrapers.strategies import StrategySelector
from harvester.scrapers.utils.behavior import HumanBehaviorSimulator
from harvester.scrapers.utils.device_profiles import DeviceProfileRegistry
from harvester.scrapers.utils.proxy_manager import ProxyManager
from harvester.scrapers.utils.rate_limiter import SlidingWindowRateLimiter
from harvester.scrapers.utils.session_manager import SessionManager
from harvester.scrapers.validator import DataValidator


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo configure_logging() calls so loggers don't keep a closed capture stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


class FakeClock:
    """Settable clock returning aware datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def good_record() -> dict:
    """A listing record that passes every validation check."""
    return {
        "title": "Wireless Bluetooth Headphones with Noise Cancellation",
        "price": "$49.99",
        "description": "High quality wireless headphones with active noise cancellation and 30 hour battery life.",
        "images": [
            "https://sc04.alicdn.com/kf/headphones-front.jpg",
            "https://sc04.alicdn.com/kf/headphones-side.jpg",
            "https://sc04.alicdn.com/kf/headphones-case.jpg",
        ],
        "supplierName": "Shenzhen Audio Tech Co., Ltd.",
    }


@pytest.fixture
def make_orchestrator():
    """Build an orchestrator around a FakeEngine with instant backoff and playback."""

    def _make(
        engine: FakeEngine,
        proxies: Optional[ProxyManager] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        strategies: Optional[StrategySelector] = None,
        sessions: Optional[SessionManager] = None,
    ) -> ScrapeOrchestrator:
        return ScrapeOrchestrator(
            engine=engine,
            rate_limiter=rate_limiter or SlidingWindowRateLimiter(max_requests=100, max_concurrent=5),
            proxies=proxies or ProxyManager(checker=AsyncMock(return_value=True)),
            sessions=sessions or SessionManager(rng=random.Random(1)),
            strategies=strategies or StrategySelector(sleep=no_sleep),
            validator=DataValidator(),
            devices=DeviceProfileRegistry(rng=random.Random(1)),
            behavior=HumanBehaviorSimulator(rng=random.Random(1), sleep=no_sleep),
            navigation_timeout_ms=1000,
        )

    return _make


@pytest.fixture
def good_page_factory(good_record):
    def _factory() -> FakePage:
        return FakePage(record=good_record, cookies=[{"name": "sid", "value": "abc", "domain": ".alibaba.com", "path": "/"}])

    return _factory
