"""Application configuration via Pydantic Settings."""

from typing import List, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global harvester settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Rate limiting (shared across all jobs)
    SCRAPER_MAX_REQUESTS_PER_MINUTE: int = 15
    SCRAPER_MAX_CONCURRENT: int = 3
    # None disables the bound and restores unbounded waiting
    SCRAPER_ACQUIRE_TIMEOUT_SECONDS: Optional[float] = 30.0
    SCRAPER_POLL_INTERVAL_SECONDS: float = 0.1

    # Proxy
    PROXY_LIST: str = ""  # Comma-separated list of proxy URLs
    PROXY_FAILURE_THRESHOLD: int = 3
    PROXY_COOLDOWN_MINUTES: float = 5.0
    PROXY_TEST_URL: str = "https://httpbin.org/ip"
    PROXY_TEST_TIMEOUT_SECONDS: float = 10.0

    # Sessions
    SESSION_ROTATE_EVERY: int = 50
    SESSION_MAX_AGE_HOURS: float = 24.0

    # Strategies
    STRATEGY_SMOOTHING_FACTOR: float = 0.1
    STRATEGY_BACKOFF_MAX_SECONDS: float = 30.0
    STRATEGY_DEFAULT_MAX_RETRIES: int = 3

    # Browser
    BROWSER_HEADLESS: bool = True
    BROWSER_BLOCK_RESOURCES: bool = False  # Abort web font requests
    BROWSERLESS_URL: str = ""  # Remote Chrome endpoint, empty launches locally
    BROWSERLESS_TOKEN: str = ""
    NAVIGATION_TIMEOUT_MS: int = 45000

    # Catalog import (consumed by callers of the scraper, never by the core)
    CATALOG_IMPORT_URL: str = ""
    CATALOG_IMPORT_API_KEY: str = ""

    @model_validator(mode="after")
    def check_limits(self) -> "Settings":
        """Reject limits that would make the rate limiter deadlock."""
        if self.SCRAPER_MAX_CONCURRENT < 1:
            raise ValueError("SCRAPER_MAX_CONCURRENT must be at least 1")
        if self.SCRAPER_MAX_REQUESTS_PER_MINUTE < 1:
            raise ValueError("SCRAPER_MAX_REQUESTS_PER_MINUTE must be at least 1")
        if not 0 < self.STRATEGY_SMOOTHING_FACTOR <= 1:
            raise ValueError("STRATEGY_SMOOTHING_FACTOR must be in (0, 1]")
        return self

    def get_proxy_list(self) -> List[str]:
        """Parse PROXY_LIST into a list of proxy URLs.

        Returns:
            List of proxy URL strings, empty if PROXY_LIST is not set
        """
        if not self.PROXY_LIST:
            return []
        return [p.strip() for p in self.PROXY_LIST.split(",") if p.strip()]


settings = Settings()
