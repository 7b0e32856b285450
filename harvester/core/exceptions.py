"""Custom exception classes for the harvester."""

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from harvester.scrapers.validator import ValidationResult


class FailureKind(str, Enum):
    """Fixed taxonomy used to classify a failed scraping attempt."""

    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    CAPTCHA = "captcha"
    RATE_LIMIT = "rate_limit"
    PROXY_ERROR = "proxy_error"
    NETWORK_ERROR = "network_error"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN = "unknown"


class HarvesterException(Exception):
    """Base exception for all harvester errors."""

    kind: FailureKind = FailureKind.UNKNOWN

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ScraperError(HarvesterException):
    """Raised when a scraping attempt fails on a platform."""

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"Scraper error for {platform}: {message}")


class RateLimitExceeded(HarvesterException):
    """Raised when a rate limiter slot cannot be acquired in time."""

    kind = FailureKind.RATE_LIMIT

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Rate limit exceeded: no slot available within {timeout:g}s")


class NoProxyAvailableError(HarvesterException):
    """Raised when every proxy in the pool is inactive, cooling down, or dead."""

    kind = FailureKind.PROXY_ERROR

    def __init__(self, country: Optional[str] = None):
        self.country = country
        suffix = f" for country {country}" if country else ""
        super().__init__(f"No proxy available{suffix}")


class InvalidProxyError(HarvesterException):
    """Raised when a proxy endpoint has a malformed host/port/protocol."""

    kind = FailureKind.PROXY_ERROR

    def __init__(self, endpoint: str):
        super().__init__(f"Invalid proxy configuration: {endpoint}")


class SessionError(HarvesterException):
    """Raised when a session cannot be created or found."""


class BlockedError(HarvesterException):
    """Raised when an anti-bot interstitial replaces the requested page."""

    kind = FailureKind.BLOCKED

    def __init__(self, url: str, marker: str):
        self.url = url
        self.marker = marker
        super().__init__(f"Request blocked by anti-bot page at {url} (marker: {marker!r})")


class CaptchaDetectedError(HarvesterException):
    """Raised when a CAPTCHA challenge is served instead of content."""

    kind = FailureKind.CAPTCHA

    def __init__(self, url: str, marker: str):
        self.url = url
        self.marker = marker
        super().__init__(f"Captcha challenge served at {url} (marker: {marker!r})")


class ValidationFailedError(HarvesterException):
    """Raised when an extracted record has hard validation errors."""

    kind = FailureKind.VALIDATION_ERROR

    def __init__(self, result: "ValidationResult"):
        self.result = result
        super().__init__(f"Data validation failed: {', '.join(result.errors)}")


class NoStrategyAvailable(HarvesterException):
    """Raised when the strategy registry has no enabled strategy to offer."""

    def __init__(self):
        super().__init__("No scraping strategies available")


class StrategiesExhaustedError(HarvesterException):
    """Aggregated failure raised once every allowed attempt has failed."""

    def __init__(
        self,
        attempts: int,
        last_error: Optional[str],
        last_kind: FailureKind = FailureKind.UNKNOWN,
    ):
        self.attempts = attempts
        self.last_error = last_error
        self.kind = last_kind
        super().__init__(
            f"All strategies failed after {attempts} attempts. Last error: {last_error}"
        )


class CatalogImportError(HarvesterException):
    """Raised when the catalog import endpoint rejects a record."""

    def __init__(self, message: str):
        super().__init__(f"Failed to import product: {message}")
