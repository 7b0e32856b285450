"""Scraper utilities for rate limiting, proxies, sessions and human-like behavior."""

from .rate_limiter import SlidingWindowRateLimiter
from .proxy_manager import ProxyManager, ProxyEndpoint
from .session_manager import Session, SessionManager
from .user_agents import (
    get_random_identity,
    get_identity_by_os,
    DESKTOP_IDENTITIES,
)
from .device_profiles import DeviceProfile, DeviceProfileRegistry, DEFAULT_PROFILES
from .behavior import BehaviorConfig, HumanBehaviorSimulator
from .retry import http_retry


__all__ = [
    # Rate limiting
    "SlidingWindowRateLimiter",
    # Proxy management
    "ProxyManager",
    "ProxyEndpoint",
    # Sessions
    "Session",
    "SessionManager",
    # Identities
    "get_random_identity",
    "get_identity_by_os",
    "DESKTOP_IDENTITIES",
    # Device emulation
    "DeviceProfile",
    "DeviceProfileRegistry",
    "DEFAULT_PROFILES",
    # Behavior
    "BehaviorConfig",
    "HumanBehaviorSimulator",
    # Retry decorators
    "http_retry",
]
