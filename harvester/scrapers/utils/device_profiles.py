"""Mobile and tablet fingerprints used for device emulation."""

import json
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

import structlog

if TYPE_CHECKING:
    from harvester.scrapers.browser import Page

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DeviceProfile:
    """A named device fingerprint."""

    name: str
    identity: str
    width: int
    height: int
    device_scale_factor: float
    platform: str  # navigator.platform
    vendor: str  # navigator.vendor
    hint_platform: str  # sec-ch-ua-platform
    is_mobile: bool = True
    has_touch: bool = True
    has_mouse: bool = False
    has_keyboard: bool = False
    max_touch_points: int = 5
    landscape: bool = False

    @property
    def viewport(self) -> Dict[str, object]:
        return {
            "width": self.width,
            "height": self.height,
            "device_scale_factor": self.device_scale_factor,
            "is_mobile": self.is_mobile,
            "has_touch": self.has_touch,
        }

    def headers(self) -> Dict[str, str]:
        """Request headers consistent with this device."""
        return {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Upgrade-Insecure-Requests": "1",
            "sec-ch-ua-mobile": "?1" if self.is_mobile else "?0",
            "sec-ch-ua-platform": f'"{self.hint_platform}"',
        }

    def override_script(self) -> str:
        """JavaScript run before any page script to make the DOM agree with the profile."""
        values = json.dumps(
            {
                "maxTouchPoints": self.max_touch_points if self.has_touch else 0,
                "platform": self.platform,
                "vendor": self.vendor,
                "width": self.width,
                "height": self.height,
                "pixelRatio": self.device_scale_factor,
                "orientation": "landscape-primary" if self.landscape else "portrait-primary",
                "angle": 90 if self.landscape else 0,
                "touch": self.has_touch,
            }
        )
        return _OVERRIDE_TEMPLATE.replace("__PROFILE__", values)


_OVERRIDE_TEMPLATE = """
(() => {
    const p = __PROFILE__;
    const define = (obj, key, value) =>
        Object.defineProperty(obj, key, { get: () => value, configurable: true });

    define(navigator, 'maxTouchPoints', p.maxTouchPoints);
    define(navigator, 'platform', p.platform);
    define(navigator, 'vendor', p.vendor);

    define(screen, 'width', p.width);
    define(screen, 'height', p.height);
    define(screen, 'availWidth', p.width);
    define(screen, 'availHeight', p.height);
    define(window, 'innerWidth', p.width);
    define(window, 'innerHeight', p.height);
    define(window, 'devicePixelRatio', p.pixelRatio);
    define(screen, 'orientation', { type: p.orientation, angle: p.angle });

    if (p.touch) {
        window.ontouchstart = null;
        window.ontouchmove = null;
        window.ontouchend = null;
    }
})();
"""

_APPLE = "Apple Computer, Inc."
_GOOGLE = "Google Inc."

DEFAULT_PROFILES: List[DeviceProfile] = [
    DeviceProfile(
        name="iPhone 14 Pro",
        identity="Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1",
        width=393,
        height=852,
        device_scale_factor=3,
        platform="iPhone",
        vendor=_APPLE,
        hint_platform="iOS",
    ),
    DeviceProfile(
        name="iPhone 13",
        identity="Mozilla/5.0 (iPhone; CPU iPhone OS 15_6_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/15.6 Mobile/15E148 Safari/604.1",
        width=390,
        height=844,
        device_scale_factor=3,
        platform="iPhone",
        vendor=_APPLE,
        hint_platform="iOS",
    ),
    DeviceProfile(
        name="Samsung Galaxy S23",
        identity="Mozilla/5.0 (Linux; Android 13; SM-S911B) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/112.0.0.0 Mobile Safari/537.36",
        width=412,
        height=915,
        device_scale_factor=2.625,
        platform="Linux armv8l",
        vendor=_GOOGLE,
        hint_platform="Android",
    ),
    DeviceProfile(
        name="Google Pixel 7",
        identity="Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/112.0.0.0 Mobile Safari/537.36",
        width=412,
        height=915,
        device_scale_factor=2.625,
        platform="Linux armv8l",
        vendor=_GOOGLE,
        hint_platform="Android",
    ),
    DeviceProfile(
        name="iPad Pro 12.9",
        identity="Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1",
        width=1024,
        height=1366,
        device_scale_factor=2,
        platform="iPad",
        vendor=_APPLE,
        hint_platform="iOS",
    ),
]


class DeviceProfileRegistry:
    """Catalog of device profiles with emulation support."""

    def __init__(self, profiles: Optional[List[DeviceProfile]] = None, rng: Optional[random.Random] = None):
        self._profiles: List[DeviceProfile] = list(DEFAULT_PROFILES if profiles is None else profiles)
        self._rng = rng or random.Random()

    def random(self) -> DeviceProfile:
        """Get a uniformly random profile.

        Raises:
            LookupError: If the registry is empty
        """
        if not self._profiles:
            raise LookupError("no device profiles registered")
        return self._rng.choice(self._profiles)

    def by_name(self, name: str) -> Optional[DeviceProfile]:
        return next((p for p in self._profiles if p.name == name), None)

    def all(self) -> List[DeviceProfile]:
        return list(self._profiles)

    def add(self, profile: DeviceProfile) -> None:
        """Register a profile, replacing one with the same name."""
        self._profiles = [p for p in self._profiles if p.name != profile.name]
        self._profiles.append(profile)
        logger.info("device_profile_added", device=profile.name)

    def remove(self, name: str) -> bool:
        before = len(self._profiles)
        self._profiles = [p for p in self._profiles if p.name != name]
        removed = len(self._profiles) != before
        if removed:
            logger.info("device_profile_removed", device=name)
        return removed

    async def apply(self, page: "Page", profile: Optional[DeviceProfile] = None) -> DeviceProfile:
        """Make a page look like the given device (a random one by default).

        Must run before navigation so the overrides are in place when the
        target's scripts execute.

        Args:
            page: Page to configure
            profile: Profile to emulate

        Returns:
            The profile that was applied
        """
        target = profile or self.random()
        await page.set_viewport(target.viewport)
        await page.set_identity(target.identity)
        await page.set_headers(target.headers())
        await page.inject_pre_navigation_overrides(target.override_script())
        logger.info("device_emulated", device=target.name, width=target.width, height=target.height)
        return target
