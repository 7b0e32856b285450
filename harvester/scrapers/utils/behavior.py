"""Human-like interaction playback: pointer paths, scrolling, typing, reading.

Every pause is drawn from a configured ``(min, max)`` range in seconds. The
random source and the sleep function are injectable so plans can be checked
deterministically and playback can run without real waiting.
"""

import asyncio
import random
import string
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

if TYPE_CHECKING:
    from harvester.scrapers.browser import Page

logger = structlog.get_logger(__name__)

Range = Tuple[float, float]
Point = Tuple[float, float]

TEXT_LENGTH_SCRIPT = "() => ({ length: (document.body && document.body.innerText || '').length })"


@dataclass
class BehaviorConfig:
    """Tunable ranges for every simulated action."""

    pointer_enabled: bool = True
    pointer_legs: Tuple[int, int] = (5, 12)
    pointer_delay: Range = (0.05, 0.2)
    natural_curves: bool = True
    curve_points: Tuple[int, int] = (2, 4)
    curve_jitter: float = 25.0  # max px offset of each interpolated point

    scroll_enabled: bool = True
    scroll_steps: Tuple[int, int] = (2, 5)
    scroll_amount: Tuple[int, int] = (100, 300)
    scroll_delay: Range = (1.0, 2.0)
    reverse_probability: float = 0.2
    long_pause_probability: float = 0.3
    long_pause: Range = (2.0, 5.0)

    typing_enabled: bool = True
    key_delay: Range = (0.05, 0.15)
    natural_errors: bool = True
    typo_probability: float = 0.02
    typo_pause: Range = (0.1, 0.3)
    field_pause: Range = (0.2, 0.5)

    page_settle: Range = (2.0, 3.0)

    reading_speed_wpm: Tuple[int, int] = (200, 300)
    reading_check: Range = (1.5, 2.5)
    reading_scroll_probability: float = 0.3
    reading_scroll: Tuple[int, int] = (50, 150)
    reading_max_steps: int = 30


@dataclass
class ScrollStep:
    delta: int
    pause: float
    long_pause: float = 0.0


class HumanBehaviorSimulator:
    """Plays plausible user activity on a page."""

    def __init__(
        self,
        config: Optional[BehaviorConfig] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or BehaviorConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep

    def update_config(self, **changes) -> None:
        """Replace individual config fields, e.g. ``update_config(scroll_enabled=False)``."""
        self.config = replace(self.config, **changes)
        logger.info("behavior_config_updated", fields=sorted(changes))

    async def pause(self, bounds: Range) -> float:
        """Sleep for a random duration within ``bounds``."""
        delay = self._rng.uniform(*bounds)
        await self._sleep(delay)
        return delay

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def pointer_path(self, width: float, height: float) -> List[Point]:
        """Generate a wandering pointer path inside a ``width`` x ``height`` area.

        Each leg ends at a random target; with natural curves on, 2-4 jittered
        points interpolated along the leg precede the target.
        """
        cfg = self.config
        legs = self._rng.randint(*cfg.pointer_legs)
        x, y = self._rng.uniform(0, width), self._rng.uniform(0, height)
        points: List[Point] = []

        for _ in range(legs):
            tx, ty = self._rng.uniform(0, width), self._rng.uniform(0, height)
            if cfg.natural_curves:
                mids = self._rng.randint(*cfg.curve_points)
                for i in range(1, mids + 1):
                    t = i / (mids + 1)
                    jx = self._rng.uniform(-cfg.curve_jitter, cfg.curve_jitter)
                    jy = self._rng.uniform(-cfg.curve_jitter, cfg.curve_jitter)
                    points.append(
                        (
                            min(max(x + (tx - x) * t + jx, 0.0), width),
                            min(max(y + (ty - y) * t + jy, 0.0), height),
                        )
                    )
            points.append((tx, ty))
            x, y = tx, ty

        return points

    def scroll_plan(self) -> List[ScrollStep]:
        """Generate a short reading-style scroll sequence, mostly downward."""
        cfg = self.config
        steps = []
        for _ in range(self._rng.randint(*cfg.scroll_steps)):
            amount = self._rng.randint(*cfg.scroll_amount)
            if self._rng.random() < cfg.reverse_probability:
                amount = -amount
            long_pause = 0.0
            if self._rng.random() < cfg.long_pause_probability:
                long_pause = self._rng.uniform(*cfg.long_pause)
            steps.append(ScrollStep(amount, self._rng.uniform(*cfg.scroll_delay), long_pause))
        return steps

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    async def simulate(self, page: "Page") -> None:
        """Let the page settle, then wander the pointer and scroll.

        Failures are logged and swallowed: a page that refuses input must not
        fail the scrape.
        """
        try:
            await self.pause(self.config.page_settle)
            if self.config.pointer_enabled:
                await self.move_pointer(page)
            if self.config.scroll_enabled:
                await self.scroll(page)
            logger.debug("behavior_simulated")
        except Exception as e:
            logger.warning("behavior_simulation_failed", error=str(e))

    async def move_pointer(self, page: "Page") -> None:
        viewport = page.viewport
        if not viewport:
            return
        for x, y in self.pointer_path(viewport["width"], viewport["height"]):
            await page.move_pointer(x, y)
            await self.pause(self.config.pointer_delay)

    async def scroll(self, page: "Page") -> None:
        for step in self.scroll_plan():
            await page.scroll_by(step.delta)
            await self._sleep(step.pause)
            if step.long_pause:
                await self._sleep(step.long_pause)

    async def type_text(self, page: "Page", selector: str, text: str) -> None:
        """Type ``text`` into ``selector`` one key at a time, with rare corrected typos."""
        cfg = self.config
        humanize = cfg.typing_enabled
        try:
            await page.focus(selector)
            await self.pause(cfg.field_pause)
            for char in text:
                if humanize and cfg.natural_errors and self._rng.random() < cfg.typo_probability:
                    await page.type_key(self._rng.choice(string.ascii_lowercase))
                    await self.pause(cfg.typo_pause)
                    await page.press_key("Backspace")
                    await self.pause(cfg.typo_pause)
                await page.type_key(char)
                if humanize:
                    await self.pause(cfg.key_delay)
            await self.pause(cfg.field_pause)
        except Exception as e:
            logger.warning("typing_simulation_failed", selector=selector, error=str(e))

    async def fill_form(self, page: "Page", fields: Dict[str, str]) -> None:
        """Type each value into its selector, tabbing between fields."""
        for selector, value in fields.items():
            await self.type_text(page, selector, value)
            try:
                await page.press_key("Tab")
            except Exception as e:
                logger.warning("form_tab_failed", selector=selector, error=str(e))
            await self.pause(self.config.field_pause)

    async def simulate_reading(self, page: "Page") -> int:
        """Linger on the page for roughly the time needed to read its text.

        Returns:
            Number of reading steps played (capped by ``reading_max_steps``)
        """
        cfg = self.config
        try:
            measured = await page.run_query(TEXT_LENGTH_SCRIPT)
            length = int((measured or {}).get("length", 0))
        except Exception as e:
            logger.warning("reading_measure_failed", error=str(e))
            return 0

        wpm = self._rng.randint(*cfg.reading_speed_wpm)
        reading_seconds = (length / 5) / wpm * 60
        steps = min(int(reading_seconds // 2), cfg.reading_max_steps)

        for _ in range(steps):
            await self.pause(cfg.reading_check)
            if self._rng.random() < cfg.reading_scroll_probability:
                try:
                    await page.scroll_by(self._rng.randint(*cfg.reading_scroll))
                except Exception as e:
                    logger.warning("reading_scroll_failed", error=str(e))
                    break

        logger.debug("reading_simulated", characters=length, wpm=wpm, steps=steps)
        return steps
