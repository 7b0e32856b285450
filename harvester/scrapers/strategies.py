"""Adaptive strategy selection and the retry executor built on it.

Each strategy keeps an exponentially smoothed success-rate. Attempt ``n`` of a
job picks from the enabled strategies ranked by priority (1 first) and then by
success-rate, cycling through the ranking so consecutive attempts try
different approaches.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import httpx
import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from harvester.core.exceptions import (
    FailureKind,
    HarvesterException,
    NoStrategyAvailable,
    StrategiesExhaustedError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Strategy:
    """A named evasion approach.

    ``config`` keys understood by the orchestrator: ``device_emulation``,
    ``simulate_human``, ``extraction`` ("dom" or "embedded_state"),
    ``rotate_proxy``, ``fresh_session`` and ``overrides`` (pre-navigation
    script, the stealth defaults when absent, empty to skip).
    """

    name: str
    priority: int
    success_rate: float
    enabled: bool = True
    last_used: datetime = field(default_factory=_utcnow)
    config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.success_rate = max(0.0, min(100.0, float(self.success_rate)))


def default_strategies() -> List[Strategy]:
    return [
        Strategy("stealth", 1, 85, config={"simulate_human": True}),
        Strategy("mobile", 2, 75, config={"simulate_human": True, "device_emulation": True}),
        Strategy("api_interception", 3, 60, config={"simulate_human": False, "extraction": "embedded_state"}),
        Strategy("proxy_rotation", 4, 70, config={"simulate_human": True, "rotate_proxy": True}),
        Strategy("session_refresh", 5, 65, config={"simulate_human": True, "fresh_session": True}),
    ]


@dataclass
class FailurePattern:
    count: int = 0
    last_failure: Optional[datetime] = None
    strategies: List[str] = field(default_factory=list)


# Checked in order; the first keyword found in the message wins.
_FAILURE_KEYWORDS = [
    (("timeout", "timed out"), FailureKind.TIMEOUT),
    (("blocked",), FailureKind.BLOCKED),
    (("captcha",), FailureKind.CAPTCHA),
    (("rate limit",), FailureKind.RATE_LIMIT),
    (("proxy",), FailureKind.PROXY_ERROR),
    (("network", "net::err", "connection refused", "connection reset"), FailureKind.NETWORK_ERROR),
    (("not found",), FailureKind.NOT_FOUND),
]


def classify_failure(error: Any) -> FailureKind:
    """Map an exception (or message) to the failure taxonomy.

    Args:
        error: Exception instance or error message

    Returns:
        The matching FailureKind, UNKNOWN if nothing matches
    """
    if isinstance(error, HarvesterException) and error.kind is not FailureKind.UNKNOWN:
        return error.kind
    if isinstance(error, (asyncio.TimeoutError, PlaywrightTimeoutError, httpx.TimeoutException)):
        return FailureKind.TIMEOUT
    if isinstance(error, httpx.ProxyError):
        return FailureKind.PROXY_ERROR
    if isinstance(error, httpx.NetworkError):
        return FailureKind.NETWORK_ERROR

    message = str(error).lower()
    for keywords, kind in _FAILURE_KEYWORDS:
        if any(k in message for k in keywords):
            return kind
    return FailureKind.UNKNOWN


class StrategySelector:
    """Registry of strategies plus the retry loop that consumes it.

    Updates never await, so each one lands atomically on the event loop even
    with many jobs reporting outcomes concurrently.
    """

    def __init__(
        self,
        strategies: Optional[List[Strategy]] = None,
        alpha: float = 0.1,
        max_retries: int = 3,
        backoff_max_seconds: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the selector.

        Args:
            strategies: Initial registry, defaults to the five built-in strategies
            alpha: Smoothing factor of the success-rate moving average
            max_retries: Attempts used when execute_with_retry is given none
            backoff_max_seconds: Cap on the 2^attempt wait between attempts
            sleep: Awaitable sleep used for backoff
            clock: Time source returning aware datetimes
        """
        self.alpha = alpha
        self.max_retries = max_retries
        self.backoff_max_seconds = backoff_max_seconds
        self._sleep = sleep
        self._clock = clock
        self._strategies: Dict[str, Strategy] = {}
        self._failures: Dict[FailureKind, FailurePattern] = {}
        for strategy in strategies if strategies is not None else default_strategies():
            self._strategies[strategy.name] = strategy

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[Strategy]:
        return self._strategies.get(name)

    def all(self) -> List[Strategy]:
        return [replace(s, config=dict(s.config)) for s in self._strategies.values()]

    def add(self, strategy: Strategy) -> None:
        """Register a strategy, replacing one with the same name."""
        existed = strategy.name in self._strategies
        strategy.last_used = self._clock()
        self._strategies[strategy.name] = strategy
        logger.info("strategy_updated" if existed else "strategy_added", strategy=strategy.name)

    def remove(self, name: str) -> bool:
        removed = self._strategies.pop(name, None) is not None
        if removed:
            logger.info("strategy_removed", strategy=name)
        return removed

    def update_config(self, name: str, config: Dict[str, Any]) -> bool:
        """Merge ``config`` into a strategy's configuration.

        Returns:
            True if the strategy exists
        """
        strategy = self._strategies.get(name)
        if not strategy:
            return False
        strategy.config = {**strategy.config, **config}
        logger.info("strategy_config_updated", strategy=name, keys=sorted(config))
        return True

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def ranked(self) -> List[Strategy]:
        """Enabled strategies, best first."""
        enabled = [s for s in self._strategies.values() if s.enabled]
        return sorted(enabled, key=lambda s: (s.priority, -s.success_rate))

    def select_for_attempt(self, attempt: int) -> Strategy:
        """Pick the strategy for a 1-based attempt number.

        Raises:
            NoStrategyAvailable: If no strategy is enabled
        """
        ranking = self.ranked()
        if not ranking:
            raise NoStrategyAvailable()
        if attempt <= 1:
            return ranking[0]
        return ranking[(attempt - 1) % len(ranking)]

    def plan(self, attempts: int) -> List[str]:
        """Distinct strategy names that attempts 1..``attempts`` would use, in order."""
        names: List[str] = []
        for n in range(1, attempts + 1):
            name = self.select_for_attempt(n).name
            if name not in names:
                names.append(name)
        return names

    def _pick(self, attempt: int, candidates: Optional[Sequence[str]]) -> Strategy:
        if not candidates:
            return self.select_for_attempt(attempt)
        name = candidates[(attempt - 1) % len(candidates)]
        strategy = self._strategies.get(name)
        if strategy is None:
            raise NoStrategyAvailable()
        return strategy

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_outcome(self, name: str, success: bool) -> None:
        """Fold one outcome into the strategy's moving average."""
        strategy = self._strategies.get(name)
        if not strategy:
            return
        strategy.last_used = self._clock()
        outcome = 100.0 if success else 0.0
        rate = strategy.success_rate * (1 - self.alpha) + outcome * self.alpha
        strategy.success_rate = max(0.0, min(100.0, rate))

    def record_failure(self, kind: FailureKind, strategy_name: str) -> None:
        pattern = self._failures.setdefault(kind, FailurePattern())
        pattern.count += 1
        pattern.last_failure = self._clock()
        if strategy_name not in pattern.strategies:
            pattern.strategies.append(strategy_name)

    def classify(self, error: Any) -> FailureKind:
        return classify_failure(error)

    def failure_patterns(self) -> Dict[FailureKind, FailurePattern]:
        return {k: replace(v, strategies=list(v.strategies)) for k, v in self._failures.items()}

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        logger.info(
            "strategy_backoff",
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    async def execute_with_retry(
        self,
        operation: Callable[[Strategy], Awaitable[T]],
        max_retries: Optional[int] = None,
        candidates: Optional[Sequence[str]] = None,
    ) -> T:
        """Run ``operation`` until it succeeds, switching strategy on every attempt.

        Args:
            operation: Coroutine function called with the attempt's strategy
            max_retries: Total attempts allowed
            candidates: Strategy names to cycle through instead of the ranking

        Returns:
            Whatever ``operation`` returned on the first successful attempt

        Raises:
            StrategiesExhaustedError: Once every attempt failed, carrying the
                last failure's message and kind
            NoStrategyAvailable: If there is nothing to try
        """
        attempts = max_retries or self.max_retries
        if attempts < 1:
            raise ValueError("max_retries must be at least 1")

        last_error: Optional[BaseException] = None
        last_kind = FailureKind.UNKNOWN

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=2, max=self.backoff_max_seconds),
            # CancelledError is not an Exception, so cancellation is never retried
            retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(NoStrategyAvailable),
            before_sleep=self._log_backoff,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    strategy = self._pick(number, candidates)
                    logger.info("strategy_attempt", attempt=number, strategy=strategy.name)
                    try:
                        result = await operation(strategy)
                    except Exception as e:
                        last_error = e
                        last_kind = self.classify(e)
                        self.record_outcome(strategy.name, False)
                        self.record_failure(last_kind, strategy.name)
                        logger.warning(
                            "strategy_failed",
                            attempt=number,
                            strategy=strategy.name,
                            kind=last_kind.value,
                            error=str(e),
                        )
                        raise
                    self.record_outcome(strategy.name, True)
                    logger.info("strategy_succeeded", attempt=number, strategy=strategy.name)
                    return result
        except NoStrategyAvailable:
            raise
        except Exception as e:
            raise StrategiesExhaustedError(attempts, str(last_error or e), last_kind) from e

        # AsyncRetrying either returns from the block or raises
        raise StrategiesExhaustedError(attempts, str(last_error), last_kind)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def disable_low_performing(self, threshold: float = 50) -> List[str]:
        """Disable enabled strategies whose success-rate fell below ``threshold``.

        Returns:
            Names of the strategies disabled
        """
        disabled = []
        for strategy in self._strategies.values():
            if strategy.enabled and strategy.success_rate < threshold:
                strategy.enabled = False
                disabled.append(strategy.name)
                logger.info(
                    "strategy_disabled",
                    strategy=strategy.name,
                    success_rate=round(strategy.success_rate, 1),
                )
        return disabled

    def reenable_after_cooldown(self, hours: float = 2) -> List[str]:
        """Re-enable disabled strategies unused for at least ``hours``.

        Returns:
            Names of the strategies re-enabled
        """
        now = self._clock()
        reenabled = []
        for strategy in self._strategies.values():
            if not strategy.enabled and now - strategy.last_used >= timedelta(hours=hours):
                strategy.enabled = True
                reenabled.append(strategy.name)
                logger.info("strategy_reenabled", strategy=strategy.name)
        return reenabled

    def recommendations(self) -> dict:
        """Best and worst strategies by success-rate plus human-readable insights."""
        by_rate = sorted(self.all(), key=lambda s: s.success_rate, reverse=True)
        insights = [
            f"{kind.value} failures detected {pattern.count} times. Consider adjusting strategy configuration."
            for kind, pattern in self._failures.items()
            if pattern.count > 2
        ]
        insights.extend(
            f"{s.name} strategy has low success rate ({s.success_rate:.0f}%). Consider disabling or reconfiguring."
            for s in self._strategies.values()
            if s.success_rate < 50
        )
        return {
            "recommended": by_rate[:2],
            "avoid": by_rate[-2:],
            "insights": insights,
        }

    def stats(self) -> dict:
        enabled = [s for s in self._strategies.values() if s.enabled]
        average = sum(s.success_rate for s in enabled) / len(enabled) if enabled else 0
        return {
            "total_strategies": len(self._strategies),
            "enabled_strategies": len(enabled),
            "average_success_rate": round(average),
            "total_failures": sum(p.count for p in self._failures.values()),
            "failure_patterns": {k.value: p.count for k, p in self._failures.items()},
        }
