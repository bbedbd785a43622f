"""
Retry mechanism for resilient loader calls.
"""

import asyncio
import random
from typing import Dict, Any, Optional, Callable, Awaitable

from shared.logging import get_logger
from shared.metrics import MetricsCollector


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "exponential"):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


def is_retryable(exc: BaseException) -> bool:
    """Errors opt out of retries by declaring ``retryable = False``."""
    return getattr(exc, "retryable", True)


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay after a failed attempt (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    elif config.backoff_strategy == "fixed":
        delay = config.base_delay
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


class RetryPolicy:
    """Runs an async loader with bounded retries and exponential backoff.

    The wait between attempts is an ``await`` on ``sleep``, so a key in
    backoff never blocks loads of other keys.
    """

    def __init__(self,
                 config: Optional[RetryConfig] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 name: str = "loader",
                 metrics: Optional[MetricsCollector] = None):
        self.config = config or RetryConfig()
        self.name = name
        self.metrics = metrics
        self._sleep = sleep
        self.logger = get_logger(f"loadcache.retry.{name}")
        self.stats: Dict[str, int] = {"attempts": 0, "successes": 0, "failures": 0, "retries": 0}

    def _config_for(self, max_retries: Optional[int], base_delay: Optional[float]) -> RetryConfig:
        attempts = self.config.max_attempts if max_retries is None else max_retries
        return RetryConfig(
            max_attempts=max(1, attempts),
            base_delay=self.config.base_delay if base_delay is None else base_delay,
            max_delay=self.config.max_delay,
            exponential_base=self.config.exponential_base,
            jitter=self.config.jitter,
            backoff_strategy=self.config.backoff_strategy,
        )

    async def execute(self,
                      loader: Callable[[], Awaitable[Any]],
                      max_retries: Optional[int] = None,
                      base_delay: Optional[float] = None) -> Any:
        """
        Call ``loader`` until it succeeds or attempts run out.

        ``max_retries`` is the total number of attempts; 0 behaves like 1.
        The last error is raised unchanged.
        """
        config = self._config_for(max_retries, base_delay)

        for attempt in range(1, config.max_attempts + 1):
            self.stats["attempts"] += 1
            try:
                result = await loader()
            except Exception as e:
                if attempt == config.max_attempts or not is_retryable(e):
                    self.stats["failures"] += 1
                    self.logger.error(
                        "All retry attempts exhausted" if is_retryable(e) else "Non-retryable loader error",
                        attempt=attempt,
                        max_attempts=config.max_attempts,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise

                delay = _calculate_delay(attempt, config)
                self.stats["retries"] += 1
                if self.metrics:
                    self.metrics.increment_counter("retries_total")
                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    attempt=attempt,
                    delay=delay,
                    error=str(e)
                )
                await self._sleep(delay)
                continue

            self.stats["successes"] += 1
            if attempt > 1:
                self.logger.info("Retry succeeded", attempt=attempt)
            return result

        # range() always yields at least one attempt
        raise RuntimeError("retry loop exited without a result")

    def get_stats(self) -> Dict[str, Any]:
        """Get retry statistics."""
        return {
            **self.stats,
            "success_rate": self.stats["successes"] / max(1, self.stats["successes"] + self.stats["failures"])
        }
