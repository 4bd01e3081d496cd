from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from reimburse.core.config import get_settings
from reimburse.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: Exception) -> bool:
    # Timeouts, socket errors and 5xx answers are worth another attempt; nothing else is.
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, OSError)):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int

    @classmethod
    def from_settings(cls, max_attempts: int | None = None) -> RetryPolicy:
        settings = get_settings()
        return cls(
            timeout_ms=settings.ext_call_timeout_ms,
            max_attempts=max_attempts or settings.download_max_attempts,
            backoff_ms=settings.ext_retry_backoff_ms,
        )

    def delay_s(self, attempt: int) -> float:
        # Exponential in the attempt number with +/-50% jitter so retries do not align.
        return (self.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
    name: str = "external",
) -> T:
    """Await ``func`` under a per-attempt timeout, retrying transient failures.

    The last failure propagates unchanged once attempts run out or the
    failure is not retryable.
    """
    policy = policy or RetryPolicy.from_settings()
    retryable = retryable or is_transient
    attempts = max(policy.max_attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - re-raised below unless retryable
            if attempt == attempts or not retryable(exc):
                raise
            increment_counter(f"retries.{name}")
            logger.info("external_call_retry name=%s attempt=%s error=%s", name, attempt, type(exc).__name__)
            await asyncio.sleep(policy.delay_s(attempt))
    raise AssertionError("unreachable")
