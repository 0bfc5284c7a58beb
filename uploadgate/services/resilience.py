from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from uploadgate.core.config import get_settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    timeout_s: float
    max_attempts: int
    backoff_s: float

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        settings = get_settings()
        return cls(
            timeout_s=settings.ext_call_timeout_ms / 1000.0,
            max_attempts=max(settings.ext_retry_max_attempts, 1),
            backoff_s=settings.ext_retry_backoff_ms / 1000.0,
        )

    def delay_before(self, attempt: int) -> float:
        # Exponential from the second attempt on, jittered so parallel callers spread out.
        return self.backoff_s * (2 ** (attempt - 2)) * random.uniform(0.5, 1.5)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError))


async def retry_async(
    call: Callable[[], Awaitable[T]],
    *,
    retryable: Callable[[Exception], bool] = is_transient,
    policy: RetryPolicy | None = None,
    name: str = "external_call",
) -> T:
    """Run ``call`` under a per-attempt timeout, retrying failures ``retryable`` accepts.

    The last failure propagates unchanged so callers can map it to a domain error.
    """
    policy = policy or RetryPolicy.from_settings()
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(call(), timeout=policy.timeout_s)
        except Exception as exc:
            if attempt >= policy.max_attempts or not retryable(exc):
                raise
            logger.warning(
                "external_call_retry name=%s attempt=%s error=%s",
                name,
                attempt,
                exc.__class__.__name__,
            )
        attempt += 1
        await asyncio.sleep(policy.delay_before(attempt))
