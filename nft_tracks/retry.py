from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .config import RetrySettings
from .models import NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
RetryCallback = Callable[[int, Exception, float], None]


@dataclass
class RetryPolicy:
    """Exponential backoff around an async operation.

    ``max_retries`` counts the attempts made after the first one, so a policy
    with ``max_retries=3`` calls the operation at most four times, waiting
    ``backoff(1)``, ``backoff(2)`` and ``backoff(3)`` in between.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = (NetworkError,)
    sleep: Sleep = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls, settings: RetrySettings, sleep: Optional[Sleep] = None) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay_seconds,
            factor=settings.backoff_factor,
            sleep=sleep or asyncio.sleep,
        )

    def backoff(self, attempt: int) -> float:
        return max(0.0, self.base_delay) * (self.factor ** max(0, attempt - 1))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt >= self.max_retries:
                    logger.warning("%s failed after %s attempts: %s", label, attempt + 1, exc)
                    raise
                attempt += 1
                delay = self.backoff(attempt)
                logger.info("%s failed (%s); retry %s/%s in %.1fs", label, exc, attempt, self.max_retries, delay)
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                if delay:
                    await self.sleep(delay)
