"""
Retry with exponential backoff for read-only provider calls
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from multicloud_compliance.config import ConnectorConfig

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation_name: str = 'operation'
) -> T:
    """
    Run an async operation, retrying failures with exponential backoff

    Waits base_delay * 2^(attempt-1) seconds between attempts and re-raises
    the last error once max_retries attempts have failed.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == max_retries:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"{operation_name} failed (attempt {attempt}/{max_retries}): {e}; "
                f"retrying in {delay:.2f}s"
            )
            await sleep(delay)


class RetryPolicy:
    """Retry settings injected into connectors"""

    def __init__(
        self,
        max_retries: int = None,
        base_delay: float = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        self.max_retries = max_retries if max_retries is not None else ConnectorConfig.get_max_retries()
        self.base_delay = base_delay if base_delay is not None else ConnectorConfig.get_retry_base_delay()
        self.sleep = sleep or asyncio.sleep
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    async def run(self, operation: Callable[[], Awaitable[T]], operation_name: str = 'operation') -> T:
        return await retry_with_backoff(
            operation,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            sleep=self.sleep,
            operation_name=operation_name
        )

    def __repr__(self):
        return f"RetryPolicy(max_retries={self.max_retries}, base_delay={self.base_delay})"
