"""
Retry policy for outbound provider calls.

Adapters classify every failed HTTP exchange into one of three errors:
``ProviderError`` (transport trouble or a 5xx, worth another try),
``RateLimitError`` (429, optionally with the provider's Retry-After) and
``PermanentError`` (anything the provider will keep refusing). A
``RetryPolicy`` replays only the first two, doubling its pause each time.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("isapay.retry")

RETRIABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class ProviderError(Exception):
    """A provider call did not produce a usable answer."""

    def __init__(self, message: str, status_code: int = 502, retriable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable


class RateLimitError(ProviderError):
    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class PermanentError(ProviderError):
    """The provider refused the call; repeating it cannot help."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message, status_code=status_code, retriable=False)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay: float = 0.5
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.provider_max_retries,
            base_delay=settings.provider_retry_base_delay,
        )

    def pause_before(self, retry: int, error: ProviderError) -> float:
        """Seconds to wait before retry number ``retry`` (1-based)."""
        if isinstance(error, RateLimitError) and error.retry_after:
            return min(error.retry_after, self.max_delay)
        return min(self.base_delay * 2 ** (retry - 1), self.max_delay)

    async def run(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        retry = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except ProviderError as e:
                if not e.retriable:
                    raise
                if retry >= self.max_retries:
                    logger.error("Provider call failed after %d attempt(s): %s", retry + 1, e)
                    raise
                retry += 1
                pause = self.pause_before(retry, e)
                logger.warning("Provider call failed (%s), retry %d/%d in %.1fs", e, retry, self.max_retries, pause)
                await asyncio.sleep(pause)


async def with_retry(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    max_retries: int = 2,
    base_delay: float = 0.5,
    **kwargs: Any,
) -> Any:
    return await RetryPolicy(max_retries=max_retries, base_delay=base_delay).run(func, *args, **kwargs)
