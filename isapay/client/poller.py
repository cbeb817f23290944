"""
Client-side payment status polling.

Not every provider delivers its webhook promptly, so after initiating a
payment without a redirect the client polls ``status`` on a fixed interval
until the transaction turns terminal, the gateway answers 404 for it, the
overall timeout expires, or the caller cancels (dialog closed, or a push
notification already resolved it).

Timeout is not failure: it ends in ``UNCONFIRMED``, which tells the user
the payment may still complete, while ``FAILED`` means the provider said no.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from isapay.client.api_client import IsaPayClientError
from isapay.config import settings
from isapay.models.enums import TransactionStatus

logger = logging.getLogger("isapay.poller")

DEFAULT_INTERVAL = settings.poll_interval_seconds
DEFAULT_TIMEOUT = settings.poll_timeout_seconds


class PollOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    UNCONFIRMED = "unconfirmed"  # timed out while still pending
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"  # the gateway has no such transaction


@dataclass
class PollResult:
    outcome: PollOutcome
    transaction_id: str
    attempts: int
    last_status: Optional[dict[str, Any]] = None

    @property
    def message(self) -> str:
        return {
            PollOutcome.SUCCESS: "Payment confirmed.",
            PollOutcome.FAILED: "Payment failed. Please try again.",
            PollOutcome.UNCONFIRMED: "Taking longer than usual. We will update once confirmed.",
            PollOutcome.CANCELLED: "Stopped waiting for confirmation.",
            PollOutcome.NOT_FOUND: "Payment not found.",
        }[self.outcome]


StatusFetcher = Callable[[str], Awaitable[dict[str, Any]]]


class StatusPoller:
    """
    Poll a status fetcher until a terminal state, timeout, or cancellation.

    ``fetch_status`` is usually ``IsaPayClient.status``. A 404 from it ends
    polling with ``NOT_FOUND``; other errors are treated as transient.
    ``cancel()`` wakes the loop immediately; nothing keeps running after ``poll`` returns.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval: float = DEFAULT_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Optional[Callable[[], float]] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._fetch_status = fetch_status
        self.interval = interval
        self.timeout = timeout
        self._clock = clock or time.monotonic
        self._cancelled = asyncio.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def poll(self, transaction_id: str) -> PollResult:
        started = self._clock()
        attempts = 0
        last: Optional[dict[str, Any]] = None

        while True:
            if await self._wait_or_cancel(self.interval):
                return PollResult(PollOutcome.CANCELLED, transaction_id, attempts, last)

            attempts += 1
            try:
                last = await self._fetch_status(transaction_id)
            except Exception as e:
                if isinstance(e, IsaPayClientError) and e.status_code == 404:
                    return PollResult(PollOutcome.NOT_FOUND, transaction_id, attempts, last)
                logger.debug("Status check %d for %s failed: %s", attempts, transaction_id, e)
            else:
                status = (last or {}).get("status")
                if status == TransactionStatus.SUCCESS.value:
                    return PollResult(PollOutcome.SUCCESS, transaction_id, attempts, last)
                if status == TransactionStatus.FAILED.value:
                    return PollResult(PollOutcome.FAILED, transaction_id, attempts, last)

            if self.cancelled:
                return PollResult(PollOutcome.CANCELLED, transaction_id, attempts, last)
            if self._clock() - started >= self.timeout:
                logger.info("Gave up polling %s after %d checks", transaction_id, attempts)
                return PollResult(PollOutcome.UNCONFIRMED, transaction_id, attempts, last)

    async def _wait_or_cancel(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
