"""
Transaction status polling.

A poll session fetches one transaction at a fixed interval until it reaches
a terminal status, the time budget runs out, or its handle is cancelled.
Running out of time is an outcome, not an error: the caller gets the last
transaction it saw and can keep refreshing manually.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from ...config import settings
from ...types.mpesa import MpesaTransaction


logger = logging.getLogger(__name__)

FetchTransaction = Callable[[str], Awaitable[MpesaTransaction]]
UpdateCallback = Callable[[MpesaTransaction], None]


class PollOutcome(str, Enum):
    TERMINAL = "terminal"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class PollResult:
    transaction: Optional[MpesaTransaction]
    outcome: PollOutcome
    fetches: int

    @property
    def is_terminal(self) -> bool:
        return self.outcome is PollOutcome.TERMINAL


class PollHandle:
    """Cancellation token for one poll session."""

    def __init__(self, transaction_id: str = ""):
        self.transaction_id = transaction_id
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class StatusPoller:
    """
    Polls transaction status through a fetch callable.

    At most one session per transaction id is active on a poller; starting
    another one cancels the previous handle.
    """

    def __init__(
        self,
        fetch: FetchTransaction,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetch = fetch
        self.interval = interval if interval is not None else settings.poll_interval_seconds
        self.timeout = timeout if timeout is not None else settings.poll_timeout_seconds
        self._clock = clock
        self._sleep = sleep
        self._active: Dict[str, PollHandle] = {}

    def active_handle(self, transaction_id: str) -> Optional[PollHandle]:
        return self._active.get(transaction_id)

    def stop(self, transaction_id: str) -> None:
        handle = self._active.pop(transaction_id, None)
        if handle is not None:
            handle.cancel()

    def stop_all(self) -> None:
        for transaction_id in list(self._active):
            self.stop(transaction_id)

    async def refresh(self, transaction_id: str) -> MpesaTransaction:
        """One fetch, outside of any session."""
        return await self.fetch(transaction_id)

    async def poll(
        self,
        transaction_id: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        on_update: Optional[UpdateCallback] = None,
        handle: Optional[PollHandle] = None,
    ) -> PollResult:
        interval = self.interval if interval is None else interval
        timeout = self.timeout if timeout is None else timeout
        handle = handle or PollHandle(transaction_id)

        previous = self._active.get(transaction_id)
        if previous is not None and previous is not handle:
            logger.info("Superseding poll session for transaction %s", transaction_id)
            previous.cancel()
        self._active[transaction_id] = handle

        started = self._clock()
        last: Optional[MpesaTransaction] = None
        fetches = 0

        try:
            while True:
                if handle.cancelled:
                    return PollResult(last, PollOutcome.CANCELLED, fetches)

                last = await self.fetch(transaction_id)
                fetches += 1
                if on_update is not None:
                    on_update(last)

                if last.is_terminal:
                    logger.info(
                        "Transaction %s reached %s after %s fetches",
                        transaction_id,
                        last.status.value,
                        fetches,
                    )
                    return PollResult(last, PollOutcome.TERMINAL, fetches)

                if self._clock() - started >= timeout:
                    logger.info(
                        "Stopped polling transaction %s after %ss; last status %s",
                        transaction_id,
                        timeout,
                        last.status.value,
                    )
                    return PollResult(last, PollOutcome.TIMED_OUT, fetches)

                await self._sleep(interval)
        finally:
            if self._active.get(transaction_id) is handle:
                del self._active[transaction_id]
