"""
Confirmation poller: bounded, cancellable status polling for a submitted transaction.

Explicit state machine: attempt counter, fixed interval, last observed status.
Transient query errors count as pending; a failure reported by the cluster ends
polling at once; an exhausted budget yields timed-out, which is not proof of failure.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable

from dapp_orchestrator.core.clock import SystemClock
from dapp_orchestrator.core.exceptions import PollingCancelled
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.transactions.connection import NetworkContext
from dapp_orchestrator.transactions.models import (
    ConfirmationState,
    ConfirmationStatus,
    SubmissionReceipt,
)

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 2.0
DEFAULT_MAX_ATTEMPTS = 15
DEFAULT_MAX_CACHED = 4096

ProgressSink = Callable[[ConfirmationStatus], None]


class ConfirmationPoller:
    """
    Polls ``context.get_status`` every ``interval_sec`` for at most ``max_attempts``.

    Final results (confirmed, finalized, failed, timed-out) are remembered per
    signature; polling the same receipt again returns the remembered status
    without querying the network. forget() drops it so a timed-out
    transaction can be polled afresh. At most ``max_cached`` results are kept;
    the oldest is dropped first, after which that receipt would be polled again.
    """

    def __init__(
        self,
        context: NetworkContext,
        *,
        interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: SystemClock | None = None,
        max_cached: int = DEFAULT_MAX_CACHED,
    ) -> None:
        if interval_sec < 0:
            raise ValueError("interval_sec must be non-negative")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if max_cached < 1:
            raise ValueError("max_cached must be at least 1")
        self._context = context
        self._interval = interval_sec
        self._max_attempts = max_attempts
        self._clock = clock or SystemClock()
        self._max_cached = max_cached
        self._final: dict[str, ConfirmationStatus] = {}
        self._final_order: deque[str] = deque()

    @property
    def interval_sec(self) -> float:
        return self._interval

    def cached(self, receipt: SubmissionReceipt) -> ConfirmationStatus | None:
        return self._final.get(str(receipt.signature))

    def forget(self, receipt: SubmissionReceipt) -> None:
        key = str(receipt.signature)
        if self._final.pop(key, None) is not None:
            self._final_order.remove(key)

    def _store(self, key: str, status: ConfirmationStatus) -> None:
        if key in self._final:
            self._final[key] = status
            return
        if len(self._final) >= self._max_cached and self._final_order:
            self._final.pop(self._final_order.popleft(), None)
        self._final[key] = status
        self._final_order.append(key)

    async def poll(
        self,
        receipt: SubmissionReceipt,
        on_progress: ProgressSink | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ConfirmationStatus:
        key = str(receipt.signature)
        known = self._final.get(key)
        if known is not None:
            return known

        last: ConfirmationStatus | None = None

        def _transition(status: ConfirmationStatus) -> ConfirmationStatus:
            nonlocal last
            if last is not None and not status.advances(last):
                return last
            last = status
            logger.info("poll_status_changed", signature=key, status=str(status))
            if on_progress is not None:
                on_progress(status)
            return status

        for attempt in range(1, self._max_attempts + 1):
            if cancel is not None and cancel.is_set():
                raise PollingCancelled(f"Polling for {key} cancelled after {attempt - 1} attempt(s)")
            try:
                observed = await self._context.get_status(receipt.signature)
            except Exception as e:
                logger.warning("poll_query_error", signature=key, attempt=attempt, error=str(e))
                observed = ConfirmationStatus.pending()
            current = _transition(observed)
            if current.state is ConfirmationState.FAILED or current.is_success:
                self._store(key, current)
                return current
            if attempt < self._max_attempts:
                if await self._clock.sleep(self._interval, cancel):
                    raise PollingCancelled(f"Polling for {key} cancelled after {attempt} attempt(s)")

        result = _transition(ConfirmationStatus.timed_out())
        logger.warning("poll_timed_out", signature=key, attempts=self._max_attempts)
        self._store(key, result)
        return result
