"""Monotonic clock with cancellable sleep, injectable for tests."""

from __future__ import annotations

import asyncio
import time


class SystemClock:
    """time.monotonic() plus an asyncio sleep that wakes early on a cancel event."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float, cancel: asyncio.Event | None = None) -> bool:
        """Sleep for ``seconds``. Return True if ``cancel`` was set before the time elapsed."""
        if cancel is None:
            await asyncio.sleep(max(0.0, seconds))
            return False
        if cancel.is_set():
            return True
        try:
            await asyncio.wait_for(cancel.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True
