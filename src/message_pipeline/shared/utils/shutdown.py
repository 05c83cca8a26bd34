"""Cooperative shutdown signal shared by long-running tasks."""

import asyncio


class ShutdownSignal:
    """Set once when the process should stop.

    Every suspending wait in the pipeline goes through :meth:`wait`, which
    returns as soon as the signal is set instead of sleeping out the delay.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def set(self):
        self._event.set()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self, delay: float) -> bool:
        """Sleep up to ``delay`` seconds. Returns True if shutdown was requested."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
