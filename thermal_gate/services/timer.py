from __future__ import annotations
import asyncio


class StopSignal:
    """Cancellation token with an interruptible sleep.

    Both daemon loops and ``wait_and_run`` suspend only through ``sleep``,
    so a single ``set()`` ends every pending wait promptly.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def set(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait_stopped(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if a stop was requested."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True
