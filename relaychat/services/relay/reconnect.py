"""Backoff timer for reconnecting to the relay."""
import asyncio
from typing import Any, Callable, Optional, Sequence

from relaychat.core.logging import get_logger

from .hooks import invoke

logger = get_logger(__name__)


class ReconnectTimer:
    """Runs a callback after a delay that grows with each consecutive attempt.

    The delay for attempt n is backoff[n], clamped to the last entry.
    schedule() replaces any pending attempt; reset() forgets the streak.
    """

    def __init__(self, callback: Callable[[], Any], backoff: Sequence[float],
                 max_attempts: Optional[int] = None):
        if not backoff:
            raise ValueError("backoff needs at least one delay")
        self.callback = callback
        self.backoff = list(backoff)
        self.max_attempts = max_attempts
        self.tries = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def exhausted(self) -> bool:
        return self.max_attempts is not None and self.tries >= self.max_attempts

    def next_delay(self) -> float:
        return self.backoff[min(self.tries, len(self.backoff) - 1)]

    def schedule(self) -> Optional[float]:
        """Arm the timer. Returns the delay, or None when attempts are used up."""
        self.cancel()
        if self.exhausted:
            logger.warning("[Reconnect] Giving up", attempts=self.tries)
            return None
        delay = self.next_delay()
        self.tries += 1
        self._task = asyncio.create_task(self._fire(delay))
        logger.info("[Reconnect] Scheduled", attempt=self.tries, delay=delay)
        return delay

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def reset(self) -> None:
        self.tries = 0
        self.cancel()

    async def _fire(self, delay: float):
        await asyncio.sleep(delay)
        try:
            await invoke(self.callback)
        except Exception as e:
            logger.error("[Reconnect] Attempt failed", attempt=self.tries, error=str(e), exc_info=True)
