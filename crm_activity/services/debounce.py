import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Coalesce bursts of triggers into one call after a quiet period.

    Each ``trigger`` restarts the timer; only the factory passed last
    runs, ``delay`` seconds after the final trigger.
    """

    def __init__(self, delay: float) -> None:
        self._delay = delay
        self._task: Optional["asyncio.Task[None]"] = None
        self.fired = 0

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, factory: Callable[[], Awaitable[object]]) -> "asyncio.Task[None]":
        self.cancel()
        self._task = asyncio.create_task(self._fire(factory))
        return self._task

    async def _fire(self, factory: Callable[[], Awaitable[object]]) -> None:
        await asyncio.sleep(self._delay)
        self.fired += 1
        try:
            await factory()
        except Exception:
            logger.error("Debounced call failed", exc_info=True)

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Wait for the pending call, if any, to finish."""
        if self._task is not None:
            await asyncio.wait([self._task])
