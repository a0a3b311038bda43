import asyncio
from typing import Set


class CancellationToken:
    """Identity of one batch issued on a channel.

    A token is compared by ``generation`` at commit time; cancelling it
    also cancels every fetch task attached to it so superseded requests
    stop consuming the connection pool.
    """

    __slots__ = ("channel", "generation", "_cancelled", "_tasks")

    def __init__(self, channel: str, generation: int) -> None:
        self.channel = channel
        self.generation = generation
        self._cancelled = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Task) -> None:
        if self._cancelled:
            task.cancel()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<CancellationToken {self.channel}#{self.generation} {state}>"
