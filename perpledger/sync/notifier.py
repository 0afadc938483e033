"""
Position-closed notifications

Notifications are dispatched as background tasks so that a slow or failing
downstream consumer (insight generation, alerts) never delays or fails a
sync. Every task runs inside its own error boundary.
"""
import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Union
from loguru import logger


class IPositionClosedSink(ABC):
    """Receives the id of every position a sync closed"""

    @abstractmethod
    async def on_position_closed(self, position_id: str) -> None:
        pass


class LoggingSink(IPositionClosedSink):
    """Sink that only logs"""

    async def on_position_closed(self, position_id: str) -> None:
        logger.info(f"Position closed: {position_id}")


class CallbackSink(IPositionClosedSink):
    """Adapts a plain (sync or async) callable to a sink"""

    def __init__(self, callback: Callable[[str], Union[Awaitable[None], None]]):
        self.callback = callback

    async def on_position_closed(self, position_id: str) -> None:
        result = self.callback(position_id)
        if inspect.isawaitable(result):
            await result


SinkLike = Union[IPositionClosedSink, Callable[[str], Any]]


def as_sink(sink: SinkLike) -> IPositionClosedSink:
    if isinstance(sink, IPositionClosedSink):
        return sink
    return CallbackSink(sink)


class BackgroundNotifier:
    """
    Fire-and-forget dispatcher for position-closed notifications

    Tasks are tracked until they finish so they are not garbage collected
    mid-flight and so callers (tests, shutdown) can wait for them.
    """

    def __init__(self, sink: SinkLike):
        self.sink = as_sink(sink)
        self._tasks: set[asyncio.Task] = set()
        self.dispatched = 0
        self.failed = 0

        logger.info(f"Initialized BackgroundNotifier: sink={type(self.sink).__name__}")

    def dispatch(self, position_id: str) -> asyncio.Task:
        """Schedule a notification and return immediately"""
        task = asyncio.create_task(self._notify(position_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.dispatched += 1
        return task

    async def _notify(self, position_id: str) -> None:
        """Call the sink with error handling"""
        try:
            await self.sink.on_position_closed(position_id)
        except Exception as e:
            self.failed += 1
            logger.opt(exception=e).error(f"Position-closed notification failed for {position_id}: {e}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight notification"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_statistics(self) -> dict[str, int]:
        """Get notifier statistics"""
        return {
            "dispatched": self.dispatched,
            "failed": self.failed,
            "pending": self.pending,
        }
