import asyncio
from typing import Any, Awaitable, Callable, Set

from .logging import logger

# Event handlers are coroutine functions taking a single payload
Handler = Callable[[Any], Awaitable[None]]


async def _run_handler(name: str, handler: Handler, payload: Any) -> None:
    try:
        await handler(payload)
    except Exception:
        # handler failures must not reach the feed loop
        logger.exception(f"({name}) handler failed")


def spawn_handler(
    name: str,
    handler: Handler,
    payload: Any,
    tasks: Set[asyncio.Task],
) -> asyncio.Task:
    """
    Run the handler for one event as an independent task. Exceptions are
    logged and contained within the task.
    """

    task = asyncio.create_task(_run_handler(name, handler, payload))
    task.add_done_callback(tasks.discard)
    tasks.add(task)
    return task


class Subscription:
    """
    A running event feed. Closing it cancels the feed loop, while handler
    tasks that were already started are left to finish.
    """

    def __init__(
        self,
        name: str,
        feed: Awaitable[None],
        handler_tasks: Set[asyncio.Task],
    ):
        self.name = name
        self.handler_tasks = handler_tasks
        self._task = asyncio.ensure_future(feed)
        self._task.add_done_callback(self._log_feed_exit)

    def _log_feed_exit(self, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        if (exc := task.exception()) is not None:
            logger.error(
                f"({self.name}) feed stopped: {exc!r}",
                exc_info=exc,
            )

    def __repr__(self) -> str:
        return f"Subscription({self.name}, closed={self.closed})"

    @property
    def closed(self) -> bool:
        return self._task.done()

    def close(self) -> None:
        if not self._task.done():
            logger.info(f"Closing subscription: {self.name}")
            self._task.cancel()

    async def wait_closed(self) -> None:
        await asyncio.wait([self._task])
