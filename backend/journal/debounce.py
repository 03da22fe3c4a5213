"""Debounced callbacks on the asyncio event loop."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set, Union

logger = logging.getLogger(__name__)

Action = Callable[[], Union[None, Awaitable[None]]]


class Debouncer:
    """Run an action once a quiet period has passed since the last trigger.

    Each trigger() replaces the pending timer. Coroutine actions run as
    tasks; tasks already started are never cancelled by a later trigger.
    """

    def __init__(self, action: Action, delay: float):
        self._action = action
        self._delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        """Schedule the action after the delay. Resets if called again."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Cancel the pending timer, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> None:
        """Run the action now if a timer is pending."""
        if self._handle is not None:
            self.cancel()
            self._run()

    def _fire(self) -> None:
        self._handle = None
        self._run()

    def _run(self) -> None:
        result = self._action()
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Debounced action failed: {task.exception()}")

    async def wait(self) -> None:
        """Wait for actions already running to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
