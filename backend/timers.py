"""
Single-shot, cancelable timers on the running event loop.

Arming a timer cancels whatever that same handle had scheduled before, so an
owner holding one handle per timer kind never has two live triggers. Firing
hands the callback off to its own task: cancelling the timer afterwards never
reaches into work the callback already started.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class CancelableTimer:
    def __init__(self, name: str = "timer"):
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self.fire_count = 0

    @property
    def is_armed(self) -> bool:
        return self._handle is not None

    def arm(self, duration: float, callback: Callable[[], Any]) -> None:
        """Schedule callback after duration seconds, replacing any pending one."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(duration, self._fire, callback)

    def cancel(self) -> bool:
        """Drop the pending trigger. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self, callback: Callable[[], Any]) -> None:
        self._handle = None
        self.fire_count += 1
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[{self.name}] Timer callback failed", exc_info=task.exception())

    async def wait_dispatched(self) -> None:
        """Wait for callbacks that have already fired (used at shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
