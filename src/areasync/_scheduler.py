"""Cancellable timers and fire-and-forget tasks on the engine's event loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

_logger = logging.getLogger(__name__)


class Scheduler:
    """Tracks every timer and background task started for one session.

    Everything is bound to a single asyncio loop, so no locking is needed;
    :meth:`cancel_all` is the single teardown point used on disconnect.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._timers: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[..., None], *args: Any) -> asyncio.TimerHandle:
        """Run *callback* after *delay* seconds unless cancelled first."""
        loop = self._require_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._timers.discard(handle)
            callback(*args)

        handle = loop.call_later(max(0.0, delay), _fire)
        self._timers.add(handle)
        return handle

    def cancel(self, handle: Any) -> None:
        if isinstance(handle, asyncio.TimerHandle):
            handle.cancel()
            self._timers.discard(handle)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Start *coro* as a background task and keep a reference until it finishes."""
        task = self._require_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def cancel_timers(self) -> None:
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()

    def cancel_all(self) -> None:
        """Cancel every pending timer and background task."""
        self.cancel_timers()
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            _logger.debug("Cancelled %d in-flight background tasks", len(tasks))
