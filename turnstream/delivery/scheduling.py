"""Cancellable handles for callbacks scheduled on the running event loop."""

from __future__ import annotations

import asyncio
from typing import Callable


class ScheduledTask:
    """Wraps an ``asyncio`` timer handle so owners can cancel or inspect it."""

    def __init__(self) -> None:
        self._handle: asyncio.Handle | None = None
        self._fired = False

    @classmethod
    def soon(cls, callback: Callable[[], None]) -> "ScheduledTask":
        """Run ``callback`` on the next loop iteration."""
        task = cls()
        task._handle = asyncio.get_running_loop().call_soon(task._run, callback)
        return task

    @classmethod
    def later(cls, delay_s: float, callback: Callable[[], None]) -> "ScheduledTask":
        """Run ``callback`` after ``delay_s`` seconds."""
        task = cls()
        task._handle = asyncio.get_running_loop().call_later(max(0.0, delay_s), task._run, callback)
        return task

    def _run(self, callback: Callable[[], None]) -> None:
        self._fired = True
        callback()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()

    @property
    def active(self) -> bool:
        """True while the callback is still waiting to run."""
        return self._handle is not None and not self._fired and not self._handle.cancelled()
