"""Timer service used for capture rotation."""

import asyncio
from typing import Callable, Protocol


class TimerHandle(Protocol):
    """Handle to a pending timer."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Clock plus one-shot timers.

    Components receive a scheduler instead of touching the event loop so that
    tests can drive time by hand.
    """

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self._get_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(delay, callback)
