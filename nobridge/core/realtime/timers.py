"""
Timer scheduling for reconnect attempts.

The manager only needs "run this callback after N seconds" and "cancel it".
LoopScheduler maps that onto the asyncio event loop; tests swap in a manual clock.
"""
import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules callbacks on an asyncio event loop (the running one by default)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        loop = self._get_loop()
        logger.debug("Timer scheduled in %.3fs", delay)
        return loop.call_later(delay, callback)
