from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol, Set

log = logging.getLogger("trendrelay.scheduler")


class Scheduler(Protocol):
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> None: ...

    def call_every(
        self, interval_seconds: float, callback: Callable[[], None]
    ) -> None: ...

    def cancel_all(self) -> None: ...


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class AsyncioScheduler:
    """
    Timers on the asyncio event loop.

    The first call made on a running loop binds the scheduler to it. After
    that, timers may be requested from any thread; off-loop requests are
    handed over with call_soon_threadsafe. Callbacks always run on the loop
    thread, one at a time. One-shot timers cannot be cancelled individually;
    cancel_all() is for shutdown only.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: Set[asyncio.TimerHandle] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            loop = _running_loop()
            if loop is None:
                raise RuntimeError("AsyncioScheduler is not bound to an event loop")
            self._loop = loop
        return self._loop

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        loop = self._get_loop()
        delay = max(0.0, float(delay_seconds))
        if _running_loop() is loop:
            self._schedule(loop, delay, callback)
        else:
            loop.call_soon_threadsafe(self._schedule, loop, delay, callback)

    def _schedule(
        self, loop: asyncio.AbstractEventLoop, delay: float, callback: Callable[[], None]
    ) -> None:
        holder: dict = {}

        def _fire() -> None:
            self._handles.discard(holder["handle"])
            try:
                callback()
            except Exception:
                # one failing timer must not take the loop down
                log.exception("timer callback failed: %r", callback)

        handle = loop.call_later(delay, _fire)
        holder["handle"] = handle
        self._handles.add(handle)

    def call_every(self, interval_seconds: float, callback: Callable[[], None]) -> None:
        interval = float(interval_seconds)

        def _tick() -> None:
            try:
                callback()
            finally:
                self.call_later(interval, _tick)

        self.call_later(interval, _tick)

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()

    @property
    def pending(self) -> int:
        return len(self._handles)
