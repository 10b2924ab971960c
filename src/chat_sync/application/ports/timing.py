"""Wall-clock and timer ports; tests substitute virtual time for both."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Default scheduler backed by the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class Countdown:
    """A cancellable, re-armable one-shot timer.

    ``arm()`` always restarts the full delay; the callback fires at most once
    per arming.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        delay: float,
        callback: Callable[[], None],
    ) -> None:
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._handle: TimerHandle | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        self.cancel()
        self._handle = self._scheduler.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()
