# =========================
# FILE: phoneagent/scheduler.py
# =========================
"""Delayed callbacks for the voice state machine (timeouts, settle delays, buffer resets)."""

import threading
import time
from typing import Callable, Protocol


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...

    def now(self) -> float: ...


class TimerScheduler:
    """threading.Timer per callback; timers are daemons so they never block exit."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

    def now(self) -> float:
        return time.monotonic()
