"""Time and cancellation primitives.

The poller never calls `time.sleep` directly: it sleeps through a Clock so
tests can drive it with FakeClock, and every sleep is interruptible through a
CancelToken.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable

from pipeline_chaos.errors import Cancelled


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CancelToken:
    """Thread-safe cancellation flag shared by a suite and its scenarios.

    Example:
        token = CancelToken()
        threading.Timer(600, token.cancel, args=("suite timeout",)).start()
        runner.run_all(scenarios, cancel=token)
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def wait(self, timeout: float) -> bool:
        """Block up to `timeout` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self._reason or "cancelled")


@runtime_checkable
class Clock(Protocol):
    """Source of monotonic time, wall time and interruptible sleep."""

    def monotonic(self) -> float: ...

    def now(self) -> datetime: ...

    def sleep(self, seconds: float, cancel: CancelToken | None = None) -> None: ...


class SystemClock:
    """Real clock. Sleeps wake early when the token is cancelled."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return utc_now()

    def sleep(self, seconds: float, cancel: CancelToken | None = None) -> None:
        if seconds <= 0:
            return
        if cancel is None:
            time.sleep(seconds)
            return
        if cancel.wait(seconds):
            cancel.raise_if_cancelled()


class FakeClock:
    """Deterministic clock for tests: sleeping advances time instantly.

    Args:
        start: Wall-clock time corresponding to monotonic 0.
        on_sleep: Optional hook called after each sleep with the new monotonic
            time (tests use it to cancel mid-poll).
    """

    def __init__(self, start: datetime | None = None, on_sleep=None):
        self._t = 0.0
        self._start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._on_sleep = on_sleep
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._t

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._t)

    def advance(self, seconds: float) -> None:
        self._t += seconds

    def sleep(self, seconds: float, cancel: CancelToken | None = None) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        self.sleeps.append(seconds)
        self._t += max(seconds, 0.0)
        if self._on_sleep is not None:
            self._on_sleep(self._t)
        if cancel is not None:
            cancel.raise_if_cancelled()
