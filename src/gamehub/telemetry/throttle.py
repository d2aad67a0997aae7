"""Fixed-window emission throttle."""

import time
from collections.abc import Callable


class FixedWindowThrottle:
    """Allow at most one emission per interval.

    The first event after a window closes is emitted and opens the next
    window; events inside an open window are dropped, never queued.

    Args:
        interval: Window length in seconds
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self, interval: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self._interval = interval
        self._clock = clock
        self._window_start: float | None = None

    def allow(self) -> bool:
        now = self._clock()
        if self._window_start is None or now - self._window_start >= self._interval:
            self._window_start = now
            return True
        return False

    def reset(self) -> None:
        self._window_start = None
