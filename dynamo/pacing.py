"""
Pacing Engine - Releases ticks at a target rate on a steady clock
"""
import logging
import threading
import time
from typing import Callable, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class Pacer:
    """
    Blocking ticker that tracks absolute deadlines.

    Tick ``n`` is due at ``start + n / rate``; sleeping until that deadline
    rather than for a fixed interval keeps per-record cost from accumulating
    as drift. When the caller falls more than ``max_lag`` intervals behind,
    the schedule is re-anchored to the current time instead of bursting.

    Args:
        rate: Ticks per second.
        until: Optional duration in seconds; no tick is due at or after it.
        clock: Steady clock returning seconds.
        stop_event: Event that cancels the pacer when set.
        wait: Blocking wait taking a timeout and returning True when
            cancelled. Defaults to ``stop_event.wait``.
        max_lag: Intervals of lag tolerated before re-anchoring.
    """

    def __init__(
        self,
        rate: float,
        until: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        stop_event: Optional[threading.Event] = None,
        wait: Optional[Callable[[float], bool]] = None,
        max_lag: int = 100,
    ):
        if rate <= 0:
            raise ConfigurationError(f"rate must be > 0, got {rate}")
        self.rate = rate
        self.interval = 1.0 / rate
        self._clock = clock
        self._stop = stop_event or threading.Event()
        self._wait = wait or self._stop.wait
        self._max_lag = max_lag
        self._duration = until
        self._start: Optional[float] = None
        self._end: Optional[float] = None
        self._anchor = 0.0
        self._ticks_since_anchor = 0
        self.ticks = 0
        self.reanchors = 0

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        """Stop releasing ticks and wake any waiter"""
        self._stop.set()

    def _next_deadline(self) -> float:
        return self._anchor + self._ticks_since_anchor * self.interval

    def tick(self) -> bool:
        """Block until the next deadline. Returns False when cancelled or finished."""
        if self._stop.is_set():
            return False

        now = self._clock()
        if self._start is None:
            self._start = now
            self._anchor = now
            if self._duration is not None:
                self._end = now + self._duration

        deadline = self._next_deadline()
        if now - deadline > self._max_lag * self.interval:
            logger.debug("Pacer %.3fs behind schedule, re-anchoring", now - deadline)
            self._anchor = now
            self._ticks_since_anchor = 0
            self.reanchors += 1
            deadline = now

        if self._end is not None and deadline >= self._end:
            return False

        delay = deadline - now
        if delay > 0 and self._wait(delay):
            return False
        if self._stop.is_set():
            return False

        self._ticks_since_anchor += 1
        self.ticks += 1
        return True
