"""Trailing-edge debounce helper for the auto-sync writes."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], "threading.Timer"]


class Debouncer:
    """Run ``callback`` once, ``delay`` seconds after the last :meth:`trigger`.

    Each trigger cancels the armed timer and starts a new one.  ``timer_factory``
    must return an object with ``start()`` and ``cancel()``; tests pass a manual
    timer so firing is deterministic.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        *,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self._delay = max(0.0, float(delay))
        self._callback = callback
        self._timer_factory = timer_factory or threading.Timer
        self._lock = threading.Lock()
        self._timer = None
        self._generation = 0

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            generation = self._generation
            timer = self._timer_factory(self._delay, lambda: self._fire(generation))
            if hasattr(timer, "daemon"):
                timer.daemon = True
            self._timer = timer
        timer.start()

    def cancel(self) -> bool:
        """Disarm the timer; returns ``True`` when one was pending."""

        with self._lock:
            timer, self._timer = self._timer, None
            self._generation += 1
        if timer is None:
            return False
        timer.cancel()
        return True

    def flush_pending(self) -> bool:
        """Run the callback now if a timer was armed."""

        if not self.cancel():
            return False
        self._callback()
        return True

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A later trigger or cancel superseded this timer.
            if generation != self._generation:
                return
            self._timer = None
        try:
            self._callback()
        except Exception:  # pragma: no cover - timer thread guard
            logger.exception("Debounced callback failed")


__all__ = ["Debouncer", "TimerFactory"]
