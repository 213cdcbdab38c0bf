"""Background poller that reports changes of the remote state document."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

VersionFetcher = Callable[[], Optional[str]]
ChangeCallback = Callable[[Optional[str]], None]


class RemoteChangeWatcher:
    """Poll ``fetch_version`` on a daemon thread and call ``on_change``.

    The first successful poll only records a baseline.  Fetch failures are
    logged and the previous version is kept, so a transient outage does not
    produce a spurious change.
    """

    def __init__(
        self,
        fetch_version: VersionFetcher,
        on_change: ChangeCallback,
        *,
        poll_interval: float = 5.0,
    ) -> None:
        self._fetch_version = fetch_version
        self._on_change = on_change
        self._interval = max(0.05, float(poll_interval))
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._version: Optional[str] = None
        self._has_baseline = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="remote-watch", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def prime(self, version: Optional[str]) -> None:
        """Record ``version`` as already seen."""

        self._version = version
        self._has_baseline = True

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    def poll_once(self) -> bool:
        """Poll a single time; returns ``True`` when a change was reported."""

        try:
            version = self._fetch_version()
        except Exception as exc:
            logger.warning("Remote version check failed: %s", exc)
            return False

        if not self._has_baseline:
            self.prime(version)
            return False
        if version == self._version:
            return False

        self._version = version
        try:
            self._on_change(version)
        except Exception:
            logger.exception("Remote change handler failed")
        return True

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.poll_once()
            self._stop_event.wait(self._interval)


__all__ = ["RemoteChangeWatcher"]
