from __future__ import annotations

import logging
import threading
from typing import Optional

from ..database import StorageError
from .leader import LeaderElection

logger = logging.getLogger(__name__)


class RenewalLoop:
    """Background thread that keeps the lease fresh while this instance is active.

    Ticks every ``interval`` seconds (half the lease by default, so one delayed
    or lost attempt still leaves a renewal before expiry). Failures are logged
    and the loop keeps going; only ``stop()`` ends it. The stop event is
    checked between ticks, never in the middle of a renewal.
    """

    def __init__(
        self,
        election: LeaderElection,
        *,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        name: str = "lease-renewal",
    ) -> None:
        self.election = election
        self.interval = float(interval if interval is not None else election.renew_interval)
        if self.interval <= 0:
            raise ValueError("interval must be > 0")
        self.timeout = timeout
        self.name = name

        self.ticks = 0
        self.failures = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"{self.name} already started")
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        logger.info("%s started (every %.1fs for %s)", self.name, self.interval, self.election.instance_id)

    def stop(self) -> None:
        """Signal the loop to exit after the current tick."""
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
            if not self._thread.is_alive():
                logger.info("%s stopped after %d ticks (%d failed)", self.name, self.ticks, self.failures)

    def tick(self) -> bool:
        """One renewal attempt. Returns True when the lease is still ours."""
        self.ticks += 1
        try:
            rows = self.election.renew(timeout=self.timeout)
        except StorageError as exc:
            self.failures += 1
            logger.warning("leader renew error: %s", exc)
            return False
        if rows == 0:
            self.failures += 1
            return False
        return True

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.tick()
            except Exception:
                self.failures += 1
                logger.exception("%s tick failed", self.name)
