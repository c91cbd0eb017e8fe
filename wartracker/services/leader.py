"""Leader election (active/standby) for zero-downtime cutover.

Only one running instance may process the roster and talk to Discord. The
lease is a single row in the ``leader`` table:

1. An instance acquires the lease by inserting the row, refreshing its own
   row, or taking over a row whose ``updated_at`` is older than the lease.
2. The active instance renews ``updated_at`` every ``lease_duration / 2``.
3. On shutdown it deletes the row so a standby can take over immediately.

Every read-then-write runs inside one ``StorageEngine.transaction``, so two
instances can never both conclude they won a stale takeover.

Example:
    election = LeaderElection(storage, make_instance_id(), lease_duration=10)
    election.acquire(backoff=2)          # blocks until active
    renewal = RenewalLoop(election)
    renewal.start()
    ...
    renewal.stop(); renewal.join()
    election.release()
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy import delete, func, insert, select, update

from ..database import StorageEngine, StorageError
from ..models.leader_lease import LEADER_ROW_ID, LeaderLease, is_stale

logger = logging.getLogger(__name__)

DEFAULT_LEASE_DURATION_S = 10.0
DEFAULT_RETRY_S = 2.0


def make_instance_id() -> str:
    """Unique per running process: hostname + pid."""
    return f"{socket.gethostname()}-{os.getpid()}"


# ---------------------------------------------------------------------
# Lease record operations
# ---------------------------------------------------------------------


def try_acquire_leader(
    storage: StorageEngine,
    instance_id: str,
    lease_duration: float,
    takeover_if_stale: bool,
    *,
    now: Optional[float] = None,
    timeout: Optional[float] = None,
) -> bool:
    """
    Acquire or refresh the lease in one transaction.

    - no row:                         insert it, succeed
    - row owned by instance_id:       refresh updated_at, succeed
    - row stale and takeover allowed: overwrite owner, succeed
    - otherwise:                      no change, fail
    """
    ts = int(time.time() if now is None else now)

    with storage.transaction(timeout=timeout) as conn:
        row = conn.execute(
            select(LeaderLease.owner, LeaderLease.updated_at).where(LeaderLease.id == LEADER_ROW_ID)
        ).first()

        if row is None:
            conn.execute(insert(LeaderLease).values(id=LEADER_ROW_ID, owner=instance_id, updated_at=ts))
            return True

        if row.owner == instance_id:
            conn.execute(
                update(LeaderLease)
                .where(LeaderLease.id == LEADER_ROW_ID, LeaderLease.owner == instance_id)
                .values(updated_at=func.max(LeaderLease.updated_at, ts))
            )
            return True

        if takeover_if_stale and is_stale(row.updated_at, ts, lease_duration):
            conn.execute(
                update(LeaderLease)
                .where(LeaderLease.id == LEADER_ROW_ID, LeaderLease.owner == row.owner)
                .values(owner=instance_id, updated_at=ts)
            )
            return True

        return False


def renew_leader(
    storage: StorageEngine,
    instance_id: str,
    *,
    now: Optional[float] = None,
    timeout: Optional[float] = None,
) -> int:
    """Refresh updated_at for the current owner. Zero rows means the lease was lost."""
    ts = int(time.time() if now is None else now)
    stmt = (
        update(LeaderLease)
        .where(LeaderLease.id == LEADER_ROW_ID, LeaderLease.owner == instance_id)
        .values(updated_at=func.max(LeaderLease.updated_at, ts))
    )
    return storage.execute(stmt, timeout=timeout)


def release_leader(storage: StorageEngine, instance_id: str, *, timeout: Optional[float] = None) -> int:
    """Delete the lease if owned by instance_id. A no-op (0 rows) otherwise."""
    stmt = delete(LeaderLease).where(LeaderLease.id == LEADER_ROW_ID, LeaderLease.owner == instance_id)
    return storage.execute(stmt, timeout=timeout)


def get_leader(storage: StorageEngine, *, timeout: Optional[float] = None) -> Optional[LeaderLease]:
    rows = storage.query(
        select(LeaderLease.id, LeaderLease.owner, LeaderLease.updated_at).where(LeaderLease.id == LEADER_ROW_ID),
        timeout=timeout,
    )
    if not rows:
        return None
    return LeaderLease(**rows[0]._mapping)


# ---------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------


class LeaseState(str, Enum):
    UNACQUIRED = "unacquired"
    ACTIVE = "active"
    RELEASED = "released"


class LeaderElection:
    """Per-process view of the lease.

    States: UNACQUIRED (initial) -> ACTIVE -> RELEASED (terminal). An instance
    that was never ACTIVE may retry from UNACQUIRED indefinitely.

    If a renewal affects zero rows another instance took the lease over. With
    ``step_down_on_loss`` the coordinator drops back to UNACQUIRED and fires
    the lost callbacks; without it the loss is only logged.

    Args:
        storage: Storage engine shared with the roster
        instance_id: Unique token for this process
        lease_duration: Seconds after the last renewal before the lease is stale
        takeover_if_stale: Whether acquire may replace a stale owner
        step_down_on_loss: Whether a lost renewal ends this instance's leadership
        clock: Wall clock returning epoch seconds
    """

    def __init__(
        self,
        storage: StorageEngine,
        instance_id: str,
        *,
        lease_duration: float = DEFAULT_LEASE_DURATION_S,
        takeover_if_stale: bool = True,
        step_down_on_loss: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not instance_id:
            raise ValueError("instance_id must not be empty")
        if lease_duration <= 0:
            raise ValueError("lease_duration must be > 0")

        self.storage = storage
        self.instance_id = instance_id
        self.lease_duration = float(lease_duration)
        self.takeover_if_stale = takeover_if_stale
        self.step_down_on_loss = step_down_on_loss
        self._clock = clock

        self._state = LeaseState.UNACQUIRED
        self._state_lock = threading.Lock()
        self._on_lost: List[Callable[[], None]] = []

    @property
    def state(self) -> LeaseState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is LeaseState.ACTIVE

    @property
    def renew_interval(self) -> float:
        return self.lease_duration / 2

    def add_lost_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback run (on the renewing thread) when leadership is lost."""
        self._on_lost.append(callback)

    def remove_lost_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._on_lost:
            self._on_lost.remove(callback)

    # -------------------------
    # Protocol operations
    # -------------------------

    def try_acquire(self, *, takeover_if_stale: Optional[bool] = None, timeout: Optional[float] = None) -> bool:
        if self._state is LeaseState.RELEASED:
            raise RuntimeError(f"lease for {self.instance_id} was released; create a new LeaderElection")

        takeover = self.takeover_if_stale if takeover_if_stale is None else takeover_if_stale
        ok = try_acquire_leader(
            self.storage,
            self.instance_id,
            self.lease_duration,
            takeover,
            now=self._clock(),
            timeout=timeout,
        )

        if ok:
            self._set_state(LeaseState.ACTIVE)
        elif self._state is LeaseState.ACTIVE:
            self._handle_lost("acquire found another live owner")
        return ok

    def renew(self, *, timeout: Optional[float] = None) -> int:
        """Refresh the lease. Returns rows affected; 0 means ownership was lost."""
        rows = renew_leader(self.storage, self.instance_id, now=self._clock(), timeout=timeout)
        if rows:
            logger.debug("Renewed leadership for %s", self.instance_id)
        elif self._state is LeaseState.ACTIVE:
            self._handle_lost("renewal affected zero rows")
        else:
            logger.debug("Renewal by %s affected zero rows (state=%s)", self.instance_id, self._state.value)
        return rows

    def release(self, *, timeout: Optional[float] = None) -> int:
        """Delete the lease if we own it. Idempotent; always ends in RELEASED."""
        try:
            rows = release_leader(self.storage, self.instance_id, timeout=timeout)
        finally:
            self._set_state(LeaseState.RELEASED)
        if rows:
            logger.info("Released leadership held by %s", self.instance_id)
        else:
            logger.info("Release by %s was a no-op (lease not held)", self.instance_id)
        return rows

    def current(self, *, timeout: Optional[float] = None) -> Optional[LeaderLease]:
        return get_leader(self.storage, timeout=timeout)

    def acquire(
        self,
        *,
        backoff: float = DEFAULT_RETRY_S,
        stop_event: Optional[threading.Event] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Block until this instance holds the lease.

        Failed attempts and storage errors sleep ``backoff`` seconds and retry.
        Retries are unbounded unless ``max_attempts`` is given. Returns False
        only when ``stop_event`` is set or the attempts run out.
        """
        stop = stop_event or threading.Event()
        attempts = 0
        while not stop.is_set():
            attempts += 1
            try:
                if self.try_acquire(timeout=timeout):
                    logger.info("leadership acquired by %s", self.instance_id)
                    return True
                if attempts == 1:
                    logger.info("%s is on standby; another instance holds the lease", self.instance_id)
            except StorageError as exc:
                logger.warning("leader acquire error: %s", exc)

            if max_attempts is not None and attempts >= max_attempts:
                logger.warning("%s gave up acquiring leadership after %d attempts", self.instance_id, attempts)
                return False
            if stop.wait(backoff):
                break
        return False

    # -------------------------
    # State transitions
    # -------------------------

    def _set_state(self, new: LeaseState) -> None:
        with self._state_lock:
            old = self._state
            if old is LeaseState.RELEASED:
                return
            self._state = new
        if old is not new:
            logger.info("Leader state for %s: %s -> %s", self.instance_id, old.value, new.value)

    def _handle_lost(self, reason: str) -> None:
        if not self.step_down_on_loss:
            logger.warning("Lost leadership for %s (%s); continuing best-effort", self.instance_id, reason)
            return

        logger.warning("Lost leadership for %s (%s); stepping down", self.instance_id, reason)
        self._set_state(LeaseState.UNACQUIRED)
        for callback in list(self._on_lost):
            try:
                callback()
            except Exception:
                logger.exception("lost-leadership callback failed")


__all__ = [
    "DEFAULT_LEASE_DURATION_S",
    "DEFAULT_RETRY_S",
    "LeaderElection",
    "LeaseState",
    "get_leader",
    "make_instance_id",
    "release_leader",
    "renew_leader",
    "try_acquire_leader",
]
