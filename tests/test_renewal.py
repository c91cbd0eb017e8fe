"""Tests for the background lease renewal loop."""

from __future__ import annotations

import time

import pytest

from wartracker.database import StorageError
from wartracker.services.leader import LeaderElection, LeaseState
from wartracker.services.renewal import RenewalLoop


class _FlakyElection:
    """Stand-in coordinator whose renew() raises a scripted sequence."""

    instance_id = "fake-1"
    renew_interval = 0.01

    def __init__(self, outcomes) -> None:  # noqa: ANN001
        self.outcomes = list(outcomes)
        self.calls = 0

    def renew(self, *, timeout=None) -> int:  # noqa: ANN001
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestRenewalLoop:
    """Tick accounting and thread lifecycle."""

    def test_interval_defaults_to_half_lease(self, storage) -> None:  # noqa: ANN001
        """Without an explicit interval the loop uses the coordinator cadence."""
        election = LeaderElection(storage, "a-1", lease_duration=8)
        assert RenewalLoop(election).interval == 4

    def test_rejects_non_positive_interval(self) -> None:
        """Zero intervals would spin."""
        with pytest.raises(ValueError):
            RenewalLoop(_FlakyElection([]), interval=0)

    def test_tick_success(self, storage) -> None:  # noqa: ANN001
        """A renewal by the owner counts as a successful tick."""
        election = LeaderElection(storage, "a-1", lease_duration=10)
        assert election.try_acquire()
        loop = RenewalLoop(election)
        assert loop.tick() is True
        assert (loop.ticks, loop.failures) == (1, 0)

    def test_tick_zero_rows(self, storage) -> None:  # noqa: ANN001
        """A renewal that finds no owned row counts as a failure."""
        election = LeaderElection(storage, "a-1", lease_duration=10)
        loop = RenewalLoop(election)
        assert loop.tick() is False
        assert loop.failures == 1
        assert election.state is LeaseState.UNACQUIRED

    def test_tick_storage_error_is_swallowed(self) -> None:
        """Storage errors are logged and the next tick still runs."""
        fake = _FlakyElection([StorageError("disk"), 1])
        loop = RenewalLoop(fake, interval=0.01)
        assert loop.tick() is False
        assert loop.tick() is True
        assert (loop.ticks, loop.failures) == (2, 1)

    def test_thread_renews_until_stopped(self) -> None:
        """The thread keeps ticking through failures and exits on stop."""
        fake = _FlakyElection([StorageError("disk"), 0, 1])
        loop = RenewalLoop(fake, interval=0.01)
        loop.start()
        deadline = time.monotonic() + 5.0
        while fake.calls < 4 and time.monotonic() < deadline:
            time.sleep(0.01)
        loop.stop()
        loop.join(2.0)

        assert not loop.is_running
        assert fake.calls >= 4
        assert loop.failures >= 2

    def test_start_twice_raises(self) -> None:
        """A loop runs at most one thread."""
        loop = RenewalLoop(_FlakyElection([]), interval=0.5)
        loop.start()
        try:
            with pytest.raises(RuntimeError):
                loop.start()
        finally:
            loop.stop()
            loop.join(2.0)

    def test_stop_before_first_tick(self) -> None:
        """Stopping immediately performs no renewals."""
        fake = _FlakyElection([])
        loop = RenewalLoop(fake, interval=10.0)
        loop.start()
        loop.stop()
        loop.join(2.0)
        assert not loop.is_running
        assert fake.calls == 0
