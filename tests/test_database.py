"""Tests for serialized storage access."""

from __future__ import annotations

import threading
import time

import pytest
from sqlalchemy import insert, select, text

from wartracker.database import ReadWriteLock, StorageEngine, StorageError, StorageTimeout
from wartracker.models import LeaderLease, Member


class TestReadWriteLock:
    """Reader/writer lock semantics."""

    def test_readers_share(self) -> None:
        """Several readers may hold the lock together."""
        lock = ReadWriteLock()
        assert lock.acquire_read(0.1)
        assert lock.acquire_read(0.1)
        assert lock.readers == 2
        lock.release_read()
        lock.release_read()
        assert lock.readers == 0

    def test_writer_excludes_readers(self) -> None:
        """A held write lock blocks readers until the timeout."""
        lock = ReadWriteLock()
        assert lock.acquire_write(0.1)
        assert lock.acquire_read(0.05) is False
        lock.release_write()
        assert lock.acquire_read(0.05)
        lock.release_read()

    def test_reader_excludes_writer(self) -> None:
        """A held read lock blocks writers until the timeout."""
        lock = ReadWriteLock()
        assert lock.acquire_read(0.1)
        assert lock.acquire_write(0.05) is False
        lock.release_read()
        assert lock.acquire_write(0.05)
        assert lock.write_locked
        lock.release_write()

    def test_timed_out_writer_unblocks_readers(self) -> None:
        """A writer that gives up no longer holds back new readers."""
        lock = ReadWriteLock()
        assert lock.acquire_read(0.1)
        assert lock.acquire_write(0.05) is False
        assert lock.acquire_read(0.05)
        lock.release_read()
        lock.release_read()

    def test_waiting_writer_gets_lock_after_reader(self) -> None:
        """A writer waiting on a reader proceeds once the reader releases."""
        lock = ReadWriteLock()
        assert lock.acquire_read(0.1)
        got = []

        def writer() -> None:
            got.append(lock.acquire_write(2.0))

        t = threading.Thread(target=writer)
        t.start()
        time.sleep(0.05)
        lock.release_read()
        t.join(2.0)
        assert got == [True]
        lock.release_write()

    def test_release_without_hold_raises(self) -> None:
        """Unbalanced releases are programming errors."""
        lock = ReadWriteLock()
        with pytest.raises(RuntimeError):
            lock.release_read()
        with pytest.raises(RuntimeError):
            lock.release_write()


class TestStorageEngine:
    """Execute / query / transaction behavior."""

    def test_invalid_timeout_rejected(self, db_url: str) -> None:
        """A non-positive default timeout is rejected."""
        with pytest.raises(ValueError):
            StorageEngine(db_url, timeout=0)

    def test_schema_creates_tables(self, storage: StorageEngine) -> None:
        """init_schema creates both tables and is idempotent."""
        storage.init_schema()
        rows = storage.query("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        names = {r[0] for r in rows}
        assert {"leader", "members"} <= names

    def test_execute_returns_rowcount(self, storage: StorageEngine) -> None:
        """execute reports rows affected."""
        n = storage.execute(insert(Member).values(discord_id="1", in_game_name="Alice"))
        assert n == 1
        n = storage.execute(text("UPDATE members SET lumber = :v"), {"v": 5})
        assert n == 1
        n = storage.execute(text("UPDATE members SET lumber = 1 WHERE discord_id = 'nope'"))
        assert n == 0

    def test_query_returns_rows(self, storage: StorageEngine) -> None:
        """query returns all matching rows."""
        storage.execute(insert(Member).values(discord_id="1", in_game_name="Alice"))
        storage.execute(insert(Member).values(discord_id="2", in_game_name="Bob"))
        rows = storage.query(select(Member.discord_id).order_by(Member.discord_id))
        assert [r.discord_id for r in rows] == ["1", "2"]

    def test_server_defaults_applied(self, storage: StorageEngine) -> None:
        """Partial inserts get the column defaults."""
        storage.execute(text("INSERT INTO members (discord_id, in_game_name) VALUES ('9', 'Zed')"))
        row = storage.query(select(Member.war_orders, Member.lumber, Member.availability, Member.guild_role_id))[0]
        assert tuple(row) == (0, 0, "Not Set", "")

    def test_transaction_commits(self, storage: StorageEngine) -> None:
        """Statements inside a transaction are committed together."""
        with storage.transaction() as conn:
            conn.execute(insert(Member).values(discord_id="1", in_game_name="Alice"))
            conn.execute(insert(Member).values(discord_id="2", in_game_name="Bob"))
        assert len(storage.query(select(Member.discord_id))) == 2

    def test_transaction_rolls_back_on_error(self, storage: StorageEngine) -> None:
        """An exception inside the block discards all its writes."""
        with pytest.raises(ValueError):
            with storage.transaction() as conn:
                conn.execute(insert(Member).values(discord_id="1", in_game_name="Alice"))
                raise ValueError("boom")
        assert storage.query(select(Member.discord_id)) == []

    def test_lock_released_after_error(self, storage: StorageEngine) -> None:
        """The storage lock is free again after a failed transaction."""
        with pytest.raises(ValueError):
            with storage.transaction():
                raise ValueError("boom")
        assert not storage.lock.write_locked
        assert storage.lock.readers == 0
        storage.execute(insert(Member).values(discord_id="1", in_game_name="Alice"))

    def test_constraint_violation_is_storage_error(self, storage: StorageEngine) -> None:
        """Engine failures surface as StorageError, not timeouts."""
        storage.execute(insert(Member).values(discord_id="1", in_game_name="Alice"))
        with pytest.raises(StorageError) as excinfo:
            storage.execute(insert(Member).values(discord_id="1", in_game_name="Again"))
        assert not isinstance(excinfo.value, StorageTimeout)

    def test_leader_table_is_singleton(self, storage: StorageEngine) -> None:
        """The CHECK constraint rejects any lease row other than id 1."""
        with pytest.raises(StorageError):
            storage.execute(insert(LeaderLease).values(id=2, owner="x", updated_at=0))
        storage.execute(insert(LeaderLease).values(id=1, owner="x", updated_at=0))
        with pytest.raises(StorageError):
            storage.execute(insert(LeaderLease).values(id=1, owner="y", updated_at=0))

    def test_timeout_waiting_for_lock(self, storage: StorageEngine) -> None:
        """A held write lock turns into StorageTimeout, not a hang."""
        assert storage.lock.acquire_write(0.1)
        try:
            start = time.monotonic()
            with pytest.raises(StorageTimeout):
                storage.query(select(Member.discord_id), timeout=0.1)
            with pytest.raises(StorageTimeout):
                storage.execute(text("DELETE FROM members"), timeout=0.1)
            assert time.monotonic() - start < 1.5
        finally:
            storage.lock.release_write()

    def test_storage_timeout_is_timeout_error(self) -> None:
        """StorageTimeout is catchable as both StorageError and TimeoutError."""
        assert issubclass(StorageTimeout, StorageError)
        assert issubclass(StorageTimeout, TimeoutError)

    def test_creates_parent_directory(self, tmp_path) -> None:  # noqa: ANN001
        """File URLs in missing folders get their folder created."""
        path = tmp_path / "nested" / "dir" / "w.db"
        engine = StorageEngine(f"sqlite:///{path.as_posix()}")
        try:
            engine.init_schema()
        finally:
            engine.close()
        assert path.exists()


class TestMigrate:
    """Column migration for databases from older releases."""

    def test_adds_missing_role_column(self, db_url: str) -> None:
        """An old members table gains guild_role_id with an empty default."""
        engine = StorageEngine(db_url)
        try:
            engine.execute(
                "CREATE TABLE members ("
                "discord_id TEXT PRIMARY KEY, in_game_name TEXT NOT NULL, "
                "war_orders INTEGER DEFAULT 0, lumber INTEGER DEFAULT 0, "
                "availability TEXT DEFAULT 'Not Set')"
            )
            engine.execute("INSERT INTO members (discord_id, in_game_name) VALUES ('1', 'Old')")
            engine.init_schema()

            assert engine.migrate() == ["guild_role_id"]
            assert engine.migrate() == []

            row = engine.query("SELECT guild_role_id FROM members WHERE discord_id = '1'")[0]
            assert row[0] == ""
        finally:
            engine.close()

    def test_current_schema_needs_nothing(self, storage: StorageEngine) -> None:
        """A freshly created schema is already current."""
        assert storage.migrate() == []
