"""Shared pytest fixtures: isolated SQLite stores on temp files."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator, List

import pytest

from wartracker.database import StorageEngine


def make_url(path: Path) -> str:
    return f"sqlite:///{path.as_posix()}"


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return make_url(tmp_path / "wartracker.db")


@pytest.fixture
def storage(db_url: str) -> Iterator[StorageEngine]:
    engine = StorageEngine(db_url, timeout=2.0)
    engine.init_schema()
    yield engine
    engine.close()


@pytest.fixture
def storage_factory(db_url: str) -> Iterator[Callable[[], StorageEngine]]:
    """Build extra engines on the same file (one per simulated process)."""
    created: List[StorageEngine] = []

    def _make() -> StorageEngine:
        engine = StorageEngine(db_url, timeout=2.0)
        engine.init_schema()
        created.append(engine)
        return engine

    yield _make
    for engine in created:
        engine.close()


class FakeClock:
    """Settable wall clock for lease arithmetic."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_000.0)
