"""Shared pytest fixtures."""

from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest

from radar.storage.db import RadarDatabase


@pytest.fixture
def db(tmp_path: Path) -> Iterator[RadarDatabase]:
    database = RadarDatabase(db_path=tmp_path / "radar.db")
    yield database
    database.close()


@pytest.fixture
def received_at() -> datetime:
    return datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
