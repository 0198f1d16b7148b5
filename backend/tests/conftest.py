"""Shared fixtures: fixed clock, in-memory store and test settings."""

from datetime import datetime, timedelta, timezone

import pytest

from tenderdesk.config import Settings, SnapshotConfig
from tenderdesk.storage.memory import MemoryDocumentStore

# Monday
MONDAY_EVENING = datetime(2025, 3, 3, 18, 0, tzinfo=timezone.utc)
FRIDAY_EVENING = datetime(2025, 3, 7, 18, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(MONDAY_EVENING)


@pytest.fixture
def store(clock: FixedClock) -> MemoryDocumentStore:
    return MemoryDocumentStore(clock=clock)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        timezone="UTC",
        company_id="company-1",
        process_id="proc-test",
        snapshot=SnapshotConfig(
            lock_recheck_delay_ms=0,
            scheduled_run_delay_seconds=0,
            initial_cleanup_delay_seconds=0,
        ),
    )
