"""Pydantic models for live sessions, snapshots and snapshot locks."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tenderdesk.storage.base import coerce_datetime

SnapshotType = Literal["realtime", "absence"]
CalculationMethod = Literal[
    "firebase_direct",
    "calculated_from_start",
    "session_duration",
    "daily_reset_estimate",
    "absent",
]
SchedulerState = Literal["idle", "armed", "firing", "snapshotting"]


class LiveSession(BaseModel):
    """Per-employee session written by the live-tracking writer. Read-only here."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    employee_id: str
    employee_name: str = ""
    company_id: str | None = None
    session_start: datetime | None = None
    total_seconds: float = 0
    session_duration_ms: float | None = None
    status: str = "active"
    permanent_session: bool = False
    last_update: datetime | None = None

    @field_validator("session_start", "last_update", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> datetime | None:
        return coerce_datetime(v)

    @field_validator("total_seconds", mode="before")
    @classmethod
    def parse_seconds(cls, v: Any) -> float:
        try:
            return float(v or 0)
        except (TypeError, ValueError):
            return 0


class ActiveSession(BaseModel):
    """A live session with its resolved elapsed time."""

    session: LiveSession
    elapsed_seconds: int
    calculation_method: CalculationMethod


class Snapshot(BaseModel):
    """Immutable daily record of an employee's worked time."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    snapshot_id: str
    employee_id: str
    employee_name: str = ""
    company_id: str | None = None
    date: str  # Local date, YYYY-MM-DD
    total_seconds: int = 0
    percentage: int = 0
    duration: str = "00:00:00"
    status: str = "active"
    is_absent: bool = False
    snapshot_type: SnapshotType = "realtime"
    calculation_method: CalculationMethod = "firebase_direct"
    timestamp: datetime | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> datetime | None:
        return coerce_datetime(v)


class SnapshotLock(BaseModel):
    """Cooperative cross-process mutex document for one day's batch."""

    date: str
    process_id: str
    timestamp: datetime
    status: Literal["active", "released"] = "active"


class SnapshotBatchResult(BaseModel):
    """Outcome of a manual or scheduled snapshot run."""

    date: str
    created: list[Snapshot] = Field(default_factory=list)
    skipped: int = 0
    failed: int = 0
    duplicates_removed: int = 0
    aborted: bool = False
    reason: str | None = None

    @property
    def created_count(self) -> int:
        return len(self.created)


class DuplicateGroup(BaseModel):
    employee_id: str
    date: str
    count: int
    snapshot_ids: list[str]


class DuplicateReport(BaseModel):
    total_snapshots: int
    unique_pairs: int
    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return sum(group.count - 1 for group in self.duplicate_groups)
