"""Daily time-tracking snapshots."""

from .scheduler import SnapshotScheduler, compute_next_fire_time
from .service import TimeTrackingSnapshotService

__all__ = ["SnapshotScheduler", "TimeTrackingSnapshotService", "compute_next_fire_time"]
