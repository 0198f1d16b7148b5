"""Daily snapshot scheduler using APScheduler's asyncio scheduler.

Construct one instance at application start and pass it to whatever
needs it. `start()` must be called from inside the running event loop.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from tenderdesk.config import Settings, parse_time_of_day
from tenderdesk.events import EventBus, TimerSettingsUpdated
from tenderdesk.storage.preferences import PreferenceStore
from tenderdesk.timetracking.models import SchedulerState
from tenderdesk.timetracking.service import TimeTrackingSnapshotService

logger = logging.getLogger(__name__)

DAILY_JOB_ID = "daily-snapshot"
RETRY_JOB_ID = "daily-snapshot-retry"
CLEANUP_JOB_ID = "snapshot-cleanup"
INITIAL_CLEANUP_JOB_ID = "snapshot-initial-cleanup"


def compute_next_fire_time(now: datetime, hour: int, minute: int) -> datetime:
    """Next occurrence of hour:minute strictly after `now`, today or tomorrow."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


class SnapshotScheduler:
    """Arms a one-shot job for the next configured time, re-arming after every firing.

    States: idle -> armed -> firing -> snapshotting -> armed.
    """

    def __init__(
        self,
        service: TimeTrackingSnapshotService,
        preferences: PreferenceStore,
        settings: Settings,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.service = service
        self.preferences = preferences
        self.settings = settings
        self.config = settings.snapshot
        self.bus = bus
        self._clock = clock or service.now

        self.state: SchedulerState = "idle"
        self.running = False
        self.next_run_at: datetime | None = None
        self.snapshot_time = self._load_snapshot_time()

        self._scheduler: AsyncIOScheduler | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def _load_snapshot_time(self) -> tuple[int, int]:
        timer = self.preferences.get_timer_settings()
        try:
            return parse_time_of_day(timer.snapshot_time or self.config.default_time)
        except ValueError as e:
            logger.warning(f"{e}; using default {self.config.default_time}")
            return parse_time_of_day(self.config.default_time)

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone=self._clock().tzinfo)
            self._scheduler.start()
        return self._scheduler

    def _remove_job(self, job_id: str) -> None:
        if self._scheduler is not None and self._scheduler.get_job(job_id) is not None:
            self._scheduler.remove_job(job_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.bus is not None and self._unsubscribe is None:
            self._unsubscribe = self.bus.subscribe(TimerSettingsUpdated, self.handle_settings_changed)

        if self.running:
            return
        if not self.preferences.get_timer_settings().enable_snapshot:
            logger.info("Snapshot capture disabled in timer settings, scheduler idle")
            return

        scheduler = self._ensure_scheduler()
        self.running = True
        self.schedule_next_snapshot()

        scheduler.add_job(
            self._run_cleanup,
            DateTrigger(run_date=self._clock() + timedelta(seconds=self.config.initial_cleanup_delay_seconds)),
            id=INITIAL_CLEANUP_JOB_ID,
            name="Snapshots: Initial Dedup Sweep",
            replace_existing=True,
        )
        scheduler.add_job(
            self._run_cleanup,
            IntervalTrigger(minutes=self.config.cleanup_interval_minutes),
            id=CLEANUP_JOB_ID,
            name="Snapshots: Dedup Sweep",
            replace_existing=True,
        )
        logger.info(
            f"Registered job: Snapshot Dedup Sweep (every {self.config.cleanup_interval_minutes} min)"
        )
        logger.info("✓ Snapshot scheduler started")

    def stop(self) -> None:
        for job_id in (DAILY_JOB_ID, RETRY_JOB_ID, CLEANUP_JOB_ID, INITIAL_CLEANUP_JOB_ID):
            self._remove_job(job_id)
        self.running = False
        self.state = "idle"
        self.next_run_at = None
        logger.info("Snapshot scheduler stopped")

    def destroy(self) -> None:
        """Stop, drop the settings listener and shut down the underlying scheduler."""
        self.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_next_snapshot(self) -> datetime:
        """Replace any pending daily job with one at the next configured time."""
        scheduler = self._ensure_scheduler()
        hour, minute = self.snapshot_time
        fire_at = compute_next_fire_time(self._clock(), hour, minute)

        scheduler.add_job(
            self.perform_scheduled_snapshot,
            DateTrigger(run_date=fire_at),
            args=[fire_at],
            id=DAILY_JOB_ID,
            name="Snapshots: Daily Capture",
            replace_existing=True,
        )
        self.next_run_at = fire_at
        if self.state == "idle":
            self.state = "armed"
        logger.info(f"Registered job: Daily Snapshot (next run {fire_at.isoformat()})")
        return fire_at

    async def perform_scheduled_snapshot(self, scheduled_for: datetime) -> None:
        now = self._clock()
        drift = abs((now - scheduled_for).total_seconds())
        if drift > self.config.drift_warning_seconds:
            logger.warning(
                f"Snapshot fired {drift:.1f}s away from schedule ({scheduled_for.isoformat()})"
            )

        self.state = "firing"
        # Arm tomorrow before running so a failure here cannot cancel future runs
        if self.running:
            self.schedule_next_snapshot()

        try:
            await asyncio.sleep(self.config.scheduled_run_delay_seconds)
            self.state = "snapshotting"
            result = await self.service.create_manual_snapshot(employee_id=None, force_duplicates=False)
            if result.aborted:
                logger.info(f"Scheduled snapshot skipped: {result.reason}")
            await self.service.create_absent_snapshots()
        except Exception as e:
            logger.error(f"Scheduled snapshot failed: {e}")
            self.schedule_retry()
        finally:
            self.state = "armed" if self.running else "idle"

    def schedule_retry(self) -> datetime:
        retry_at = self._clock() + timedelta(minutes=self.config.retry_delay_minutes)
        self._ensure_scheduler().add_job(
            self.perform_scheduled_snapshot,
            DateTrigger(run_date=retry_at),
            args=[retry_at],
            id=RETRY_JOB_ID,
            name="Snapshots: Retry",
            replace_existing=True,
        )
        logger.info(f"Snapshot retry scheduled for {retry_at.isoformat()}")
        return retry_at

    async def _run_cleanup(self) -> None:
        try:
            await self.service.remove_duplicate_snapshots()
        except Exception as e:
            logger.error(f"Snapshot dedup sweep failed: {e}")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def handle_settings_changed(self, event: TimerSettingsUpdated) -> None:
        try:
            new_time = parse_time_of_day(event.snapshot_time)
        except ValueError as e:
            logger.warning(f"Ignoring invalid snapshot time: {e}")
            new_time = self.snapshot_time

        time_changed = new_time != self.snapshot_time
        self.snapshot_time = new_time

        if not event.enable_snapshot:
            if self.running:
                logger.info("Snapshot capture disabled, stopping scheduler")
                self.stop()
            return

        if not self.running:
            logger.info("Snapshot capture enabled, starting scheduler")
            self.start()
        elif time_changed:
            logger.info(f"Snapshot time changed to {event.snapshot_time}, re-arming")
            self.schedule_next_snapshot()

    def get_status(self) -> dict[str, Any]:
        hour, minute = self.snapshot_time
        return {
            "state": self.state,
            "running": self.running,
            "snapshot_time": f"{hour:02d}:{minute:02d}",
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "service": self.service.get_status(),
        }
