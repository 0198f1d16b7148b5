"""Daily time-tracking snapshots: capture, absence detection, and dedup maintenance."""

import logging
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError

from tenderdesk.activity import ActivityLogService
from tenderdesk.config import Settings, parse_time_of_day
from tenderdesk.exceptions import LockNotAcquiredError
from tenderdesk.storage.base import Document, DocumentStore, coerce_datetime
from tenderdesk.timetracking.calculations import (
    format_duration,
    is_same_local_day,
    local_date,
    resolve_elapsed_seconds,
    start_of_day,
    work_percentage,
)
from tenderdesk.timetracking.locks import SnapshotLockManager
from tenderdesk.timetracking.models import (
    ActiveSession,
    DuplicateGroup,
    DuplicateReport,
    LiveSession,
    Snapshot,
    SnapshotBatchResult,
)

logger = logging.getLogger(__name__)

LIVE_TRACKING_COLLECTION = "live_tracking"
SNAPSHOTS_COLLECTION = "time_tracking_snapshots"
EMPLOYEES_COLLECTION = "employees"


def _timestamp_key(doc: Document) -> float:
    dt = coerce_datetime(doc.get("timestamp"))
    return dt.timestamp() if dt else 0.0


def _session_rank(active: ActiveSession) -> tuple[float, int]:
    last = active.session.last_update
    return (last.timestamp() if last else 0.0, active.elapsed_seconds)


class TimeTrackingSnapshotService:
    """Reads live sessions and writes at most one snapshot per employee per day.

    All dates are local calendar dates in the timezone of `clock()`.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
        locks: SnapshotLockManager | None = None,
    ):
        self.store = store
        self.settings = settings
        self.config = settings.snapshot
        self._clock = clock or settings.clock
        self.reset_time = parse_time_of_day(self.config.daily_reset_time)
        self.locks = locks or SnapshotLockManager(
            store,
            process_id=settings.process_id,
            clock=self._clock,
            recheck_delay_ms=self.config.lock_recheck_delay_ms,
            stale_after_seconds=self.config.lock_stale_after_seconds,
        )
        self.is_creating_snapshot = False
        self.last_run: SnapshotBatchResult | None = None

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Live sessions
    # ------------------------------------------------------------------

    async def get_active_sessions(self) -> list[ActiveSession]:
        """Today's permanent sessions with resolved elapsed time, most recently updated first."""
        now = self.now()
        docs = await self.store.query(LIVE_TRACKING_COLLECTION, {"permanent_session": True})

        sessions: list[ActiveSession] = []
        for doc in docs:
            try:
                session = LiveSession(**doc)
            except ValidationError as e:
                logger.warning(f"Skipping malformed live session {doc.get('id')}: {e}")
                continue

            if not is_same_local_day(session.session_start, now):
                logger.debug(
                    f"Skipping session for {session.employee_name or session.employee_id}: "
                    f"started {session.session_start}, not today"
                )
                continue

            seconds, method = resolve_elapsed_seconds(session, now, self.reset_time)
            sessions.append(
                ActiveSession(session=session, elapsed_seconds=seconds, calculation_method=method)
            )

        sessions.sort(
            key=lambda a: a.session.last_update.timestamp() if a.session.last_update else 0.0,
            reverse=True,
        )
        logger.info(f"Found {len(sessions)} active sessions for {local_date(now)}")
        return sessions

    @staticmethod
    def dedupe_sessions(sessions: list[ActiveSession]) -> list[ActiveSession]:
        """One session per employee: newest update wins, ties go to more elapsed time."""
        best: dict[str, ActiveSession] = {}
        for active in sessions:
            employee_id = active.session.employee_id
            current = best.get(employee_id)
            if current is None or _session_rank(active) > _session_rank(current):
                best[employee_id] = active
        return list(best.values())

    # ------------------------------------------------------------------
    # Snapshot creation
    # ------------------------------------------------------------------

    async def _has_snapshot(self, employee_id: str, date: str) -> bool:
        existing = await self.store.query(
            SNAPSHOTS_COLLECTION, {"employee_id": employee_id, "date": date}, limit=1
        )
        return bool(existing)

    async def _write(self, snapshot: Snapshot) -> Snapshot:
        doc_id = await self.store.add(SNAPSHOTS_COLLECTION, snapshot.model_dump(exclude={"id"}))
        return snapshot.model_copy(update={"id": doc_id})

    async def create_snapshot(
        self, active: ActiveSession, force_duplicates: bool = False
    ) -> Snapshot | None:
        """Write a realtime snapshot unless one already exists for (employee, today)."""
        now = self.now()
        date = local_date(now)
        session = active.session

        if not force_duplicates and await self._has_snapshot(session.employee_id, date):
            logger.info(f"Snapshot already exists for {session.employee_id} on {date}, skipping")
            return None

        seconds = active.elapsed_seconds
        snapshot = Snapshot(
            snapshot_id=f"realtime_{session.employee_id}_{now:%Y%m%d}_{int(now.timestamp() * 1000)}",
            employee_id=session.employee_id,
            employee_name=session.employee_name,
            company_id=session.company_id,
            date=date,
            total_seconds=seconds,
            percentage=work_percentage(seconds, self.config.workday_minutes),
            duration=format_duration(seconds),
            status=session.status,
            is_absent=False,
            snapshot_type="realtime",
            calculation_method=active.calculation_method,
            timestamp=now,
        )
        saved = await self._write(snapshot)
        logger.info(
            f"Snapshot created for {session.employee_name or session.employee_id}: "
            f"{snapshot.duration} ({snapshot.percentage}%) via {snapshot.calculation_method}"
        )
        return saved

    async def create_manual_snapshot(
        self, employee_id: str | None = None, force_duplicates: bool = False
    ) -> SnapshotBatchResult:
        """Snapshot every active employee (or one) under the day's lock.

        Store failures outside the per-employee loop propagate after the
        lock is released.
        """
        date = local_date(self.now())

        if self.is_creating_snapshot:
            logger.warning("Snapshot batch already running in this process, skipping")
            return SnapshotBatchResult(date=date, aborted=True, reason="already_running")

        self.is_creating_snapshot = True
        result = SnapshotBatchResult(date=date)
        try:
            async with self.locks.hold(date):
                sessions = await self.get_active_sessions()
                if employee_id:
                    sessions = [s for s in sessions if s.session.employee_id == employee_id]
                sessions = self.dedupe_sessions(sessions)

                for active in sessions:
                    try:
                        snapshot = await self.create_snapshot(active, force_duplicates)
                    except Exception as e:
                        logger.error(f"Failed to snapshot {active.session.employee_id}: {e}")
                        result.failed += 1
                        continue
                    if snapshot is None:
                        result.skipped += 1
                    else:
                        result.created.append(snapshot)

                if result.created:
                    result.duplicates_removed = await self.remove_duplicate_snapshots()

        except LockNotAcquiredError as e:
            logger.warning(f"Snapshot batch aborted: {e}")
            result.aborted = True
            result.reason = "lock_denied"
        finally:
            self.is_creating_snapshot = False

        logger.info(
            f"Snapshot batch {date}: {result.created_count} created, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        self.last_run = result
        return result

    # ------------------------------------------------------------------
    # Absence detection
    # ------------------------------------------------------------------

    async def create_absent_snapshots(self, company_id: str | None = None) -> list[Snapshot]:
        """Write an absence snapshot for each employee with no login today."""
        company_id = company_id or self.settings.company_id
        if not company_id:
            logger.warning("No company configured, skipping absence detection")
            return []

        now = self.now()
        date = local_date(now)
        if now.weekday() in self.config.holiday_weekdays:
            logger.info(f"{date} is a holiday, skipping absence detection")
            return []

        try:
            activity = ActivityLogService(self.store, company_id, self.settings.activity, self._clock)
            logged_in = await activity.get_login_user_ids(start_of_day(now))
        except Exception as e:
            logger.warning(f"Activity log query failed, falling back to live sessions: {e}")
            logged_in = {a.session.employee_id for a in await self.get_active_sessions()}

        employees = await self.store.query(EMPLOYEES_COLLECTION, {"company_id": company_id})
        created: list[Snapshot] = []
        for employee in employees:
            employee_id = employee["id"]
            name = employee.get("name") or employee.get("full_name") or ""
            if employee_id in logged_in:
                continue
            try:
                if await self._has_snapshot(employee_id, date):
                    continue
                snapshot = Snapshot(
                    snapshot_id=f"absent_{employee_id}_{now:%Y%m%d}_{int(now.timestamp() * 1000)}",
                    employee_id=employee_id,
                    employee_name=name,
                    company_id=company_id,
                    date=date,
                    total_seconds=0,
                    percentage=0,
                    duration="00:00:00",
                    status="absent",
                    is_absent=True,
                    snapshot_type="absence",
                    calculation_method="absent",
                    timestamp=now,
                )
                created.append(await self._write(snapshot))
                logger.info(f"Absence recorded for {name or employee_id} on {date}")
            except Exception as e:
                logger.error(f"Failed to record absence for {employee_id}: {e}")

        logger.info(f"Absence detection {date}: {len(created)} absent of {len(employees)} employees")
        return created

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_today_snapshot(self, employee_id: str) -> Snapshot | None:
        docs = await self.store.query(
            SNAPSHOTS_COLLECTION, {"employee_id": employee_id, "date": local_date(self.now())}
        )
        if not docs:
            return None
        return Snapshot(**max(docs, key=_timestamp_key))

    async def get_employee_snapshots(self, employee_id: str, limit: int = 30) -> list[Snapshot]:
        """One snapshot per date for an employee, newest first."""
        docs = await self.store.query(SNAPSHOTS_COLLECTION, {"employee_id": employee_id})
        docs.sort(key=_timestamp_key, reverse=True)

        seen: set[str] = set()
        result: list[Snapshot] = []
        for doc in docs:
            if doc.get("date") in seen:
                continue
            seen.add(doc.get("date"))
            result.append(Snapshot(**doc))
        result.sort(key=lambda s: s.date, reverse=True)
        return result[:limit]

    async def get_all_snapshots(self, limit: int = 100) -> list[Snapshot]:
        """One snapshot per (employee, date), newest first."""
        docs = await self.store.query(SNAPSHOTS_COLLECTION)
        docs.sort(key=_timestamp_key, reverse=True)

        seen: set[tuple[str, str]] = set()
        result: list[Snapshot] = []
        for doc in docs:
            key = (doc.get("employee_id"), doc.get("date"))
            if key in seen:
                continue
            seen.add(key)
            result.append(Snapshot(**doc))
            if len(result) >= limit:
                break
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def delete_all_employee_snapshots(self, employee_id: str) -> int:
        docs = await self.store.query(SNAPSHOTS_COLLECTION, {"employee_id": employee_id})
        for doc in docs:
            await self.store.delete(SNAPSHOTS_COLLECTION, doc["id"])
        logger.info(f"Deleted {len(docs)} snapshots for {employee_id}")
        return len(docs)

    def _group_snapshots(self, docs: list[Document]) -> dict[tuple[str, str], list[Document]]:
        groups: dict[tuple[str, str], list[Document]] = {}
        for doc in docs:
            groups.setdefault((doc.get("employee_id"), doc.get("date")), []).append(doc)
        return groups

    async def remove_duplicate_snapshots(self) -> int:
        """Keep only the newest snapshot per (employee, date). Returns snapshots deleted."""
        docs = await self.store.query(SNAPSHOTS_COLLECTION)
        removed = 0
        for (employee_id, date), group in self._group_snapshots(docs).items():
            if len(group) < 2:
                continue
            group.sort(key=_timestamp_key, reverse=True)
            for duplicate in group[1:]:
                try:
                    await self.store.delete(SNAPSHOTS_COLLECTION, duplicate["id"])
                    removed += 1
                except Exception as e:
                    logger.error(f"Failed to delete duplicate snapshot {duplicate['id']}: {e}")

        if removed:
            logger.info(f"Dedup sweep removed {removed} duplicate snapshots")
        return removed

    async def analyze_duplicates(self) -> DuplicateReport:
        docs = await self.store.query(SNAPSHOTS_COLLECTION)
        groups = self._group_snapshots(docs)
        return DuplicateReport(
            total_snapshots=len(docs),
            unique_pairs=len(groups),
            duplicate_groups=[
                DuplicateGroup(
                    employee_id=str(employee_id),
                    date=str(date),
                    count=len(group),
                    snapshot_ids=[doc["id"] for doc in group],
                )
                for (employee_id, date), group in groups.items()
                if len(group) > 1
            ],
        )

    def get_status(self) -> dict[str, Any]:
        return {
            "is_creating_snapshot": self.is_creating_snapshot,
            "process_id": self.locks.process_id,
            "today": local_date(self.now()),
            "last_run": self.last_run.model_dump(mode="json") if self.last_run else None,
        }
