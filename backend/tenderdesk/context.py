"""Application wiring: builds every service once and hands them out explicitly."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from tenderdesk.activity import ActivityLogService
from tenderdesk.config import Settings
from tenderdesk.events import EventBus, TenderTrackingUpdated
from tenderdesk.storage.base import DocumentStore
from tenderdesk.storage.memory import MemoryDocumentStore
from tenderdesk.storage.preferences import PreferenceStore
from tenderdesk.tenders.competitors import CompetitorPriceService
from tenderdesk.tenders.pricing import PriceStudyService
from tenderdesk.tenders.service import TenderService
from tenderdesk.timetracking.scheduler import SnapshotScheduler
from tenderdesk.timetracking.service import TimeTrackingSnapshotService
from tenderdesk.tracking.service import TenderTrackingService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    store: DocumentStore
    bus: EventBus
    preferences: PreferenceStore
    tracking: TenderTrackingService
    tenders: TenderService
    studies: PriceStudyService
    competitors: CompetitorPriceService
    activity: ActivityLogService
    snapshots: TimeTrackingSnapshotService
    scheduler: SnapshotScheduler

    async def close(self) -> None:
        self.scheduler.destroy()
        await self.store.close()


def create_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "mongo":
        from tenderdesk.storage.mongo import MongoDocumentStore

        logger.info(f"Using MongoDB store: {settings.mongodb_database}")
        return MongoDocumentStore(
            settings.mongodb_url, settings.mongodb_database, environment=settings.environment
        )
    logger.info("Using in-memory document store")
    return MemoryDocumentStore()


def build_context(
    settings: Settings,
    store: DocumentStore | None = None,
    clock: Callable[[], datetime] | None = None,
) -> AppContext:
    store = store or create_store(settings)
    clock = clock or settings.clock
    bus = EventBus()

    preferences = PreferenceStore(settings.data_dir / "preferences.yaml", bus)
    bus.subscribe(TenderTrackingUpdated, preferences.record_tracking_update)

    studies = PriceStudyService(store, vat_rate=settings.pricing.vat_rate)
    snapshots = TimeTrackingSnapshotService(store, settings, clock=clock)

    return AppContext(
        settings=settings,
        store=store,
        bus=bus,
        preferences=preferences,
        tracking=TenderTrackingService(store, bus, clock),
        tenders=TenderService(store, bus, clock),
        studies=studies,
        competitors=CompetitorPriceService(store, studies),
        activity=ActivityLogService(store, settings.company_id, settings.activity, clock),
        snapshots=snapshots,
        scheduler=SnapshotScheduler(snapshots, preferences, settings, bus=bus, clock=clock),
    )
