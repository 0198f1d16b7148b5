"""FastAPI server for tender tracking and time-tracking snapshots."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tenderdesk import __version__
from tenderdesk.context import AppContext, build_context
from tenderdesk.exceptions import TenderDeskError
from tenderdesk.observability import instrument_app
from tenderdesk.tracking.kanban import classify_priority, filter_grouped
from tenderdesk.tracking.models import parse_stage
from tenderdesk.tracking.service import move_note

logger = logging.getLogger(__name__)


class TrackRequest(BaseModel):
    tender_id: str


class MoveRequest(BaseModel):
    stage: str
    note: str | None = None


class SnapshotRunRequest(BaseModel):
    employee_id: str | None = None
    force_duplicates: bool = False


class TimerSettingsUpdate(BaseModel):
    reset_time: str | None = None
    snapshot_time: str | None = None
    enable_auto_reset: bool | None = None
    enable_snapshot: bool | None = None


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def create_app(context: AppContext | None = None, start_scheduler: bool = True) -> FastAPI:
    """Build the API. Without a context one is built from environment settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.context is None:
            from tenderdesk.config import get_settings

            app.state.context = build_context(get_settings())
        ctx: AppContext = app.state.context

        removed = await ctx.tracking.remove_duplicate_tracking_entries()
        if removed:
            logger.info(f"Startup: removed {removed} duplicate tracking entries")
        if start_scheduler:
            ctx.scheduler.start()
        try:
            yield
        finally:
            await ctx.close()

    app = FastAPI(title="TenderDesk API", version=__version__, lifespan=lifespan)
    app.state.context = context
    instrument_app(app)

    origins = context.settings.api.allowed_origins if context else ["http://localhost:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TenderDeskError)
    async def handle_domain_error(request: Request, exc: TenderDeskError) -> JSONResponse:
        status = exc.status_code or 400
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        body: dict[str, Any] = {"detail": str(exc)}
        errors = getattr(exc, "errors", None)
        if errors:
            body["errors"] = errors
        return JSONResponse(status_code=status, content=body)

    @app.get("/health")
    async def health(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "store": ctx.settings.store_backend,
            "scheduler": ctx.scheduler.state,
        }

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    @app.get("/api/tracking")
    async def list_tracking(
        q: str = Query(default=""), ctx: AppContext = Depends(get_context)
    ) -> dict[str, Any]:
        grouped = filter_grouped(await ctx.tracking.get_all_tracked_tenders(), q)
        stages = grouped.to_api()
        for column in stages.values():
            for tender in column:
                tender["priority"] = classify_priority(tender.get("estimated_value"), ctx.settings.kanban)
        return {"stages": stages}

    @app.post("/api/tracking", status_code=201)
    async def track_tender(body: TrackRequest, ctx: AppContext = Depends(get_context)) -> dict[str, str]:
        tender = await ctx.tenders.get_tender(body.tender_id)
        tracking_id = await ctx.tracking.initialize_tender_tracking(tender.model_dump())
        return {"tracking_id": tracking_id}

    @app.delete("/api/tracking/{tender_id}")
    async def untrack_tender(tender_id: str, ctx: AppContext = Depends(get_context)) -> dict[str, int]:
        removed = await ctx.tracking.remove_tender_from_tracking(tender_id)
        if removed == 0:
            raise HTTPException(status_code=404, detail=f"Tender is not tracked: {tender_id}")
        return {"removed": removed}

    @app.post("/api/tracking/{tender_id}/move")
    async def move_tender(
        tender_id: str, body: MoveRequest, ctx: AppContext = Depends(get_context)
    ) -> dict[str, str]:
        target = parse_stage(body.stage)
        note = body.note
        if note is None:
            current = (await ctx.tracking.get_all_tracked_tenders()).find(tender_id)
            if current is not None:
                note = move_note(current[0], target)
        await ctx.tracking.move_tender_stage(tender_id, target, note)
        return {"tender_id": tender_id, "stage": target.value}

    @app.post("/api/tracking/dedupe")
    async def dedupe_tracking(ctx: AppContext = Depends(get_context)) -> dict[str, int]:
        return {"removed": await ctx.tracking.remove_duplicate_tracking_entries()}

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @app.get("/api/snapshots")
    async def list_snapshots(
        limit: int = Query(default=100, ge=1, le=1000), ctx: AppContext = Depends(get_context)
    ) -> list[dict[str, Any]]:
        return [s.model_dump(mode="json") for s in await ctx.snapshots.get_all_snapshots(limit)]

    @app.get("/api/snapshots/status")
    async def snapshot_status(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
        return ctx.scheduler.get_status()

    @app.get("/api/snapshots/employee/{employee_id}")
    async def employee_snapshots(
        employee_id: str,
        limit: int = Query(default=30, ge=1, le=366),
        ctx: AppContext = Depends(get_context),
    ) -> list[dict[str, Any]]:
        snapshots = await ctx.snapshots.get_employee_snapshots(employee_id, limit)
        return [s.model_dump(mode="json") for s in snapshots]

    @app.post("/api/snapshots/run")
    async def run_snapshot(
        body: SnapshotRunRequest, ctx: AppContext = Depends(get_context)
    ) -> dict[str, Any]:
        result = await ctx.snapshots.create_manual_snapshot(body.employee_id, body.force_duplicates)
        if result.aborted:
            raise HTTPException(status_code=409, detail=f"Snapshot run aborted: {result.reason}")
        return result.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @app.get("/api/settings/timer")
    async def get_timer_settings(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
        return ctx.preferences.get_timer_settings().model_dump()

    @app.put("/api/settings/timer")
    async def update_timer_settings(
        body: TimerSettingsUpdate, ctx: AppContext = Depends(get_context)
    ) -> dict[str, Any]:
        try:
            settings = ctx.preferences.update_timer_settings(**body.model_dump())
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return settings.model_dump()

    return app
