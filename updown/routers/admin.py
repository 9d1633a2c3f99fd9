from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends, Request

from updown.auth import require_api_key
from updown.context import AppContext
from updown.dependencies import get_ctx
from updown.migrator import Migrator
from updown.schemas import HealthResponse, MigrationStatus, TickReport
from updown.services.monitor import run_tick

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse)
async def health(request: Request, ctx: AppContext = Depends(get_ctx)):
    """Health check is intentionally unauthenticated for load balancer probes."""
    db_ok = await ctx.db.ping()
    scheduler = request.app.state.scheduler
    sched_status = "running" if (scheduler and scheduler.running) else "stopped"

    return HealthResponse(
        status="ok" if db_ok else "degraded",
        database="ok" if db_ok else "error",
        scheduler=sched_status,
        version=ctx.settings.APP_VERSION,
    )


@router.get(
    "/migrations",
    response_model=List[MigrationStatus],
    dependencies=[Depends(require_api_key)],
)
async def migrations(ctx: AppContext = Depends(get_ctx)):
    return await Migrator(ctx.db.engine).status()


@router.post("/tick", response_model=TickReport, dependencies=[Depends(require_api_key)])
async def tick(ctx: AppContext = Depends(get_ctx)):
    """Probe every site now, outside the schedule. Blocks until the tick is done."""
    return await run_tick(ctx)
