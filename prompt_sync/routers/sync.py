"""
Scheduler control API
Start, stop and inspect the prompt sync scheduler.
"""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from prompt_sync.runtime import SyncRuntime
from prompt_sync.sync.scheduler import MIN_INTERVAL_MINUTES

logger = logging.getLogger("prompt_sync.sync_api")

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncStatusResponse(BaseModel):
    """Observability surface of the scheduler"""
    is_running: bool
    execution_count: int
    error_count: int
    last_execution_time: Optional[str] = None
    last_error: Optional[str] = None
    consecutive_watermark_failures: int
    interval_minutes: int
    tick_in_progress: bool
    tick_state: str
    user_id: Optional[str] = None


class IntervalRequest(BaseModel):
    minutes: int = Field(ge=MIN_INTERVAL_MINUTES)


class RunResponse(BaseModel):
    requested: bool
    tick_in_progress: bool


def _runtime(request: Request) -> SyncRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Sync runtime not initialized")
    return runtime


def _status(runtime: SyncRuntime) -> Dict[str, Any]:
    payload = runtime.scheduler.status()
    payload["user_id"] = runtime.context.user_id
    return payload


@router.get("/status", response_model=SyncStatusResponse)
def get_status(request: Request):
    return _status(_runtime(request))


@router.post("/start", response_model=SyncStatusResponse)
async def start_sync(request: Request):
    runtime = _runtime(request)
    await runtime.scheduler.start()
    return _status(runtime)


@router.post("/stop", response_model=SyncStatusResponse)
async def stop_sync(request: Request):
    runtime = _runtime(request)
    await runtime.scheduler.stop()
    return _status(runtime)


@router.post("/toggle", response_model=SyncStatusResponse)
async def toggle_sync(request: Request):
    runtime = _runtime(request)
    running = await runtime.scheduler.toggle()
    logger.info("scheduler toggled | running=%s", running)
    return _status(runtime)


@router.put("/interval", response_model=SyncStatusResponse)
async def update_interval(body: IntervalRequest, request: Request):
    """Persist a new interval; a running scheduler is restarted so it applies now."""
    runtime = _runtime(request)
    scheduler = runtime.scheduler
    try:
        scheduler.set_interval(body.minutes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if scheduler.is_running:
        await scheduler.stop()
        await scheduler.start()
    return _status(runtime)


@router.post("/run", response_model=RunResponse)
async def run_now(request: Request):
    runtime = _runtime(request)
    requested = runtime.scheduler.request_tick()
    return {"requested": requested, "tick_in_progress": runtime.scheduler.tick_in_progress}
