import logging
import time as _time
from typing import Optional

from fastapi import FastAPI, Request

from prompt_sync.config import get_log_level
from prompt_sync.routers import sync as sync_router
from prompt_sync.runtime import SyncRuntime, build_runtime
from prompt_sync.sync.settings import load_sync_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level_name: Optional[str] = None) -> logging.Logger:
    level = getattr(logging, (level_name or get_log_level()).upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    base = logging.getLogger("prompt_sync")
    if not base.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        base.addHandler(handler)
    base.setLevel(level)
    base.propagate = False
    return base


configure_logging()
logger = logging.getLogger("prompt_sync.api")

app = FastAPI(title="Prompt Sync API", version="0.1.0")
app.include_router(sync_router.router)


@app.middleware("http")
async def _log_requests(request: Request, call_next):
    start = _time.perf_counter()
    path = request.url.path
    method = request.method
    client = request.client.host if request.client else "-"
    try:
        response = await call_next(request)
        status = getattr(response, "status_code", 200)
    except Exception as exc:  # pragma: no cover
        elapsed_ms = int(((_time.perf_counter() - start) * 1000))
        logger.exception("[http] %s %s error=%s client=%s latency_ms=%s", method, path, exc.__class__.__name__, client, elapsed_ms)
        raise
    elapsed_ms = int(((_time.perf_counter() - start) * 1000))
    logger.info("[http] %s %s status=%s client=%s latency_ms=%s", method, path, status, client, elapsed_ms)
    return response


@app.on_event("startup")
async def _on_startup() -> None:
    runtime: Optional[SyncRuntime] = getattr(app.state, "runtime", None)
    if runtime is None:
        runtime = build_runtime(load_sync_settings())
        app.state.runtime = runtime
    if runtime.settings.auto_start:
        logger.info("[sync] auto start enabled; starting scheduler")
        await runtime.scheduler.start()
    else:
        logger.info("[sync] auto start disabled; scheduler idle")


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    runtime: Optional[SyncRuntime] = getattr(app.state, "runtime", None)
    if runtime is None:
        return
    await runtime.scheduler.stop()
    await runtime.scheduler.wait_idle()
    runtime.close()


@app.get("/health")
def health(request: Request) -> dict:
    runtime: Optional[SyncRuntime] = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return {"status": "starting", "source": False, "sink": False}
    source_ok = runtime.context.source.is_available()
    sink = runtime.context.sink
    sink_ok = sink.ping() if sink is not None else False
    return {
        "status": "ok" if source_ok and sink_ok else "degraded",
        "source": source_ok,
        "sink": sink_ok,
        "scheduler_running": runtime.scheduler.is_running,
    }
