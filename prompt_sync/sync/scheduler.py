"""Fixed-period scheduler driving :class:`~prompt_sync.sync.pipeline.SyncPipeline`."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from .base import TickResult
from .pipeline import SyncPipeline
from .state import SchedulerStateStore

logger = logging.getLogger("prompt_sync.sync.scheduler")

SleepFn = Callable[[float], Awaitable[Any]]

MIN_INTERVAL_MINUTES = 1


class SyncScheduler:
    """Runs one tick on start, then one per interval until stopped.

    The timer only requests ticks. A request made while a tick is still in
    flight is skipped, so at most one tick runs at a time. ``stop`` disarms the
    timer but lets an in-flight tick finish and update the counters.
    """

    def __init__(
        self,
        pipeline: SyncPipeline,
        *,
        interval_minutes: int = 60,
        state_store: Optional[SchedulerStateStore] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self.pipeline = pipeline
        self.state_store = state_store or SchedulerStateStore()
        self._sleep: SleepFn = sleep or asyncio.sleep
        self.interval_minutes = _validate_interval(interval_minutes)
        self.execution_count = 0
        self.error_count = 0
        self.last_execution_time: Optional[str] = None
        self.last_error: Optional[str] = None
        self._running = False
        self._busy = False
        self._timer: Optional[asyncio.Task[None]] = None
        self._tick_task: Optional[asyncio.Task[Optional[TickResult]]] = None
        self._restore()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_in_progress(self) -> bool:
        return self._busy

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info("scheduler started | interval_minutes=%s", self.interval_minutes)
        if self.request_tick():
            await self.wait_idle()
        if self._running and self._timer is None:
            self._timer = asyncio.get_running_loop().create_task(self._timer_loop())

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        await asyncio.to_thread(self._persist)
        logger.info("scheduler stopped | executions=%s | errors=%s", self.execution_count, self.error_count)

    async def toggle(self) -> bool:
        if self._running:
            await self.stop()
        else:
            await self.start()
        return self._running

    def set_interval(self, minutes: int) -> int:
        """Persist a new period. A running scheduler keeps its old period until restarted."""

        self.interval_minutes = _validate_interval(minutes)
        self._persist()
        logger.info("interval updated | interval_minutes=%s | running=%s", self.interval_minutes, self._running)
        return self.interval_minutes

    def request_tick(self) -> bool:
        """Schedule a tick unless one is already in flight."""

        if self._busy:
            logger.info("tick skipped; previous tick still in progress")
            return False
        self._busy = True
        self._tick_task = asyncio.get_running_loop().create_task(self._tick())
        return True

    async def wait_idle(self) -> Optional[TickResult]:
        task = self._tick_task
        if task is None:
            return None
        return await asyncio.shield(task)

    async def _timer_loop(self) -> None:
        while self._running:
            await self._sleep(self.interval_minutes * 60)
            if not self._running:
                break
            self.request_tick()

    async def _tick(self) -> Optional[TickResult]:
        try:
            result = await asyncio.to_thread(self.pipeline.run_once)
            if not result.aborted:
                self.execution_count += 1
                self.last_execution_time = datetime.now(timezone.utc).isoformat()
                await asyncio.to_thread(self._persist)
                logger.info(
                    "tick completed | execution=%s | extracted=%s | inserted=%s",
                    self.execution_count,
                    result.extracted,
                    result.report.inserted,
                )
            return result
        except Exception as exc:
            self.error_count += 1
            self.last_error = str(exc)
            logger.exception("tick failed | errors=%s | reason=%s", self.error_count, exc)
            await asyncio.to_thread(self._persist)
            return None
        finally:
            self._busy = False

    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self._running,
            "execution_count": self.execution_count,
            "error_count": self.error_count,
            "last_execution_time": self.last_execution_time,
            "last_error": self.last_error,
            "consecutive_watermark_failures": self.pipeline.context.resolver.consecutive_failures,
            "interval_minutes": self.interval_minutes,
            "tick_in_progress": self._busy,
            "tick_state": self.pipeline.state.value,
        }

    def _restore(self) -> None:
        state = self.state_store.load()
        interval = state.get("interval_minutes")
        if isinstance(interval, int) and interval >= MIN_INTERVAL_MINUTES:
            self.interval_minutes = interval
        self.execution_count = int(state.get("execution_count", 0) or 0)
        self.error_count = int(state.get("error_count", 0) or 0)
        self.last_execution_time = state.get("last_execution_time")

    def _persist(self) -> None:
        self.state_store.update(
            interval_minutes=self.interval_minutes,
            execution_count=self.execution_count,
            error_count=self.error_count,
            last_execution_time=self.last_execution_time,
        )


def _validate_interval(minutes: Any) -> int:
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValueError("interval must be a whole number of minutes")
    if minutes < MIN_INTERVAL_MINUTES:
        raise ValueError(f"interval must be at least {MIN_INTERVAL_MINUTES} minute")
    return minutes


__all__ = ["MIN_INTERVAL_MINUTES", "SyncScheduler"]
