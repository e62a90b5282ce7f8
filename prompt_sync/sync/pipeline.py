"""One synchronization tick: watermark, extraction, boundary filter, write."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from prompt_sync.storage.sink_writer import SinkWriter
from prompt_sync.storage.source_reader import SourceReader

from .base import InsertReport, TickResult, TickState
from .dedup import filter_boundary
from .reconstructor import ConversationReconstructor
from .watermark import WatermarkResolver

logger = logging.getLogger("prompt_sync.sync.pipeline")

SAMPLE_SIZE = 3


@dataclass
class SyncContext:
    """Collaborators for a tick, built once and passed in explicitly."""

    source: SourceReader
    sink: Optional[SinkWriter]
    resolver: WatermarkResolver
    reconstructor: ConversationReconstructor
    user_id: Optional[str] = None
    pool: Any = None


class SyncPipeline:
    """Runs ticks against a :class:`SyncContext` and exposes the current stage."""

    def __init__(self, context: SyncContext) -> None:
        self.context = context
        self.state = TickState.IDLE

    def run_once(self) -> TickResult:
        ctx = self.context
        try:
            self.state = TickState.RESOLVING_WATERMARK
            bound = ctx.resolver.resolve(ctx.user_id)
            if bound.should_abort:
                self.state = TickState.ABORT_RETRY
                logger.warning("tick aborted; checkpoint unavailable | user_id=%s", ctx.user_id or "-")
                return TickResult(aborted=True, lower_bound=bound)
            self.state = TickState.PROCEED

            self.state = TickState.QUERYING_SOURCE
            extracted = ctx.reconstructor.extract(bound.value_ms, ctx.user_id)

            self.state = TickState.FILTERING
            kept = filter_boundary(extracted, bound.value_ms)
            filtered_out = len(extracted) - len(kept)
            if filtered_out:
                logger.info("boundary records dropped | count=%s | lower_bound=%s", filtered_out, bound.value_ms)

            self.state = TickState.WRITING
            report = self._write(kept)
            return TickResult(
                aborted=False,
                lower_bound=bound,
                extracted=len(extracted),
                filtered_out=filtered_out,
                report=report,
            )
        finally:
            self.state = TickState.IDLE

    def _write(self, records) -> InsertReport:
        ctx = self.context
        if not records:
            logger.info("no new records to sync")
            return InsertReport()
        if ctx.sink is None:
            logger.warning("sink not configured; skipping storage | records=%s", len(records))
            return InsertReport()
        # oldest first; the checkpoint must never move past an unwritten record
        ordered = sorted(records, key=lambda r: r.send_time_ms or 0)
        report = ctx.sink.insert_batch(ordered, ctx.user_id)
        if report.inserted:
            for index, record in enumerate(ordered[:SAMPLE_SIZE], start=1):
                preview = (record.prompt or "")[:80]
                logger.info("sample %s | timestamp=%s | prompt=%r", index, record.timestamp, preview)
        return report


__all__ = ["SyncContext", "SyncPipeline"]
