"""Assemble the sync context, pipeline and scheduler from settings."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import psycopg
from psycopg_pool import PoolTimeout

from prompt_sync.dependencies.postgres import close_pool, create_sink_pool
from prompt_sync.storage.sink_writer import SinkWriter
from prompt_sync.storage.source_reader import SourceReader, detect_source_db_path
from prompt_sync.sync.pipeline import SyncContext, SyncPipeline
from prompt_sync.sync.reconstructor import ConversationReconstructor
from prompt_sync.sync.scheduler import SyncScheduler
from prompt_sync.sync.settings import SyncSettings
from prompt_sync.sync.state import SchedulerStateStore
from prompt_sync.sync.timestamps import parse_display_ms
from prompt_sync.sync.watermark import WatermarkResolver

logger = logging.getLogger("prompt_sync.runtime")


@dataclass
class SyncRuntime:
    settings: SyncSettings
    context: SyncContext
    pipeline: SyncPipeline
    scheduler: SyncScheduler
    state_store: SchedulerStateStore

    def close(self) -> None:
        close_pool(self.context.pool)
        self.context.pool = None


def resolve_user_id(settings: SyncSettings, source: SourceReader, state_store: SchedulerStateStore) -> str:
    """Configured id, else the id resolved on an earlier run, else detect or generate one.

    A detected or generated id is persisted so later runs keep the same
    checkpoint scope even if the editor's cached email appears or changes.
    """

    if settings.user_id:
        return settings.user_id
    stored = state_store.load().get("user_id")
    if isinstance(stored, str) and stored:
        return stored
    if settings.detect_user_id:
        email = source.get_cached_email() if source.db_path else None
        if email:
            state_store.update(user_id=email)
            logger.info("user id detected from source | user_id=%s", email)
            return email
    generated = f"user-{int(time.time() * 1000)}"
    state_store.update(user_id=generated)
    logger.info("generated user id | user_id=%s", generated)
    return generated


def build_context(settings: SyncSettings, state_store: SchedulerStateStore) -> SyncContext:
    db_path = settings.source_db_path or detect_source_db_path()
    source = SourceReader(db_path)
    user_id = resolve_user_id(settings, source, state_store)

    pool = None
    sink: Optional[SinkWriter] = None
    if settings.sink is not None:
        pool = create_sink_pool(settings.sink)
        sink = SinkWriter(pool, settings.sink.table_name)
        try:
            sink.ensure_schema()
        except (psycopg.Error, PoolTimeout) as exc:
            logger.warning("sink schema not ensured at startup; retrying on first write | reason=%s", exc)
    else:
        logger.warning("sink connection not configured; ticks will not write")

    resolver = WatermarkResolver(
        sink,
        source,
        fallback_ms=parse_display_ms(settings.fallback_timestamp),
        max_failures=settings.max_watermark_retries,
    )
    return SyncContext(
        source=source,
        sink=sink,
        resolver=resolver,
        reconstructor=ConversationReconstructor(source),
        user_id=user_id,
        pool=pool,
    )


def build_runtime(settings: SyncSettings) -> SyncRuntime:
    state_store = SchedulerStateStore(settings.state_path)
    context = build_context(settings, state_store)
    pipeline = SyncPipeline(context)
    scheduler = SyncScheduler(
        pipeline,
        interval_minutes=settings.sync_interval_minutes,
        state_store=state_store,
    )
    logger.info(
        "runtime ready | source=%s | user_id=%s | sink=%s | interval_minutes=%s",
        context.source.db_path or "-",
        context.user_id,
        "configured" if context.sink is not None else "none",
        scheduler.interval_minutes,
    )
    return SyncRuntime(
        settings=settings,
        context=context,
        pipeline=pipeline,
        scheduler=scheduler,
        state_store=state_store,
    )


__all__ = ["SyncRuntime", "build_context", "build_runtime", "resolve_user_id"]
