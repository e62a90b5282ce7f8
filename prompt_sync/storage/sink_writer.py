"""PostgreSQL sink for extracted prompts."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import psycopg

from prompt_sync.sync.base import (
    ExtractedPrompt,
    InsertReport,
    RecordParseSkipped,
    SinkWriteFailed,
    WatermarkFetchFailed,
)
from prompt_sync.sync.fields import resolve_fields
from prompt_sync.sync.settings import plain_identifier

logger = logging.getLogger("prompt_sync.sink")

DEFAULT_USER_ID = "local_user"

Record = Union[ExtractedPrompt, Mapping[str, Any]]


class SinkWriter:
    """Schema management, per-record inserts and checkpoint reads."""

    def __init__(self, pool, table_name: str, *, default_user_id: str = DEFAULT_USER_ID) -> None:
        self.pool = pool
        self.table_name = plain_identifier(table_name)
        self.default_user_id = default_user_id
        self._schema_ready = False

    def _execute(self, query: str, params: Optional[Dict[str, Any]] = None, *, fetch: Optional[str] = None):
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                if fetch == "one":
                    row = cur.fetchone()
                elif fetch == "all":
                    row = cur.fetchall()
                else:
                    row = None
                conn.commit()
        return row

    @property
    def schema_ready(self) -> bool:
        return self._schema_ready

    def ensure_schema(self) -> None:
        """Create the table and its indexes if they do not exist."""

        table = self.table_name
        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id BIGSERIAL PRIMARY KEY,
                created_at TIMESTAMPTZ DEFAULT TIMEZONE('utc'::text, NOW()) NOT NULL,
                timestamp TEXT NOT NULL,
                prompt TEXT NOT NULL,
                user_id TEXT
            )
            """,
            f"CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table} (created_at)",
            f"CREATE INDEX IF NOT EXISTS idx_{table}_user_id ON {table} (user_id)",
        ]
        for statement in statements:
            self._execute(statement)
        self._schema_ready = True
        logger.info("sink schema ensured | table=%s", table)

    def fetch_latest(self, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the row holding the newest ``timestamp`` (per user when scoped)."""

        if user_id:
            query = (
                f"SELECT id, created_at, timestamp, prompt, user_id FROM {self.table_name} "
                "WHERE user_id = %(user_id)s ORDER BY timestamp DESC LIMIT 1"
            )
            params: Optional[Dict[str, Any]] = {"user_id": user_id}
        else:
            logger.warning("no user id configured; reading checkpoint without user filter")
            query = (
                f"SELECT id, created_at, timestamp, prompt, user_id FROM {self.table_name} "
                "ORDER BY timestamp DESC LIMIT 1"
            )
            params = None
        try:
            row = self._execute(query, params, fetch="one")
        except psycopg.Error as exc:
            raise WatermarkFetchFailed(f"checkpoint read failed: {exc}") from exc
        if row is not None and not isinstance(row, Mapping):
            raise WatermarkFetchFailed(f"checkpoint row has unexpected shape {type(row).__name__}")
        return dict(row) if row is not None else None

    def insert_one(self, timestamp: str, prompt: str, user_id: str) -> Optional[int]:
        try:
            row = self._execute(
                f"""
                INSERT INTO {self.table_name} (timestamp, prompt, user_id)
                VALUES (%(timestamp)s, %(prompt)s, %(user_id)s)
                RETURNING id
                """,
                {"timestamp": timestamp, "prompt": prompt, "user_id": user_id},
                fetch="one",
            )
        except psycopg.Error as exc:
            raise SinkWriteFailed(f"insert failed for timestamp={timestamp}: {exc}") from exc
        return row.get("id") if row else None

    def insert_batch(self, records: Iterable[Record], user_id: Optional[str] = None) -> InsertReport:
        """Insert each record on its own; one bad record never blocks the rest."""

        if not self._schema_ready:
            self.ensure_schema()
        report = InsertReport()
        for index, record in enumerate(records):
            payload = record.as_payload() if isinstance(record, ExtractedPrompt) else dict(record)
            try:
                fields = resolve_fields(payload)
            except RecordParseSkipped as exc:
                report.skipped += 1
                logger.info("record skipped | index=%s | reason=%s", index, exc)
                continue
            owner = payload.get("user_id") or user_id or self.default_user_id
            try:
                self.insert_one(fields["timestamp"], fields["prompt"], str(owner))
            except SinkWriteFailed as exc:
                report.failed += 1
                logger.error("record write failed | index=%s | reason=%s", index, exc)
                continue
            report.inserted += 1
        logger.info(
            "sink batch done | table=%s | inserted=%s | skipped=%s | failed=%s",
            self.table_name,
            report.inserted,
            report.skipped,
            report.failed,
        )
        return report

    def ping(self) -> bool:
        try:
            self._execute("SELECT 1", fetch="one")
        except psycopg.Error as exc:
            logger.info("sink ping failed | reason=%s", exc)
            return False
        return True


__all__ = ["DEFAULT_USER_ID", "SinkWriter"]
