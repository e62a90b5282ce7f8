"""Resolve the lower bound for the next extraction window.

The sink keeps rendered display text while the source keeps raw epoch
milliseconds. Re-parsing the text loses sub-second precision, so the resolver
first looks for the source response whose rendered time equals the checkpoint
and uses that record's raw milliseconds. Parsing is the fallback.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from prompt_sync.storage.source_reader import KV_TABLE, SourceReader

from .base import BoundOrigin, LowerBound, WatermarkFetchFailed
from .reconstructor import RESPONSE_KIND
from .timestamps import normalize_display, parse_display_ms

logger = logging.getLogger("prompt_sync.sync.watermark")

# Largest send time among responses rendered onto the checkpoint second.
EXACT_LOOKUP_QUERY = f"""
WITH kv AS (
    SELECT CAST(value AS TEXT) AS value
    FROM {KV_TABLE}
    WHERE key LIKE 'bubbleId:%'
      AND json_valid(CAST(value AS TEXT))
)
SELECT MAX(json_extract(value, '$.timingInfo.clientRpcSendTime')) AS send_time
FROM kv
WHERE json_extract(value, '$.type') = {RESPONSE_KIND}
  AND json_extract(value, '$.timingInfo.clientRpcSendTime') IS NOT NULL
  AND datetime(json_extract(value, '$.timingInfo.clientRpcSendTime') / 1000, 'unixepoch') = :rendered
"""


class CheckpointSource(Protocol):
    def fetch_latest(self, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        ...


class FailureCounter:
    """Consecutive-failure budget for checkpoint reads.

    Increment exactly on failure, reset exactly on success. Reaching the max
    reports exhaustion once and starts a fresh cycle.
    """

    def __init__(self, max_failures: int = 3) -> None:
        if max_failures < 1:
            raise ValueError("max_failures must be at least 1")
        self.max_failures = max_failures
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def record_success(self) -> None:
        self._count = 0

    def record_failure(self) -> bool:
        """Count a failure; return True when the budget is exhausted."""

        self._count += 1
        if self._count >= self.max_failures:
            self._count = 0
            return True
        return False


class WatermarkResolver:
    """Turns the sink's latest checkpoint into a source-native lower bound."""

    def __init__(
        self,
        sink: Optional[CheckpointSource],
        source: SourceReader,
        *,
        fallback_ms: int,
        max_failures: int = 3,
        counter: Optional[FailureCounter] = None,
    ) -> None:
        self.sink = sink
        self.source = source
        self.fallback_ms = fallback_ms
        self.counter = counter or FailureCounter(max_failures)

    @property
    def consecutive_failures(self) -> int:
        return self.counter.count

    def fallback(self, checkpoint: Optional[str] = None) -> LowerBound:
        return LowerBound(value_ms=self.fallback_ms, origin=BoundOrigin.FALLBACK, checkpoint=checkpoint)

    def resolve(self, user_id: Optional[str]) -> LowerBound:
        if self.sink is None:
            logger.warning("sink not configured; using fallback lower bound | fallback_ms=%s", self.fallback_ms)
            return self.fallback()

        checkpoint: Optional[str] = None
        try:
            row = self.sink.fetch_latest(user_id)
            checkpoint = _checkpoint_text(row)
            if checkpoint is None:
                self.counter.record_success()
                logger.info("no previous checkpoint | user_id=%s | fallback_ms=%s", user_id or "-", self.fallback_ms)
                return self.fallback()
            bound = self.translate(checkpoint)
        except WatermarkFetchFailed as exc:
            return self._on_failure(exc, checkpoint)

        self.counter.record_success()
        logger.info(
            "lower bound resolved | user_id=%s | checkpoint=%s | value_ms=%s | origin=%s",
            user_id or "-",
            checkpoint,
            bound.value_ms,
            bound.origin.value,
        )
        return bound

    def translate(self, checkpoint: str) -> LowerBound:
        """Map checkpoint display text to exact source milliseconds when possible."""

        normalized = normalize_display(checkpoint)
        rows = self.source.execute(EXACT_LOOKUP_QUERY, {"rendered": normalized})
        value = rows[0].get("send_time") if rows else None
        if value is not None:
            return LowerBound(value_ms=int(value), origin=BoundOrigin.EXACT, checkpoint=checkpoint)

        try:
            parsed = parse_display_ms(normalized)
        except ValueError as exc:
            raise WatermarkFetchFailed(f"unparseable checkpoint {checkpoint!r}") from exc
        logger.warning(
            "no exact source match for checkpoint; using parsed value (second precision) | checkpoint=%s",
            checkpoint,
        )
        return LowerBound(value_ms=parsed, origin=BoundOrigin.PARSED, checkpoint=checkpoint)

    def _on_failure(self, exc: Exception, checkpoint: Optional[str]) -> LowerBound:
        attempt = self.counter.count + 1
        exhausted = self.counter.record_failure()
        if not exhausted:
            logger.warning(
                "checkpoint fetch failed; retrying next tick | attempt=%s/%s | reason=%s",
                attempt,
                self.counter.max_failures,
                exc,
            )
            return LowerBound.retry(checkpoint)
        logger.error(
            "checkpoint fetch failed; max retries reached, proceeding with fallback (records may be duplicated) "
            "| attempt=%s/%s | fallback_ms=%s | reason=%s",
            attempt,
            self.counter.max_failures,
            self.fallback_ms,
            exc,
        )
        return self.fallback(checkpoint)


def _checkpoint_text(row: Optional[Dict[str, Any]]) -> Optional[str]:
    if not row:
        return None
    value = row.get("timestamp")
    if value is None:
        return None
    if not isinstance(value, str):
        raise WatermarkFetchFailed(f"checkpoint has unexpected type {type(value).__name__}")
    return value.strip() or None


__all__ = ["EXACT_LOOKUP_QUERY", "FailureCounter", "WatermarkResolver"]
