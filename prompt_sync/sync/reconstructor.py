"""Rebuild prompt/response pairs from sequence-ordered activity records."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from prompt_sync.storage.source_reader import KV_TABLE, SourceReader

from .base import ExtractedPrompt

logger = logging.getLogger("prompt_sync.sync.reconstructor")

USER_KIND = 1
RESPONSE_KIND = 2

# Responses newer than the bound, each joined to its position in the owning
# session and to the header one slot earlier. Responses missing from every
# session drop out on the inner join; position 0 yields a NULL prompt.
EXTRACTION_QUERY = f"""
WITH kv AS (
    SELECT key, CAST(value AS TEXT) AS value
    FROM {KV_TABLE}
    WHERE (key LIKE 'bubbleId:%' OR key LIKE 'composerData:%')
      AND json_valid(CAST(value AS TEXT))
),
responses AS (
    SELECT
        json_extract(value, '$.bubbleId') AS bubble_id,
        json_extract(value, '$.timingInfo.clientRpcSendTime') AS send_time
    FROM kv
    WHERE key LIKE 'bubbleId:%'
      AND json_extract(value, '$.type') = {RESPONSE_KIND}
      AND json_extract(value, '$.timingInfo.clientRpcSendTime') IS NOT NULL
      AND (:lower_bound IS NULL OR json_extract(value, '$.timingInfo.clientRpcSendTime') > :lower_bound)
),
bubble_sequence AS (
    SELECT
        json_extract(session.value, '$.composerId') AS session_id,
        json_extract(header.value, '$.bubbleId') AS bubble_id,
        CAST(header.key AS INTEGER) AS position
    FROM kv AS session,
         json_each(json_extract(session.value, '$.fullConversationHeadersOnly')) AS header
    WHERE session.key LIKE 'composerData:%'
      AND json_extract(session.value, '$.fullConversationHeadersOnly') IS NOT NULL
)
SELECT
    datetime(r.send_time / 1000, 'unixepoch') AS "timestamp",
    (
        SELECT json_extract(bubble.value, '$.text')
        FROM kv AS bubble
        WHERE bubble.key = 'bubbleId:' || target.session_id || ':' || prev.bubble_id
    ) AS prompt,
    r.send_time AS send_time,
    target.session_id AS session_id
FROM responses AS r
JOIN bubble_sequence AS target
  ON target.bubble_id = r.bubble_id
LEFT JOIN bubble_sequence AS prev
  ON prev.session_id = target.session_id
 AND prev.position = target.position - 1
ORDER BY r.send_time DESC
"""


class ConversationReconstructor:
    """Runs the extraction query and maps rows to :class:`ExtractedPrompt`."""

    def __init__(self, source: SourceReader, *, query: str = EXTRACTION_QUERY) -> None:
        self.source = source
        self.query = query

    def extract(self, lower_bound_ms: Optional[int], user_id: Optional[str] = None) -> List[ExtractedPrompt]:
        rows = self.source.execute(self.query, {"lower_bound": lower_bound_ms})
        prompts = [self._to_prompt(row, user_id) for row in rows]
        logger.info(
            "extracted responses | lower_bound=%s | rows=%s | without_prompt=%s",
            lower_bound_ms,
            len(prompts),
            sum(1 for p in prompts if not p.prompt),
        )
        return prompts

    @staticmethod
    def _to_prompt(row: Dict[str, Any], user_id: Optional[str]) -> ExtractedPrompt:
        prompt = row.get("prompt")
        send_time = row.get("send_time")
        return ExtractedPrompt(
            timestamp=row["timestamp"],
            prompt=str(prompt) if prompt is not None else None,
            user_id=user_id,
            send_time_ms=int(send_time) if send_time is not None else None,
            session_id=row.get("session_id"),
        )


__all__ = ["ConversationReconstructor", "EXTRACTION_QUERY", "RESPONSE_KIND", "USER_KIND"]
