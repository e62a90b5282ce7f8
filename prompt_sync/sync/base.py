"""Types and errors shared across the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SyncError(RuntimeError):
    """Base class for sync related failures."""


class SourceUnavailable(SyncError):
    """The local activity store is missing or cannot be opened."""


class QueryExecutionFailed(SyncError):
    """A read against the activity store failed or was rejected."""


class WatermarkFetchFailed(SyncError):
    """The sink checkpoint could not be read or understood."""


class RecordParseSkipped(SyncError):
    """An individual record lacks a required field."""


class SinkWriteFailed(SyncError):
    """Persisting a single record to the sink failed."""


class BoundOrigin(str, Enum):
    """Where a lower bound came from."""

    EXACT = "exact"
    PARSED = "parsed"
    FALLBACK = "fallback"
    RETRY = "retry"


class TickState(str, Enum):
    IDLE = "idle"
    RESOLVING_WATERMARK = "resolving_watermark"
    ABORT_RETRY = "abort_retry"
    PROCEED = "proceed"
    QUERYING_SOURCE = "querying_source"
    FILTERING = "filtering"
    WRITING = "writing"


@dataclass(frozen=True, slots=True)
class LowerBound:
    """Exclusive lower bound (epoch milliseconds) for one extraction window."""

    value_ms: Optional[int]
    origin: BoundOrigin
    checkpoint: Optional[str] = None

    @classmethod
    def retry(cls, checkpoint: Optional[str] = None) -> "LowerBound":
        return cls(value_ms=None, origin=BoundOrigin.RETRY, checkpoint=checkpoint)

    @property
    def should_abort(self) -> bool:
        return self.origin is BoundOrigin.RETRY


@dataclass(frozen=True, slots=True)
class ExtractedPrompt:
    """A response's display time paired with the message that preceded it."""

    timestamp: str
    prompt: Optional[str]
    user_id: Optional[str] = None
    send_time_ms: Optional[int] = None
    session_id: Optional[str] = None

    def as_payload(self) -> dict:
        return {"timestamp": self.timestamp, "prompt": self.prompt, "user_id": self.user_id}


@dataclass(slots=True)
class InsertReport:
    """Outcome counts for one sink batch."""

    inserted: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.inserted + self.skipped + self.failed


@dataclass(slots=True)
class TickResult:
    """What one tick did, returned to the scheduler and the CLI."""

    aborted: bool
    lower_bound: LowerBound
    extracted: int = 0
    filtered_out: int = 0
    report: InsertReport = field(default_factory=InsertReport)


__all__ = [
    "BoundOrigin",
    "ExtractedPrompt",
    "InsertReport",
    "LowerBound",
    "QueryExecutionFailed",
    "RecordParseSkipped",
    "SinkWriteFailed",
    "SourceUnavailable",
    "SyncError",
    "TickResult",
    "TickState",
    "WatermarkFetchFailed",
]
