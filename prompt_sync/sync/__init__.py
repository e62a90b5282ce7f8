"""Sync engine: watermark resolution, conversation reconstruction and scheduling."""

from .base import (
    BoundOrigin,
    ExtractedPrompt,
    InsertReport,
    LowerBound,
    SyncError,
    TickResult,
    TickState,
)

__all__ = ["BoundOrigin", "ExtractedPrompt", "InsertReport", "LowerBound", "SyncError", "TickResult", "TickState"]
