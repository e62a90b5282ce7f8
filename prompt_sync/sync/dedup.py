"""Boundary deduplication for extracted records."""

from __future__ import annotations

from typing import Iterable, List, Optional

from .base import ExtractedPrompt
from .timestamps import try_parse_display_ms


def filter_boundary(records: Iterable[ExtractedPrompt], lower_bound_ms: Optional[int]) -> List[ExtractedPrompt]:
    """Drop records whose display timestamp maps back onto the lower bound.

    The extraction query is already exclusive on raw milliseconds. This catches
    rows that share the boundary's rendered second when the bound itself was
    parsed from text (whole-second precision). Records whose timestamp cannot
    be parsed are kept.
    """

    if lower_bound_ms is None:
        return list(records)
    return [record for record in records if try_parse_display_ms(record.timestamp) != lower_bound_ms]


__all__ = ["filter_boundary"]
