"""Display timestamp helpers.

The source stores raw epoch milliseconds; the sink stores the rendered UTC
text ``YYYY-MM-DD HH:MM:SS`` (what SQLite's ``datetime(ms / 1000,
'unixepoch')`` produces). Producers have drifted over time, so checkpoints
read back from the sink may also carry a ``T`` separator, fractional seconds,
a ``Z`` suffix or a numeric offset.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"

_DISPLAY = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}:\d{2})(?:\.\d+)?(?:Z|[+-]\d{2}(?::?\d{2})?)?$"
)


def render_epoch_ms(value_ms: int) -> str:
    """Render epoch milliseconds the way the source query does."""

    return datetime.fromtimestamp(value_ms // 1000, tz=timezone.utc).strftime(DISPLAY_FORMAT)


def normalize_display(text: str) -> str:
    """Strip offset, ``Z`` and fractional seconds; use a space separator.

    Text that does not look like a date-time is returned trimmed, with the
    first ``T`` replaced, so callers can still attempt an exact lookup.
    """

    value = text.strip()
    match = _DISPLAY.match(value)
    if match:
        return f"{match.group(1)} {match.group(2)}"
    return value.replace("T", " ", 1)


def parse_display_ms(text: str) -> int:
    """Parse display text as UTC and return whole-second epoch milliseconds.

    Raises ``ValueError`` when the normalized text is not ``YYYY-MM-DD HH:MM:SS``.
    """

    parsed = datetime.strptime(normalize_display(text), DISPLAY_FORMAT).replace(tzinfo=timezone.utc)
    return int(parsed.timestamp()) * 1000


def try_parse_display_ms(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    try:
        return parse_display_ms(text)
    except ValueError:
        return None


__all__ = [
    "DISPLAY_FORMAT",
    "normalize_display",
    "parse_display_ms",
    "render_epoch_ms",
    "try_parse_display_ms",
]
