"""Read-only access to the local activity store (Cursor ``state.vscdb``)."""

from __future__ import annotations

import logging
import os
import sqlite3
import sys
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from prompt_sync.sync.base import QueryExecutionFailed, SourceUnavailable

logger = logging.getLogger("prompt_sync.source")

KV_TABLE = "cursorDiskKV"
ITEM_TABLE = "ItemTable"
CACHED_EMAIL_KEY = "cursorAuth/cachedEmail"

_READ_PREFIXES = ("select", "with")
_UNAVAILABLE_MARKERS = ("unable to open", "file is not a database", "disk i/o error", "database is locked")

Params = Union[Mapping[str, Any], Sequence[Any]]


def default_source_paths(platform: Optional[str] = None, home: Optional[str] = None) -> List[Path]:
    """Standard Cursor global storage locations for ``platform``."""

    platform = platform or sys.platform
    base = Path(home or os.path.expanduser("~"))
    if platform == "darwin":
        return [base / "Library" / "Application Support" / "Cursor" / "User" / "globalStorage" / "state.vscdb"]
    if platform.startswith("win"):
        return [base / "AppData" / "Roaming" / "Cursor" / "User" / "globalStorage" / "state.vscdb"]
    return [base / ".config" / "Cursor" / "User" / "globalStorage" / "state.vscdb"]


def detect_source_db_path(platform: Optional[str] = None, home: Optional[str] = None) -> Optional[str]:
    for candidate in default_source_paths(platform, home):
        if candidate.exists():
            logger.info("source store detected | path=%s", candidate)
            return str(candidate)
    logger.warning("source store not found in standard locations")
    return None


class SourceReader:
    """Executes read-only statements against the embedded activity store."""

    def __init__(self, db_path: Optional[str], *, timeout: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        if not self.db_path:
            raise SourceUnavailable("source store path is not configured")
        path = Path(self.db_path).expanduser()
        if not path.is_file():
            raise SourceUnavailable(f"source store not found: {path}")
        uri = f"{path.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True, timeout=self.timeout)
        except sqlite3.Error as exc:
            raise SourceUnavailable(f"cannot open source store {path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def execute(self, query: str, params: Optional[Params] = None) -> List[Dict[str, Any]]:
        """Run a ``SELECT``/``WITH`` statement and return rows as dicts."""

        if not query.lstrip().lower().startswith(_READ_PREFIXES):
            raise QueryExecutionFailed("only SELECT and WITH statements are allowed")
        with closing(self._connect()) as conn:
            try:
                cursor = conn.execute(query, params if params is not None else ())
                rows = [dict(row) for row in cursor.fetchall()]
            except sqlite3.Error as exc:
                message = str(exc).lower()
                if any(marker in message for marker in _UNAVAILABLE_MARKERS):
                    raise SourceUnavailable(f"source store unreadable: {exc}") from exc
                raise QueryExecutionFailed(f"source query failed: {exc}") from exc
        logger.debug("source query ok | rows=%s", len(rows))
        return rows

    def is_available(self) -> bool:
        try:
            self.execute("SELECT 1 FROM sqlite_master LIMIT 1")
        except (SourceUnavailable, QueryExecutionFailed) as exc:
            logger.info("source check failed | reason=%s", exc)
            return False
        return True

    def get_cached_email(self) -> Optional[str]:
        """Return the signed-in account email cached by the editor, if any."""

        try:
            rows = self.execute(
                f"SELECT value FROM {ITEM_TABLE} WHERE key = ? LIMIT 1",
                (CACHED_EMAIL_KEY,),
            )
        except (SourceUnavailable, QueryExecutionFailed) as exc:
            logger.info("cached email lookup failed | reason=%s", exc)
            return None
        if not rows or not rows[0].get("value"):
            return None
        value = rows[0]["value"]
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="ignore")
        return str(value).strip().strip('"') or None


__all__ = [
    "CACHED_EMAIL_KEY",
    "KV_TABLE",
    "SourceReader",
    "default_source_paths",
    "detect_source_db_path",
]
