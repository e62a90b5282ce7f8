import json
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg
import pytest

# (bubble_id, kind, text, send_time_ms)
Bubble = Tuple[str, int, Optional[str], Optional[int]]

# 2025-01-01 10:00:00 UTC
BASE_MS = 1735725600000


def write_source_db(
    path: Path,
    sessions: Dict[str, Sequence[Bubble]],
    *,
    orphans: Iterable[Tuple[str, Bubble]] = (),
    email: Optional[str] = None,
) -> Path:
    """Create a Cursor-shaped ``state.vscdb`` holding ``sessions``."""

    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE IF NOT EXISTS cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
        conn.execute("CREATE TABLE IF NOT EXISTS ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")

        def _put_bubble(session_id: str, bubble: Bubble) -> None:
            bubble_id, kind, text, send_ms = bubble
            value: Dict[str, Any] = {"bubbleId": bubble_id, "type": kind, "text": text}
            if send_ms is not None:
                value["timingInfo"] = {"clientRpcSendTime": send_ms}
            conn.execute(
                "INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)",
                (f"bubbleId:{session_id}:{bubble_id}", json.dumps(value)),
            )

        for session_id, bubbles in sessions.items():
            headers = [{"bubbleId": b[0], "type": b[1]} for b in bubbles]
            conn.execute(
                "INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)",
                (
                    f"composerData:{session_id}",
                    json.dumps({"composerId": session_id, "fullConversationHeadersOnly": headers}),
                ),
            )
            for bubble in bubbles:
                _put_bubble(session_id, bubble)
        for session_id, bubble in orphans:
            _put_bubble(session_id, bubble)
        if email is not None:
            conn.execute(
                "INSERT INTO ItemTable (key, value) VALUES (?, ?)",
                ("cursorAuth/cachedEmail", email),
            )
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def source_db_factory(tmp_path: Path) -> Callable[..., Path]:
    counter = {"n": 0}

    def _factory(sessions: Dict[str, Sequence[Bubble]], **kwargs: Any) -> Path:
        counter["n"] += 1
        return write_source_db(tmp_path / f"state-{counter['n']}.vscdb", sessions, **kwargs)

    return _factory


@pytest.fixture
def conversation() -> Dict[str, List[Bubble]]:
    """One session ``[U1, A1, U2, A2]`` plus a session opening with a response."""

    return {
        "session-1": [
            ("u1", 1, "first question", BASE_MS - 10_000),
            ("a1", 2, "first answer", BASE_MS + 123),
            ("u2", 1, "second question", BASE_MS + 100_000),
            ("a2", 2, "second answer", BASE_MS + 200_456),
        ],
        "session-2": [
            ("a0", 2, "unprompted", BASE_MS + 300_000),
        ],
    }


class FakePool:
    """Stands in for ``psycopg_pool.ConnectionPool`` with an in-memory sink table."""

    def __init__(self) -> None:
        self.rows: List[Dict[str, Any]] = []
        self.queries: List[Tuple[str, Any]] = []
        self.fail_when: Optional[Callable[[str, Any], bool]] = None
        self.commits = 0

    class _ConnCtx:
        def __init__(self, pool: "FakePool"):
            self._pool = pool

        def __enter__(self):
            return FakePool._Connection(self._pool)

        def __exit__(self, exc_type, exc, tb):
            return False

    class _Connection:
        def __init__(self, pool: "FakePool"):
            self._pool = pool

        class _Cursor:
            def __init__(self, pool: "FakePool"):
                self._pool = pool
                self._rows: Any = None

            def __enter__(self):
                return self

            def __exit__(self, exc_type, exc, tb):
                return False

            def execute(self, query, params=None):  # type: ignore[no-untyped-def]
                normalized = " ".join(str(query).split())
                self._pool.queries.append((normalized, params))
                if self._pool.fail_when is not None and self._pool.fail_when(normalized, params):
                    raise psycopg.OperationalError("connection refused")
                if normalized.startswith("INSERT INTO"):
                    row = {"id": len(self._pool.rows) + 1, "created_at": None, **params}
                    self._pool.rows.append(row)
                    self._rows = {"id": row["id"]}
                elif normalized.startswith("SELECT id, created_at"):
                    candidates = [
                        r for r in self._pool.rows if not params or r["user_id"] == params["user_id"]
                    ]
                    candidates.sort(key=lambda r: r["timestamp"], reverse=True)
                    self._rows = candidates[:1]
                elif normalized == "SELECT 1":
                    self._rows = {"?column?": 1}
                else:
                    self._rows = None

            def fetchone(self):  # type: ignore[no-untyped-def]
                if isinstance(self._rows, list):
                    return self._rows[0] if self._rows else None
                return self._rows

            def fetchall(self):  # type: ignore[no-untyped-def]
                if isinstance(self._rows, list):
                    return self._rows
                return [self._rows] if self._rows else []

        def cursor(self):
            return FakePool._Connection._Cursor(self._pool)

        def commit(self):
            self._pool.commits += 1

    def connection(self):
        return FakePool._ConnCtx(self)

    def close(self) -> None:
        return None


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()
