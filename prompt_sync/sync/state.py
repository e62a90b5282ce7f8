"""Persist scheduler settings and counters between runs."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("prompt_sync.sync.state")


class SchedulerStateStore:
    """JSON file backed state with an in-memory fallback when no path is set."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path).expanduser() if path else None
        self._memory: Dict[str, Any] = {}

    def load(self) -> Dict[str, Any]:
        if self.path is not None and self.path.exists():
            try:
                with self.path.open("r", encoding="utf-8") as handle:
                    data = json.load(handle)
                if isinstance(data, dict):
                    return data
                logger.warning("state file ignored; not an object | path=%s", self.path)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("state file unreadable | path=%s | reason=%s", self.path, exc)
        return dict(self._memory)

    def save(self, state: Dict[str, Any]) -> None:
        self._memory = dict(state)
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(state, handle, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.warning("state file not written | path=%s | reason=%s", self.path, exc)

    def update(self, **values: Any) -> Dict[str, Any]:
        state = self.load()
        state.update(values)
        self.save(state)
        return state


__all__ = ["SchedulerStateStore"]
