"""Field accessor rules for loosely shaped upstream payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .base import RecordParseSkipped


@dataclass(frozen=True)
class FieldRule:
    """Accepted source names for one logical field, highest priority first."""

    target: str
    candidates: Tuple[str, ...]

    def lookup(self, payload: Mapping[str, Any]) -> Optional[Any]:
        for name in self.candidates:
            value = payload.get(name)
            if value is None:
                continue
            if isinstance(value, str) and value.strip() == "":
                continue
            return value
        return None


TIME_FIELD = FieldRule("timestamp", ("timestamp", "created_at", "time"))
TEXT_FIELD = FieldRule("prompt", ("prompt", "text", "message", "content"))
RECORD_RULES: Tuple[FieldRule, ...] = (TIME_FIELD, TEXT_FIELD)


def resolve_fields(payload: Mapping[str, Any], rules: Sequence[FieldRule] = RECORD_RULES) -> Dict[str, Any]:
    """Return ``{rule.target: value}`` for every rule or raise ``RecordParseSkipped``."""

    resolved: Dict[str, Any] = {}
    for rule in rules:
        value = rule.lookup(payload)
        if value is None:
            raise RecordParseSkipped(f"no {rule.target} field (tried {', '.join(rule.candidates)})")
        resolved[rule.target] = value if isinstance(value, str) else str(value)
    return resolved


__all__ = ["FieldRule", "RECORD_RULES", "TEXT_FIELD", "TIME_FIELD", "resolve_fields"]
