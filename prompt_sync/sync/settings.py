"""Configuration models for the sync engine."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from psycopg.conninfo import make_conninfo
from pydantic import BaseModel, Field, field_validator

from prompt_sync import config


_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def plain_identifier(value: str) -> str:
    """Return ``value`` stripped, or raise ``ValueError`` if it is not a bare SQL identifier."""

    value = value.strip()
    if not _IDENTIFIER.match(value):
        raise ValueError(f"not a plain SQL identifier: {value!r}")
    return value


class SinkConnection(BaseModel):
    """Connection details for the PostgreSQL sink."""

    host: str
    port: int = Field(default=5432, ge=1, le=65535)
    database: str
    user: str
    password: str = ""
    table_name: str = "cursor_query_results"

    @field_validator("table_name")
    @classmethod
    def _plain_identifier(cls, value: str) -> str:
        return plain_identifier(value)

    def conninfo(self) -> str:
        """Return a libpq keyword/value connection string."""

        return make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=self.password or None,
        )


class SyncSettings(BaseModel):
    """Everything the sync core consumes from its collaborators."""

    sync_interval_minutes: int = Field(default=60, ge=1)
    sink: Optional[SinkConnection] = None
    user_id: Optional[str] = None
    source_db_path: Optional[str] = None
    state_path: Optional[str] = None
    auto_start: bool = True
    detect_user_id: bool = True
    max_watermark_retries: int = Field(default=3, ge=1, le=100)
    fallback_timestamp: str = "2025-09-01 10:50:15"

    @field_validator("user_id", "source_db_path", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() == "":
            return None
        return value


def settings_from_env() -> Dict[str, Any]:
    """Collect settings from environment getters."""

    data: Dict[str, Any] = {
        "sync_interval_minutes": config.get_sync_interval_minutes(),
        "user_id": config.get_user_id(),
        "source_db_path": config.get_source_db_path(),
        "state_path": config.get_sync_state_path(),
        "auto_start": config.is_auto_start_enabled(),
        "detect_user_id": config.is_user_detection_enabled(),
        "max_watermark_retries": config.get_max_watermark_retries(),
        "fallback_timestamp": config.get_fallback_timestamp(),
    }
    host = config.get_postgres_host()
    if host:
        data["sink"] = {
            "host": host,
            "port": config.get_postgres_port(),
            "database": config.get_postgres_database(),
            "user": config.get_postgres_user(),
            "password": config.get_postgres_password(),
            "table_name": config.get_postgres_table(),
        }
    return data


def load_sync_settings(path: Optional[str] = None) -> SyncSettings:
    """Load ``SyncSettings`` from YAML overlaid on environment defaults.

    Keys present in the YAML file win; anything missing falls back to the
    environment (and ``.env``). A missing file is not an error.
    """

    data = settings_from_env()
    candidate = path or config.get_sync_config_path()
    if candidate:
        resolved = Path(candidate).expanduser()
        if resolved.exists():
            with resolved.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
            sink_overrides = loaded.pop("sink", None)
            data.update(loaded)
            if sink_overrides:
                data["sink"] = {**(data.get("sink") or {}), **sink_overrides}
    return SyncSettings.model_validate(data)


__all__ = ["SinkConnection", "plain_identifier", "SyncSettings", "load_sync_settings", "settings_from_env"]
