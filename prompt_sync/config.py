import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Load .env once when module is imported. `override=True` ensures that local
# development values defined in .env always take precedence over variables
# populated by the host system.
load_dotenv(override=True)


def get_env_value(name: str, default: Optional[str] = None) -> Optional[str]:
    """Fetch an environment value, returning ``default`` when unset."""

    value = os.environ.get(name)
    if value is None:
        return default
    return value


def _get_bool_env(name: str, default: str = "false") -> bool:
    value = get_env_value(name)
    if value is None:
        value = default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: str) -> int:
    value = get_env_value(name)
    try:
        return int(value if value is not None else default)
    except (TypeError, ValueError):
        return int(default)


def _get_optional_str(name: str) -> Optional[str]:
    value = get_env_value(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


@lru_cache(maxsize=1)
def get_sync_config_path() -> Optional[str]:
    return _get_optional_str("SYNC_CONFIG_PATH")


# =============================
# Scheduler
# =============================


@lru_cache(maxsize=1)
def get_sync_interval_minutes() -> int:
    return max(1, _get_int_env("SYNC_INTERVAL_MINUTES", "60"))


@lru_cache(maxsize=1)
def is_auto_start_enabled() -> bool:
    """Start the scheduler when the service boots (default: true)."""
    return _get_bool_env("SYNC_AUTO_START", "true")


@lru_cache(maxsize=1)
def get_sync_state_path() -> str:
    default = os.path.join(os.path.expanduser("~"), ".prompt_sync", "state.json")
    return get_env_value("SYNC_STATE_PATH", default) or default


@lru_cache(maxsize=1)
def get_max_watermark_retries() -> int:
    return max(1, _get_int_env("SYNC_MAX_WATERMARK_RETRIES", "3"))


@lru_cache(maxsize=1)
def get_fallback_timestamp() -> str:
    # Lower bound used when no checkpoint can be trusted
    return get_env_value("SYNC_FALLBACK_TIMESTAMP", "2025-09-01 10:50:15") or "2025-09-01 10:50:15"


# =============================
# Source (local activity store)
# =============================


@lru_cache(maxsize=1)
def get_source_db_path() -> Optional[str]:
    return _get_optional_str("SYNC_SOURCE_DB_PATH")


@lru_cache(maxsize=1)
def get_user_id() -> Optional[str]:
    return _get_optional_str("SYNC_USER_ID")


@lru_cache(maxsize=1)
def is_user_detection_enabled() -> bool:
    return _get_bool_env("SYNC_DETECT_USER_ID", "true")


# =============================
# Sink (PostgreSQL)
# =============================


@lru_cache(maxsize=1)
def get_postgres_host() -> Optional[str]:
    return _get_optional_str("POSTGRES_HOST")


@lru_cache(maxsize=1)
def get_postgres_port() -> int:
    return _get_int_env("POSTGRES_PORT", "5432")


@lru_cache(maxsize=1)
def get_postgres_database() -> str:
    return get_env_value("POSTGRES_DB", "cursor_analytics") or "cursor_analytics"


@lru_cache(maxsize=1)
def get_postgres_user() -> str:
    return get_env_value("POSTGRES_USER", "postgres") or "postgres"


@lru_cache(maxsize=1)
def get_postgres_password() -> str:
    return get_env_value("POSTGRES_PASSWORD", "") or ""


@lru_cache(maxsize=1)
def get_postgres_table() -> str:
    return get_env_value("POSTGRES_TABLE", "cursor_query_results") or "cursor_query_results"


@lru_cache(maxsize=1)
def get_log_level() -> str:
    return (get_env_value("LOG_LEVEL", "INFO") or "INFO").upper()


def clear_config_cache() -> None:
    """Reset cached getters (tests mutate the environment between cases)."""

    for getter in (
        get_sync_config_path,
        get_sync_interval_minutes,
        is_auto_start_enabled,
        get_sync_state_path,
        get_max_watermark_retries,
        get_fallback_timestamp,
        get_source_db_path,
        get_user_id,
        is_user_detection_enabled,
        get_postgres_host,
        get_postgres_port,
        get_postgres_database,
        get_postgres_user,
        get_postgres_password,
        get_postgres_table,
        get_log_level,
    ):
        getter.cache_clear()
