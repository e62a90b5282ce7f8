from __future__ import annotations

import logging
from typing import Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from prompt_sync.sync.settings import SinkConnection

logger = logging.getLogger("prompt_sync.postgres")

POOL_MAX_SIZE = 10
POOL_MAX_IDLE_SECONDS = 30.0
POOL_TIMEOUT_SECONDS = 2.0


def create_sink_pool(connection: SinkConnection, *, name: str = "prompt-sync-sink") -> ConnectionPool:
    """Build the bounded pool used for every sink read and write.

    The pool is opened without waiting so a sink that is down at startup only
    fails the ticks that need it.
    """

    pool = ConnectionPool(
        connection.conninfo(),
        min_size=1,
        max_size=POOL_MAX_SIZE,
        max_idle=POOL_MAX_IDLE_SECONDS,
        timeout=POOL_TIMEOUT_SECONDS,
        kwargs={"row_factory": dict_row, "connect_timeout": int(POOL_TIMEOUT_SECONDS)},
        name=name,
        open=False,
    )
    pool.open(wait=False)
    logger.info(
        "sink pool opened | host=%s | port=%s | database=%s | table=%s",
        connection.host,
        connection.port,
        connection.database,
        connection.table_name,
    )
    return pool


def close_pool(pool: Optional[ConnectionPool]) -> None:
    if pool is None:
        return
    pool.close()
    logger.info("sink pool closed")
