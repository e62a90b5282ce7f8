"""Command line entry point: ``python -m prompt_sync {run,once,status}``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional, Sequence

from prompt_sync.app import configure_logging
from prompt_sync.runtime import SyncRuntime, build_runtime
from prompt_sync.sync.base import SyncError
from prompt_sync.sync.settings import load_sync_settings
from prompt_sync.sync.state import SchedulerStateStore

logger = logging.getLogger("prompt_sync.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prompt_sync", description="Sync Cursor prompts into PostgreSQL")
    parser.add_argument("--config", help="YAML settings file (defaults to SYNC_CONFIG_PATH)")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)
    run = sub.add_parser("run", help="Run the scheduler until interrupted")
    run.add_argument("--interval", type=int, help="Interval in minutes (persisted)")
    sub.add_parser("once", help="Run a single tick and print the result")
    sub.add_parser("status", help="Print persisted scheduler state")
    return parser


async def _run_forever(runtime: SyncRuntime) -> None:
    scheduler = runtime.scheduler
    await scheduler.start()
    try:
        while scheduler.is_running:
            await asyncio.sleep(1)
    finally:
        await scheduler.stop()
        await scheduler.wait_idle()


def cmd_run(runtime: SyncRuntime, interval: Optional[int]) -> int:
    if interval is not None:
        runtime.scheduler.set_interval(interval)
    try:
        asyncio.run(_run_forever(runtime))
    except KeyboardInterrupt:
        logger.info("interrupted; scheduler stopped")
    return 0


def cmd_once(runtime: SyncRuntime) -> int:
    try:
        result = runtime.pipeline.run_once()
    except SyncError as exc:
        logger.error("tick failed | reason=%s", exc)
        return 1
    summary = {
        "aborted": result.aborted,
        "lower_bound_ms": result.lower_bound.value_ms,
        "lower_bound_origin": result.lower_bound.origin.value,
        "extracted": result.extracted,
        "filtered_out": result.filtered_out,
        "inserted": result.report.inserted,
        "skipped": result.report.skipped,
        "failed": result.report.failed,
    }
    print(json.dumps(summary, indent=2))
    return 2 if result.aborted else 0


def cmd_status(state_path: Optional[str]) -> int:
    print(json.dumps(SchedulerStateStore(state_path).load(), indent=2, default=str))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    settings = load_sync_settings(args.config)
    if args.command == "status":
        return cmd_status(settings.state_path)
    runtime = build_runtime(settings)
    try:
        if args.command == "run":
            return cmd_run(runtime, args.interval)
        return cmd_once(runtime)
    finally:
        runtime.close()


if __name__ == "__main__":
    sys.exit(main())
