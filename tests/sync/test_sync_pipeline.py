from unittest.mock import MagicMock

import pytest

from prompt_sync.storage.sink_writer import SinkWriter
from prompt_sync.storage.source_reader import SourceReader
from prompt_sync.sync.base import BoundOrigin, SourceUnavailable, TickState, WatermarkFetchFailed
from prompt_sync.sync.pipeline import SyncContext, SyncPipeline
from prompt_sync.sync.reconstructor import ConversationReconstructor
from prompt_sync.sync.watermark import WatermarkResolver

BASE_MS = 1735725600000
# 2024-12-31 00:00:00 UTC, before every fixture record
EARLY_FALLBACK_MS = 1735603200000


def _pipeline(path, pool, *, user_id="dev@example.com", sink=True) -> SyncPipeline:
    source = SourceReader(str(path))
    writer = SinkWriter(pool, "cursor_query_results") if sink else None
    resolver = WatermarkResolver(writer, source, fallback_ms=EARLY_FALLBACK_MS)
    return SyncPipeline(
        SyncContext(
            source=source,
            sink=writer,
            resolver=resolver,
            reconstructor=ConversationReconstructor(source),
            user_id=user_id,
        )
    )


def test_first_tick_writes_prompted_responses(source_db_factory, conversation, fake_pool):
    pipeline = _pipeline(source_db_factory(conversation), fake_pool)

    result = pipeline.run_once()

    assert result.aborted is False
    assert result.lower_bound.origin is BoundOrigin.FALLBACK
    assert result.extracted == 3
    assert result.report.inserted == 2
    assert result.report.skipped == 1
    assert [(r["timestamp"], r["prompt"], r["user_id"]) for r in fake_pool.rows] == [
        ("2025-01-01 10:00:00", "first question", "dev@example.com"),
        ("2025-01-01 10:03:20", "second question", "dev@example.com"),
    ]
    assert pipeline.state is TickState.IDLE


def test_second_tick_resumes_from_checkpoint_without_duplicates(source_db_factory, conversation, fake_pool):
    path = source_db_factory(conversation)
    pipeline = _pipeline(path, fake_pool)
    pipeline.run_once()

    result = pipeline.run_once()

    assert result.lower_bound.origin is BoundOrigin.EXACT
    assert result.lower_bound.value_ms == BASE_MS + 200_456
    assert result.report.inserted == 0
    assert len(fake_pool.rows) == 2


def test_partial_write_resumes_from_last_written_record(source_db_factory, conversation, fake_pool):
    pipeline = _pipeline(source_db_factory(conversation), fake_pool)
    inserts = {"n": 0}

    def _fail_after_first_insert(query, params):
        if not query.startswith("INSERT INTO"):
            return False
        inserts["n"] += 1
        return inserts["n"] > 1

    fake_pool.fail_when = _fail_after_first_insert
    first = pipeline.run_once()

    assert (first.report.inserted, first.report.failed, first.report.skipped) == (1, 1, 1)
    assert [r["prompt"] for r in fake_pool.rows] == ["first question"]

    fake_pool.fail_when = None
    second = pipeline.run_once()

    assert second.lower_bound.origin is BoundOrigin.EXACT
    assert second.lower_bound.value_ms == BASE_MS + 123
    assert second.report.inserted == 1
    assert [r["prompt"] for r in fake_pool.rows] == ["first question", "second question"]


def test_new_activity_after_checkpoint_is_synced(source_db_factory, conversation, fake_pool):
    path = source_db_factory(conversation)
    pipeline = _pipeline(path, fake_pool)
    pipeline.run_once()

    conversation["session-1"].extend(
        [("u3", 1, "third question", BASE_MS + 400_000), ("a3", 2, "third answer", BASE_MS + 500_000)]
    )
    source_db_factory(conversation)
    pipeline.context.source.db_path = str(path.parent / "state-2.vscdb")
    result = pipeline.run_once()

    assert result.report.inserted == 1
    assert fake_pool.rows[-1]["prompt"] == "third question"
    assert max(r["timestamp"] for r in fake_pool.rows) == "2025-01-01 10:08:20"


def test_checkpoint_is_scoped_to_user(source_db_factory, conversation, fake_pool):
    fake_pool.rows.append({"id": 99, "timestamp": "2030-01-01 00:00:00", "prompt": "x", "user_id": "someone-else"})
    pipeline = _pipeline(source_db_factory(conversation), fake_pool)

    result = pipeline.run_once()

    assert result.lower_bound.origin is BoundOrigin.FALLBACK
    assert result.report.inserted == 2


def test_failed_checkpoint_aborts_without_touching_source():
    reconstructor = MagicMock()
    sink = MagicMock()
    real = WatermarkResolver(MagicMock(), MagicMock(), fallback_ms=0)
    real.sink.fetch_latest.side_effect = WatermarkFetchFailed("down")
    pipeline = SyncPipeline(
        SyncContext(source=MagicMock(), sink=sink, resolver=real, reconstructor=reconstructor, user_id="u")
    )

    result = pipeline.run_once()

    assert result.aborted is True
    assert result.lower_bound.should_abort
    reconstructor.extract.assert_not_called()
    sink.insert_batch.assert_not_called()
    real.source.execute.assert_not_called()


def test_retry_budget_across_ticks(source_db_factory, conversation, fake_pool):
    pipeline = _pipeline(source_db_factory(conversation), fake_pool)
    fake_pool.fail_when = lambda query, params: query.startswith("SELECT id, created_at")

    assert pipeline.run_once().aborted is True
    assert pipeline.run_once().aborted is True
    third = pipeline.run_once()

    assert third.aborted is False
    assert third.lower_bound.origin is BoundOrigin.FALLBACK
    assert third.report.inserted == 2
    assert pipeline.context.resolver.consecutive_failures == 0


def test_without_sink_nothing_is_written(source_db_factory, conversation, fake_pool):
    pipeline = _pipeline(source_db_factory(conversation), fake_pool, sink=False)

    result = pipeline.run_once()

    assert result.extracted == 3
    assert result.report.attempted == 0
    assert fake_pool.queries == []


def test_source_errors_escape_and_reset_state(tmp_path, fake_pool):
    pipeline = _pipeline(tmp_path / "missing.vscdb", fake_pool)

    with pytest.raises(SourceUnavailable):
        pipeline.run_once()

    assert pipeline.state is TickState.IDLE
    assert fake_pool.rows == []
