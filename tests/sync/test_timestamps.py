import pytest

from prompt_sync.sync.timestamps import (
    normalize_display,
    parse_display_ms,
    render_epoch_ms,
    try_parse_display_ms,
)

BASE_MS = 1735725600000


def test_render_truncates_to_whole_seconds():
    assert render_epoch_ms(BASE_MS + 999) == "2025-01-01 10:00:00"
    assert render_epoch_ms(BASE_MS + 1000) == "2025-01-01 10:00:01"


@pytest.mark.parametrize(
    "text",
    [
        "2025-01-01 10:00:00",
        "2025-01-01T10:00:00",
        "2025-01-01T10:00:00Z",
        "2025-01-01 10:00:00.123456",
        "2025-01-01T10:00:00+02:00",
        "2025-01-01T10:00:00-0500",
    ],
)
def test_normalize_display_variants(text):
    assert normalize_display(text) == "2025-01-01 10:00:00"


def test_parse_is_utc_whole_seconds():
    assert parse_display_ms("2025-01-01 10:00:00") == BASE_MS
    assert parse_display_ms("2025-01-01T10:00:00.750Z") == BASE_MS


def test_parse_rejects_other_shapes():
    with pytest.raises(ValueError):
        parse_display_ms("01/01/2025 10:00")


def test_try_parse_returns_none_on_failure():
    assert try_parse_display_ms(None) is None
    assert try_parse_display_ms("") is None
    assert try_parse_display_ms("soon") is None
    assert try_parse_display_ms("2025-01-01 10:00:00") == BASE_MS
