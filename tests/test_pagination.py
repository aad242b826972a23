import base64
from datetime import datetime, timedelta, timezone

import pytest

from vibefeed.pagination import (
    CursorPage,
    decode_score_cursor,
    decode_timestamp_cursor,
    encode_score_cursor,
    encode_timestamp_cursor,
)


def _b64(raw: str) -> str:
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


@pytest.mark.parametrize("score", [0.0, 5.743491774985174, 1e-12, 123456789.125, 3.0])
def test_score_cursor_round_trip(score: float) -> None:
    cursor = encode_score_cursor(score, "item-1")
    assert decode_score_cursor(cursor) == (score, "item-1")


def test_score_cursor_is_unpadded_urlsafe() -> None:
    cursor = encode_score_cursor(1.5, "a" * 7)
    assert "=" not in cursor
    assert "+" not in cursor and "/" not in cursor


def test_score_cursor_splits_on_first_colon() -> None:
    cursor = encode_score_cursor(2.5, "post:with:colons")
    assert decode_score_cursor(cursor) == (2.5, "post:with:colons")


@pytest.mark.parametrize(
    "cursor",
    [
        None,
        "",
        "!!!not-base64!!!",
        _b64("no-separator"),
        _b64("abc:item"),
        _b64("nan:item"),
        _b64("inf:item"),
        _b64("1.5:"),
    ],
)
def test_invalid_score_cursor_decodes_to_none(cursor: str | None) -> None:
    assert decode_score_cursor(cursor) is None


def test_timestamp_cursor_round_trip_keeps_microseconds() -> None:
    moment = datetime(2026, 2, 3, 4, 5, 6, 789012, tzinfo=timezone.utc)
    cursor = encode_timestamp_cursor(moment, "item-9")
    assert decode_timestamp_cursor(cursor) == (moment, "item-9")


def test_timestamp_cursor_encodes_utc_with_z_suffix() -> None:
    plus_two = timezone(timedelta(hours=2))
    moment = datetime(2026, 2, 3, 6, 0, 0, tzinfo=plus_two)
    raw = base64.urlsafe_b64decode(encode_timestamp_cursor(moment, "x") + "==").decode()
    assert raw == "2026-02-03T04:00:00.000000Z:x"
    decoded, _ = decode_timestamp_cursor(encode_timestamp_cursor(moment, "x"))
    assert decoded == moment
    assert decoded.tzinfo == timezone.utc


def test_timestamp_cursor_accepts_offsets_and_colon_ids() -> None:
    cursor = _b64("2026-02-03T04:00:00+02:00:repost:42")
    moment, item_id = decode_timestamp_cursor(cursor)
    assert moment == datetime(2026, 2, 3, 2, 0, tzinfo=timezone.utc)
    assert item_id == "repost:42"


@pytest.mark.parametrize(
    "cursor",
    [
        None,
        "",
        "%%%",
        _b64("yesterday:item"),
        _b64("2026-02-03T04:00:00Z"),
        _b64("2026-13-45T04:00:00Z:item"),
        _b64("2026-02-03 04:00:00:item"),
    ],
)
def test_invalid_timestamp_cursor_decodes_to_none(cursor: str | None) -> None:
    assert decode_timestamp_cursor(cursor) is None


def test_cursor_page_defaults() -> None:
    page = CursorPage[int](items=[1, 2])
    assert page.next_cursor is None
    assert page.has_more is False
