"""Keyset pagination for the ranked feeds.

Two cursor flavours, both opaque URL-safe base64 (no padding):
  - score cursor     "<score>:<id>"      for-you feed, ordered by score desc
  - timestamp cursor "<rfc3339>:<id>"    following feed, ordered by sort_date desc

Decoding never raises. Anything malformed decodes to None, which callers treat
as "no cursor" and serve the first page.
"""

import base64
import binascii
import logging
import math
import re
from datetime import datetime, timezone
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")

# The timestamp itself contains ':' so the id separator is located after an
# explicit RFC 3339 match instead of by splitting.
_TIMESTAMP_CURSOR_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})):(.+)$"
)


class CursorPage(BaseModel, Generic[T]):
    """Cursor-based page.

    `next_cursor` points strictly past the last item of this page. Pass it back as
    `cursor` to fetch the next page.
    """

    items: list[T] = Field(default_factory=list)
    next_cursor: str | None = Field(
        default=None,
        description="Opaque cursor for the next page. Null when no more pages.",
    )
    has_more: bool = Field(default=False, description="True when additional pages exist.")


def _b64encode(raw: str) -> str:
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def _b64decode(cursor: str) -> str | None:
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        return base64.b64decode(padded.encode(), altchars=b"-_", validate=True).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def encode_score_cursor(score: float, item_id: str) -> str:
    """Encode a (score, id) pair. repr() keeps the float exact across the round trip."""
    return _b64encode(f"{score!r}:{item_id}")


def decode_score_cursor(cursor: str | None) -> tuple[float, str] | None:
    if not cursor:
        return None
    raw = _b64decode(cursor)
    if raw is None or ":" not in raw:
        logger.debug("Rejected score cursor %r", cursor)
        return None
    score_str, item_id = raw.split(":", 1)
    try:
        score = float(score_str)
    except ValueError:
        logger.debug("Rejected score cursor %r: bad score", cursor)
        return None
    if not math.isfinite(score) or not item_id:
        logger.debug("Rejected score cursor %r", cursor)
        return None
    return score, item_id


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    utc = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return utc.isoformat(timespec="microseconds") + "Z"


def encode_timestamp_cursor(moment: datetime, item_id: str) -> str:
    """Encode a (sort_date, id) pair; the timestamp is normalised to UTC."""
    return _b64encode(f"{_format_timestamp(moment)}:{item_id}")


def decode_timestamp_cursor(cursor: str | None) -> tuple[datetime, str] | None:
    if not cursor:
        return None
    raw = _b64decode(cursor)
    if raw is None:
        logger.debug("Rejected timestamp cursor %r", cursor)
        return None
    match = _TIMESTAMP_CURSOR_RE.match(raw)
    if match is None:
        logger.debug("Rejected timestamp cursor %r", cursor)
        return None
    stamp, item_id = match.groups()
    if stamp.endswith("Z"):
        stamp = stamp[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(stamp)
    except ValueError:
        logger.debug("Rejected timestamp cursor %r: bad timestamp", cursor)
        return None
    return moment.astimezone(timezone.utc), item_id
