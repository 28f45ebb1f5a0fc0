"""Opaque cursor pagination shared by every directory listing.

A cursor is base64 of either a decimal start index (what we emit) or, for
cursors handed out by older releases, the last ID seen on the previous page.
Listings are ordered before slicing so that a cursor means the same position
across requests.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar

from slack_directory_mcp.errors import InvalidCursorError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 1000
MAX_PAGE_SIZE = 1000


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    next_cursor: str = ""
    total: int = 0
    start_index: int = 0

    @property
    def has_more(self) -> bool:
        return bool(self.next_cursor)


def clamp_limit(
    limit: int, *, default: int = DEFAULT_PAGE_SIZE, maximum: int = MAX_PAGE_SIZE
) -> int:
    if limit <= 0:
        return default
    if limit > maximum:
        logger.warning("Limit %d exceeds maximum, capping to %d", limit, maximum)
        return maximum
    return limit


def encode_cursor(index: int) -> str:
    return base64.b64encode(str(index).encode()).decode()


def decode_cursor(cursor: str) -> int | str:
    """Decode a cursor into a start index (int) or a legacy last-seen ID (str)."""
    try:
        payload = base64.b64decode(cursor, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidCursorError(cursor, str(exc)) from exc

    if not payload:
        raise InvalidCursorError(cursor, "empty payload")

    # Only a plain ASCII decimal is an index; anything else is a legacy ID
    digits = payload[1:] if payload.startswith("-") else payload
    if not (digits.isascii() and digits.isdigit()):
        return payload
    if digits != payload:
        raise InvalidCursorError(cursor, "negative index")
    return int(payload)


def order_for_pagination(
    items: Sequence[T],
    key: Callable[[T], str],
    *,
    presorted: bool | None = None,
) -> list[T]:
    """Return ``items`` in a deterministic order ready for slicing.

    ``presorted=True`` keeps the caller's order, ``False`` sorts by ``key``.
    With ``None`` the order is guessed: if the first element sorts after the
    last under ``key`` the list cannot be in default order, so it is assumed
    to carry a deliberate order and left alone. The guess can be wrong for
    short lists or lists that happen to be monotonic under ``key``; callers
    that apply their own sort should pass ``presorted=True``.
    """
    ordered = list(items)
    if presorted is None:
        presorted = len(ordered) > 1 and key(ordered[0]) > key(ordered[-1])
    if not presorted:
        ordered.sort(key=key)
    return ordered


def paginate(
    items: Sequence[T],
    cursor: str,
    limit: int,
    *,
    id_key: Callable[[T], str],
) -> Page[T]:
    if limit <= 0:
        raise ValueError(f"page size must be positive, got {limit}")

    total = len(items)
    start_index = 0
    if cursor:
        try:
            position = decode_cursor(cursor)
        except InvalidCursorError as exc:
            logger.warning("Failed to decode cursor, restarting from the first page: %s", exc)
            position = 0

        if isinstance(position, int):
            start_index = min(position, total)
            logger.debug("Using index-based cursor start_index=%d", start_index)
        else:
            start_index = _resume_after_id(items, position, id_key)
            logger.debug(
                "Using ID-based cursor last_id=%s start_index=%d", position, start_index
            )

    end_index = min(start_index + limit, total)
    paged = list(items[start_index:end_index])

    next_cursor = ""
    if end_index < total:
        next_cursor = encode_cursor(end_index)

    logger.debug(
        "Pagination complete total=%d start=%d end=%d has_more=%s",
        total,
        start_index,
        end_index,
        bool(next_cursor),
    )
    return Page(items=paged, next_cursor=next_cursor, total=total, start_index=start_index)


def _resume_after_id(items: Sequence[T], last_id: str, id_key: Callable[[T], str]) -> int:
    for i, item in enumerate(items):
        if id_key(item) > last_id:
            return i
    return len(items)
