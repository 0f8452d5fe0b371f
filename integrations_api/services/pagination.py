"""Keyset pagination over tables ordered by a unique ``id`` column.

Pages are fetched with a range predicate on ``id`` instead of an offset, so
issued cursors stay valid while rows are appended concurrently.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar
from uuid import UUID

from integrations_api.services.errors import RepositoryValidationError

T = TypeVar("T")

SortOrder = Literal["asc", "desc"]

MIN_PAGE_LIMIT = 1
MAX_PAGE_LIMIT = 100
DEFAULT_PAGE_LIMIT = 100


@dataclass(slots=True)
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    next_cursor: str | None = None


def validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise RepositoryValidationError("limit must be an integer")
    if limit < MIN_PAGE_LIMIT or limit > MAX_PAGE_LIMIT:
        raise RepositoryValidationError(f"limit must be between {MIN_PAGE_LIMIT} and {MAX_PAGE_LIMIT}")
    return limit


def validate_order(order: str) -> SortOrder:
    normalized = (order or "").strip().lower()
    if normalized == "asc":
        return "asc"
    if normalized == "desc":
        return "desc"
    raise RepositoryValidationError("order must be one of: asc, desc")


def parse_cursor(cursor: str | None) -> UUID | None:
    if cursor is None or cursor == "":
        return None
    try:
        return UUID(cursor)
    except (ValueError, AttributeError, TypeError) as exc:
        raise RepositoryValidationError("cursor is not a valid id") from exc


def build_keyset_query(
    *,
    table: str,
    columns: Sequence[str],
    limit: int,
    cursor: str | None,
    order: str,
) -> tuple[str, list[Any]]:
    """Return SQL and positional params selecting ``limit + 1`` rows after ``cursor``."""
    validate_limit(limit)
    direction = validate_order(order)
    after = parse_cursor(cursor)

    params: list[Any] = []
    where_sql = "true"
    if after is not None:
        params.append(after)
        comparator = ">" if direction == "asc" else "<"
        where_sql = f"id {comparator} $1::uuid"
    params.append(limit + 1)

    select_sql = ",\n              ".join(columns)
    sql = f"""
            select
              {select_sql}
            from {table}
            where {where_sql}
            order by id {direction}
            limit ${len(params)}
            """
    return sql, params


def paginate(rows: Sequence[T], *, limit: int, cursor_of: Callable[[T], str]) -> Page[T]:
    """Trim a ``limit + 1`` result to ``limit`` and derive the next cursor."""
    items = list(rows)
    if len(items) <= limit:
        return Page(items=items, next_cursor=None)
    items = items[:limit]
    return Page(items=items, next_cursor=cursor_of(items[-1]))
