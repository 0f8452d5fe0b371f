from __future__ import annotations

import asyncio
from uuid import UUID

import pytest

from fakes import InMemoryRepository
from integrations_api.services.errors import RepositoryValidationError
from integrations_api.services.pagination import (
    build_keyset_query,
    paginate,
    parse_cursor,
    validate_limit,
    validate_order,
)

JOB_COLUMNS = ("id::text as id", "registry")


def _uuid(value: int) -> UUID:
    return UUID(int=value)


def _repository_with_jobs(count: int) -> InMemoryRepository:
    repository = InMemoryRepository()
    for value in range(1, count + 1):
        repository.add_job(_uuid(value), package_name=f"pkg-{value}")
    return repository


def _walk(repository: InMemoryRepository, *, limit: int, order: str) -> tuple[list[str], int]:
    async def run() -> tuple[list[str], int]:
        visited: list[str] = []
        pages = 0
        cursor: str | None = None
        while True:
            page = await repository.list_jobs(limit=limit, cursor=cursor, order=order)
            pages += 1
            visited.extend(job.id for job in page.items)
            if page.next_cursor is None:
                return visited, pages
            assert page.next_cursor == page.items[-1].id
            cursor = page.next_cursor

    return asyncio.run(run())


@pytest.mark.parametrize("limit", [0, -1, 101])
def test_validate_limit_rejects_out_of_range(limit: int) -> None:
    with pytest.raises(RepositoryValidationError):
        validate_limit(limit)


def test_validate_limit_accepts_bounds() -> None:
    assert validate_limit(1) == 1
    assert validate_limit(100) == 100


def test_validate_order_normalizes_and_rejects_unknown() -> None:
    assert validate_order("ASC") == "asc"
    assert validate_order("desc") == "desc"
    with pytest.raises(RepositoryValidationError):
        validate_order("sideways")


def test_parse_cursor_rejects_malformed_ids() -> None:
    assert parse_cursor(None) is None
    assert parse_cursor(str(_uuid(7))) == _uuid(7)
    with pytest.raises(RepositoryValidationError):
        parse_cursor("not-a-uuid")


def test_build_keyset_query_without_cursor_fetches_one_extra_row() -> None:
    sql, params = build_keyset_query(table="jobs", columns=JOB_COLUMNS, limit=20, cursor=None, order="asc")

    assert "where true" in sql
    assert "order by id asc" in sql
    assert "limit $1" in sql
    assert params == [21]


def test_build_keyset_query_descending_cursor_uses_less_than() -> None:
    sql, params = build_keyset_query(
        table="packages",
        columns=JOB_COLUMNS,
        limit=5,
        cursor=str(_uuid(9)),
        order="desc",
    )

    assert "from packages" in sql
    assert "where id < $1::uuid" in sql
    assert "order by id desc" in sql
    assert "limit $2" in sql
    assert params == [_uuid(9), 6]


def test_build_keyset_query_ascending_cursor_uses_greater_than() -> None:
    sql, _ = build_keyset_query(table="jobs", columns=JOB_COLUMNS, limit=5, cursor=str(_uuid(9)), order="asc")
    assert "where id > $1::uuid" in sql


def test_paginate_empty_result_has_no_cursor() -> None:
    page = paginate([], limit=10, cursor_of=str)
    assert page.items == []
    assert page.next_cursor is None


def test_paginate_truncates_extra_row_and_points_cursor_at_last_kept() -> None:
    page = paginate(["a", "b", "c", "d"], limit=3, cursor_of=lambda item: f"cursor-{item}")
    assert page.items == ["a", "b", "c"]
    assert page.next_cursor == "cursor-c"


@pytest.mark.parametrize("count,limit", [(1, 1), (5, 2), (10, 3), (12, 4), (7, 100)])
def test_ascending_traversal_visits_every_id_once_in_order(count: int, limit: int) -> None:
    visited, _ = _walk(_repository_with_jobs(count), limit=limit, order="asc")
    assert visited == [str(_uuid(value)) for value in range(1, count + 1)]


@pytest.mark.parametrize("count,limit", [(1, 1), (5, 2), (10, 3), (12, 4)])
def test_descending_traversal_visits_every_id_once_in_reverse(count: int, limit: int) -> None:
    visited, _ = _walk(_repository_with_jobs(count), limit=limit, order="desc")
    assert visited == [str(_uuid(value)) for value in range(count, 0, -1)]


def test_limit_equal_to_result_size_has_no_next_cursor() -> None:
    repository = _repository_with_jobs(5)
    page = asyncio.run(repository.list_jobs(limit=5, cursor=None, order="asc"))
    assert len(page.items) == 5
    assert page.next_cursor is None


def test_limit_one_below_result_size_returns_cursor_of_last_row() -> None:
    repository = _repository_with_jobs(5)
    page = asyncio.run(repository.list_jobs(limit=4, cursor=None, order="asc"))
    assert [job.id for job in page.items] == [str(_uuid(value)) for value in range(1, 5)]
    assert page.next_cursor == str(_uuid(4))


def test_cursor_past_the_end_returns_empty_page() -> None:
    repository = _repository_with_jobs(3)
    page = asyncio.run(repository.list_jobs(limit=10, cursor=str(_uuid(99)), order="asc"))
    assert page.items == []
    assert page.next_cursor is None


def test_rows_appended_after_cursor_issue_do_not_shift_pages() -> None:
    repository = _repository_with_jobs(4)

    async def run() -> list[str]:
        first = await repository.list_jobs(limit=2, cursor=None, order="asc")
        repository.add_job(_uuid(5))
        second = await repository.list_jobs(limit=2, cursor=first.next_cursor, order="asc")
        return [job.id for job in second.items]

    assert asyncio.run(run()) == [str(_uuid(3)), str(_uuid(4))]
