from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc
from opentelemetry import trace

from integrations_api.core.config import get_settings
from integrations_api.schemas.jobs import JobOut
from integrations_api.schemas.packages import PackageOut, PackageOutput
from integrations_api.services.errors import (
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)
from integrations_api.services.pagination import Page, build_keyset_query, paginate, parse_cursor

__all__ = [
    "PostgresRepository",
    "RepositoryError",
    "RepositoryNotFoundError",
    "RepositoryUnavailableError",
    "RepositoryValidationError",
    "get_repository",
]

tracer = trace.get_tracer(__name__)

_UNAVAILABLE_ERRORS = (OSError, asyncpg.PostgresConnectionError, asyncpg.InterfaceError)

JOB_COLUMNS = (
    "id::text as id",
    "registry",
    "package_name",
    "status",
    "trace_id",
    "created_at",
)
PACKAGE_COLUMNS = (
    "id::text as id",
    "registry",
    "name",
    "version",
    "downloads",
)


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def insert_job(
        self,
        *,
        job_id: UUID,
        registry: str,
        package_name: str,
        trace_id: str | None,
    ) -> JobOut:
        pool = await self._get_pool()
        with tracer.start_as_current_span("db.insert_job"):
            try:
                async with pool.acquire() as conn:
                    async with conn.transaction():
                        row = await conn.fetchrow(
                            """
                            insert into jobs (id, registry, package_name, status, trace_id, created_at)
                            values ($1::uuid, $2, $3, 'processing', $4, $5)
                            returning
                              id::text as id,
                              registry,
                              package_name,
                              status,
                              trace_id,
                              created_at
                            """,
                            job_id,
                            registry,
                            package_name,
                            trace_id,
                            datetime.now(timezone.utc),
                        )
            except _UNAVAILABLE_ERRORS as exc:
                raise RepositoryUnavailableError("database unavailable") from exc
        if not row:
            raise RepositoryError("failed to insert job")
        return self._job_row_to_model(row)

    async def get_job(self, job_id: str) -> JobOut:
        parsed_id = self._parse_id(job_id, entity="job")
        row = await self._fetchrow(
            f"""
            select
              {", ".join(JOB_COLUMNS)}
            from jobs
            where id = $1::uuid
            """,
            parsed_id,
        )
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._job_row_to_model(row)

    async def list_jobs(self, *, limit: int, cursor: str | None, order: str) -> Page[JobOut]:
        sql, params = build_keyset_query(table="jobs", columns=JOB_COLUMNS, limit=limit, cursor=cursor, order=order)
        rows = await self._fetch(sql, *params)
        return paginate([self._job_row_to_model(row) for row in rows], limit=limit, cursor_of=JobOut.cursor)

    async def get_package(self, package_id: str) -> PackageOut:
        parsed_id = self._parse_id(package_id, entity="package")
        row = await self._fetchrow(
            f"""
            select
              {", ".join(PACKAGE_COLUMNS)}
            from packages
            where id = $1::uuid
            """,
            parsed_id,
        )
        if not row:
            raise RepositoryNotFoundError(f"package with id {package_id} not found")
        return self._package_row_to_model(row)

    async def list_packages(self, *, limit: int, cursor: str | None, order: str) -> Page[PackageOut]:
        sql, params = build_keyset_query(
            table="packages",
            columns=PACKAGE_COLUMNS,
            limit=limit,
            cursor=cursor,
            order=order,
        )
        rows = await self._fetch(sql, *params)
        return paginate(
            [self._package_row_to_model(row) for row in rows],
            limit=limit,
            cursor_of=PackageOut.cursor,
        )

    async def upsert_package(self, package: PackageOutput) -> PackageOut:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    return await self._upsert_package(conn=conn, package=package)
        except _UNAVAILABLE_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc
        except (pg_exc.CheckViolationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError(str(exc)) from exc

    async def complete_job_with_package(self, *, job_id: UUID, package: PackageOutput) -> tuple[JobOut, PackageOut]:
        """Upsert the scraped package and mark its job completed in one transaction.

        Both statements are idempotent, so replaying the same job message leaves
        one package row with the latest values and the job ``completed``.
        """
        pool = await self._get_pool()
        with tracer.start_as_current_span("db.complete_job_with_package") as span:
            span.set_attribute("job.id", str(job_id))
            try:
                async with pool.acquire() as conn:
                    async with conn.transaction():
                        stored_package = await self._upsert_package(conn=conn, package=package)
                        row = await conn.fetchrow(
                            f"""
                            update jobs
                            set status = 'completed'
                            where id = $1::uuid
                            returning
                              {", ".join(JOB_COLUMNS)}
                            """,
                            job_id,
                        )
                        if not row:
                            raise RepositoryNotFoundError("job not found")
            except _UNAVAILABLE_ERRORS as exc:
                raise RepositoryUnavailableError("database unavailable") from exc
            except (pg_exc.CheckViolationError, asyncpg.DataError) as exc:
                raise RepositoryValidationError(str(exc)) from exc
        return self._job_row_to_model(row), stored_package

    async def _fetchrow(self, sql: str, *args: Any) -> asyncpg.Record | None:
        pool = await self._get_pool()
        try:
            return await pool.fetchrow(sql, *args)
        except _UNAVAILABLE_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _fetch(self, sql: str, *args: Any) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        try:
            return await pool.fetch(sql, *args)
        except _UNAVAILABLE_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _upsert_package(self, *, conn: asyncpg.Connection, package: PackageOutput) -> PackageOut:
        row = await conn.fetchrow(
            f"""
            insert into packages (id, registry, name, version, downloads)
            values ($1::uuid, $2, $3, $4, $5)
            on conflict (registry, name) do update
            set
              version = excluded.version,
              downloads = excluded.downloads
            returning
              {", ".join(PACKAGE_COLUMNS)}
            """,
            package.id,
            package.registry,
            package.name,
            package.version,
            package.downloads,
        )
        if not row:
            raise RepositoryError("failed to upsert package")
        return self._package_row_to_model(row)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("IA_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _parse_id(value: str, *, entity: str) -> UUID:
        try:
            parsed = parse_cursor(value)
        except RepositoryValidationError as exc:
            raise RepositoryValidationError(f"invalid {entity} id") from exc
        if parsed is None:
            raise RepositoryValidationError(f"invalid {entity} id")
        return parsed

    @staticmethod
    def _job_row_to_model(row: asyncpg.Record) -> JobOut:
        return JobOut(
            id=row["id"],
            registry=row["registry"],
            package_name=row["package_name"],
            status=row["status"],
            trace_id=row["trace_id"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _package_row_to_model(row: asyncpg.Record) -> PackageOut:
        return PackageOut(
            id=row["id"],
            registry=row["registry"],
            name=row["name"],
            version=row["version"],
            downloads=int(row["downloads"]),
        )


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
