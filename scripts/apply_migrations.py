#!/usr/bin/env python3
"""Apply the SQL files under migrations/ in filename order."""

from __future__ import annotations

import argparse
import asyncio
import os
from pathlib import Path
import sys

import asyncpg  # type: ignore[import-untyped]

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


def load_migrations(directory: Path = MIGRATIONS_DIR) -> list[tuple[str, str]]:
    return [(path.name, path.read_text(encoding="utf-8")) for path in sorted(directory.glob("*.sql"))]


def render_sql(migrations: list[tuple[str, str]]) -> str:
    return "\n".join(f"-- {name}\n{sql.strip()}\n" for name, sql in migrations)


async def apply(database_url: str, migrations: list[tuple[str, str]]) -> None:
    conn = await asyncpg.connect(dsn=database_url)
    try:
        async with conn.transaction():
            for _, sql in migrations:
                await conn.execute(sql)
    finally:
        await conn.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply integrations-api schema migrations.")
    parser.add_argument(
        "--database-url",
        default=os.getenv("IA_DATABASE_URL") or os.getenv("DATABASE_URL"),
        help="Postgres DSN (defaults to IA_DATABASE_URL or DATABASE_URL)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print the SQL instead of executing it")
    args = parser.parse_args()

    migrations = load_migrations()
    if args.dry_run:
        print(render_sql(migrations))
        return 0

    if not args.database_url:
        print("--database-url or IA_DATABASE_URL is required", file=sys.stderr)
        return 1

    asyncio.run(apply(args.database_url, migrations))
    for name, _ in migrations:
        print(f"applied {name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
