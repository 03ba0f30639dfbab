"""Forward-only migration runner and schema version helper."""

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import asyncpg

from paidroles.db.models import Table
from paidroles.db.pool import get_pool

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# pg advisory lock key shared by every migration runner of this application
MIGRATION_LOCK_ID = 720_431


@dataclass(frozen=True)
class Migration:
    """One numbered SQL migration file."""

    version: int
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


def discover_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> list[Migration]:
    """
    List migration files ordered by version.

    Files must be named ``NNN_description.sql``; anything else is ignored.

    Raises:
        FileNotFoundError: If the migrations directory does not exist
    """
    if not migrations_dir.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {migrations_dir}")

    migrations = []
    for sql_file in migrations_dir.glob("*.sql"):
        match = re.match(r"^(\d+)_", sql_file.name)
        if match:
            migrations.append(Migration(version=int(match.group(1)), path=sql_file))

    return sorted(migrations, key=lambda m: m.version)


def split_sql_statements(sql: str) -> list[str]:
    """
    Split a SQL script into individual statements.

    Comments are stripped; semicolons inside single-quoted literals do not
    terminate a statement.
    """
    sql = re.sub(r"--.*$", "", sql, flags=re.MULTILINE)
    sql = re.sub(r"/\*.*?\*/", "", sql, flags=re.DOTALL)

    statements = []
    current: list[str] = []
    in_quote = False

    for char in sql:
        if char == "'":
            in_quote = not in_quote
        if char == ";" and not in_quote:
            statement = "".join(current).strip()
            if statement:
                statements.append(statement)
            current = []
            continue
        current.append(char)

    tail = "".join(current).strip()
    if tail:
        statements.append(tail)

    return statements


async def _ensure_migrations_table(conn: asyncpg.Connection) -> None:
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {Table.SCHEMA_MIGRATIONS} (
            version INTEGER PRIMARY KEY,
            filename TEXT NOT NULL DEFAULT '',
            applied_at TIMESTAMPTZ DEFAULT now()
        )
    """)


async def migrate(pool: Optional[asyncpg.Pool] = None) -> int:
    """
    Apply all pending migrations in order, each in its own transaction.

    Holds an advisory lock for the duration so concurrent runners fail fast.
    Already-applied versions are skipped; safe to re-run.

    Returns:
        Number of migrations applied in this run

    Raises:
        FileNotFoundError: If migrations directory not found
        RuntimeError: If another migration run holds the lock
        asyncpg.PostgresError: On database errors
    """
    pool = pool or await get_pool()
    migrations = discover_migrations()
    applied_count = 0

    async with pool.acquire() as conn:
        if not await conn.fetchval("SELECT pg_try_advisory_lock($1)", MIGRATION_LOCK_ID):
            raise RuntimeError(
                "Another migration is currently running. "
                "Wait for it to complete and try again."
            )

        try:
            await _ensure_migrations_table(conn)
            rows = await conn.fetch(f"SELECT version FROM {Table.SCHEMA_MIGRATIONS}")
            applied = {row["version"] for row in rows}

            for migration in migrations:
                if migration.version in applied:
                    continue

                sql = migration.path.read_text(encoding="utf-8")
                async with conn.transaction():
                    for statement in split_sql_statements(sql):
                        await conn.execute(statement)
                    await conn.execute(
                        f"INSERT INTO {Table.SCHEMA_MIGRATIONS} (version, filename) "
                        "VALUES ($1, $2)",
                        migration.version,
                        migration.filename,
                    )

                applied_count += 1
                logger.info(f"Applied migration {migration.version:03d}: {migration.filename}")
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)

    return applied_count


async def schema_version(pool: Optional[asyncpg.Pool] = None) -> Optional[int]:
    """Return the highest applied migration version, or None."""
    pool = pool or await get_pool()

    async with pool.acquire() as conn:
        await _ensure_migrations_table(conn)
        return await conn.fetchval(f"SELECT MAX(version) FROM {Table.SCHEMA_MIGRATIONS}")


def main() -> None:
    """CLI entry point for running migrations."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    async def _run():
        from paidroles.db.pool import close_pool

        try:
            applied = await migrate()
            version = await schema_version()
        finally:
            await close_pool()

        if applied == 0:
            print(f"No pending migrations. Current schema version: {version}")
        else:
            print(f"Applied {applied} migration(s). Current schema version: {version}")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
