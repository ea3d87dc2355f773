"""Postgres pool lifecycle and schema migrations for the accounts store."""

from pathlib import Path
from typing import Optional

import asyncpg
import structlog

from src.config import Settings

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"

# Global connection pool
_pool: Optional[asyncpg.Pool] = None

MIGRATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    filename TEXT PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Raises:
        RuntimeError: If init_database() has not run
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_database() first.")
    return _pool


async def init_database(settings: Settings) -> asyncpg.Pool:
    """Create the pool once; later calls return the existing pool."""
    global _pool

    if _pool is not None:
        return _pool

    try:
        _pool = await asyncpg.create_pool(
            settings.postgres_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    except (OSError, asyncpg.PostgresError) as e:
        logger.error("database_pool_creation_failed", error=str(e))
        raise

    logger.info(
        "database_pool_created",
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    return _pool


async def close_database() -> None:
    """Close the database connection pool."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("database_pool_closed")


async def run_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> int:
    """Apply pending SQL migrations in filename order.

    Applied filenames are recorded in ``schema_migrations``; each file runs
    in its own transaction together with its bookkeeping row, so a failed
    migration leaves no partial schema behind and is retried next start.

    Returns:
        Number of migration files applied by this call
    """
    pool = await get_pool()

    if not migrations_dir.exists():
        logger.warning("migrations_directory_not_found", path=str(migrations_dir))
        return 0

    migration_files = sorted(migrations_dir.glob("*.sql"))
    if not migration_files:
        logger.info("no_migrations_found")
        return 0

    applied = 0
    async with pool.acquire() as conn:
        await conn.execute(MIGRATIONS_TABLE_SQL)
        rows = await conn.fetch("SELECT filename FROM schema_migrations")
        done = {row["filename"] for row in rows}

        for migration_file in migration_files:
            if migration_file.name in done:
                continue
            try:
                async with conn.transaction():
                    await conn.execute(migration_file.read_text())
                    await conn.execute(
                        "INSERT INTO schema_migrations (filename) VALUES ($1)",
                        migration_file.name,
                    )
            except asyncpg.PostgresError as e:
                logger.error("migration_failed", file=migration_file.name, error=str(e))
                raise
            applied += 1
            logger.info("migration_applied", file=migration_file.name)

    return applied


async def health_check() -> bool:
    """Return True if a trivial query succeeds, False otherwise."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except (RuntimeError, OSError, asyncpg.PostgresError) as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
