"""Lightweight migration runner with tracking table."""

from __future__ import annotations

import logging
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"


class MigrationRunner:
    """Apply plain SQL files from ``versions/`` exactly once each.

    Files are named ``NNN_description.sql`` and applied in filename order.
    Applied versions are recorded in ``schema_migrations``.
    """

    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, migrations_dir: Path | None = None) -> None:
        self.pool = pool
        self.migrations_dir = migrations_dir or VERSIONS_DIR

    async def _ensure_table(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                version    TEXT PRIMARY KEY,
                name       TEXT NOT NULL,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
            """
        )

    def pending(self, applied: set[str]) -> list[Path]:
        return [p for p in sorted(self.migrations_dir.glob("*.sql")) if p.stem not in applied]

    async def run_pending(self) -> list[str]:
        """Apply all pending migrations. Returns the newly applied versions."""
        async with self.pool.acquire() as conn:
            await self._ensure_table(conn)
            rows = await conn.fetch(f"SELECT version FROM {self.TRACKING_TABLE}")  # noqa: S608
            applied = {row["version"] for row in rows}

            newly_applied: list[str] = []
            for sql_path in self.pending(applied):
                logger.info("Applying migration: %s", sql_path.stem)
                async with conn.transaction():
                    await conn.execute(sql_path.read_text(encoding="utf-8"))
                    await conn.execute(
                        f"INSERT INTO {self.TRACKING_TABLE} (version, name) VALUES ($1, $2)",
                        sql_path.stem,
                        sql_path.name,
                    )
                newly_applied.append(sql_path.stem)

        if newly_applied:
            logger.info("Applied %d migration(s): %s", len(newly_applied), ", ".join(newly_applied))
        else:
            logger.info("Database is up to date, no pending migrations")
        return newly_applied
