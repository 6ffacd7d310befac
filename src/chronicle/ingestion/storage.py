"""PostgreSQL access for the ingestion pipeline.

Reads the active-project snapshot and recent records for duplicate
checks, and inserts materialized entities. Follows the asyncpg.Pool
pattern: without a pool every read is empty and every insert is a no-op.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import asyncpg  # type: ignore[import-not-found,import-untyped]

from chronicle.ingestion.models import EntityType, Project, ProjectId
from chronicle.logging import get_logger

log = get_logger("chronicle.ingestion.storage")

COMPLETED_TASK_STATUSES = ("complete", "completed")


class StorageError(Exception):
    """Raised when a PostgreSQL read or write fails."""


def table_for(entity_type: EntityType) -> str:
    """Return the table that stores records of ``entity_type``."""
    match entity_type:
        case EntityType.TASK:
            return "tasks"
        case EntityType.EVENT:
            return "events"
        case EntityType.NARRATIVE:
            return "narratives"
        case _:
            raise ValueError(f"Unknown entity type: {entity_type}")


class EntityStorage:
    """Project snapshot reads plus task/event/narrative reads and inserts."""

    def __init__(self, dsn: str | None = None) -> None:
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, pool: asyncpg.Pool | None = None) -> None:
        """Use ``pool``, or create one from the DSN given at construction."""
        if pool is not None:
            self._pool = pool
        elif self._dsn:
            try:
                self._pool = await asyncpg.create_pool(dsn=self._dsn)
            except (asyncpg.PostgresError, OSError) as exc:
                log.error("postgres_pool_creation_failed", error=str(exc))
                raise
            log.info("postgres_pool_created", dsn=self._dsn.split("@")[-1])
        log.info("entity_storage_initialized", has_pool=self._pool is not None)

    async def close(self) -> None:
        """Gracefully close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            log.info("postgres_pool_closed")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_active_projects(self) -> list[Project]:
        """Return every project whose status is ``active``."""
        if self._pool is None:
            return []
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT id, name, type, status FROM projects WHERE status = $1",
                    "active",
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageError(f"failed to load active projects: {exc}") from exc
        return [Project.from_db_row(dict(r)) for r in rows]

    async def fetch_recent(
        self,
        entity_type: EntityType,
        *,
        since: datetime,
        project_id: ProjectId | None = None,
        include_completed: bool = False,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Records of ``entity_type`` created at or after ``since``, newest first."""
        if self._pool is None:
            return []

        table = table_for(entity_type)
        clauses = ["created_at >= $1"]
        params: list[Any] = [since]

        if project_id is not None:
            params.append(project_id)
            clauses.append(f"project_id = ${len(params)}")

        if entity_type is EntityType.TASK and not include_completed:
            params.append(list(COMPLETED_TASK_STATUSES))
            clauses.append(f"COALESCE(status, '') <> ALL(${len(params)}::text[])")

        params.append(limit)
        query = (
            f"SELECT * FROM {table} WHERE {' AND '.join(clauses)} "  # nosec B608
            f"ORDER BY created_at DESC LIMIT ${len(params)}"
        )

        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageError(f"failed to read {table}: {exc}") from exc
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, entity_type: EntityType, row: dict[str, Any]) -> dict[str, Any] | None:
        """Insert one record and return the stored row (ids, timestamps included)."""
        if self._pool is None:
            return None

        table = table_for(entity_type)
        columns = list(row)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) "  # nosec B608
            f"VALUES ({placeholders}) RETURNING *"
        )

        try:
            async with self._pool.acquire() as conn:
                stored = await conn.fetchrow(query, *row.values())
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageError(f"failed to insert into {table}: {exc}") from exc
        return dict(stored) if stored is not None else None
