"""Unit tests for the PostgreSQL entity storage.

Uses the mock_pool fixture so no database is needed.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from chronicle.ingestion.models import EntityType, Project
from chronicle.ingestion.storage import (
    COMPLETED_TASK_STATUSES,
    EntityStorage,
    StorageError,
    table_for,
)

SINCE = datetime(2026, 1, 1, tzinfo=UTC)


async def _storage_with(pool) -> EntityStorage:
    storage = EntityStorage()
    await storage.initialize(pool=pool)
    return storage


class TestTableFor:
    """Tests for table_for()."""

    def test_tables(self):
        assert table_for(EntityType.TASK) == "tasks"
        assert table_for(EntityType.EVENT) == "events"
        assert table_for(EntityType.NARRATIVE) == "narratives"

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown entity type"):
            table_for("widget")


class TestLifecycle:
    """Tests for initialize() and close()."""

    async def test_no_pool_is_noop(self):
        """Without a DSN or pool, reads are empty and inserts return None."""
        storage = EntityStorage()
        await storage.initialize()
        assert await storage.fetch_active_projects() == []
        assert await storage.fetch_recent(EntityType.TASK, since=SINCE) == []
        assert await storage.insert(EntityType.TASK, {"title": "x"}) is None

    async def test_creates_pool_from_dsn(self, mock_pool):
        pool, _ = mock_pool
        with patch(
            "chronicle.ingestion.storage.asyncpg.create_pool", new=AsyncMock(return_value=pool)
        ) as create_pool:
            storage = EntityStorage("postgresql://u:p@db:5432/chronicle")
            await storage.initialize()
        create_pool.assert_awaited_once_with(dsn="postgresql://u:p@db:5432/chronicle")

    async def test_close(self, mock_pool):
        pool, _ = mock_pool
        storage = await _storage_with(pool)
        await storage.close()
        pool.close.assert_awaited_once()
        assert await storage.fetch_active_projects() == []


class TestFetchActiveProjects:
    """Tests for fetch_active_projects()."""

    async def test_rows_become_projects(self, mock_pool):
        pool, conn = mock_pool
        conn.fetch.return_value = [
            {"id": "p1", "name": "AcmeCo", "type": ["client"], "status": "active"},
            {"id": "p2", "name": "Personal", "type": None, "status": "active"},
        ]
        storage = await _storage_with(pool)

        projects = await storage.fetch_active_projects()

        assert projects == [
            Project(id="p1", name="AcmeCo", type=["client"]),
            Project(id="p2", name="Personal"),
        ]
        query, status = conn.fetch.await_args.args
        assert "FROM projects WHERE status = $1" in query
        assert status == "active"

    async def test_error_wrapped(self, mock_pool):
        pool, conn = mock_pool
        conn.fetch.side_effect = asyncpg.PostgresError("boom")
        storage = await _storage_with(pool)
        with pytest.raises(StorageError):
            await storage.fetch_active_projects()


class TestFetchRecent:
    """Tests for fetch_recent()."""

    async def test_task_query_excludes_completed(self, mock_pool):
        """Task reads filter completed statuses unless asked not to."""
        pool, conn = mock_pool
        conn.fetch.return_value = [{"id": 1, "title": "Send deck"}]
        storage = await _storage_with(pool)

        rows = await storage.fetch_recent(EntityType.TASK, since=SINCE, project_id="p1", limit=50)

        assert rows == [{"id": 1, "title": "Send deck"}]
        query, *params = conn.fetch.await_args.args
        assert query.startswith("SELECT * FROM tasks WHERE created_at >= $1")
        assert "project_id = $2" in query
        assert "<> ALL($3::text[])" in query
        assert query.endswith("ORDER BY created_at DESC LIMIT $4")
        assert params == [SINCE, "p1", list(COMPLETED_TASK_STATUSES), 50]

    async def test_include_completed(self, mock_pool):
        pool, conn = mock_pool
        conn.fetch.return_value = []
        storage = await _storage_with(pool)

        await storage.fetch_recent(EntityType.TASK, since=SINCE, include_completed=True)

        query, *params = conn.fetch.await_args.args
        assert "ALL(" not in query
        assert params == [SINCE, 100]

    async def test_events_have_no_status_filter(self, mock_pool):
        pool, conn = mock_pool
        conn.fetch.return_value = []
        storage = await _storage_with(pool)

        await storage.fetch_recent(EntityType.EVENT, since=SINCE)

        query = conn.fetch.await_args.args[0]
        assert "FROM events" in query
        assert "status" not in query

    async def test_error_wrapped(self, mock_pool):
        pool, conn = mock_pool
        conn.fetch.side_effect = OSError("connection refused")
        storage = await _storage_with(pool)
        with pytest.raises(StorageError, match="tasks"):
            await storage.fetch_recent(EntityType.TASK, since=SINCE)


class TestInsert:
    """Tests for insert()."""

    async def test_insert_returns_row(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = {"id": 9, "title": "Send deck", "urgency": "Soon"}
        storage = await _storage_with(pool)

        stored = await storage.insert(EntityType.TASK, {"title": "Send deck", "urgency": "Soon"})

        assert stored == {"id": 9, "title": "Send deck", "urgency": "Soon"}
        query, *params = conn.fetchrow.await_args.args
        assert query == "INSERT INTO tasks (title, urgency) VALUES ($1, $2) RETURNING *"
        assert params == ["Send deck", "Soon"]

    async def test_insert_no_row(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = None
        storage = await _storage_with(pool)
        assert await storage.insert(EntityType.NARRATIVE, {"headline": "x"}) is None

    async def test_insert_error_wrapped(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.side_effect = asyncpg.PostgresError("constraint")
        storage = await _storage_with(pool)
        with pytest.raises(StorageError, match="events"):
            await storage.insert(EntityType.EVENT, {"title": "x"})
