"""Shared fixtures for Chronicle tests."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from chronicle.config import Settings
from chronicle.ingestion.models import EntityType, Project


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryStorage:
    """EntityStorage stand-in that keeps inserted rows in lists."""

    def __init__(self, projects: list[Project] | None = None) -> None:
        self.projects = projects or []
        self.rows: dict[EntityType, list[dict[str, Any]]] = {t: [] for t in EntityType}
        self.fetch_active_projects = AsyncMock(side_effect=self._fetch_active_projects)
        self.fetch_recent = AsyncMock(side_effect=self._fetch_recent)
        self.insert = AsyncMock(side_effect=self._insert)

    async def _fetch_active_projects(self) -> list[Project]:
        return list(self.projects)

    async def _fetch_recent(
        self,
        entity_type: EntityType,
        *,
        since: datetime,
        project_id: Any = None,
        include_completed: bool = False,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        rows = [r for r in self.rows[entity_type] if r["created_at"] >= since]
        if project_id is not None:
            rows = [r for r in rows if r.get("project_id") == project_id]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)[:limit]

    async def _insert(self, entity_type: EntityType, row: dict[str, Any]) -> dict[str, Any]:
        stored = {"id": uuid4(), "created_at": datetime.now(UTC), **row}
        self.rows[entity_type].append(stored)
        return stored


@pytest.fixture
def settings() -> Settings:
    """Settings with defaults only, isolated from any .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def acme() -> Project:
    return Project(id=uuid4(), name="AcmeCo", status="active", type=["client"])


@pytest.fixture
def globex() -> Project:
    return Project(id=uuid4(), name="Globex", status="active", type=["client"])


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool that yields an async connection context."""
    pool = MagicMock()
    conn = AsyncMock()
    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)
    pool.acquire.return_value = ctx
    pool.close = AsyncMock()
    return pool, conn


@pytest.fixture
def memory_storage(acme, globex) -> InMemoryStorage:
    """In-memory storage seeded with the AcmeCo and Globex projects."""
    return InMemoryStorage([acme, globex])
