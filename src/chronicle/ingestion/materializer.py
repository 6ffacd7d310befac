"""Entity materializer: persists surviving candidates."""

from __future__ import annotations

from typing import Any

from chronicle.ingestion.models import CandidateEntity, NarrativeCandidate
from chronicle.ingestion.storage import EntityStorage
from chronicle.logging import get_logger
from chronicle.utils import truncate

log = get_logger("chronicle.ingestion.materializer")


class EntityMaterializer:
    """Writes one candidate into the store for its entity type."""

    def __init__(self, storage: EntityStorage) -> None:
        self._storage = storage

    async def create(self, candidate: CandidateEntity) -> dict[str, Any] | None:
        """Insert ``candidate`` and return the stored record.

        Returns None (and logs) when the insert fails, so one bad record
        never aborts a batch.
        """
        entity_type = candidate.entity_type

        if isinstance(candidate, NarrativeCandidate) and candidate.project_id is None:
            log.warning("orphan_narrative_created", headline=truncate(candidate.headline, 50))

        try:
            created = await self._storage.insert(entity_type, candidate.to_db_row())
        except Exception as exc:
            log.error(
                "entity_create_failed",
                entity_type=entity_type.value,
                title=truncate(candidate.display_text, 50),
                error=str(exc),
            )
            return None

        if created is None:
            log.warning("entity_not_stored", entity_type=entity_type.value)
        return created
