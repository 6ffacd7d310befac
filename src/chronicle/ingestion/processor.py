"""Central processor for the ingestion pipeline.

Coordinates the full flow for one input item:
1. Normalize the payload into a ContentEnvelope
2. Resolve the project through the fallback chain
3. Classify the content into candidate tasks/events/narratives
4. Per candidate: duplicate check (not narratives), significance filter,
   materialize
5. Report what was created

Items are processed strictly one at a time, including in batches, to stay
within the classification service's rate limits and share one database
pool.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from chronicle.config import Settings, get_settings
from chronicle.ingestion.classifier import (
    AnthropicCompletionClient,
    ContentClassifier,
)
from chronicle.ingestion.duplicates import DuplicateDetector
from chronicle.ingestion.materializer import EntityMaterializer
from chronicle.ingestion.models import (
    BatchSummary,
    ContentEnvelope,
    EntityType,
    ProcessingResult,
    SourceType,
)
from chronicle.ingestion.normalizer import normalize
from chronicle.ingestion.project_resolver import ProjectCache, ProjectResolver
from chronicle.ingestion.scoring import is_significant, score_significance
from chronicle.ingestion.storage import EntityStorage
from chronicle.logging import get_logger, setup_logging
from chronicle.utils import timed_operation

log = get_logger("chronicle.ingestion.processor")

InputItem = ContentEnvelope | Mapping[str, Any]


class CentralProcessor:
    """Orchestrates normalize -> resolve -> classify -> dedup -> score -> persist.

    Collaborators are injected so tests (and parallel test runs) get their
    own caches; anything not supplied is built from ``storage`` and
    ``settings``.
    """

    def __init__(
        self,
        storage: EntityStorage,
        classifier: ContentClassifier,
        *,
        project_cache: ProjectCache | None = None,
        resolver: ProjectResolver | None = None,
        duplicate_detector: DuplicateDetector | None = None,
        materializer: EntityMaterializer | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._storage = storage
        self._classifier = classifier
        self._project_cache = project_cache or ProjectCache(
            storage.fetch_active_projects,
            ttl_seconds=self._settings.project_cache_ttl_seconds,
        )
        self._resolver = resolver or ProjectResolver(
            self._project_cache,
            classifier=classifier,
            settings=self._settings,
        )
        self._duplicates = duplicate_detector or DuplicateDetector(
            storage, settings=self._settings
        )
        self._materializer = materializer or EntityMaterializer(storage)

    @classmethod
    def from_settings(
        cls, storage: EntityStorage, settings: Settings | None = None
    ) -> CentralProcessor:
        """Build a processor that classifies through the Anthropic API.

        This is the entry point for batch jobs, so it also configures logging.
        """
        settings = settings or get_settings()
        setup_logging(settings)
        classifier = ContentClassifier(AnthropicCompletionClient(settings), settings)
        return cls(storage, classifier, settings=settings)

    async def process(
        self, item: InputItem, source: SourceType | str | None = None
    ) -> ProcessingResult:
        """Run one input item through the pipeline.

        Args:
            item: A raw source payload, or an already-built envelope.
            source: Source type of a raw payload; identified when omitted.

        Returns:
            Created records grouped by type, plus skip/failure counters.
            External failures reduce what is created; they are not raised.
        """
        envelope = item if isinstance(item, ContentEnvelope) else normalize(item, source)
        log.info(
            "processing_started",
            source=envelope.source.value,
            source_id=envelope.source_id,
            filepath=envelope.filepath,
        )

        project = await self._resolver.resolve(envelope)

        async with timed_operation(
            "content_classification_complete", log=log, source=envelope.source.value
        ):
            candidates = await self._classifier.analyze(envelope, project)

        result = ProcessingResult()
        for candidate in candidates:
            entity_type = candidate.entity_type

            # Narratives accumulate; only tasks and events are deduplicated
            if entity_type is not EntityType.NARRATIVE:
                verdict = await self._duplicates.check_duplicate(
                    candidate,
                    entity_type,
                    time_window_days=self._settings.duplicate_time_window_days,
                    project_id=candidate.project_id,
                )
                if verdict.is_duplicate:
                    result.skipped_duplicates += 1
                    log.info(
                        "duplicate_skipped",
                        entity_type=entity_type.value,
                        title=candidate.display_text,
                        similarity=verdict.similarity,
                    )
                    continue

            score = score_significance(candidate)
            if not is_significant(candidate, score, self._settings.significance_threshold):
                result.skipped_low_significance += 1
                log.info(
                    "low_significance_skipped",
                    entity_type=entity_type.value,
                    significance_score=score,
                )
                continue

            created = await self._materializer.create(
                candidate.model_copy(update={"significance_score": score})
            )
            if created is None:
                result.failed += 1
                continue

            result.records_for(entity_type).append(created)
            if entity_type is not EntityType.NARRATIVE:
                self._duplicates.record_created(candidate, entity_type, created)
            log.info(
                "entity_created",
                entity_type=entity_type.value,
                title=candidate.display_text,
                project=project.name if project else None,
            )

        log.info(
            "processing_complete",
            tasks=len(result.tasks),
            events=len(result.events),
            narratives=len(result.narratives),
            skipped_duplicates=result.skipped_duplicates,
            skipped_low_significance=result.skipped_low_significance,
            failed=result.failed,
        )
        return result

    async def process_batch(
        self, items: Iterable[InputItem], source: SourceType | str | None = None
    ) -> BatchSummary:
        """Process items one after another and total the outcomes.

        An item that raises unexpectedly is logged, counted in
        ``failed_items`` and the batch moves on.
        """
        summary = BatchSummary()
        for item in items:
            summary.items += 1
            try:
                result = await self.process(item, source)
            except Exception as exc:
                summary.failed_items += 1
                log.error("batch_item_failed", index=summary.items - 1, error=str(exc))
                continue
            summary.add(result)

        log.info("batch_complete", **summary.to_dict())
        return summary
