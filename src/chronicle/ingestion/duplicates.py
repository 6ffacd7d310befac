"""Duplicate detection for candidate entities.

A candidate is a duplicate when a recent record of the same type has a
display text whose normalized edit-distance similarity reaches the
threshold. Shared action verbs ("set up" / "configure") boost similarity
so rephrased titles still collapse.

Verdicts are cached per (entity type, first 50 characters of text) for a
short time, since batches often re-submit the same item.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from rapidfuzz.distance import Levenshtein

from chronicle.config import Settings, get_settings
from chronicle.constants import CACHE_KEY_TEXT_LENGTH
from chronicle.ingestion.models import (
    DuplicateCheckResult,
    EntityType,
    ProjectId,
    utcnow,
)
from chronicle.logging import get_logger
from chronicle.utils import truncate

if TYPE_CHECKING:
    from chronicle.ingestion.storage import EntityStorage

log = get_logger("chronicle.ingestion.duplicates")

# Each group is one equivalence class of action phrases. "set up" is both
# a setup verb and a scheduling verb, so it sits in two classes.
DEFAULT_SYNONYM_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"setup", "set up", "configure", "establish", "initialize"}),
    frozenset({"complete", "finish", "finalize", "wrap up"}),
    frozenset({"review", "check", "examine", "look at", "assess"}),
    frozenset({"create", "make", "build", "develop", "generate"}),
    frozenset({"update", "modify", "change", "edit", "revise"}),
    frozenset({"send", "email", "forward", "share"}),
    frozenset({"schedule", "set up", "arrange", "plan"}),
    frozenset({"prepare", "get ready", "draft", "outline"}),
)

_DISPLAY_TEXT_FIELDS = ("title", "summary", "description", "subject", "headline")


def extract_display_text(item: BaseModel | Mapping[str, Any]) -> str:
    """Return the first non-empty of title/summary/description/subject/headline."""
    data = item.model_dump() if isinstance(item, BaseModel) else item
    for key in _DISPLAY_TEXT_FIELDS:
        value = data.get(key)
        if value:
            return str(value)
    return ""


class SynonymTable:
    """Action phrases partitioned into equivalence classes.

    ``shares_group`` is true when some class has a phrase in each text.
    Phrases are matched as lower-case substrings.
    """

    def __init__(self, groups: Iterable[Iterable[str]] = DEFAULT_SYNONYM_GROUPS) -> None:
        self._term_groups: dict[str, set[int]] = {}
        for index, group in enumerate(groups):
            for term in group:
                self._term_groups.setdefault(term.lower(), set()).add(index)

    def groups_in(self, text: str) -> set[int]:
        """Indices of every class with a phrase occurring in ``text``."""
        found: set[int] = set()
        for term, groups in self._term_groups.items():
            if term in text:
                found |= groups
        return found

    def shares_group(self, text_a: str, text_b: str) -> bool:
        return bool(self.groups_in(text_a) & self.groups_in(text_b))


def text_similarity(
    text_a: str,
    text_b: str,
    *,
    synonyms: SynonymTable | None = None,
    boost: float = 0.15,
) -> float:
    """Similarity in [0, 1] between two display texts.

    Exact (case-insensitive) matches score 1.0; otherwise
    ``1 - levenshtein / max_len``, plus ``boost`` (capped at 1.0) when both
    texts use a phrase from the same synonym class.
    """
    a = text_a.lower()
    b = text_b.lower()
    if a == b:
        return 1.0

    similarity = 1 - Levenshtein.distance(a, b) / max(len(a), len(b))

    if synonyms is not None and synonyms.shares_group(a, b):
        boosted = min(1.0, similarity + boost)
        log.debug(
            "synonym_boost_applied",
            original_similarity=round(similarity, 2),
            boosted_similarity=round(boosted, 2),
        )
        similarity = boosted

    return similarity


class DuplicateCache:
    """In-memory verdict cache with a fixed expiry and a size cap.

    Entries older than ``ttl_seconds`` are never served. When the map grows
    past ``max_entries`` the ``evict_count`` oldest entries are dropped.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 300,
        max_entries: int = 1000,
        evict_count: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._evict_count = evict_count
        self._clock = clock
        # Insertion order is age order: set() re-inserts on overwrite.
        self._entries: dict[str, tuple[DuplicateCheckResult, float]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> DuplicateCheckResult | None:
        """Return the live verdict for ``key``, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        result, stored_at = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return result

    def set(self, key: str, result: DuplicateCheckResult) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (result, self._clock())
        if len(self._entries) > self._max_entries:
            self.evict(self._evict_count)

    def evict(self, count: int) -> int:
        """Drop the ``count`` oldest entries; return how many were removed."""
        oldest = list(self._entries)[:count]
        for key in oldest:
            del self._entries[key]
        log.debug("duplicate_cache_evicted", removed=len(oldest))
        return len(oldest)

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size


class DuplicateDetector:
    """Checks candidates against recently created records of the same type."""

    def __init__(
        self,
        storage: EntityStorage,
        *,
        cache: DuplicateCache | None = None,
        synonyms: SynonymTable | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._storage = storage
        self._settings = settings or get_settings()
        self._cache = (
            cache
            if cache is not None
            else DuplicateCache(
                ttl_seconds=self._settings.duplicate_cache_ttl_seconds,
                max_entries=self._settings.duplicate_cache_max_entries,
                evict_count=self._settings.duplicate_cache_evict_count,
            )
        )
        self._synonyms = synonyms or SynonymTable()
        self._threshold = self._settings.duplicate_similarity_threshold
        self._synonyms_enabled = self._settings.synonym_matching_enabled

    @staticmethod
    def cache_key(item: BaseModel | Mapping[str, Any], entity_type: EntityType) -> str:
        text = extract_display_text(item)
        return f"{entity_type.value}:{text[:CACHE_KEY_TEXT_LENGTH]}"

    def calculate_similarity(self, text_a: str, text_b: str) -> float:
        return text_similarity(
            text_a,
            text_b,
            synonyms=self._synonyms if self._synonyms_enabled else None,
            boost=self._settings.synonym_boost,
        )

    async def check_duplicate(
        self,
        item: BaseModel | Mapping[str, Any],
        entity_type: EntityType,
        *,
        time_window_days: int | None = None,
        project_id: ProjectId | None = None,
        include_completed: bool = False,
    ) -> DuplicateCheckResult:
        """Check whether ``item`` duplicates a recent record.

        The first existing record (newest first) at or above the threshold
        wins; there is no search for the closest match.

        Args:
            item: Candidate model or record-like mapping.
            entity_type: Which store to compare against.
            time_window_days: Look-back window; defaults to settings (7).
            project_id: Only compare against records of this project.
            include_completed: For tasks, also compare completed ones.

        Returns:
            The verdict. Read failures count as "not a duplicate" and are
            not cached.
        """
        key = self.cache_key(item, entity_type)
        cached = self._cache.get(key)
        if cached is not None:
            log.debug("duplicate_cache_hit", entity_type=entity_type.value)
            return cached

        window = time_window_days or self._settings.duplicate_time_window_days
        try:
            existing = await self._storage.fetch_recent(
                entity_type,
                since=utcnow() - timedelta(days=window),
                project_id=project_id,
                include_completed=include_completed,
                limit=self._settings.duplicate_fetch_limit,
            )
        except Exception as exc:
            log.error(
                "duplicate_fetch_failed",
                entity_type=entity_type.value,
                error=str(exc),
            )
            return DuplicateCheckResult(is_duplicate=False)

        log.debug(
            "duplicate_candidates_fetched",
            entity_type=entity_type.value,
            item_count=len(existing),
        )

        text = extract_display_text(item)
        result = DuplicateCheckResult(is_duplicate=False)
        for record in existing:
            similarity = self.calculate_similarity(text, extract_display_text(record))
            if similarity >= self._threshold:
                result = DuplicateCheckResult(
                    is_duplicate=True,
                    matched_item=dict(record),
                    similarity=round(similarity, 2),
                )
                log.info(
                    "duplicate_detected",
                    entity_type=entity_type.value,
                    similarity=result.similarity,
                    item_title=truncate(text, CACHE_KEY_TEXT_LENGTH),
                    matched_title=truncate(extract_display_text(record), CACHE_KEY_TEXT_LENGTH),
                )
                break

        self._cache.set(key, result)
        return result

    def record_created(
        self,
        item: BaseModel | Mapping[str, Any],
        entity_type: EntityType,
        record: Mapping[str, Any],
    ) -> None:
        """Replace the cached verdict for ``item`` with its newly created record.

        Without this a "not a duplicate" verdict cached just before the insert
        would let an identical resubmission through until it expires.
        """
        self._cache.set(
            self.cache_key(item, entity_type),
            DuplicateCheckResult(is_duplicate=True, matched_item=dict(record), similarity=1.0),
        )

    def clear_cache(self) -> None:
        size = self._cache.clear()
        log.info("duplicate_cache_cleared", previous_size=size)

    def cache_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._cache),
            "ttl_seconds": self._cache.ttl_seconds,
            "threshold": self._threshold,
            "synonym_matching_enabled": self._synonyms_enabled,
        }
