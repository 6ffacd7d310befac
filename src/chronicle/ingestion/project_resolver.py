"""Project resolution for normalized content.

Runs a fixed chain of strategies and returns the first project found:

1. Path      - client / code-project folders in a note's path
2. Keyword   - a project name appears verbatim in the text
3. Fuzzy     - most of a project's name tokens appear in the text
4. Classifier - the text-understanding service picks a project
5. Fallback  - a catch-all project such as "Personal"

A strategy that raises is logged and treated as "no match". Every
strategy reads the same snapshot from ``ProjectCache``.
"""

from __future__ import annotations

import re
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

from chronicle.config import Settings, get_settings
from chronicle.constants import (
    FUZZY_MATCH_THRESHOLD,
    FUZZY_MIN_TOKEN_LENGTH,
    PROJECT_EXCERPT_LENGTH,
)
from chronicle.ingestion.models import ContentEnvelope, Project
from chronicle.logging import get_logger

if TYPE_CHECKING:
    from chronicle.ingestion.classifier import ContentClassifier

log = get_logger("chronicle.ingestion.project_resolver")

_NAME_TOKEN_SPLIT = re.compile(r"[\s\-_]+")

ProjectLoader = Callable[[], Awaitable[Sequence[Project]]]


# ---------------------------------------------------------------------------
# Project cache
# ---------------------------------------------------------------------------


class ProjectCache:
    """Active-project snapshot refreshed when older than ``ttl_seconds``."""

    def __init__(
        self,
        loader: ProjectLoader,
        *,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._projects: list[Project] = []
        self._expires_at: float | None = None

    @property
    def is_expired(self) -> bool:
        return self._expires_at is None or self._clock() >= self._expires_at

    async def get(self) -> list[Project]:
        """Return the snapshot, refetching first if it has expired."""
        if self.is_expired:
            await self.refresh()
        return list(self._projects)

    async def refresh(self) -> list[Project]:
        """Reload the snapshot now.

        On failure the previous snapshot is kept and stays expired, so the
        next read tries again.
        """
        try:
            projects = list(await self._loader())
        except Exception as exc:
            log.warning(
                "project_cache_refresh_failed",
                error=str(exc),
                stale_count=len(self._projects),
            )
            return list(self._projects)

        self._projects = projects
        self._expires_at = self._clock() + self._ttl
        log.info("project_cache_refreshed", project_count=len(projects))
        return list(self._projects)

    def evict(self) -> None:
        """Drop the snapshot; the next read refetches."""
        self._projects = []
        self._expires_at = None


# ---------------------------------------------------------------------------
# Strategies (pure functions over a snapshot)
# ---------------------------------------------------------------------------


def _name_tokens(name: str) -> list[str]:
    return [t for t in _NAME_TOKEN_SPLIT.split(name.lower()) if t]


def _segment_index(parts: list[str], marker: str) -> int | None:
    marker = marker.lower()
    for index, part in enumerate(parts):
        if part.lower() == marker:
            return index
    return None


def find_by_name(projects: Sequence[Project], name: str) -> Project | None:
    """Case-insensitive exact name lookup."""
    name = name.lower()
    for project in projects:
        if project.name.lower() == name:
            return project
    return None


def match_by_path(
    filepath: str | None,
    projects: Sequence[Project],
    *,
    client_markers: Sequence[str] = ("Clients",),
    code_folder: str | None = None,
    code_fallback: str | None = None,
    folder_aliases: dict[str, str] | None = None,
) -> Project | None:
    """Resolve a project from conventional folder markers in a path."""
    if not filepath:
        return None

    parts = [p for p in filepath.replace("\\", "/").split("/") if p]
    aliases = {k.lower(): v for k, v in (folder_aliases or {}).items()}

    for marker in client_markers:
        index = _segment_index(parts, marker)
        if index is None or index + 1 >= len(parts):
            continue
        folder = parts[index + 1].lower()
        if folder in aliases:
            aliased = find_by_name(projects, aliases[folder])
            if aliased:
                return aliased
        for project in projects:
            name = project.name.lower()
            if name and (folder in name or name in folder):
                return project

    if code_folder:
        index = _segment_index(parts, code_folder)
        if index is not None:
            subfolder = parts[index + 1] if index + 1 < len(parts) else ""
            if subfolder and not subfolder.lower().endswith(".md"):
                if subfolder.lower() in aliases:
                    aliased = find_by_name(projects, aliases[subfolder.lower()])
                    if aliased:
                        return aliased
                sub_tokens = _name_tokens(subfolder)
                for project in projects:
                    project_tokens = _name_tokens(project.name)
                    if any(pt in st or st in pt for pt in project_tokens for st in sub_tokens):
                        return project
            if code_fallback:
                return find_by_name(projects, code_fallback)

    return None


def match_by_keyword(text: str, projects: Sequence[Project]) -> Project | None:
    """First project whose name appears in the text (case-insensitive)."""
    if not text:
        return None
    lowered = text.lower()
    for project in projects:
        name = project.name.lower()
        if name and name in lowered:
            return project
    return None


def match_by_token_overlap(
    text: str,
    projects: Sequence[Project],
    *,
    min_text_length: int = 50,
) -> Project | None:
    """Project with the highest share of name tokens found among text words.

    Only texts of at least ``min_text_length`` characters are considered;
    text words shorter than four characters are ignored. The best share must
    exceed one half.
    """
    if not text or len(text) < min_text_length:
        return None

    words = [w for w in text.lower().split() if len(w) >= FUZZY_MIN_TOKEN_LENGTH]
    best: Project | None = None
    best_score = 0.0

    for project in projects:
        tokens = _name_tokens(project.name)
        if not tokens:
            continue
        matches = sum(1 for pt in tokens if any(pt in w or w in pt for w in words))
        score = matches / len(tokens)
        if score > best_score and score > FUZZY_MATCH_THRESHOLD:
            best = project
            best_score = score

    return best


def match_generic_fallback(
    projects: Sequence[Project], fallback_names: Sequence[str]
) -> Project | None:
    """First catch-all project (in ``fallback_names`` order) that exists."""
    for name in fallback_names:
        project = find_by_name(projects, name)
        if project:
            return project
    return None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ProjectResolver:
    """Resolves an envelope to a project through the fallback chain."""

    def __init__(
        self,
        cache: ProjectCache,
        *,
        classifier: ContentClassifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._cache = cache
        self._classifier = classifier
        self._settings = settings or get_settings()

    async def resolve(self, envelope: ContentEnvelope) -> Project | None:
        """Return the best-guess project for ``envelope``, or None."""
        projects = await self._cache.get()

        strategies: list[tuple[str, Callable[[], Awaitable[Project | None]]]] = [
            ("path", lambda: self._by_path(envelope, projects)),
            ("keyword", lambda: self._by_keyword(envelope, projects)),
            ("fuzzy", lambda: self._by_token_overlap(envelope, projects)),
            ("classifier", lambda: self._by_classifier(envelope, projects)),
            ("generic_fallback", lambda: self._by_generic_fallback(projects)),
        ]

        for name, strategy in strategies:
            try:
                project = await strategy()
            except Exception as exc:
                log.warning("project_strategy_failed", strategy=name, error=str(exc))
                continue
            if project is not None:
                log.info(
                    "project_resolved",
                    strategy=name,
                    project=project.name,
                    source=envelope.source.value,
                )
                return project

        log.info("project_unresolved", source=envelope.source.value)
        return None

    async def _by_path(self, envelope: ContentEnvelope, projects: list[Project]) -> Project | None:
        s = self._settings
        return match_by_path(
            envelope.filepath,
            projects,
            client_markers=s.client_folder_markers,
            code_folder=s.code_projects_folder,
            code_fallback=s.code_projects_fallback,
            folder_aliases=s.project_folder_aliases,
        )

    async def _by_keyword(
        self, envelope: ContentEnvelope, projects: list[Project]
    ) -> Project | None:
        return match_by_keyword(envelope.text, projects)

    async def _by_token_overlap(
        self, envelope: ContentEnvelope, projects: list[Project]
    ) -> Project | None:
        return match_by_token_overlap(
            envelope.text, projects, min_text_length=self._settings.fuzzy_min_text_length
        )

    async def _by_classifier(
        self, envelope: ContentEnvelope, projects: list[Project]
    ) -> Project | None:
        if self._classifier is None:
            return None
        suggestion = await self._classifier.suggest_project(
            envelope.text[:PROJECT_EXCERPT_LENGTH], projects
        )
        if suggestion is None:
            return None
        if suggestion.confidence < self._settings.project_suggestion_min_confidence:
            log.debug(
                "project_suggestion_rejected",
                project_id=suggestion.project_id,
                confidence=suggestion.confidence,
            )
            return None
        for project in projects:
            if str(project.id) == suggestion.project_id:
                return project
        log.warning("project_suggestion_unknown_id", project_id=suggestion.project_id)
        return None

    async def _by_generic_fallback(self, projects: list[Project]) -> Project | None:
        return match_generic_fallback(projects, self._settings.generic_fallback_projects)
