"""Content classifier for the ingestion pipeline.

Wraps the external text-understanding service. The service receives a
prompt and answers with free text that should contain a JSON object; all
of the string surgery needed to recover that object lives in
``parse_classifier_output`` so the rest of the pipeline only deals with
dicts and typed candidates.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any, Protocol

import anthropic
from pydantic import ValidationError

from chronicle.config import Settings, get_settings
from chronicle.constants import PROJECT_EXCERPT_LENGTH, PROJECT_SUGGESTION_LIMIT
from chronicle.ingestion.models import (
    CandidateEntity,
    ContentEnvelope,
    EventCandidate,
    EventCategory,
    NarrativeCandidate,
    NarrativeSource,
    Project,
    ProjectSuggestion,
    SourceType,
    TaskCandidate,
)
from chronicle.logging import get_logger
from chronicle.utils import truncate

log = get_logger("chronicle.ingestion.classifier")

_FENCE_PATTERN = re.compile(r"```(?:json)?\n?", re.IGNORECASE)


class ClassifierOutputError(ValueError):
    """Raised when no JSON object can be recovered from classifier output."""


# ---------------------------------------------------------------------------
# Completion client protocol (for dependency injection in tests)
# ---------------------------------------------------------------------------


class CompletionClient(Protocol):
    """Request/response access to a text-understanding model."""

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        """Return the model's text reply to ``prompt``."""
        ...


class AnthropicCompletionClient:
    """``CompletionClient`` backed by the Anthropic Messages API."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        if settings.anthropic_api_key is None:
            raise ValueError("ANTHROPIC_API_KEY is required for content classification")
        self._client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key.get_secret_value()
        )
        self._model = settings.classifier_model
        log.info("completion_client_initialized", model=self._model)

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

ANALYSIS_PROMPT = """Analyze the following {source} content and extract structured information.
{project_context}

Content:
{text}

Extract and return as JSON:
{{
  "tasks": [
    {{
      "title": "Clear action item",
      "description": "Additional context",
      "urgency": "Now|Soon|Eventually",
      "due_date": "YYYY-MM-DD if mentioned",
      "confidence": 0.0-1.0
    }}
  ],
  "events": [
    {{
      "title": "Event name",
      "start_time": "ISO datetime",
      "end_time": "ISO datetime",
      "location": "Where",
      "attendees": ["names"]
    }}
  ],
  "narrative": {{
    "headline": "Key outcome or decision (10 words max)",
    "bullets": ["Important point 1", "Important point 2", "Important point 3 (max 5)"]
  }}
}}

Rules:
- Only extract CLEAR action items as tasks
- Skip tasks assigned to others (unless tracking is needed)
- For narratives, focus on decisions, milestones, and significant updates
- Ignore routine or low-value information

IMPORTANT: Return ONLY valid JSON with no additional text, explanation, or commentary."""

PROJECT_PROMPT = """You are deciding which project a piece of content belongs to.

CONTENT:
{excerpt}

ACTIVE PROJECTS:
{projects}

Determine which project this content belongs to, or whether it matches none.
Consider direct mentions of project names or key terms, sender or attendee
domains, and the purpose of the content.

Return ONLY a JSON object with the EXACT Project ID from the list above:
{{"project_id": "exact-id-from-above or null", "confidence": 0.0-1.0, "reasoning": "brief explanation"}}"""


def build_analysis_prompt(envelope: ContentEnvelope, project: Project | None) -> str:
    """Build the entity-extraction prompt for one envelope."""
    project_context = (
        f'This content is related to the "{project.name}" project.'
        if project
        else "Project context is unknown."
    )
    return ANALYSIS_PROMPT.format(
        source=envelope.source.value,
        project_context=project_context,
        text=envelope.text,
    )


def build_project_prompt(excerpt: str, projects: Sequence[Project]) -> str:
    """Build the project-selection prompt for a short excerpt."""
    listing = "\n".join(
        f"Project ID: {project.id}\nName: {project.name}"
        for project in projects[:PROJECT_SUGGESTION_LIMIT]
    )
    return PROJECT_PROMPT.format(excerpt=excerpt, projects=listing)


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers (```json / ```) from model output."""
    return _FENCE_PATTERN.sub("", text).strip()


def parse_classifier_output(raw: str, *, strict: bool = False) -> dict[str, Any] | None:
    """Recover the JSON object from free-text classifier output.

    Tries, in order: the fence-stripped text as-is, then the span between
    the first ``{`` and the last ``}``.

    Args:
        raw: Text returned by the classifier.
        strict: Raise ``ClassifierOutputError`` instead of returning None.

    Returns:
        The parsed object, or None when nothing parseable was found.
    """
    text = strip_code_fences(raw or "")

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        parsed = None
        if start != -1 and end > start:
            try:
                parsed = json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                parsed = None

    if isinstance(parsed, dict):
        return parsed

    if strict:
        raise ClassifierOutputError("no JSON object found in classifier output")
    log.error("classifier_output_unparseable", response=truncate(raw or "", 200))
    return None


# ---------------------------------------------------------------------------
# Candidate construction
# ---------------------------------------------------------------------------


def narrative_source_for(
    envelope: ContentEnvelope, meeting_markers: Sequence[str]
) -> NarrativeSource:
    """Map an envelope to the narrative source it should be filed under."""
    match envelope.source:
        case SourceType.EMAIL:
            return NarrativeSource.EMAIL
        case SourceType.CALENDAR:
            return NarrativeSource.EVENT
        case SourceType.NOTE:
            path = (envelope.filepath or "").lower()
            if any(marker.lower() in path for marker in meeting_markers if marker):
                return NarrativeSource.MEETING
            return NarrativeSource.NOTE
        case _:
            return NarrativeSource.OTHER


def _metadata_str(metadata: dict[str, Any], key: str) -> str | None:
    value = metadata.get(key)
    return str(value) if value else None


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    return []


def candidates_from_analysis(
    analysis: dict[str, Any],
    envelope: ContentEnvelope,
    project: Project | None,
    *,
    meeting_markers: Sequence[str] = (),
) -> list[CandidateEntity]:
    """Turn a parsed classifier response into typed candidates.

    Items that fail validation (no title, unparseable start time, ...) are
    skipped individually.
    """
    project_id = project.id if project else None
    metadata = envelope.metadata
    candidates: list[CandidateEntity] = []

    for raw in _as_list(analysis.get("tasks")):
        if not isinstance(raw, dict):
            continue
        try:
            candidates.append(
                TaskCandidate(
                    project_id=project_id,
                    title=raw.get("title") or "",
                    description=raw.get("description") or raw.get("context"),
                    urgency=raw.get("urgency"),
                    due_date=raw.get("due_date"),
                    confidence=raw.get("confidence"),
                    source=envelope.source,
                    detected_from=envelope.filepath or _metadata_str(metadata, "email_id"),
                )
            )
        except ValidationError as exc:
            log.warning("task_candidate_invalid", error=str(exc), title=raw.get("title"))

    for raw in _as_list(analysis.get("events")):
        if not isinstance(raw, dict):
            continue
        try:
            candidates.append(
                EventCandidate(
                    project_id=project_id,
                    title=raw.get("title") or raw.get("summary") or "",
                    start_time=raw.get("start_time"),
                    end_time=raw.get("end_time") or None,
                    location=raw.get("location") or None,
                    attendees=raw.get("attendees"),
                    category=EventCategory.WORK if project else EventCategory.LIFE,
                    calendar_source=_metadata_str(metadata, "calendar_source"),
                    calendar_id=_metadata_str(metadata, "calendar_id"),
                )
            )
        except ValidationError as exc:
            log.warning("event_candidate_invalid", error=str(exc), title=raw.get("title"))

    narrative = analysis.get("narrative")
    if isinstance(narrative, dict) and narrative.get("headline"):
        try:
            candidates.append(
                NarrativeCandidate(
                    project_id=project_id,
                    headline=narrative["headline"],
                    bullets=narrative.get("bullets"),
                    date=envelope.date,
                    source=narrative_source_for(envelope, meeting_markers),
                    source_file=envelope.filepath,
                    source_id=envelope.source_id,
                )
            )
        except ValidationError as exc:
            log.warning("narrative_candidate_invalid", error=str(exc))

    return candidates


# ---------------------------------------------------------------------------
# Classifier facade
# ---------------------------------------------------------------------------


class ContentClassifier:
    """Extracts candidates and suggests projects via a ``CompletionClient``."""

    def __init__(self, client: CompletionClient, settings: Settings | None = None) -> None:
        self._client = client
        self._settings = settings or get_settings()

    async def analyze(
        self, envelope: ContentEnvelope, project: Project | None
    ) -> list[CandidateEntity]:
        """Classify one envelope into candidate entities.

        Transport failures and unparseable replies yield an empty list.
        """
        prompt = build_analysis_prompt(envelope, project)
        try:
            raw = await self._client.complete(
                prompt,
                max_tokens=self._settings.classifier_max_tokens,
                temperature=self._settings.classifier_temperature,
            )
        except Exception as exc:
            log.warning(
                "classification_failed",
                error=str(exc),
                source=envelope.source.value,
                source_id=envelope.source_id,
            )
            return []

        analysis = parse_classifier_output(raw)
        if analysis is None:
            return []

        candidates = candidates_from_analysis(
            analysis,
            envelope,
            project,
            meeting_markers=self._settings.meeting_folder_markers,
        )
        log.debug(
            "content_classified",
            source=envelope.source.value,
            candidate_count=len(candidates),
        )
        return candidates

    async def suggest_project(
        self, text: str, projects: Sequence[Project]
    ) -> ProjectSuggestion | None:
        """Ask the model which cached project an excerpt belongs to."""
        if not projects or not text.strip():
            return None

        prompt = build_project_prompt(text[:PROJECT_EXCERPT_LENGTH], projects)
        raw = await self._client.complete(
            prompt,
            max_tokens=self._settings.project_suggestion_max_tokens,
            temperature=0.0,
        )
        result = parse_classifier_output(raw)
        if result is None:
            return None

        project_id = result.get("project_id")
        if not project_id or str(project_id).lower() in ("null", "none", "undefined"):
            return None

        try:
            confidence = float(result.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0

        return ProjectSuggestion(
            project_id=str(project_id),
            confidence=confidence,
            reasoning=str(result.get("reasoning") or ""),
        )
