"""Data models for the ingestion pipeline.

Defines the normalized content envelope, the cached project snapshot, the
three candidate entity kinds proposed by the classifier (tasks, events and
narrative entries) and the result objects returned to batch callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, ClassVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from chronicle.constants import DEFAULT_TASK_CONFIDENCE, MAX_NARRATIVE_BULLETS

ProjectId = UUID | str

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SourceType(StrEnum):
    """Where an input item came from."""

    EMAIL = "email"
    NOTE = "note"
    CALENDAR = "calendar"
    UNKNOWN = "unknown"


class EntityType(StrEnum):
    """The three record kinds the pipeline can create."""

    TASK = "task"
    EVENT = "event"
    NARRATIVE = "narrative"


class Urgency(StrEnum):
    """Task urgency buckets."""

    NOW = "Now"
    SOON = "Soon"
    EVENTUALLY = "Eventually"


class EventCategory(StrEnum):
    """Calendar event category."""

    WORK = "work"
    LIFE = "life"


class NarrativeSource(StrEnum):
    """What kind of input a narrative entry was written from."""

    MEETING = "meeting"
    EMAIL = "email"
    NOTE = "note"
    EVENT = "event"
    OTHER = "other"


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Envelope and project snapshot
# ---------------------------------------------------------------------------


class ContentEnvelope(BaseModel):
    """Uniform representation of one input item, scoped to a single run."""

    model_config = ConfigDict(frozen=True)

    source: SourceType = SourceType.UNKNOWN
    text: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    date: datetime = Field(default_factory=utcnow)

    @property
    def filepath(self) -> str | None:
        """Vault path of a note, if any."""
        value = self.metadata.get("filepath")
        return str(value) if value else None

    @property
    def source_id(self) -> str | None:
        """Provider identifier of the originating email or calendar entry."""
        value = self.metadata.get("email_id") or self.metadata.get("calendar_id")
        return str(value) if value else None


class Project(BaseModel):
    """Read-only snapshot of an active project."""

    model_config = ConfigDict(frozen=True)

    id: ProjectId
    name: str
    status: str = "active"
    type: list[str] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> list[str]:
        """Accept a single tag, a list of tags, or NULL."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Project:
        """Create from a PostgreSQL row dict."""
        return cls(
            id=row["id"],
            name=row.get("name") or "",
            status=row.get("status") or "active",
            type=row.get("type"),
        )


# ---------------------------------------------------------------------------
# Candidate entities
# ---------------------------------------------------------------------------


class CandidateBase(BaseModel):
    """Fields shared by every classifier-proposed entity."""

    entity_type: ClassVar[EntityType]

    project_id: ProjectId | None = None
    significance_score: float | None = Field(default=None, ge=0.0, le=1.0)

    @property
    def display_text(self) -> str:
        """Text used for duplicate matching and logging."""
        raise NotImplementedError

    def to_db_row(self) -> dict[str, Any]:
        """Convert to a flat dict for PostgreSQL insertion."""
        raise NotImplementedError


def _parse_optional_date(v: Any) -> date | None:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    try:
        return date.fromisoformat(str(v).strip()[:10])
    except ValueError:
        return None


class TaskCandidate(CandidateBase):
    """An action item proposed by the classifier."""

    entity_type: ClassVar[EntityType] = EntityType.TASK

    title: str = Field(min_length=1)
    description: str | None = None
    urgency: Urgency = Urgency.EVENTUALLY
    due_date: date | None = None
    confidence: float = Field(default=DEFAULT_TASK_CONFIDENCE, ge=0.0, le=1.0)
    source: SourceType = SourceType.UNKNOWN
    detected_from: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("urgency", mode="before")
    @classmethod
    def coerce_urgency(cls, v: Any) -> Urgency:
        """Unknown or missing urgency falls back to Eventually."""
        if isinstance(v, str):
            for urgency in Urgency:
                if urgency.value.lower() == v.strip().lower():
                    return urgency
        return Urgency.EVENTUALLY

    @field_validator("due_date", mode="before")
    @classmethod
    def coerce_due_date(cls, v: Any) -> date | None:
        return _parse_optional_date(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        if v is None or v == "":
            return DEFAULT_TASK_CONFIDENCE
        try:
            confidence = float(v)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"confidence must be a number, got {v!r}") from exc
        return min(1.0, max(0.0, confidence))

    @property
    def display_text(self) -> str:
        return self.title or self.description or ""

    def to_db_row(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "urgency": self.urgency.value,
            "due_date": self.due_date,
            "confidence": self.confidence,
            "source": self.source.value,
            "detected_from": self.detected_from,
        }


class EventCandidate(CandidateBase):
    """A calendar event proposed by the classifier."""

    entity_type: ClassVar[EntityType] = EntityType.EVENT

    title: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime | None = None
    location: str | None = None
    attendees: list[str] = Field(default_factory=list)
    category: EventCategory = EventCategory.LIFE
    calendar_source: str | None = None
    calendar_id: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def reject_placeholder_title(cls, v: Any) -> Any:
        """Providers emit "No Title" for untitled events; those are not events."""
        if isinstance(v, str):
            v = v.strip()
            if v.lower() == "no title":
                raise ValueError("event has no title")
        return v

    @field_validator("attendees", mode="before")
    @classmethod
    def coerce_attendees(cls, v: Any) -> list[str]:
        if not v:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(";") if part.strip()]
        if not isinstance(v, list | tuple):
            raise ValueError(f"attendees must be a list or string, got {type(v).__name__}")
        attendees: list[str] = []
        for entry in v:
            if isinstance(entry, dict):
                value = entry.get("email") or entry.get("name")
                if value:
                    attendees.append(str(value))
            elif entry:
                attendees.append(str(entry))
        return attendees

    @model_validator(mode="after")
    def default_end_time(self) -> EventCandidate:
        if self.end_time is None:
            self.end_time = self.start_time
        return self

    @property
    def display_text(self) -> str:
        return self.title

    def to_db_row(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "title": self.title,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "location": self.location,
            "attendees": self.attendees,
            "category": self.category.value,
            "calendar_source": self.calendar_source,
            "calendar_id": self.calendar_id,
        }


class NarrativeCandidate(CandidateBase):
    """A narrative log fragment: one headline plus a few bullets."""

    entity_type: ClassVar[EntityType] = EntityType.NARRATIVE

    headline: str = Field(min_length=1)
    bullets: list[str] = Field(default_factory=list)
    date: datetime = Field(default_factory=utcnow)
    source: NarrativeSource = NarrativeSource.OTHER
    source_file: str | None = None
    source_id: str | None = None

    @field_validator("headline", mode="before")
    @classmethod
    def strip_headline(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("bullets", mode="before")
    @classmethod
    def cap_bullets(cls, v: Any) -> list[str]:
        if not v:
            return []
        if isinstance(v, str):
            v = [v]
        elif not isinstance(v, list | tuple):
            raise ValueError(f"bullets must be a list or string, got {type(v).__name__}")
        return [str(b).strip() for b in v if str(b).strip()][:MAX_NARRATIVE_BULLETS]

    @property
    def display_text(self) -> str:
        return self.headline

    def to_db_row(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "headline": self.headline,
            "bullets": self.bullets,
            "date": self.date,
            "source": self.source.value,
            "source_file": self.source_file,
            "source_id": self.source_id,
            "significance_score": self.significance_score,
        }


CandidateEntity = TaskCandidate | EventCandidate | NarrativeCandidate


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProjectSuggestion:
    """Project picked by the text classifier for an excerpt."""

    project_id: str
    confidence: float
    reasoning: str = ""


@dataclass(frozen=True)
class DuplicateCheckResult:
    """Verdict of a duplicate check."""

    is_duplicate: bool
    matched_item: dict[str, Any] | None = None
    similarity: float | None = None


@dataclass
class ProcessingResult:
    """Records created from one input item, plus what was skipped."""

    tasks: list[dict[str, Any]] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    narratives: list[dict[str, Any]] = field(default_factory=list)
    skipped_duplicates: int = 0
    skipped_low_significance: int = 0
    failed: int = 0

    def records_for(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """Return the list collecting created records of ``entity_type``."""
        match entity_type:
            case EntityType.TASK:
                return self.tasks
            case EntityType.EVENT:
                return self.events
            case EntityType.NARRATIVE:
                return self.narratives

    @property
    def created_count(self) -> int:
        return len(self.tasks) + len(self.events) + len(self.narratives)


@dataclass
class BatchSummary:
    """Aggregate counts across a sequentially processed batch."""

    items: int = 0
    tasks: int = 0
    events: int = 0
    narratives: int = 0
    skipped_duplicates: int = 0
    skipped_low_significance: int = 0
    failed_inserts: int = 0
    failed_items: int = 0

    def add(self, result: ProcessingResult) -> None:
        """Fold one item's result into the totals."""
        self.tasks += len(result.tasks)
        self.events += len(result.events)
        self.narratives += len(result.narratives)
        self.skipped_duplicates += result.skipped_duplicates
        self.skipped_low_significance += result.skipped_low_significance
        self.failed_inserts += result.failed

    def to_dict(self) -> dict[str, int]:
        return {
            "items": self.items,
            "tasks": self.tasks,
            "events": self.events,
            "narratives": self.narratives,
            "skipped_duplicates": self.skipped_duplicates,
            "skipped_low_significance": self.skipped_low_significance,
            "failed_inserts": self.failed_inserts,
            "failed_items": self.failed_items,
        }
