"""Significance scoring for candidate entities.

Pure functions, no I/O. Tasks carry their classifier confidence and are
never filtered; events and narratives below the threshold are dropped
before persistence.
"""

from __future__ import annotations

from chronicle.constants import SIGNIFICANCE_THRESHOLD
from chronicle.ingestion.models import (
    CandidateEntity,
    EventCandidate,
    NarrativeCandidate,
    NarrativeSource,
    TaskCandidate,
)

NARRATIVE_SOURCE_SCORES: dict[NarrativeSource, float] = {
    NarrativeSource.MEETING: 0.9,
    NarrativeSource.EVENT: 0.7,
    NarrativeSource.EMAIL: 0.6,
    NarrativeSource.NOTE: 0.5,
}
DEFAULT_NARRATIVE_SCORE = 0.5

EVENT_WITH_PROJECT_SCORE = 0.7
EVENT_WITHOUT_PROJECT_SCORE = 0.5


def score_significance(candidate: CandidateEntity) -> float:
    """Return a 0-1 significance score for ``candidate``."""
    match candidate:
        case TaskCandidate():
            return candidate.confidence
        case EventCandidate():
            return (
                EVENT_WITH_PROJECT_SCORE
                if candidate.project_id is not None
                else EVENT_WITHOUT_PROJECT_SCORE
            )
        case NarrativeCandidate():
            return NARRATIVE_SOURCE_SCORES.get(candidate.source, DEFAULT_NARRATIVE_SCORE)
        case _:
            return DEFAULT_NARRATIVE_SCORE


def is_significant(
    candidate: CandidateEntity, score: float, threshold: float = SIGNIFICANCE_THRESHOLD
) -> bool:
    """Tasks always pass; anything else needs ``score >= threshold``."""
    if isinstance(candidate, TaskCandidate):
        return True
    return score >= threshold
