"""Unit tests for significance scoring."""

from datetime import datetime

import pytest

from chronicle.ingestion.models import (
    EventCandidate,
    NarrativeCandidate,
    NarrativeSource,
    TaskCandidate,
)
from chronicle.ingestion.scoring import is_significant, score_significance


class TestScoreSignificance:
    """Tests for score_significance()."""

    @pytest.mark.parametrize(
        ("source", "expected"),
        [
            (NarrativeSource.MEETING, 0.9),
            (NarrativeSource.EVENT, 0.7),
            (NarrativeSource.EMAIL, 0.6),
            (NarrativeSource.NOTE, 0.5),
            (NarrativeSource.OTHER, 0.5),
        ],
    )
    def test_narrative_by_source(self, source, expected):
        narrative = NarrativeCandidate(headline="Decision made", source=source)
        assert score_significance(narrative) == expected

    def test_event_with_project(self):
        event = EventCandidate(title="Kickoff", start_time=datetime(2026, 1, 5), project_id="p1")
        assert score_significance(event) == 0.7

    def test_event_without_project(self):
        event = EventCandidate(title="Dentist", start_time=datetime(2026, 1, 5))
        assert score_significance(event) == 0.5

    def test_task_uses_confidence(self):
        assert score_significance(TaskCandidate(title="Send deck", confidence=0.35)) == 0.35


class TestIsSignificant:
    """Tests for is_significant()."""

    def test_note_narrative_at_threshold_retained(self):
        """A note narrative scores exactly 0.5 and is kept."""
        narrative = NarrativeCandidate(headline="Wrote up ideas", source=NarrativeSource.NOTE)
        assert is_significant(narrative, score_significance(narrative)) is True

    def test_low_confidence_task_always_passes(self):
        """Tasks are never filtered, even at confidence 0.1."""
        task = TaskCandidate(title="Maybe look into it", confidence=0.1)
        assert is_significant(task, score_significance(task)) is True

    def test_below_threshold_filtered(self):
        narrative = NarrativeCandidate(headline="Minor", source=NarrativeSource.EMAIL)
        assert is_significant(narrative, 0.6, threshold=0.65) is False
