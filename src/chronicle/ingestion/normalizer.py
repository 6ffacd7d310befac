"""Content normalizer for the ingestion pipeline.

Converts source-specific payloads (inbox messages, vault note files,
calendar entries) into a ``ContentEnvelope``. Normalization never fails:
anything unrecognized is serialized to JSON and stamped with the current
time.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import UTC, date, datetime
from typing import Any

from chronicle.ingestion.models import ContentEnvelope, SourceType, utcnow
from chronicle.logging import get_logger

log = get_logger("chronicle.ingestion.normalizer")

# Date embedded in a note's path, e.g. "Meetings/2025-10-28 Kickoff.md"
PATH_DATE_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2})")


def identify_source(payload: Mapping[str, Any]) -> SourceType:
    """Guess the source type from the payload's shape."""
    if payload.get("filepath"):
        return SourceType.NOTE
    if payload.get("calendar_source"):
        return SourceType.CALENDAR
    if payload.get("email_id") or payload.get("from"):
        return SourceType.EMAIL
    declared = payload.get("source")
    if declared:
        try:
            return SourceType(str(declared).lower())
        except ValueError:
            return SourceType.UNKNOWN
    return SourceType.UNKNOWN


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a datetime, date or ISO-8601 string; return None if impossible."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def date_from_path(filepath: str | None) -> datetime:
    """Extract a ``YYYY-MM-DD`` date from a file path, falling back to now."""
    if filepath:
        match = PATH_DATE_PATTERN.search(filepath)
        if match:
            parsed = parse_timestamp(match.group(1))
            if parsed is not None:
                return parsed
    return utcnow()


def _join_text(*parts: Any) -> str:
    return "\n".join(str(part or "") for part in parts)


def _optional_str(value: Any) -> str | None:
    """Provider ids and paths may arrive as ints or ``Path`` objects."""
    if value is None or value == "":
        return None
    return str(value)


def normalize(
    payload: Mapping[str, Any], source: SourceType | str | None = None
) -> ContentEnvelope:
    """Normalize a raw payload into a ``ContentEnvelope``.

    Args:
        payload: Source-specific fields of one input item.
        source: Source type tag; identified from the payload when omitted.

    Returns:
        The envelope; unknown sources yield a JSON dump of the payload.
    """
    if source is None:
        source_type = identify_source(payload)
    else:
        try:
            source_type = SourceType(source)
        except ValueError:
            source_type = SourceType.UNKNOWN

    match source_type:
        case SourceType.EMAIL:
            envelope = ContentEnvelope(
                source=source_type,
                text=_join_text(payload.get("subject"), payload.get("body")),
                metadata={
                    "from": payload.get("from"),
                    "to": payload.get("to"),
                    "email_id": _optional_str(payload.get("email_id") or payload.get("id")),
                },
                date=parse_timestamp(payload.get("received_date")) or utcnow(),
            )
        case SourceType.NOTE:
            filepath = _optional_str(payload.get("filepath"))
            envelope = ContentEnvelope(
                source=source_type,
                text=str(payload.get("content") or ""),
                metadata={
                    "filepath": filepath,
                    "filename": _optional_str(payload.get("filename")),
                },
                date=date_from_path(filepath),
            )
        case SourceType.CALENDAR:
            envelope = ContentEnvelope(
                source=source_type,
                text=_join_text(payload.get("summary"), payload.get("description")),
                metadata={
                    "location": payload.get("location"),
                    "attendees": payload.get("attendees"),
                    "calendar_id": _optional_str(payload.get("id")),
                    "calendar_source": _optional_str(payload.get("calendar_source")),
                },
                date=parse_timestamp(payload.get("start_time")) or utcnow(),
            )
        case _:
            envelope = ContentEnvelope(
                source=SourceType.UNKNOWN,
                text=json.dumps(dict(payload), default=str),
                date=utcnow(),
            )

    log.debug(
        "content_normalized",
        source=envelope.source.value,
        text_length=len(envelope.text),
        filepath=envelope.filepath,
    )
    return envelope
