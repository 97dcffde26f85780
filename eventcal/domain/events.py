"""Domain events published by the write service."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CalendarChange(BaseModel):
    """Base for every change notification; ``event_id`` is the affected record."""

    event_id: str


class EventCreated(CalendarChange):
    """Fired when a single, master or exception record is persisted."""

    kind: str


class EventUpdated(CalendarChange):
    """Fired when an existing record's title, interval or rule is replaced."""

    kind: str


class EventDeleted(CalendarChange):
    """Fired after a delete; ``deleted_ids`` includes cascaded exceptions."""

    deleted_ids: list[str]


class ConflictDetected(CalendarChange):
    """Fired when a write is rejected; ``event_id`` is the conflicting record."""

    candidate_start: datetime
    candidate_end: datetime
