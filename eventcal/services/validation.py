"""Write preconditions checked before any conflict evaluation or storage access."""

from __future__ import annotations

from datetime import datetime

from eventcal.domain.errors import ValidationError
from eventcal.domain.models import EventDraft


def validate_event_fields(
    title: str | None,
    start_time: datetime,
    end_time: datetime,
    cancellation: bool = False,
) -> None:
    """Reject a blank title or an interval that does not end after it starts.

    Cancellation markers are exempt: their title and interval are placeholders.
    """
    if cancellation:
        return
    if not title or not title.strip():
        raise ValidationError("Title is required and cannot be empty")
    if start_time >= end_time:
        raise ValidationError("End time must be after start time")


def validate_draft(draft: EventDraft) -> None:
    if draft.rrule is not None and draft.is_exception:
        raise ValidationError("An exception cannot carry its own recurrence rule")
    if draft.is_exception and (
        draft.recurrence_id is None or draft.original_start_time is None
    ):
        raise ValidationError(
            "An exception needs both recurrence_id and original_start_time"
        )
    if draft.is_cancelled and not draft.is_exception:
        raise ValidationError("Only an occurrence of a recurring event can be cancelled")
    validate_event_fields(
        draft.title, draft.start_time, draft.end_time, cancellation=draft.is_cancelled
    )
