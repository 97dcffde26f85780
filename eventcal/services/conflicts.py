"""Service for detecting scheduling conflicts between events."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from datetime import datetime

from eventcal.domain.models import Event, VirtualInstance, ensure_utc


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Strict half-open overlap: ``[a) ∩ [b) ≠ ∅``. Touching endpoints do not overlap."""
    return start_a < end_b and start_b < end_a


def find_conflict(
    new_start: datetime,
    new_end: datetime,
    existing_events: Iterable[Event | VirtualInstance],
    exclude_ids: Collection[str] = (),
) -> Event | VirtualInstance | None:
    """Return the first existing event overlapping ``[new_start, new_end)``, if any.

    Events whose id is in *exclude_ids* are skipped (the record being updated,
    or the master an exception belongs to); generated occurrences are skipped
    when their master is excluded. Cancellation exceptions never conflict
    since their interval is only a placeholder.
    """
    new_start = ensure_utc(new_start)
    new_end = ensure_utc(new_end)
    for event in existing_events:
        if isinstance(event, VirtualInstance):
            if event.master_id in exclude_ids:
                continue
        elif event.id in exclude_ids or event.is_placeholder:
            continue
        if intervals_overlap(new_start, new_end, event.start_time, event.end_time):
            return event
    return None
