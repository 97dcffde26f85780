"""In-memory repositories for events and their change timeline."""

from __future__ import annotations

import threading
from datetime import datetime

from eventcal.domain.errors import NotFoundError
from eventcal.domain.models import (
    Event,
    ExceptionEvent,
    MasterEvent,
    OccurrenceKey,
    SingleEvent,
    TimelineEntry,
)


class InMemoryEventStore:
    """Dict-backed EventStore keyed by id.

    Every read takes a snapshot under the lock, so a series delete is never
    observed half-applied.
    """

    def __init__(self) -> None:
        self._store: dict[str, Event] = {}
        self._lock = threading.Lock()

    def add(self, event: Event) -> None:
        with self._lock:
            self._store[event.id] = event

    def get(self, event_id: str) -> Event | None:
        with self._lock:
            return self._store.get(event_id)

    def replace(self, event: Event) -> None:
        with self._lock:
            if event.id not in self._store:
                raise NotFoundError(f"Event {event.id} not found")
            self._store[event.id] = event

    def list_all(self) -> list[Event]:
        with self._lock:
            events = list(self._store.values())
        return sorted(events, key=lambda e: (e.start_time, e.id))

    def list_exceptions(self, master_id: str) -> list[ExceptionEvent]:
        """Return all exceptions belonging to a recurring series."""
        return [
            e
            for e in self.list_all()
            if isinstance(e, ExceptionEvent) and e.recurrence_id == master_id
        ]

    def find_exception(self, key: OccurrenceKey) -> ExceptionEvent | None:
        for exc in self.list_exceptions(key.master_id):
            if exc.key == key:
                return exc
        return None

    def window_candidates(self, start: datetime, end: datetime) -> list[Event]:
        candidates: list[Event] = []
        for e in self.list_all():
            if isinstance(e, SingleEvent):
                if e.start_time < end and e.end_time > start:
                    candidates.append(e)
            elif isinstance(e, MasterEvent):
                if e.start_time < end:
                    candidates.append(e)
            elif start <= e.original_start_time < end:
                candidates.append(e)
        return candidates

    def find_overlapping(
        self, start: datetime, end: datetime, exclude_id: str | None = None
    ) -> list[Event]:
        return [
            e
            for e in self.list_all()
            if e.id != exclude_id and e.start_time < end and e.end_time > start
        ]

    def delete(self, event_id: str) -> list[str]:
        """Delete a record; deleting a master cascades to its exceptions.

        Returns the deleted ids (empty when *event_id* is unknown).
        """
        with self._lock:
            target = self._store.get(event_id)
            if target is None:
                return []
            to_remove = [event_id]
            if isinstance(target, MasterEvent):
                to_remove.extend(
                    eid
                    for eid, e in self._store.items()
                    if isinstance(e, ExceptionEvent) and e.recurrence_id == event_id
                )
            for eid in to_remove:
                del self._store[eid]
        return to_remove


class TimelineRepository:
    """List-backed store for TimelineEntry instances."""

    def __init__(self) -> None:
        self._entries: list[TimelineEntry] = []

    def add(self, entry: TimelineEntry) -> None:
        self._entries.append(entry)

    def list_for_event(self, event_id: str) -> list[TimelineEntry]:
        return sorted(
            [e for e in self._entries if e.event_id == event_id],
            key=lambda e: e.timestamp,
        )

    def list_all(self) -> list[TimelineEntry]:
        return list(self._entries)
