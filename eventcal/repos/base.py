"""Storage boundary required by the calendar services."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from eventcal.domain.models import Event, ExceptionEvent, OccurrenceKey


class EventStore(Protocol):
    """Query shapes and transactional guarantees the core needs from storage.

    ``delete`` must be atomic: deleting a master removes it and every
    exception referencing it as one all-or-nothing operation.
    """

    def add(self, event: Event) -> None: ...

    def get(self, event_id: str) -> Event | None: ...

    def replace(self, event: Event) -> None: ...

    def list_all(self) -> list[Event]: ...

    def list_exceptions(self, master_id: str) -> list[ExceptionEvent]: ...

    def find_exception(self, key: OccurrenceKey) -> ExceptionEvent | None: ...

    def window_candidates(self, start: datetime, end: datetime) -> list[Event]:
        """Singles overlapping ``[start, end)``, masters with ``start_time < end``
        and exceptions with ``original_start_time`` in ``[start, end)``."""
        ...

    def find_overlapping(
        self, start: datetime, end: datetime, exclude_id: str | None = None
    ) -> list[Event]: ...

    def delete(self, event_id: str) -> list[str]: ...
