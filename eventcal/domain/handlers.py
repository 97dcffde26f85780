"""Domain event handlers — wired up when the write service is assembled."""

from __future__ import annotations

import logging

from eventcal.domain.bus import EventBus
from eventcal.domain.events import (
    CalendarChange,
    ConflictDetected,
    EventCreated,
    EventDeleted,
    EventUpdated,
)
from eventcal.domain.models import TimelineEntry, TimelineEntryType
from eventcal.repos.memory import TimelineRepository

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Wires domain-event handlers to the bus and records a change timeline."""

    def __init__(self, bus: EventBus, timeline_repo: TimelineRepository) -> None:
        self.bus = bus
        self.timeline_repo = timeline_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(EventCreated, self.on_event_created)
        self.bus.subscribe(EventUpdated, self.on_event_updated)
        self.bus.subscribe(EventDeleted, self.on_event_deleted)
        self.bus.subscribe(ConflictDetected, self.on_conflict_detected)
        self.bus.subscribe(CalendarChange, self.log_change)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_event_created(self, event: EventCreated) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                type=TimelineEntryType.CREATED,
                payload={"kind": event.kind},
            )
        )

    def on_event_updated(self, event: EventUpdated) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                type=TimelineEntryType.UPDATED,
                payload={"kind": event.kind},
            )
        )

    def on_event_deleted(self, event: EventDeleted) -> None:
        # One entry per removed record so cascaded exceptions are traceable
        for deleted_id in event.deleted_ids:
            self.timeline_repo.add(
                TimelineEntry(
                    event_id=deleted_id,
                    type=TimelineEntryType.DELETED,
                    payload={"requested_id": event.event_id},
                )
            )

    def on_conflict_detected(self, event: ConflictDetected) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                type=TimelineEntryType.CONFLICT_DETECTED,
                payload={
                    "candidate_start": event.candidate_start.isoformat(),
                    "candidate_end": event.candidate_end.isoformat(),
                },
            )
        )

    def log_change(self, event: CalendarChange) -> None:
        logger.info(f"{type(event).__name__}: {event.event_id}")
