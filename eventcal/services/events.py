"""Write and read paths over an EventStore: validate, detect conflicts, persist."""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime, timedelta

from eventcal.config import Settings, get_settings
from eventcal.domain.bus import EventBus
from eventcal.domain.errors import ConflictError, NotFoundError, ValidationError
from eventcal.domain.events import (
    ConflictDetected,
    EventCreated,
    EventDeleted,
    EventUpdated,
)
from eventcal.domain.models import (
    Event,
    EventDraft,
    EventUpdate,
    ExceptionEvent,
    MasterEvent,
    OccurrenceKey,
    ResolvedInstance,
    SingleEvent,
    TimeWindow,
    VirtualInstance,
    ensure_utc,
)
from eventcal.repos.base import EventStore
from eventcal.services.conflicts import find_conflict
from eventcal.services.recurrence import expand_occurrences, parse_rule
from eventcal.services.resolver import resolve
from eventcal.services.validation import validate_draft, validate_event_fields

logger = logging.getLogger(__name__)


class EventService:
    """Calendar operations against an explicit store handle.

    Writes run ``validate -> detect conflict -> persist`` and stop at the
    first failure; retry policy belongs to the caller. Each successful write
    publishes a domain event on ``bus``.
    """

    def __init__(
        self,
        store: EventStore,
        bus: EventBus | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.bus = bus or EventBus()
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_window(self, start: datetime, end: datetime) -> list[ResolvedInstance]:
        """Return the instances visible in ``[start, end)``, ordered by start."""
        start, end = ensure_utc(start), ensure_utc(end)
        if end <= start:
            raise ValidationError("Window end must be after window start")
        window = TimeWindow(start=start, end=end)
        candidates = self.store.window_candidates(window.start, window.end)
        return resolve(window, candidates, limit=self.settings.MAX_OCCURRENCES)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_event(self, draft: EventDraft) -> Event:
        """Create a single event, a master (``draft.rrule``) or an exception."""
        validate_draft(draft)

        exclude_ids: set[str] = set()
        if draft.is_exception:
            event = self._build_exception(draft)
            # An exception overrides part of its own series
            exclude_ids.add(event.recurrence_id)
        elif draft.rrule is not None:
            parse_rule(draft.rrule, draft.start_time)
            event = MasterEvent(
                title=draft.title,
                start_time=draft.start_time,
                end_time=draft.end_time,
                rrule=draft.rrule,
            )
        else:
            event = SingleEvent(
                title=draft.title,
                start_time=draft.start_time,
                end_time=draft.end_time,
            )

        if not event.is_placeholder:
            self._ensure_no_conflict(event.start_time, event.end_time, exclude_ids)

        self.store.add(event)
        self.bus.publish(EventCreated(event_id=event.id, kind=event.kind))
        return event

    def cancel_occurrence(self, master_id: str, original_start: datetime) -> ExceptionEvent:
        """Hide one generated occurrence of a master by storing a cancellation."""
        master = self._get_master(master_id)
        original_start = ensure_utc(original_start)
        draft = EventDraft(
            title=master.title,
            start_time=original_start,
            end_time=original_start + master.duration,
            recurrence_id=master.id,
            original_start_time=original_start,
            is_cancelled=True,
        )
        return self.create_event(draft)

    def update_event(self, event_id: str, changes: EventUpdate) -> Event:
        """Replace title and interval (and rule) of an existing record.

        Moving a master or changing its rule does not rewrite its
        exceptions: they stay keyed to the old slots and stop applying to
        occurrences the new series no longer generates. A warning is logged
        when that can happen.
        """
        current = self.store.get(event_id)
        if current is None:
            raise NotFoundError(f"Event {event_id} not found")

        cancellation = isinstance(current, ExceptionEvent) and current.is_cancelled
        validate_event_fields(
            changes.title, changes.start_time, changes.end_time, cancellation=cancellation
        )

        fields = {
            "title": changes.title,
            "start_time": changes.start_time,
            "end_time": changes.end_time,
        }
        exclude_ids = {current.id}
        if isinstance(current, ExceptionEvent):
            if changes.rrule is not None:
                raise ValidationError("An exception cannot carry its own recurrence rule")
            exclude_ids.add(current.recurrence_id)
            updated: Event = ExceptionEvent.model_validate(
                {**current.model_dump(), **fields}
            )
        elif changes.rrule is not None or isinstance(current, MasterEvent):
            rrule = changes.rrule if changes.rrule is not None else current.rrule
            parse_rule(rrule, changes.start_time)
            own_exceptions = self.store.list_exceptions(current.id)
            exclude_ids.update(e.id for e in own_exceptions)
            if own_exceptions and (
                rrule != current.rrule or changes.start_time != current.start_time
            ):
                logger.warning(
                    f"Series {current.id} changed; {len(own_exceptions)} exception(s) "
                    f"keep their original slots and may no longer match"
                )
            updated = MasterEvent.model_validate(
                {**current.model_dump(exclude={"kind"}), **fields, "rrule": rrule}
            )
        else:
            updated = SingleEvent.model_validate({**current.model_dump(), **fields})

        if not updated.is_placeholder:
            self._ensure_no_conflict(updated.start_time, updated.end_time, exclude_ids)

        self.store.replace(updated)
        self.bus.publish(EventUpdated(event_id=updated.id, kind=updated.kind))
        return updated

    def delete_event(self, event_id: str, missing_ok: bool = True) -> list[str]:
        """Delete a record; a master takes all its exceptions with it.

        A missing target is a no-op returning ``[]`` unless *missing_ok* is
        False, in which case NotFoundError is raised.
        """
        deleted = self.store.delete(event_id)
        if not deleted:
            if not missing_ok:
                raise NotFoundError(f"Event {event_id} not found")
            logger.info(f"Delete ignored, event {event_id} does not exist")
            return []
        self.bus.publish(EventDeleted(event_id=event_id, deleted_ids=deleted))
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_master(self, master_id: str) -> MasterEvent:
        master = self.store.get(master_id)
        if not isinstance(master, MasterEvent):
            raise NotFoundError(f"Recurring event {master_id} not found")
        return master

    def _build_exception(self, draft: EventDraft) -> ExceptionEvent:
        master = self._get_master(draft.recurrence_id)
        key = OccurrenceKey.of(master.id, draft.original_start_time)

        rule = parse_rule(master.rrule, master.start_time)
        slot = key.original_start
        if not expand_occurrences(
            rule, master.duration, slot, slot + timedelta(microseconds=1)
        ):
            raise ValidationError(
                f"{slot.isoformat()} is not an occurrence of recurring event {master.id}"
            )

        existing = self.store.find_exception(key)
        if existing is not None:
            if self.settings.REJECT_DUPLICATE_EXCEPTIONS:
                self._reject(existing, draft.start_time, draft.end_time)
            logger.warning(
                f"Duplicate exception for master {master.id} at "
                f"{key.original_start.isoformat()}; last write wins"
            )

        return ExceptionEvent(
            title=draft.title,
            start_time=draft.start_time,
            end_time=draft.end_time,
            recurrence_id=master.id,
            original_start_time=key.original_start,
            is_cancelled=draft.is_cancelled,
        )

    def _conflict_candidates(
        self, start: datetime, end: datetime
    ) -> list[Event | VirtualInstance]:
        """Visible instances that may overlap ``[start, end)``.

        Occurrences start-in-window only, so the window is widened backwards
        by the longest master duration to catch occurrences running into it.
        """
        masters = [
            e for e in self.store.window_candidates(start, end) if isinstance(e, MasterEvent)
        ]
        lookback = max((m.duration for m in masters), default=timedelta(0))
        window = TimeWindow(start=start - lookback, end=end)
        candidates: list[Event | VirtualInstance] = list(
            resolve(
                window,
                self.store.window_candidates(window.start, window.end),
                limit=self.settings.MAX_OCCURRENCES,
            )
        )
        # Modifications moved here from a slot outside the window
        seen = {c.id for c in candidates}
        candidates.extend(
            e
            for e in self.store.find_overlapping(start, end)
            if isinstance(e, ExceptionEvent) and e.id not in seen
        )
        return candidates

    def _ensure_no_conflict(
        self, start: datetime, end: datetime, exclude_ids: Collection[str]
    ) -> None:
        candidates = self._conflict_candidates(start, end)
        conflict = find_conflict(start, end, candidates, exclude_ids=exclude_ids)
        if conflict is not None:
            self._reject(conflict, start, end)

    def _reject(
        self, conflict: Event | VirtualInstance, start: datetime, end: datetime
    ) -> None:
        logger.info(
            f"Write [{start.isoformat()}, {end.isoformat()}) rejected, "
            f"conflicts with {conflict.id}"
        )
        self.bus.publish(
            ConflictDetected(
                event_id=conflict.id, candidate_start=start, candidate_end=end
            )
        )
        raise ConflictError("This time slot overlaps with an existing event.", conflict)
