"""Domain models for calendar events, recurring series and their overrides."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Annotated, Any, Literal, NamedTuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from eventcal.domain.errors import ValidationError


class TimelineEntryType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    CONFLICT_DETECTED = "conflict_detected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def ensure_utc(value: datetime) -> datetime:
    """Normalize *value* to an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class OccurrenceKey(NamedTuple):
    """Composite key of one occurrence: owning master id + generated start."""

    master_id: str
    original_start: datetime

    @classmethod
    def of(cls, master_id: str, original_start: datetime) -> OccurrenceKey:
        return cls(master_id, ensure_utc(original_start))


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


class _EventBase(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    start_time: datetime
    end_time: datetime
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> _EventBase:
        if self.is_placeholder:
            return self
        if not self.title.strip():
            raise ValueError("title must not be blank")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def is_placeholder(self) -> bool:
        """True when the interval is a placeholder that never occupies time."""
        return False

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time


class SingleEvent(_EventBase):
    """An ordinary, non-recurring event."""

    kind: Literal["single"] = "single"


class MasterEvent(_EventBase):
    """A recurring series.

    ``start_time`` anchors the rule and ``end_time - start_time`` is the
    duration of every generated occurrence.
    """

    kind: Literal["master"] = "master"
    rrule: str = Field(min_length=1)


class ExceptionEvent(_EventBase):
    """A persisted override of one occurrence of a master.

    A modification carries the replacement title and interval. A cancellation
    (``is_cancelled``) removes the occurrence; its interval is copied from the
    occurrence it cancels and its title may be empty.
    """

    kind: Literal["exception"] = "exception"
    recurrence_id: str
    original_start_time: datetime
    is_cancelled: bool = False

    @field_validator("original_start_time")
    @classmethod
    def _original_to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def is_placeholder(self) -> bool:
        return self.is_cancelled

    @property
    def key(self) -> OccurrenceKey:
        return OccurrenceKey.of(self.recurrence_id, self.original_start_time)


Event = Annotated[
    SingleEvent | MasterEvent | ExceptionEvent, Field(discriminator="kind")
]

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def event_from_record(record: Mapping[str, Any]) -> Event:
    """Build the right Event variant from a flat storage row.

    Rows use nullable ``rrule`` / ``recurrence_id`` / ``original_start_time``
    columns; which of them are populated decides the variant.
    """
    data = {k: v for k, v in record.items() if v is not None}
    data.pop("kind", None)
    rrule = data.get("rrule")
    recurrence_id = data.get("recurrence_id")
    has_original = "original_start_time" in data

    if rrule and recurrence_id:
        raise ValidationError("a record cannot carry both rrule and recurrence_id")
    if recurrence_id or has_original:
        if not recurrence_id or not has_original:
            raise ValidationError(
                "exception records need both recurrence_id and original_start_time"
            )
        data["kind"] = "exception"
    elif data.get("is_cancelled"):
        raise ValidationError("only exception records can be cancelled")
    elif rrule:
        data["kind"] = "master"
    else:
        data["kind"] = "single"
    return _event_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Resolution output
# ---------------------------------------------------------------------------


class VirtualInstance(BaseModel):
    """A generated occurrence of a master that has no stored exception.

    Never persisted; ``master_id`` and ``original_start_time`` let a caller
    turn it into a real exception later.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["virtual"] = "virtual"
    id: str
    master_id: str
    title: str
    start_time: datetime
    end_time: datetime
    rrule: str
    is_generated: Literal[True] = True

    @classmethod
    def from_master(
        cls, master: MasterEvent, start: datetime, end: datetime
    ) -> VirtualInstance:
        return cls(
            id=f"{master.id}_{start.strftime('%Y%m%dT%H%M%SZ')}",
            master_id=master.id,
            title=master.title,
            start_time=start,
            end_time=end,
            rrule=master.rrule,
        )

    @property
    def original_start_time(self) -> datetime:
        return self.start_time

    @property
    def key(self) -> OccurrenceKey:
        return OccurrenceKey.of(self.master_id, self.start_time)

    def as_exception_draft(self, **changes: Any) -> EventDraft:
        """Return a draft that overrides this occurrence when created."""
        fields: dict[str, Any] = {
            "title": self.title,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "recurrence_id": self.master_id,
            "original_start_time": self.start_time,
        }
        fields.update(changes)
        return EventDraft(**fields)


ResolvedInstance = SingleEvent | ExceptionEvent | VirtualInstance


def is_persisted(instance: ResolvedInstance) -> bool:
    return not isinstance(instance, VirtualInstance)


class TimeWindow(BaseModel):
    """Half-open query window ``[start, end)``."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> TimeWindow:
        if self.end <= self.start:
            raise ValueError("window end must be after window start")
        return self

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) < self.end

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and self.start < end


class TimelineEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Write requests
# ---------------------------------------------------------------------------


class EventDraft(BaseModel):
    """Fields of an event to create.

    Set ``rrule`` for a master, ``recurrence_id`` and ``original_start_time``
    for an exception. Title/time rules are checked by the write service, not
    here, so that they surface as ValidationError.
    """

    title: str = ""
    start_time: datetime
    end_time: datetime
    rrule: str | None = None
    recurrence_id: str | None = None
    original_start_time: datetime | None = None
    is_cancelled: bool = False

    @field_validator("start_time", "end_time", "original_start_time")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @property
    def is_exception(self) -> bool:
        return self.recurrence_id is not None or self.original_start_time is not None


class EventUpdate(BaseModel):
    """Replacement title/interval for an existing record.

    ``rrule`` replaces a master's rule, or promotes a single event to a
    master; ``None`` keeps the current rule.
    """

    title: str = ""
    start_time: datetime
    end_time: datetime
    rrule: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
