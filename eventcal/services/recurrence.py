"""Service for parsing RRULE-style recurrence descriptions and expanding
recurring series into occurrence intervals inside a query window."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import StrEnum
from typing import NamedTuple

from dateutil.rrule import (
    DAILY,
    MONTHLY,
    WEEKLY,
    YEARLY,
    FR,
    MO,
    SA,
    SU,
    TH,
    TU,
    WE,
    rrule,
)
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from eventcal.domain.errors import RuleParseError
from eventcal.domain.models import ensure_utc

logger = logging.getLogger(__name__)


class Frequency(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Weekday(StrEnum):
    MO = "MO"
    TU = "TU"
    WE = "WE"
    TH = "TH"
    FR = "FR"
    SA = "SA"
    SU = "SU"


_FREQ_MAP = {
    Frequency.DAILY: DAILY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.MONTHLY: MONTHLY,
    Frequency.YEARLY: YEARLY,
}

_DAY_MAP = {
    Weekday.MO: MO,
    Weekday.TU: TU,
    Weekday.WE: WE,
    Weekday.TH: TH,
    Weekday.FR: FR,
    Weekday.SA: SA,
    Weekday.SU: SU,
}

# datetime.weekday() order, Monday == 0
_WEEK_ORDER = list(Weekday)

_ALLOWED_KEYS = {"FREQ", "INTERVAL", "BYDAY"}


class RecurrenceRule(BaseModel):
    """Normalized recurrence: frequency, interval, anchor and weekday set.

    Weekly rules always carry at least one weekday (the anchor's weekday when
    none is given); other frequencies never carry any.
    """

    model_config = ConfigDict(frozen=True)

    frequency: Frequency
    interval: int = Field(default=1, gt=0)
    anchor: datetime
    weekdays: tuple[Weekday, ...] = ()

    @field_validator("anchor")
    @classmethod
    def _anchor_to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="before")
    @classmethod
    def _normalize_weekdays(cls, data: dict) -> dict:
        if not isinstance(data, dict) or "frequency" not in data:
            return data
        data = dict(data)
        days = data.get("weekdays") or ()
        if Frequency(data["frequency"]) != Frequency.WEEKLY:
            if days:
                logger.debug(f"Ignoring BYDAY={days} on {data['frequency']} rule")
            days = ()
        elif not days:
            anchor = data.get("anchor")
            if not isinstance(anchor, datetime):
                return data
            days = (_WEEK_ORDER[ensure_utc(anchor).weekday()],)
        # Ordered Monday-first and deduplicated
        data["weekdays"] = tuple(d for d in _WEEK_ORDER if d in set(days))
        return data

    @property
    def subsecond_offset(self) -> timedelta:
        """Part of the anchor below one second, which dateutil does not keep."""
        return timedelta(microseconds=self.anchor.microsecond)

    def to_rrule(self) -> rrule:
        """Build the dateutil rule anchored at ``self.anchor`` truncated to the second.

        Add ``subsecond_offset`` back to each generated instant.
        """
        return rrule(
            _FREQ_MAP[self.frequency],
            dtstart=self.anchor.replace(microsecond=0),
            interval=self.interval,
            byweekday=[_DAY_MAP[d] for d in self.weekdays] or None,
        )


class Occurrence(NamedTuple):
    start: datetime
    end: datetime


def parse_rule(text: str, anchor: datetime) -> RecurrenceRule:
    """Parse an RRULE description anchored at *anchor*.

    Accepts ``FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE`` with an optional ``RRULE:``
    prefix and an optional leading ``DTSTART:`` line, which is ignored: the
    anchor always comes from the event itself.

    Raises RuleParseError on unknown keys, duplicate keys, a missing or
    unknown FREQ, a non-positive INTERVAL or an unknown weekday code.
    """
    if not text or not text.strip():
        raise RuleParseError("recurrence rule is empty")

    rule_lines = []
    for line in text.strip().splitlines():
        line = line.strip()
        if not line or line.upper().startswith("DTSTART"):
            continue
        if line.upper().startswith("RRULE:"):
            line = line[len("RRULE:"):]
        rule_lines.append(line)
    if len(rule_lines) != 1:
        raise RuleParseError(f"expected exactly one RRULE line in {text!r}")

    parts: dict[str, str] = {}
    for chunk in rule_lines[0].split(";"):
        if not chunk.strip():
            continue
        key, sep, value = chunk.partition("=")
        key = key.strip().upper()
        value = value.strip().upper()
        if not sep or not value:
            raise RuleParseError(f"malformed rule part {chunk!r}")
        if key not in _ALLOWED_KEYS:
            raise RuleParseError(f"unsupported rule part {key!r}")
        if key in parts:
            raise RuleParseError(f"duplicate rule part {key!r}")
        parts[key] = value

    if "FREQ" not in parts:
        raise RuleParseError("recurrence rule has no FREQ")
    try:
        frequency = Frequency(parts["FREQ"])
    except ValueError:
        raise RuleParseError(f"unsupported frequency {parts['FREQ']!r}") from None

    interval = 1
    if "INTERVAL" in parts:
        try:
            interval = int(parts["INTERVAL"])
        except ValueError:
            raise RuleParseError(f"INTERVAL must be an integer, got {parts['INTERVAL']!r}") from None
        if interval <= 0:
            raise RuleParseError(f"INTERVAL must be positive, got {interval}")

    weekdays: list[Weekday] = []
    if "BYDAY" in parts:
        for code in parts["BYDAY"].split(","):
            try:
                weekdays.append(Weekday(code.strip()))
            except ValueError:
                raise RuleParseError(f"unknown weekday {code!r}") from None

    return RecurrenceRule(
        frequency=frequency,
        interval=interval,
        anchor=anchor,
        weekdays=tuple(weekdays),
    )


def format_rule(rule: RecurrenceRule) -> str:
    """Render a normalized rule back to RRULE text (no DTSTART)."""
    parts = [f"FREQ={rule.frequency}", f"INTERVAL={rule.interval}"]
    if rule.weekdays:
        parts.append("BYDAY=" + ",".join(rule.weekdays))
    return ";".join(parts)


def expand_occurrences(
    rule: RecurrenceRule,
    duration: timedelta,
    window_start: datetime,
    window_end: datetime,
    limit: int | None = None,
) -> list[Occurrence]:
    """Expand *rule* into the occurrences whose start lies in ``[window_start, window_end)``.

    Occurrences that start before the window but run into it are not
    included. Every occurrence lasts *duration*. At most *limit* occurrences
    are returned, earliest first.
    """
    if duration <= timedelta(0):
        raise ValueError("occurrence duration must be positive")
    window_start = ensure_utc(window_start)
    window_end = ensure_utc(window_end)
    if window_end <= window_start:
        return []

    offset = rule.subsecond_offset
    occurrences: list[Occurrence] = []
    for dt in rule.to_rrule().xafter(window_start - offset, inc=True):
        dt = ensure_utc(dt) + offset
        if dt < window_start:
            continue
        if dt >= window_end:
            break
        if occurrences and occurrences[-1].start == dt:
            continue
        if limit is not None and len(occurrences) >= limit:
            logger.warning(
                f"Occurrence expansion truncated at {limit} "
                f"for rule {format_rule(rule)} in [{window_start}, {window_end})"
            )
            break
        occurrences.append(Occurrence(dt, dt + duration))

    return occurrences
