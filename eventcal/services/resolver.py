"""Service for resolving stored records into the instances visible in a window."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from eventcal.domain.errors import RuleParseError
from eventcal.domain.models import (
    Event,
    ExceptionEvent,
    MasterEvent,
    OccurrenceKey,
    ResolvedInstance,
    SingleEvent,
    TimeWindow,
    VirtualInstance,
)
from eventcal.services.exceptions import ExceptionIndex
from eventcal.services.recurrence import expand_occurrences, parse_rule

logger = logging.getLogger(__name__)


def partition(
    candidates: Iterable[Event],
) -> tuple[list[SingleEvent], list[MasterEvent], list[ExceptionEvent]]:
    singles: list[SingleEvent] = []
    masters: list[MasterEvent] = []
    exceptions: list[ExceptionEvent] = []
    for event in candidates:
        if isinstance(event, MasterEvent):
            masters.append(event)
        elif isinstance(event, ExceptionEvent):
            exceptions.append(event)
        else:
            singles.append(event)
    return singles, masters, exceptions


def resolve(
    window: TimeWindow,
    candidates: Iterable[Event],
    limit: int | None = None,
) -> list[ResolvedInstance]:
    """Merge single events, expanded masters and their exceptions for *window*.

    Single events are included when their interval overlaps the window;
    master occurrences only when their start lies inside it. A matching
    exception replaces the generated occurrence, or removes it when
    cancelled. The result is ordered by start time; ties keep single events
    first, then masters in candidate order.

    A master whose stored rule does not parse is skipped and logged. When
    two exceptions share a slot, the most recently created one applies.
    """
    singles, masters, exceptions = partition(candidates)
    index = ExceptionIndex.build(sorted(exceptions, key=lambda e: (e.created_at, e.id)))

    resolved: list[ResolvedInstance] = [
        event
        for event in sorted(singles, key=lambda e: e.start_time)
        if window.overlaps(event.start_time, event.end_time)
    ]

    used: set[OccurrenceKey] = set()
    for master in masters:
        try:
            rule = parse_rule(master.rrule, master.start_time)
        except RuleParseError as e:
            logger.error(f"Skipping master {master.id}: {e}")
            continue

        for occ in expand_occurrences(
            rule, master.duration, window.start, window.end, limit=limit
        ):
            key = OccurrenceKey.of(master.id, occ.start)
            override = index.lookup(key)
            if override is None:
                resolved.append(VirtualInstance.from_master(master, occ.start, occ.end))
                continue
            used.add(key)
            if not override.is_cancelled:
                resolved.append(override)

    orphaned = len(index) - len(used)
    if orphaned:
        logger.debug(f"{orphaned} exception(s) matched no generated occurrence")

    resolved.sort(key=lambda i: i.start_time)
    return resolved
