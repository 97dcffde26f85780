"""Tests for window resolution of singles, masters and exceptions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from eventcal.domain.models import (
    ExceptionEvent,
    MasterEvent,
    SingleEvent,
    TimeWindow,
    VirtualInstance,
)
from eventcal.services.resolver import partition, resolve


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


_WINDOW = TimeWindow(start=_utc(2024, 1, 1), end=_utc(2024, 1, 22))


@pytest.fixture()
def master() -> MasterEvent:
    """Weekly Monday 09:00-10:00 series anchored on 2024-01-01."""
    return MasterEvent(
        id="master-1",
        title="Weekly sync",
        start_time=_utc(2024, 1, 1, 9, 0),
        end_time=_utc(2024, 1, 1, 10, 0),
        rrule="FREQ=WEEKLY;BYDAY=MO",
    )


def _cancel(master: MasterEvent, slot: datetime) -> ExceptionEvent:
    return ExceptionEvent(
        title="",
        start_time=slot,
        end_time=slot + master.duration,
        recurrence_id=master.id,
        original_start_time=slot,
        is_cancelled=True,
    )


# ---------------------------------------------------------------------------
# Master expansion
# ---------------------------------------------------------------------------


def test_weekly_master_yields_three_virtual_instances(master):
    resolved = resolve(_WINDOW, [master])

    assert [i.start_time for i in resolved] == [
        _utc(2024, 1, 1, 9, 0),
        _utc(2024, 1, 8, 9, 0),
        _utc(2024, 1, 15, 9, 0),
    ]
    for instance in resolved:
        assert isinstance(instance, VirtualInstance)
        assert instance.master_id == master.id
        assert instance.title == "Weekly sync"
        assert instance.end_time - instance.start_time == timedelta(hours=1)


def test_cancellation_removes_occurrence(master):
    slot = _utc(2024, 1, 8, 9, 0)
    resolved = resolve(_WINDOW, [master, _cancel(master, slot)])

    assert [i.start_time for i in resolved] == [
        _utc(2024, 1, 1, 9, 0),
        _utc(2024, 1, 15, 9, 0),
    ]
    assert all(i.start_time != slot for i in resolved)


def test_modification_replaces_virtual_instance(master):
    slot = _utc(2024, 1, 8, 9, 0)
    moved = ExceptionEvent(
        id="exc-1",
        title="Weekly sync (moved)",
        start_time=_utc(2024, 1, 9, 14, 0),
        end_time=_utc(2024, 1, 9, 15, 30),
        recurrence_id=master.id,
        original_start_time=slot,
    )
    resolved = resolve(_WINDOW, [master, moved])

    assert len(resolved) == 3
    assert resolved[1] is moved
    assert resolved[1].id == "exc-1"
    assert resolved[1].title == "Weekly sync (moved)"
    assert not any(
        isinstance(i, VirtualInstance) and i.start_time == slot for i in resolved
    )


def test_exception_for_other_master_does_not_apply(master):
    other = _cancel(master, _utc(2024, 1, 8, 9, 0)).model_copy(
        update={"recurrence_id": "master-2"}
    )
    resolved = resolve(_WINDOW, [master, other])
    assert len(resolved) == 3


def test_most_recently_created_exception_wins(master):
    slot = _utc(2024, 1, 8, 9, 0)
    moved = ExceptionEvent(
        id="exc-b",
        title="Weekly sync (moved)",
        start_time=_utc(2024, 1, 10, 9, 0),
        end_time=_utc(2024, 1, 10, 10, 0),
        recurrence_id=master.id,
        original_start_time=slot,
        created_at=_utc(2023, 12, 1),
    )
    cancelled = _cancel(master, slot).model_copy(
        update={"id": "exc-a", "created_at": _utc(2023, 12, 2)}
    )

    # Candidate order follows start time, so the older record comes last
    resolved = resolve(_WINDOW, [master, cancelled, moved])

    assert moved not in resolved
    assert [i.start_time for i in resolved] == [
        _utc(2024, 1, 1, 9, 0),
        _utc(2024, 1, 15, 9, 0),
    ]


def test_orphaned_exception_is_not_emitted(master):
    # 10:00 is not a slot the rule generates
    stray = ExceptionEvent(
        title="Stray",
        start_time=_utc(2024, 1, 8, 10, 0),
        end_time=_utc(2024, 1, 8, 11, 0),
        recurrence_id=master.id,
        original_start_time=_utc(2024, 1, 8, 10, 0),
    )
    resolved = resolve(_WINDOW, [master, stray])
    assert stray not in resolved
    assert len(resolved) == 3


def test_master_with_bad_rule_is_skipped(master, caplog):
    broken = MasterEvent(
        id="broken",
        title="Broken",
        start_time=_utc(2024, 1, 2, 9, 0),
        end_time=_utc(2024, 1, 2, 10, 0),
        rrule="FREQ=FORTNIGHTLY",
    )
    with caplog.at_level(logging.ERROR, logger="eventcal.services.resolver"):
        resolved = resolve(_WINDOW, [broken, master])

    assert len(resolved) == 3
    assert "Skipping master broken" in caplog.text


def test_limit_caps_occurrences_per_master():
    daily = MasterEvent(
        title="Daily",
        start_time=_utc(2024, 1, 1, 7, 0),
        end_time=_utc(2024, 1, 1, 7, 30),
        rrule="FREQ=DAILY",
    )
    assert len(resolve(_WINDOW, [daily], limit=5)) == 5
    assert len(resolve(_WINDOW, [daily])) == 21


# ---------------------------------------------------------------------------
# Single events and ordering
# ---------------------------------------------------------------------------


def test_single_overlapping_window_start_is_included():
    """Singles use full-interval overlap, unlike master occurrences."""
    spanning = SingleEvent(
        title="Overnight",
        start_time=_utc(2023, 12, 31, 22, 0),
        end_time=_utc(2024, 1, 1, 2, 0),
    )
    outside = SingleEvent(
        title="Outside",
        start_time=_utc(2024, 1, 22, 0, 0),
        end_time=_utc(2024, 1, 22, 1, 0),
    )
    assert resolve(_WINDOW, [spanning, outside]) == [spanning]


def test_master_occurrence_starting_before_window_is_excluded():
    daily = MasterEvent(
        title="Long daily",
        start_time=_utc(2023, 12, 31, 23, 0),
        end_time=_utc(2024, 1, 1, 1, 0),
        rrule="FREQ=DAILY",
    )
    window = TimeWindow(start=_utc(2024, 1, 1), end=_utc(2024, 1, 2))
    resolved = resolve(window, [daily])
    assert [i.start_time for i in resolved] == [_utc(2024, 1, 1, 23, 0)]


def test_output_is_ordered_by_start(master):
    single = SingleEvent(
        title="Dentist",
        start_time=_utc(2024, 1, 3, 8, 0),
        end_time=_utc(2024, 1, 3, 9, 0),
    )
    tie = SingleEvent(
        title="Same slot",
        start_time=_utc(2024, 1, 15, 9, 0),
        end_time=_utc(2024, 1, 15, 9, 30),
    )
    resolved = resolve(_WINDOW, [master, tie, single])

    starts = [i.start_time for i in resolved]
    assert starts == sorted(starts)
    # Singles come before master occurrences on a tie
    assert resolved[3] is tie
    assert isinstance(resolved[4], VirtualInstance)


def test_resolution_is_idempotent(master):
    single = SingleEvent(
        title="Review",
        start_time=_utc(2024, 1, 10, 13, 0),
        end_time=_utc(2024, 1, 10, 14, 0),
    )
    candidates = [master, single, _cancel(master, _utc(2024, 1, 15, 9, 0))]

    first = resolve(_WINDOW, candidates)
    second = resolve(_WINDOW, candidates)
    assert first == second
    assert [i.id for i in first] == [i.id for i in second]


def test_partition_splits_variants(master):
    single = SingleEvent(
        title="One-off",
        start_time=_utc(2024, 1, 3, 8, 0),
        end_time=_utc(2024, 1, 3, 9, 0),
    )
    exc = _cancel(master, _utc(2024, 1, 8, 9, 0))

    singles, masters, exceptions = partition([exc, single, master])
    assert singles == [single]
    assert masters == [master]
    assert exceptions == [exc]
