"""Lookup of stored per-occurrence overrides by (master id, original start)."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from eventcal.domain.models import ExceptionEvent, OccurrenceKey

logger = logging.getLogger(__name__)


class ExceptionIndex:
    """Dict-backed index of ExceptionEvent records keyed by OccurrenceKey.

    Two exceptions sharing a key is not expected upstream. When it happens
    the last one seen wins; if the two disagree on content the collision is
    logged as a data inconsistency.
    """

    def __init__(self) -> None:
        self._by_key: dict[OccurrenceKey, ExceptionEvent] = {}

    @classmethod
    def build(cls, exceptions: Iterable[ExceptionEvent]) -> ExceptionIndex:
        index = cls()
        for exc in exceptions:
            index.add(exc)
        return index

    def add(self, exc: ExceptionEvent) -> None:
        key = exc.key
        previous = self._by_key.get(key)
        if previous is not None and previous.id != exc.id and _diverges(previous, exc):
            logger.warning(
                f"Inconsistent exceptions for master {key.master_id} at "
                f"{key.original_start.isoformat()}: {previous.id} replaced by {exc.id}"
            )
        self._by_key[key] = exc

    def lookup(self, key: OccurrenceKey) -> ExceptionEvent | None:
        return self._by_key.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)


def _diverges(a: ExceptionEvent, b: ExceptionEvent) -> bool:
    if a.is_cancelled and b.is_cancelled:
        return False
    return (a.is_cancelled, a.title, a.start_time, a.end_time) != (
        b.is_cancelled,
        b.title,
        b.start_time,
        b.end_time,
    )
