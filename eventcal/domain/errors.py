"""Expected failure outcomes of calendar reads and writes."""

from __future__ import annotations

from typing import Any


class CalendarError(Exception):
    """Base class for recoverable calendar errors."""


class ValidationError(CalendarError):
    """A write failed title/time preconditions and must not reach storage."""


class RuleParseError(CalendarError, ValueError):
    """A recurrence description is malformed or semantically invalid."""


class NotFoundError(CalendarError):
    """The update/delete target (or an exception's master) does not exist."""


class ConflictError(CalendarError):
    """The candidate interval overlaps an existing record.

    ``conflict`` holds the full conflicting record so the caller can surface
    it as a structured error.
    """

    def __init__(self, message: str, conflict: Any) -> None:
        super().__init__(message)
        self.conflict = conflict
