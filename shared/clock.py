"""
Clock abstraction.

Every component that reads the current time receives a Clock in its
constructor, so tests can pin time without patching globals.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time as a timezone-aware UTC datetime."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
