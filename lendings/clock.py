"""Current-date sources.

Everything that needs "today" takes a clock, a zero-argument callable that
returns a :class:`datetime.date`, instead of reading the system clock.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Callable

Clock = Callable[[], date]


def system_clock() -> date:
    return date.today()


class FixedClock:
    """A clock pinned to a given day that can be moved forward by hand."""

    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int) -> date:
        self.today = self.today + timedelta(days=days)
        return self.today
