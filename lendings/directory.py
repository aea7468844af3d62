"""Lending directories: where lendings are stored and looked up.

:class:`LendingDirectory` is the contract the lending service relies on.
:class:`InMemoryLendingDirectory` keeps dict snapshots of each lending, so
callers never share mutable state with the store; the SQLite directory lives
in :mod:`lendings.database`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Protocol

from .clock import Clock, system_clock
from .config import settings
from .errors import ConcurrencyError, NotFoundError, StateError, ValidationError
from .fine import Fine
from .lending import Lending
from .lending_number import LendingNumber

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Page:
    """One-based page of results."""

    number: int = 1
    limit: int = field(default_factory=lambda: settings.default_page_size)

    def __post_init__(self):
        if self.number < 1:
            raise ValidationError("Page number must be at least 1")
        if self.limit < 1:
            raise ValidationError("Page limit must be at least 1")
        # Clamp oversized pages instead of rejecting them
        object.__setattr__(self, "limit", min(self.limit, settings.max_page_size))

    @property
    def offset(self) -> int:
        return (self.number - 1) * self.limit

    def slice(self, items: List[Any]) -> List[Any]:
        return items[self.offset:self.offset + self.limit]


@dataclass(frozen=True)
class SearchFilter:
    """Criteria for :meth:`LendingDirectory.search`; ``None`` fields match everything."""

    reader_number: Optional[str] = None
    isbn: Optional[str] = None
    returned: Optional[bool] = None
    start_date_from: Optional[date] = None
    start_date_to: Optional[date] = None

    def __post_init__(self):
        if self.start_date_from and self.start_date_to and self.start_date_from > self.start_date_to:
            raise ValidationError("Start date range is inverted")

    def matches(self, lending: Lending) -> bool:
        if self.reader_number is not None and lending.reader.reader_number != self.reader_number:
            return False
        if self.isbn is not None and lending.book.isbn != self.isbn:
            return False
        if self.returned is not None and lending.is_returned != self.returned:
            return False
        if self.start_date_from is not None and lending.start_date < self.start_date_from:
            return False
        if self.start_date_to is not None and lending.start_date > self.start_date_to:
            return False
        return True


class LendingDirectory(Protocol):
    """Storage contract for lendings.

    ``save`` compare-and-increments: a persisted lending is written only when
    the stored version still equals ``lending.original_version``, otherwise
    :class:`ConcurrencyError` is raised. Saving a new lending whose number is
    taken raises :class:`StateError`. A ``fine`` passed along is stored as the
    lending's fine snapshot in the same write.
    """

    def find_by_lending_number(self, number: LendingNumber) -> Optional[Lending]: ...

    def save(self, lending: Lending, fine: Optional[Fine] = None) -> Lending: ...

    def delete(self, lending: Lending) -> bool: ...

    def search(self, search_filter: SearchFilter, page: Page) -> List[Lending]: ...

    def average_duration(self) -> float: ...

    def overdue(self, page: Page) -> List[Lending]: ...

    def max_sequence_for_year(self, year: int) -> int: ...

    def list_by_reader(self, reader_number: str, returned: Optional[bool] = None) -> List[Lending]: ...

    def find_fine(self, number: LendingNumber) -> Optional[Dict[str, Any]]: ...


def average_of(durations: List[int]) -> float:
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 1)


class InMemoryLendingDirectory:
    """Dict-backed :class:`LendingDirectory` guarded by a lock."""

    def __init__(self, clock: Clock = system_clock) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, Dict[str, Any]] = {}
        self._fines: Dict[str, Dict[str, Any]] = {}

    def _load(self, record: Dict[str, Any]) -> Lending:
        lending = Lending.from_dict(record, clock=self._clock)
        lending.persisted = True
        return lending

    def _all(self) -> List[Lending]:
        with self._lock:
            records = list(self._records.values())
        return [self._load(r) for r in records]

    def find_by_lending_number(self, number: LendingNumber) -> Optional[Lending]:
        with self._lock:
            record = self._records.get(str(number))
        return self._load(record) if record else None

    def save(self, lending: Lending, fine: Optional[Fine] = None) -> Lending:
        key = str(lending.lending_number)
        with self._lock:
            stored = self._records.get(key)
            if not lending.persisted:
                if stored is not None:
                    raise StateError(f"Lending {key} already exists")
            elif stored is None:
                raise NotFoundError(f"Lending {key} no longer exists")
            elif stored["version"] != lending.original_version:
                logger.warning("Rejected stale write of lending %s: loaded version %s, stored %s",
                               key, lending.original_version, stored["version"])
                raise ConcurrencyError(lending.original_version, stored["version"])
            self._records[key] = lending.to_dict()
            if fine is not None:
                self._fines[key] = fine.to_dict()
        lending.original_version = lending.version
        lending.persisted = True
        return lending

    def delete(self, lending: Lending) -> bool:
        key = str(lending.lending_number)
        with self._lock:
            self._fines.pop(key, None)
            return self._records.pop(key, None) is not None

    def search(self, search_filter: SearchFilter, page: Page) -> List[Lending]:
        matches = [l for l in self._all() if search_filter.matches(l)]
        matches.sort(key=lambda l: (l.start_date, l.lending_number.year, l.lending_number.sequence))
        return page.slice(matches)

    def average_duration(self) -> float:
        return average_of([(l.returned_date - l.start_date).days for l in self._all() if l.is_returned])

    def overdue(self, page: Page) -> List[Lending]:
        late = [l for l in self._all() if l.days_overdue() is not None]
        late.sort(key=lambda l: (l.limit_date, l.lending_number.year, l.lending_number.sequence))
        return page.slice(late)

    def max_sequence_for_year(self, year: int) -> int:
        with self._lock:
            numbers = [r["lending_number"].split("/") for r in self._records.values()]
        return max((int(seq) for y, seq in numbers if y == str(year)), default=0)

    def list_by_reader(self, reader_number: str, returned: Optional[bool] = None) -> List[Lending]:
        return [l for l in self._all() if l.reader.reader_number == reader_number
                and (returned is None or l.is_returned == returned)]

    def find_fine(self, number: LendingNumber) -> Optional[Dict[str, Any]]:
        with self._lock:
            fine = self._fines.get(str(number))
        return dict(fine) if fine else None
