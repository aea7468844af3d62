"""The lending aggregate: one book lent to one reader, from issue to return."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, Optional

from .clock import Clock, system_clock
from .errors import ConcurrencyError, NullReferenceError, StateError, ValidationError
from .lending_number import LendingNumber
from .references import Book, Reader

logger = logging.getLogger(__name__)


class Lending:
    """A single loan of one book to one reader, tracked from issue to return.

    Use :meth:`create` for new loans and :meth:`create_bootstrapped` to import
    historical records. Both go through ``__init__``, which owns every
    invariant. The lending duration and the per-day fine are captured at
    creation so later policy changes never alter issued loans.

    ``version`` is the optimistic-concurrency token: it starts at 0 and grows
    by one on each mutation. ``original_version`` is the version the record
    had when it was loaded or last saved, and ``persisted`` tells whether it
    came from a directory; directories use both to compare-and-increment.

    All "today" reads go through the injected ``clock``.
    """

    def __init__(self, lending_number: LendingNumber, book: Book, reader: Reader, start_date: date,
                 lending_duration_in_days: int, fine_value_per_day_in_cents: int,
                 returned_date: Optional[date] = None, commentary: Optional[str] = None,
                 version: int = 0, clock: Clock = system_clock) -> None:
        if lending_number is None:
            raise NullReferenceError("Lending number cannot be null")
        if book is None:
            raise NullReferenceError("Book cannot be null")
        if reader is None:
            raise NullReferenceError("Reader cannot be null")
        if start_date is None:
            raise NullReferenceError("Start date cannot be null")
        _require_non_negative_int(lending_duration_in_days, "Lending duration")
        _require_non_negative_int(fine_value_per_day_in_cents, "Fine value per day")
        _require_non_negative_int(version, "Version")
        if returned_date is not None and returned_date < start_date:
            raise ValidationError("Returned date cannot be before start date")

        self._lending_number = lending_number
        self._book = book
        self._reader = reader
        self._start_date = start_date
        self._lending_duration_in_days = lending_duration_in_days
        self._fine_value_per_day_in_cents = fine_value_per_day_in_cents
        self._returned_date = returned_date
        self._commentary = commentary if returned_date is not None else None
        self._version = version
        self.original_version = version
        self.persisted = False
        self._clock = clock

    # ------------------------- Factories ------------------------- #
    @classmethod
    def create(cls, book: Book, reader: Reader, sequence: int, lending_duration_in_days: int,
               fine_value_per_day_in_cents: int, clock: Clock = system_clock) -> "Lending":
        """Open a new lending starting today with the given sequence for the current year."""
        if isinstance(sequence, int) and not isinstance(sequence, bool) and sequence < 1:
            raise ValidationError(f"Lending sequence must be at least 1, got {sequence}")
        lending_number = LendingNumber.from_sequence(sequence, clock)
        return cls(lending_number, book, reader, clock(), lending_duration_in_days,
                   fine_value_per_day_in_cents, clock=clock)

    @classmethod
    def create_bootstrapped(cls, book: Book, reader: Reader, year: int, sequence: int, start_date: date,
                            returned_date: Optional[date], lending_duration_in_days: int,
                            fine_value_per_day_in_cents: int, clock: Clock = system_clock) -> "Lending":
        """Import a historical lending with explicit number and dates."""
        lending_number = LendingNumber.from_year_and_sequence(year, sequence, clock)
        return cls(lending_number, book, reader, start_date, lending_duration_in_days,
                   fine_value_per_day_in_cents, returned_date=returned_date, clock=clock)

    # ------------------------- Accessors ------------------------- #
    @property
    def lending_number(self) -> LendingNumber:
        return self._lending_number

    @property
    def book(self) -> Book:
        return self._book

    @property
    def reader(self) -> Reader:
        return self._reader

    @property
    def title(self) -> str:
        return self._book.title

    @property
    def start_date(self) -> date:
        return self._start_date

    @property
    def limit_date(self) -> date:
        return self._start_date + timedelta(days=self._lending_duration_in_days)

    @property
    def returned_date(self) -> Optional[date]:
        return self._returned_date

    @property
    def commentary(self) -> Optional[str]:
        return self._commentary

    @property
    def lending_duration_in_days(self) -> int:
        return self._lending_duration_in_days

    @property
    def fine_value_per_day_in_cents(self) -> int:
        return self._fine_value_per_day_in_cents

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_returned(self) -> bool:
        return self._returned_date is not None

    @property
    def is_overdue(self) -> bool:
        return self.days_delayed() > 0

    # ------------------------- Lifecycle ------------------------- #
    def mark_returned(self, expected_version: int, commentary: Optional[str] = None) -> "Lending":
        """Mark the lending returned today.

        Raises StateError if it was already returned, whatever the version,
        and ConcurrencyError if ``expected_version`` is stale. Neither failure
        mutates the lending.
        """
        if self._returned_date is not None:
            raise StateError(f"Lending {self._lending_number} has already been returned", code="already_returned")
        if expected_version != self._version:
            logger.warning("Rejected stale return of lending %s: expected version %s, current %s",
                           self._lending_number, expected_version, self._version)
            raise ConcurrencyError(expected_version, self._version)

        self._returned_date = self._clock()
        self._commentary = commentary
        self._version += 1
        logger.info("Lending %s returned on %s", self._lending_number, self._returned_date)
        return self

    # ------------------------- Derived values ------------------------- #
    def days_delayed(self) -> int:
        end = self._returned_date if self._returned_date is not None else self._clock()
        return max(0, (end - self._start_date).days - self._lending_duration_in_days)

    def days_until_return(self) -> Optional[int]:
        if self._returned_date is not None:
            return None
        days = (self.limit_date - self._clock()).days
        return days if days >= 0 else None

    def days_overdue(self) -> Optional[int]:
        if self._returned_date is not None:
            return None
        days = (self._clock() - self.limit_date).days
        return days if days > 0 else None

    def fine_value_in_cents(self) -> Optional[int]:
        delayed = self.days_delayed()
        if delayed == 0:
            return None
        return delayed * self._fine_value_per_day_in_cents

    # ------------------------- Serialization ------------------------- #
    def to_dict(self) -> Dict[str, Any]:
        return {
            "lending_number": str(self._lending_number),
            "isbn": self._book.isbn,
            "title": self._book.title,
            "reader_number": self._reader.reader_number,
            "reader_name": self._reader.name,
            "start_date": self._start_date.isoformat(),
            "limit_date": self.limit_date.isoformat(),
            "returned_date": self._returned_date.isoformat() if self._returned_date else None,
            "commentary": self._commentary,
            "lending_duration_in_days": self._lending_duration_in_days,
            "fine_value_per_day_in_cents": self._fine_value_per_day_in_cents,
            "version": self._version,
            # Derived
            "days_until_return": self.days_until_return(),
            "days_overdue": self.days_overdue(),
            "fine_value_in_cents": self.fine_value_in_cents(),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any], clock: Clock = system_clock) -> "Lending":
        """Rebuild a stored lending. Derived keys in ``data`` are ignored."""
        returned = data.get("returned_date")
        number = data["lending_number"]
        if not isinstance(number, LendingNumber):
            number = LendingNumber.parse(number, clock)
        return Lending(
            lending_number=number,
            book=Book(isbn=data["isbn"], title=data["title"]),
            reader=Reader(reader_number=data["reader_number"], name=data["reader_name"]),
            start_date=_as_date(data["start_date"]),
            lending_duration_in_days=data["lending_duration_in_days"],
            fine_value_per_day_in_cents=data["fine_value_per_day_in_cents"],
            returned_date=_as_date(returned) if returned else None,
            commentary=data.get("commentary"),
            version=data.get("version", 0),
            clock=clock,
        )

    def __repr__(self) -> str:
        return f"Lending({self._lending_number}, isbn={self._book.isbn!r}, version={self._version})"


def _require_non_negative_int(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} cannot be negative, got {value}")


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)
