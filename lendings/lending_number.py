"""Lending numbers: the ``YEAR/SEQUENCE`` identity of a lending."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .clock import Clock, system_clock
from .errors import FormatError, ValidationError

MIN_YEAR = 1970

_LENDING_NUMBER_RE = re.compile(r"([0-9]+)/([0-9]+)")


@dataclass(frozen=True)
class LendingNumber:
    """Composite lending identifier rendered as ``"{year}/{sequence}"``.

    The year must lie in ``[1970, current year]`` and the sequence must be
    non-negative. Instances are immutable and compare by (year, sequence).
    Construct through :meth:`parse`, :meth:`from_sequence` or
    :meth:`from_year_and_sequence` so the current year comes from a clock.
    """

    year: int
    sequence: int

    @classmethod
    def from_year_and_sequence(cls, year: int, sequence: int, clock: Clock = system_clock) -> "LendingNumber":
        if isinstance(year, bool) or not isinstance(year, int):
            raise ValidationError("Lending year must be an integer")
        if isinstance(sequence, bool) or not isinstance(sequence, int):
            raise ValidationError("Lending sequence must be an integer")
        current_year = clock().year
        if year < MIN_YEAR or year > current_year:
            raise ValidationError(f"Lending year must be between {MIN_YEAR} and {current_year}, got {year}")
        if sequence < 0:
            raise ValidationError(f"Lending sequence cannot be negative, got {sequence}")
        return cls(year, sequence)

    @classmethod
    def from_sequence(cls, sequence: int, clock: Clock = system_clock) -> "LendingNumber":
        return cls.from_year_and_sequence(clock().year, sequence, clock)

    @classmethod
    def parse(cls, text: Optional[str], clock: Clock = system_clock) -> "LendingNumber":
        """Parse ``"YEAR/SEQUENCE"``; any malformed input raises :class:`FormatError`."""
        if text is None:
            raise FormatError("Lending number cannot be null")
        if not isinstance(text, str) or not text.strip():
            raise FormatError("Lending number cannot be blank")
        match = _LENDING_NUMBER_RE.fullmatch(text)
        if not match:
            raise FormatError(f"Lending number must have the format YEAR/SEQUENCE, got {text!r}")
        try:
            return cls.from_year_and_sequence(int(match.group(1)), int(match.group(2)), clock)
        except ValidationError as e:
            raise FormatError(str(e)) from e

    def __str__(self) -> str:
        return f"{self.year}/{self.sequence}"
