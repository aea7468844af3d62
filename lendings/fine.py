from __future__ import annotations

from typing import Any, Dict, Optional

from .errors import NullReferenceError, ValidationError
from .lending import Lending


class Fine:
    """Monetary penalty for an overdue lending.

    A read-side projection: the per-day rate is copied from the lending when
    the fine is built and ``cents_value`` is fixed at that moment.
    """

    def __init__(self, lending: Optional[Lending]) -> None:
        if lending is None:
            raise NullReferenceError("Lending cannot be null")
        if lending.days_delayed() <= 0:
            raise ValidationError(f"Lending {lending.lending_number} is not overdue")
        self._fix_values(lending)

    @classmethod
    def from_snapshot(cls, lending: Lending, snapshot: Dict[str, Any]) -> "Fine":
        """Rebuild the fine stored when ``lending`` was returned late."""
        fine = cls.__new__(cls)
        fine._lending = lending
        fine._fine_value_per_day_in_cents = int(snapshot["fine_value_per_day_in_cents"])
        fine._cents_value = int(snapshot["cents_value"])
        return fine

    def _fix_values(self, lending: Lending) -> None:
        self._lending = lending
        self._fine_value_per_day_in_cents = lending.fine_value_per_day_in_cents
        self._cents_value = lending.days_delayed() * self._fine_value_per_day_in_cents

    @property
    def lending(self) -> Lending:
        return self._lending

    @property
    def fine_value_per_day_in_cents(self) -> int:
        return self._fine_value_per_day_in_cents

    @property
    def cents_value(self) -> int:
        return self._cents_value

    def set_lending(self, lending: Optional[Lending]) -> None:
        """Point the fine at another lending and re-fix its values.

        The overdue check is deliberately not repeated here, so a fine can be
        moved onto a lending that is not (or no longer) overdue.
        """
        if lending is None:
            raise NullReferenceError("Lending cannot be null")
        self._fix_values(lending)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lending_number": str(self._lending.lending_number),
            "fine_value_per_day_in_cents": self._fine_value_per_day_in_cents,
            "cents_value": self._cents_value,
        }
