from datetime import timedelta

import pytest

from lendings.errors import NullReferenceError, ValidationError
from lendings.fine import Fine
from lendings.lending import Lending

FINE_VALUE_PER_DAY_IN_CENTS = 200
LENDING_DURATION = 15


def overdue_lending(book, reader, clock, days_late, sequence=1, rate=FINE_VALUE_PER_DAY_IN_CENTS):
    start = clock() - timedelta(days=LENDING_DURATION + days_late)
    return Lending.create_bootstrapped(book, reader, 2024, sequence, start, None, LENDING_DURATION, rate,
                                       clock=clock)


def test_fine_is_created_for_overdue_lending(book, reader, clock):
    lending = overdue_lending(book, reader, clock, days_late=15)
    fine = Fine(lending)
    assert fine.lending is lending
    assert fine.fine_value_per_day_in_cents == FINE_VALUE_PER_DAY_IN_CENTS
    assert fine.cents_value > 0


@pytest.mark.parametrize("days_late,expected", [(5, 1000), (10, 2000), (20, 4000)])
def test_fine_value_is_days_late_times_rate(book, reader, clock, days_late, expected):
    assert Fine(overdue_lending(book, reader, clock, days_late)).cents_value == expected


def test_fine_cannot_be_created_for_non_overdue_lending(book, reader, clock):
    lending = Lending.create(book, reader, 1, LENDING_DURATION, FINE_VALUE_PER_DAY_IN_CENTS, clock=clock)
    with pytest.raises(ValidationError):
        Fine(lending)


def test_fine_cannot_be_created_with_null_lending():
    with pytest.raises(NullReferenceError):
        Fine(None)


def test_fine_for_lending_returned_late(book, reader, clock):
    start = clock() - timedelta(days=30)
    lending = Lending.create_bootstrapped(book, reader, 2024, 1, start, clock() - timedelta(days=10),
                                          LENDING_DURATION, FINE_VALUE_PER_DAY_IN_CENTS, clock=clock)
    assert Fine(lending).cents_value == 5 * FINE_VALUE_PER_DAY_IN_CENTS


def test_fine_value_is_fixed_at_construction(book, reader, clock):
    lending = overdue_lending(book, reader, clock, days_late=5)
    fine = Fine(lending)
    clock.advance(10)
    assert fine.cents_value == 1000
    assert Fine(lending).cents_value == 3000


def test_fine_can_be_set_with_different_lending(book, reader, clock):
    lending1 = overdue_lending(book, reader, clock, days_late=15)
    lending2 = overdue_lending(book, reader, clock, days_late=10, sequence=2, rate=300)

    fine = Fine(lending1)
    fine.set_lending(lending2)
    assert fine.lending is lending2
    assert fine.fine_value_per_day_in_cents == 300
    assert fine.cents_value == 3000


def test_set_lending_does_not_recheck_overdue(book, reader, clock):
    fine = Fine(overdue_lending(book, reader, clock, days_late=3))
    on_time = Lending.create(book, reader, 1, LENDING_DURATION, FINE_VALUE_PER_DAY_IN_CENTS, clock=clock)

    fine.set_lending(on_time)
    assert fine.lending is on_time
    assert fine.cents_value == 0


def test_set_lending_rejects_null(book, reader, clock):
    fine = Fine(overdue_lending(book, reader, clock, days_late=3))
    with pytest.raises(NullReferenceError):
        fine.set_lending(None)


def test_to_dict(book, reader, clock):
    fine = Fine(overdue_lending(book, reader, clock, days_late=2))
    assert fine.to_dict() == {
        "lending_number": "2024/1",
        "fine_value_per_day_in_cents": 200,
        "cents_value": 400,
    }
