from datetime import timedelta

import pytest

from lendings.errors import ConcurrencyError, NullReferenceError, StateError, ValidationError
from lendings.lending import Lending

LENDING_DURATION = 15
FINE_VALUE_PER_DAY_IN_CENTS = 200


@pytest.fixture
def lending(book, reader, clock):
    return Lending.create(book, reader, 1, LENDING_DURATION, FINE_VALUE_PER_DAY_IN_CENTS, clock=clock)


def bootstrapped(book, reader, clock, started_days_ago, returned_days_ago=None, sequence=1,
                 duration=LENDING_DURATION, rate=FINE_VALUE_PER_DAY_IN_CENTS):
    today = clock()
    returned = today - timedelta(days=returned_days_ago) if returned_days_ago is not None else None
    return Lending.create_bootstrapped(book, reader, 2024, sequence, today - timedelta(days=started_days_ago),
                                       returned, duration, rate, clock=clock)


# ------------------------- Creation ------------------------- #
def test_book_not_null(reader, clock):
    with pytest.raises(ValidationError):
        Lending.create(None, reader, 1, LENDING_DURATION, FINE_VALUE_PER_DAY_IN_CENTS, clock=clock)


def test_reader_not_null(book, clock):
    with pytest.raises(NullReferenceError):
        Lending.create(book, None, 1, LENDING_DURATION, FINE_VALUE_PER_DAY_IN_CENTS, clock=clock)


@pytest.mark.parametrize("sequence", [0, -1])
def test_normal_creation_requires_positive_sequence(book, reader, clock, sequence):
    with pytest.raises(ValidationError):
        Lending.create(book, reader, sequence, LENDING_DURATION, FINE_VALUE_PER_DAY_IN_CENTS, clock=clock)


def test_negative_duration_rejected(book, reader, clock):
    with pytest.raises(ValidationError):
        Lending.create(book, reader, 1, -1, FINE_VALUE_PER_DAY_IN_CENTS, clock=clock)


def test_negative_fine_rate_rejected(book, reader, clock):
    with pytest.raises(ValidationError):
        Lending.create(book, reader, 1, LENDING_DURATION, -5, clock=clock)


def test_fresh_lending_fields(lending, book, reader, clock):
    assert str(lending.lending_number) == f"{clock().year}/1"
    assert lending.book == book
    assert lending.reader == reader
    assert lending.title == "O Inspetor Max"
    assert lending.start_date == clock()
    assert lending.limit_date == clock() + timedelta(days=LENDING_DURATION)
    assert lending.returned_date is None
    assert lending.commentary is None
    assert lending.version == 0
    assert lending.fine_value_per_day_in_cents == FINE_VALUE_PER_DAY_IN_CENTS
    assert lending.lending_duration_in_days == LENDING_DURATION


def test_fresh_lending_derived_values(lending):
    assert lending.days_delayed() == 0
    assert lending.days_until_return() == LENDING_DURATION
    assert lending.days_overdue() is None
    assert lending.fine_value_in_cents() is None
    assert not lending.is_overdue


def test_bootstrapped_lending_created_correctly(book, reader, clock):
    start = clock() - timedelta(days=60)
    returned = start + timedelta(days=10)
    lending = Lending.create_bootstrapped(book, reader, 2024, 5, start, returned, 15, 200, clock=clock)
    assert str(lending.lending_number) == "2024/5"
    assert lending.start_date == start
    assert lending.returned_date == returned
    assert lending.limit_date == start + timedelta(days=15)
    assert lending.version == 0


def test_bootstrapped_lending_allows_sequence_zero(book, reader, clock):
    lending = Lending.create_bootstrapped(book, reader, 2024, 0, clock(), None, 15, 200, clock=clock)
    assert str(lending.lending_number) == "2024/0"


def test_bootstrapped_lending_rejects_null_book(reader, clock):
    with pytest.raises(ValidationError):
        Lending.create_bootstrapped(None, reader, 2024, 1, clock(), None, 15, 200, clock=clock)


def test_bootstrapped_lending_rejects_return_before_start(book, reader, clock):
    with pytest.raises(ValidationError):
        Lending.create_bootstrapped(book, reader, 2024, 1, clock(), clock() - timedelta(days=1), 15, 200, clock=clock)


def test_bootstrapped_lending_rejects_future_year(book, reader, clock):
    with pytest.raises(ValidationError):
        Lending.create_bootstrapped(book, reader, clock().year + 1, 1, clock(), None, 15, 200, clock=clock)


# ------------------------- Derived values ------------------------- #
def test_overdue_lending_not_returned(book, reader, clock):
    lending = bootstrapped(book, reader, clock, started_days_ago=30)
    assert lending.days_delayed() == 15
    assert lending.days_overdue() == 15
    assert lending.days_until_return() is None
    assert lending.is_overdue


def test_returned_late_lending(book, reader, clock):
    lending = bootstrapped(book, reader, clock, started_days_ago=30, returned_days_ago=10)
    assert lending.days_delayed() == 5  # 30 - 15 - 10
    assert lending.days_overdue() is None
    assert lending.days_until_return() is None
    assert lending.fine_value_in_cents() == 5 * FINE_VALUE_PER_DAY_IN_CENTS


def test_returned_on_time_lending(book, reader, clock):
    lending = bootstrapped(book, reader, clock, started_days_ago=30, returned_days_ago=20)
    assert lending.days_delayed() == 0
    assert lending.fine_value_in_cents() is None


def test_fine_value_when_overdue(book, reader, clock):
    lending = bootstrapped(book, reader, clock, started_days_ago=20)
    assert lending.fine_value_in_cents() == 5 * 200


def test_limit_day_is_not_overdue(book, reader, clock):
    lending = bootstrapped(book, reader, clock, started_days_ago=LENDING_DURATION)
    assert lending.days_until_return() == 0
    assert lending.days_overdue() is None
    assert lending.days_delayed() == 0

    clock.advance(1)
    assert lending.days_until_return() is None
    assert lending.days_overdue() == 1
    assert lending.days_delayed() == 1


def test_fine_appears_as_the_clock_advances(book, reader, clock):
    lending = Lending.create(book, reader, 1, 15, 200, clock=clock)
    assert lending.fine_value_in_cents() is None

    clock.advance(20)
    assert lending.days_overdue() == 5
    assert lending.fine_value_in_cents() == 1000


# ------------------------- Return ------------------------- #
def test_mark_returned(lending, clock):
    clock.advance(3)
    lending.mark_returned(0, None)
    assert lending.returned_date == clock()
    assert lending.version == 1
    assert lending.is_returned


def test_mark_returned_with_commentary(lending):
    lending.mark_returned(0, "Great book!")
    assert lending.commentary == "Great book!"


def test_mark_returned_with_blank_commentary(lending):
    lending.mark_returned(0, "   ")
    assert lending.commentary == "   "


@pytest.mark.parametrize("version", [0, 1, 999])
def test_mark_returned_twice_fails_with_state_error(lending, version):
    lending.mark_returned(0, None)
    with pytest.raises(StateError):
        lending.mark_returned(version, "Another comment")
    assert lending.version == 1


def test_mark_returned_with_stale_version(lending):
    with pytest.raises(ConcurrencyError) as exc_info:
        lending.mark_returned(999, None)
    assert exc_info.value.expected == 999
    assert exc_info.value.actual == 0
    assert lending.returned_date is None
    assert lending.version == 0


def test_returned_lending_stops_counting_delay(book, reader, clock):
    lending = bootstrapped(book, reader, clock, started_days_ago=20)
    lending.mark_returned(0)
    clock.advance(10)
    assert lending.days_delayed() == 5
    assert lending.days_overdue() is None


# ------------------------- Serialization ------------------------- #
def test_dict_round_trip_keeps_state(book, reader, clock):
    lending = bootstrapped(book, reader, clock, started_days_ago=30)
    lending.mark_returned(0, "Late again")

    restored = Lending.from_dict(lending.to_dict(), clock=clock)
    assert restored.lending_number == lending.lending_number
    assert restored.book == book
    assert restored.reader.name == reader.name
    assert restored.start_date == lending.start_date
    assert restored.returned_date == lending.returned_date
    assert restored.commentary == "Late again"
    assert restored.version == 1
    assert restored.original_version == 1
    assert restored.fine_value_in_cents() == lending.fine_value_in_cents()
