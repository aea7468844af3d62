from datetime import date

import pytest

from lendings.catalog import InMemoryCatalog
from lendings.clock import FixedClock
from lendings.config import Settings
from lendings.database import SqliteLendingDirectory
from lendings.directory import InMemoryLendingDirectory
from lendings.lending_service import LendingService
from lendings.references import Book, Reader

TODAY = date(2025, 6, 15)
LENDING_DURATION = 15
FINE_VALUE_PER_DAY_IN_CENTS = 200


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def book():
    return Book(isbn="9782826012092", title="O Inspetor Max")


@pytest.fixture
def reader():
    return Reader(reader_number="2024/1", name="Manuel Sarapinto das Coives")


@pytest.fixture
def other_reader():
    return Reader(reader_number="2024/2", name="Maria Silva")


@pytest.fixture
def memory_directory(clock):
    return InMemoryLendingDirectory(clock=clock)


@pytest.fixture
def sqlite_directory(tmp_path, request, clock):
    # Unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    return SqliteLendingDirectory(db_file=db_file, clock=clock)


@pytest.fixture(params=["memory", "sqlite"])
def directory(request):
    """Runs a test once against each directory implementation."""
    return request.getfixturevalue(f"{request.param}_directory")


@pytest.fixture
def catalog(book, reader, other_reader):
    catalog = InMemoryCatalog()
    catalog.add_book(book)
    catalog.add_book(Book(isbn="9780099590088", title="Sapiens"))
    catalog.add_reader(reader)
    catalog.add_reader(other_reader)
    return catalog


@pytest.fixture
def lending_settings():
    return Settings(
        lending_duration_in_days=LENDING_DURATION,
        fine_value_per_day_in_cents=FINE_VALUE_PER_DAY_IN_CENTS,
        max_outstanding_lendings=3,
    )


@pytest.fixture
def service(memory_directory, catalog, lending_settings, clock):
    return LendingService(memory_directory, catalog, settings=lending_settings, clock=clock)
