import logging
from typing import List, Optional

from .catalog import Catalog
from .clock import Clock, system_clock
from .config import Settings, settings as default_settings
from .directory import LendingDirectory, Page, SearchFilter
from .errors import NotFoundError, StateError
from .fine import Fine
from .lending import Lending
from .lending_number import LendingNumber

logger = logging.getLogger(__name__)


class LendingService:
    """Opens, returns and looks up lendings against a directory and a catalog."""

    def __init__(self, directory: LendingDirectory, catalog: Catalog,
                 settings: Optional[Settings] = None, clock: Clock = system_clock) -> None:
        self.directory = directory
        self.catalog = catalog
        self.settings = settings or default_settings
        self.clock = clock

    # ------------------------- Core operations ------------------------- #
    def create_lending(self, isbn: str, reader_number: str) -> Lending:
        """Lend a book to a reader under the current lending policy.

        The reader must exist, hold no overdue lending, and hold fewer than
        ``max_outstanding_lendings`` open lendings. The sequence is one past
        the highest used this year; a number taken by a concurrent create is
        retried once with a fresh sequence.
        """
        book = self.catalog.find_book(isbn)
        if not book:
            raise NotFoundError(f"Book with ISBN {isbn} not found.")
        reader = self.catalog.find_reader(reader_number)
        if not reader:
            raise NotFoundError(f"Reader {reader_number} not found.")

        outstanding = self.directory.list_by_reader(reader.reader_number, returned=False)
        if any(l.days_overdue() is not None for l in outstanding):
            raise StateError(f"Reader {reader.reader_number} has book(s) past their due date.")
        if len(outstanding) >= self.settings.max_outstanding_lendings:
            raise StateError(
                f"Reader {reader.reader_number} already has {len(outstanding)} books outstanding."
            )

        year = self.clock().year
        for attempt in range(2):
            sequence = self.directory.max_sequence_for_year(year) + 1
            lending = Lending.create(book, reader, sequence, self.settings.lending_duration_in_days,
                                     self.settings.fine_value_per_day_in_cents, clock=self.clock)
            try:
                self.directory.save(lending)
                break
            except StateError:
                if attempt:
                    raise
                logger.warning("Lending %s was taken by a concurrent create, retrying", lending.lending_number)
        logger.info("Lending %s opened: %s to reader %s", lending.lending_number, book.isbn, reader.reader_number)
        return lending

    def find_by_lending_number(self, lending_number: str) -> Lending:
        number = LendingNumber.parse(lending_number, self.clock)
        lending = self.directory.find_by_lending_number(number)
        if not lending:
            raise NotFoundError(f"Lending {lending_number} not found.")
        return lending

    def mark_returned(self, lending_number: str, expected_version: int, commentary: Optional[str] = None) -> Lending:
        """Return a lending, snapshotting its fine when the return is late."""
        lending = self.find_by_lending_number(lending_number)
        lending.mark_returned(expected_version, commentary)
        fine = Fine(lending) if lending.days_delayed() > 0 else None
        self.directory.save(lending, fine)
        if fine is not None:
            logger.info("Fine of %s cents recorded for lending %s", fine.cents_value, lending.lending_number)
        return lending

    def compute_fine(self, lending_number: str) -> Fine:
        """Fine owed for a lending.

        A returned lending answers with the fine stored at return time; an
        open one is priced as of today.
        """
        lending = self.find_by_lending_number(lending_number)
        if lending.is_returned:
            snapshot = self.directory.find_fine(lending.lending_number)
            if snapshot:
                return Fine.from_snapshot(lending, snapshot)
        return Fine(lending)

    def delete(self, lending_number: str) -> None:
        lending = self.find_by_lending_number(lending_number)
        if not self.directory.delete(lending):
            raise NotFoundError(f"Lending {lending_number} not found.")

    # ------------------------- Queries ------------------------- #
    def search(self, search_filter: SearchFilter, page: Optional[Page] = None) -> List[Lending]:
        return self.directory.search(search_filter, page or Page())

    def overdue(self, page: Optional[Page] = None) -> List[Lending]:
        return self.directory.overdue(page or Page())

    def average_duration(self) -> float:
        return self.directory.average_duration()

    def list_by_reader(self, reader_number: str, returned: Optional[bool] = None) -> List[Lending]:
        return self.directory.list_by_reader(reader_number, returned)
