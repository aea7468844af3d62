"""SQLite storage for lendings, fines, books and readers.

Connections are opened per operation and closed right after, so directory
and catalog objects hold no open handles between calls.
"""

import logging
import os
import sqlite3
from typing import Any, Dict, List, Optional

from .clock import Clock, system_clock
from .config import settings
from .directory import Page, SearchFilter
from .errors import ConcurrencyError, NotFoundError, StateError
from .fine import Fine
from .lending import Lending
from .lending_number import LendingNumber
from .references import Book, Reader

logger = logging.getLogger(__name__)

# Default database file; LIBRARY_DB_FILE in the environment overrides it.
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.database_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database with dict-like rows."""
    conn = sqlite3.connect(db_file or DATABASE_FILE)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                isbn TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS readers (
                reader_number TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        # Title and reader name are snapshotted on the lending row
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS lendings (
                lending_number TEXT PRIMARY KEY,
                year INTEGER NOT NULL,
                sequence INTEGER NOT NULL CHECK(sequence >= 0),
                isbn TEXT NOT NULL,
                title TEXT NOT NULL,
                reader_number TEXT NOT NULL,
                reader_name TEXT NOT NULL,
                start_date TEXT NOT NULL,
                limit_date TEXT NOT NULL,
                returned_date TEXT,
                commentary TEXT,
                lending_duration_in_days INTEGER NOT NULL CHECK(lending_duration_in_days >= 0),
                fine_value_per_day_in_cents INTEGER NOT NULL CHECK(fine_value_per_day_in_cents >= 0),
                version INTEGER NOT NULL DEFAULT 0
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fines (
                lending_number TEXT PRIMARY KEY,
                fine_value_per_day_in_cents INTEGER NOT NULL,
                cents_value INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (lending_number) REFERENCES lendings(lending_number) ON DELETE CASCADE
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_lendings_year ON lendings(year)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_lendings_reader ON lendings(reader_number)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_lendings_isbn ON lendings(isbn)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_lendings_open_limit ON lendings(returned_date, limit_date)")
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables if needed."""
    create_tables(db_file)


class SqliteCatalog:
    """Books and readers stored in SQLite."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or DATABASE_FILE
        initialize_database(self.db_file)

    def add_book(self, book: Book) -> Book:
        conn = get_db_connection(self.db_file)
        try:
            conn.execute("INSERT INTO books (isbn, title) VALUES (?, ?)", (book.isbn, book.title))
            conn.commit()
            return book
        except sqlite3.IntegrityError as e:
            raise StateError(f"Book with ISBN {book.isbn} already exists.") from e
        finally:
            conn.close()

    def add_reader(self, reader: Reader) -> Reader:
        conn = get_db_connection(self.db_file)
        try:
            conn.execute("INSERT INTO readers (reader_number, name) VALUES (?, ?)",
                         (reader.reader_number, reader.name))
            conn.commit()
            return reader
        except sqlite3.IntegrityError as e:
            raise StateError(f"Reader {reader.reader_number} already exists.") from e
        finally:
            conn.close()

    def find_book(self, isbn: str) -> Optional[Book]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute("SELECT isbn, title FROM books WHERE isbn = ?", (isbn.strip(),)).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def find_reader(self, reader_number: str) -> Optional[Reader]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute("SELECT reader_number, name FROM readers WHERE reader_number = ?",
                               (reader_number.strip(),)).fetchone()
            return Reader.from_dict(dict(row)) if row else None
        finally:
            conn.close()


class SqliteLendingDirectory:
    """:class:`~lendings.directory.LendingDirectory` backed by SQLite.

    Updates compare-and-increment with ``WHERE version = ?`` so a stale
    copy can never overwrite a newer row.
    """

    def __init__(self, db_file: Optional[str] = None, clock: Clock = system_clock) -> None:
        self.db_file = db_file or DATABASE_FILE
        self._clock = clock
        initialize_database(self.db_file)

    def _load(self, row: sqlite3.Row) -> Lending:
        lending = Lending.from_dict(dict(row), clock=self._clock)
        lending.persisted = True
        return lending

    def _query(self, sql: str, params: tuple = ()) -> List[Lending]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(sql, params).fetchall()
            return [self._load(row) for row in rows]
        finally:
            conn.close()

    def find_by_lending_number(self, number: LendingNumber) -> Optional[Lending]:
        found = self._query("SELECT * FROM lendings WHERE lending_number = ?", (str(number),))
        return found[0] if found else None

    def save(self, lending: Lending, fine: Optional[Fine] = None) -> Lending:
        key = str(lending.lending_number)
        data = lending.to_dict()
        conn = get_db_connection(self.db_file)
        try:
            if not lending.persisted:
                try:
                    conn.execute(
                        """INSERT INTO lendings (lending_number, year, sequence, isbn, title, reader_number,
                               reader_name, start_date, limit_date, returned_date, commentary,
                               lending_duration_in_days, fine_value_per_day_in_cents, version)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                        (key, lending.lending_number.year, lending.lending_number.sequence,
                         data["isbn"], data["title"], data["reader_number"], data["reader_name"],
                         data["start_date"], data["limit_date"], data["returned_date"], data["commentary"],
                         data["lending_duration_in_days"], data["fine_value_per_day_in_cents"], data["version"])
                    )
                except sqlite3.IntegrityError as e:
                    raise StateError(f"Lending {key} already exists") from e
            else:
                cursor = conn.execute(
                    "UPDATE lendings SET returned_date = ?, commentary = ?, version = ? "
                    "WHERE lending_number = ? AND version = ?",
                    (data["returned_date"], data["commentary"], data["version"], key, lending.original_version)
                )
                if cursor.rowcount == 0:
                    row = conn.execute("SELECT version FROM lendings WHERE lending_number = ?", (key,)).fetchone()
                    if row is None:
                        raise NotFoundError(f"Lending {key} no longer exists")
                    logger.warning("Rejected stale write of lending %s: loaded version %s, stored %s",
                                   key, lending.original_version, row["version"])
                    raise ConcurrencyError(lending.original_version, row["version"])
            if fine is not None:
                conn.execute(
                    "INSERT OR REPLACE INTO fines (lending_number, fine_value_per_day_in_cents, cents_value) "
                    "VALUES (?, ?, ?)",
                    (key, fine.fine_value_per_day_in_cents, fine.cents_value)
                )
            conn.commit()
        finally:
            conn.close()
        lending.original_version = lending.version
        lending.persisted = True
        return lending

    def delete(self, lending: Lending) -> bool:
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute("DELETE FROM lendings WHERE lending_number = ?", (str(lending.lending_number),))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def search(self, search_filter: SearchFilter, page: Page) -> List[Lending]:
        clauses: List[str] = []
        params: List[Any] = []
        if search_filter.reader_number is not None:
            clauses.append("reader_number = ?")
            params.append(search_filter.reader_number)
        if search_filter.isbn is not None:
            clauses.append("isbn = ?")
            params.append(search_filter.isbn)
        if search_filter.returned is True:
            clauses.append("returned_date IS NOT NULL")
        elif search_filter.returned is False:
            clauses.append("returned_date IS NULL")
        if search_filter.start_date_from is not None:
            clauses.append("start_date >= ?")
            params.append(search_filter.start_date_from.isoformat())
        if search_filter.start_date_to is not None:
            clauses.append("start_date <= ?")
            params.append(search_filter.start_date_to.isoformat())

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM lendings {where} ORDER BY start_date, year, sequence LIMIT ? OFFSET ?"
        return self._query(sql, tuple(params) + (page.limit, page.offset))

    def average_duration(self) -> float:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                "SELECT AVG(julianday(returned_date) - julianday(start_date)) "
                "FROM lendings WHERE returned_date IS NOT NULL"
            ).fetchone()
            return round(row[0], 1) if row[0] is not None else 0.0
        finally:
            conn.close()

    def overdue(self, page: Page) -> List[Lending]:
        today = self._clock().isoformat()
        return self._query(
            "SELECT * FROM lendings WHERE returned_date IS NULL AND limit_date < ? "
            "ORDER BY limit_date, year, sequence LIMIT ? OFFSET ?",
            (today, page.limit, page.offset),
        )

    def max_sequence_for_year(self, year: int) -> int:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute("SELECT COALESCE(MAX(sequence), 0) FROM lendings WHERE year = ?", (year,)).fetchone()[0]
        finally:
            conn.close()

    def list_by_reader(self, reader_number: str, returned: Optional[bool] = None) -> List[Lending]:
        sql = "SELECT * FROM lendings WHERE reader_number = ?"
        if returned is True:
            sql += " AND returned_date IS NOT NULL"
        elif returned is False:
            sql += " AND returned_date IS NULL"
        return self._query(sql + " ORDER BY start_date, year, sequence", (reader_number,))

    def find_fine(self, number: LendingNumber) -> Optional[Dict[str, Any]]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                "SELECT lending_number, fine_value_per_day_in_cents, cents_value FROM fines WHERE lending_number = ?",
                (str(number),)
            ).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()
