from __future__ import annotations

from typing import Dict, Optional, Protocol

from .references import Book, Reader


class Catalog(Protocol):
    """Book and reader lookups the lending service depends on."""

    def find_book(self, isbn: str) -> Optional[Book]: ...

    def find_reader(self, reader_number: str) -> Optional[Reader]: ...


class InMemoryCatalog:
    """Dict-backed :class:`Catalog`."""

    def __init__(self) -> None:
        self._books: Dict[str, Book] = {}
        self._readers: Dict[str, Reader] = {}

    def add_book(self, book: Book) -> Book:
        self._books[book.isbn] = book
        return book

    def add_reader(self, reader: Reader) -> Reader:
        self._readers[reader.reader_number] = reader
        return reader

    def find_book(self, isbn: str) -> Optional[Book]:
        return self._books.get(isbn.strip()) if isbn else None

    def find_reader(self, reader_number: str) -> Optional[Reader]:
        return self._readers.get(reader_number.strip()) if reader_number else None
