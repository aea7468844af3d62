from __future__ import annotations


class Book:
    """A book as seen by the lending core: an ISBN plus a display title."""

    def __init__(self, isbn: str, title: str) -> None:
        self.isbn = isbn.strip()
        self.title = title.strip()

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Book) and other.isbn == self.isbn

    def __hash__(self) -> int:
        return hash(self.isbn)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return {"isbn": self.isbn, "title": self.title}

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(isbn=data["isbn"], title=data["title"])


class Reader:
    """A library reader identified by reader number, e.g. ``2024/1``."""

    def __init__(self, reader_number: str, name: str) -> None:
        self.reader_number = reader_number.strip()
        self.name = name.strip()

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Reader) and other.reader_number == self.reader_number

    def __hash__(self) -> int:
        return hash(self.reader_number)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} ({self.reader_number})"

    def to_dict(self) -> dict:
        return {"reader_number": self.reader_number, "name": self.name}

    @staticmethod
    def from_dict(data: dict) -> "Reader":
        return Reader(reader_number=data["reader_number"], name=data["name"])
