"""Exception kinds raised by the lending core.

Each kind maps to a distinct client-facing response, so callers should catch
the specific class rather than :class:`LendingError`.
"""

from __future__ import annotations


class LendingError(Exception):
    """Base class for all lending errors.

    ``code`` is a short machine-readable tag for API responses.
    """

    code = "lending_error"

    def __init__(self, message: str = "", code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ValidationError(LendingError, ValueError):
    """Malformed input at construction time."""

    code = "invalid"


class FormatError(ValidationError):
    """Lending number text that does not match ``YEAR/SEQUENCE``."""


class NullReferenceError(ValidationError):
    """A required reference was ``None``."""


class StateError(LendingError):
    """The operation violates the lending lifecycle."""

    code = "conflict"


class ConcurrencyError(LendingError):
    """The supplied version does not match the stored version."""

    code = "stale_version"

    def __init__(self, expected: int, actual: int, message: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message or f"Stale version: expected {expected}, current is {actual}")


class NotFoundError(LendingError, LookupError):
    """No record exists for the given identifier."""

    code = "not_found"
