import logging
import subprocess
import sys
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import settings
from .database import SqliteCatalog, SqliteLendingDirectory
from .directory import Page
from .errors import ConcurrencyError, LendingError, NotFoundError, StateError, ValidationError
from .lending import Lending
from .lending_service import LendingService
from .references import Book, Reader

APP_NAME = "Lending CLI"

console = Console()
logger = logging.getLogger(__name__)

app = typer.Typer(help=APP_NAME)


def get_catalog() -> SqliteCatalog:
    return SqliteCatalog()


def get_service() -> LendingService:
    """Build the lending service over the configured SQLite database."""
    return LendingService(SqliteLendingDirectory(), get_catalog())


def _fail(exc: LendingError) -> NoReturn:
    """Print a one-line message for the error kind and exit non-zero."""
    if isinstance(exc, ConcurrencyError):
        print(f"Stale version: {exc}. Reload the lending and retry.")
    elif isinstance(exc, NotFoundError):
        print(f"Not found: {exc}")
    elif isinstance(exc, StateError):
        print(f"Conflict: {exc}")
    elif isinstance(exc, ValidationError):
        print(f"Invalid input: {exc}")
    else:
        print(f"Error: {exc}")
    raise typer.Exit(code=1)


def _print_lending(lending: Lending) -> None:
    print(f"Lending {lending.lending_number}")
    print(f"Title: {lending.title}")
    print(f"Reader: {lending.reader.name} ({lending.reader.reader_number})")
    print(f"Start date: {lending.start_date.isoformat()}")
    print(f"Limit date: {lending.limit_date.isoformat()}")
    if lending.returned_date:
        print(f"Returned: {lending.returned_date.isoformat()}")
    days_overdue = lending.days_overdue()
    if days_overdue is not None:
        print(f"Days overdue: {days_overdue}")
    fine = lending.fine_value_in_cents()
    if fine is not None:
        print(f"Fine: {fine} cents")
    print(f"Version: {lending.version}")


def _print_table(lendings: List[Lending], title: str) -> None:
    if not lendings:
        print("No lendings found.")
        return
    table = Table(title=title)
    table.add_column("Number", style="cyan")
    table.add_column("Title")
    table.add_column("Reader")
    table.add_column("Limit date")
    table.add_column("Days overdue", justify="right")
    table.add_column("Fine (cents)", justify="right")
    for l in lendings:
        table.add_row(
            str(l.lending_number),
            l.title,
            l.reader.reader_number,
            l.limit_date.isoformat(),
            str(l.days_overdue() or ""),
            str(l.fine_value_in_cents() or ""),
        )
    console.print(table)


@app.callback()
def _global_options(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show log output")):
    """Global CLI options."""
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)


@app.command("add-book")
def cli_add_book(isbn: str, title: str):
    """Register a book that can be lent."""
    try:
        book = get_catalog().add_book(Book(isbn=isbn, title=title))
    except LendingError as e:
        _fail(e)
    print(f"Book added: {book.title} (ISBN: {book.isbn})")


@app.command("add-reader")
def cli_add_reader(reader_number: str, name: str):
    """Register a reader."""
    try:
        reader = get_catalog().add_reader(Reader(reader_number=reader_number, name=name))
    except LendingError as e:
        _fail(e)
    print(f"Reader added: {reader.name} ({reader.reader_number})")


@app.command("lend")
def cli_lend(isbn: str, reader_number: str):
    """Lend a book to a reader."""
    try:
        lending = get_service().create_lending(isbn, reader_number)
    except LendingError as e:
        _fail(e)
    print(f"Lending {lending.lending_number} created, due {lending.limit_date.isoformat()}.")


@app.command("return")
def cli_return(
    lending_number: str,
    version: int = typer.Option(..., "--version", help="Version of the lending as last read"),
    comment: Optional[str] = typer.Option(None, "--comment", "-c", help="Optional return commentary"),
):
    """Mark a lending returned."""
    try:
        lending = get_service().mark_returned(lending_number, version, comment)
    except LendingError as e:
        _fail(e)
    print(f"Lending {lending.lending_number} returned on {lending.returned_date.isoformat()}.")
    fine = lending.fine_value_in_cents()
    if fine is not None:
        print(f"Returned {lending.days_delayed()} days late, fine: {fine} cents.")


@app.command("show")
def cli_show(lending_number: str):
    """Show a lending."""
    try:
        lending = get_service().find_by_lending_number(lending_number)
    except LendingError as e:
        _fail(e)
    _print_lending(lending)


@app.command("fine")
def cli_fine(lending_number: str):
    """Show the fine owed for an overdue lending."""
    try:
        fine = get_service().compute_fine(lending_number)
    except LendingError as e:
        _fail(e)
    print(f"Fine for {fine.lending.lending_number}: {fine.cents_value} cents "
          f"({fine.fine_value_per_day_in_cents} cents/day)")


@app.command("overdue")
def cli_overdue(page: int = typer.Option(1, min=1), limit: int = typer.Option(settings.default_page_size, min=1)):
    """List overdue lendings."""
    _print_table(get_service().overdue(Page(page, limit)), "Overdue lendings")


@app.command("avg-duration")
def cli_avg_duration():
    """Average lending duration in days."""
    print(f"Average duration: {get_service().average_duration()} days")


@app.command("serve")
def cli_serve(host: str = settings.api_host, port: int = settings.api_port):
    """Run the HTTP API with uvicorn."""
    print(f"Starting API on http://{host}:{port}")
    subprocess.run([sys.executable, "-m", "uvicorn", "lendings.api:app", "--host", host, "--port", str(port)])


if __name__ == "__main__":
    app()
