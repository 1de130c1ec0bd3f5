import logging
import subprocess
import sys
import webbrowser
from typing import Optional

import typer
from rich.console import Console

from bookstore import database
from bookstore import payments as payment_records
from bookstore.book import Book
from bookstore.config import settings
from bookstore.exceptions import BookstoreError, ValidationError
from bookstore.library import Library
from bookstore.rental_config import get_config, update_config
from bookstore.rentals import RentalManager
from bookstore.sales import SalesManager
from bookstore.ui_helpers import (
    print_books,
    print_config,
    print_cost,
    print_payments,
    print_rentals,
    print_stats_result,
    set_output_mode,
)
from bookstore.validators import parse_money

APP_NAME = "Bookstore CLI"

logger = logging.getLogger(__name__)
console = Console(stderr=True)


class StoreManager:
    """Lazily built catalog, rental and sales managers shared by the commands."""
    _library: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def library(cls) -> Library:
        current_db = database.DATABASE_FILE
        # Rebuild when the database file changes (e.g. one database per test)
        if cls._library is None or current_db != cls._db_file_snapshot:
            cls._library = Library()
            cls._db_file_snapshot = current_db
        return cls._library

    @classmethod
    def rentals(cls) -> RentalManager:
        return RentalManager(cls.library())

    @classmethod
    def sales(cls) -> SalesManager:
        return SalesManager(cls.library())


def _fail(exc: BookstoreError) -> None:
    """Report a failed operation on one line and exit with status 1."""
    if isinstance(exc, ValidationError):
        for field, message in exc.field_errors.items():
            print(f"Error: {field}: {message}")
    else:
        print(f"Error: {exc}")
    raise typer.Exit(code=1)


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)
config_app = typer.Typer(help="Show or change the rental pricing config.")
app.add_typer(config_app, name="config")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stderr"),
):
    """Global options (output mode, logging)."""
    if output:
        set_output_mode(output)
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@app.command("books")
def cli_books(query: Optional[str] = typer.Argument(None, help="Filter by title, author or ISBN")):
    """List the catalog, or search it."""
    lib = StoreManager.library()
    print_books(lib.search_books(query) if query else lib.list_books())


@app.command("add-book")
def cli_add_book(
    title: str = typer.Option(..., "--title"),
    author: str = typer.Option(..., "--author"),
    isbn: str = typer.Option(..., "--isbn"),
    price: str = typer.Option(..., "--price", help="Purchase price, e.g. 24.99"),
    description: Optional[str] = typer.Option(None, "--description"),
):
    """Add a book to the catalog."""
    errors = {}
    amount = parse_money(price, "purchase_amount", errors)
    try:
        if errors:
            raise ValidationError(errors)
        book = StoreManager.library().add_book(
            Book(title=title, author=author, isbn=isbn, purchase_amount=amount, description=description)
        )
    except BookstoreError as e:
        _fail(e)
    print(f"Successfully added: {book.title} by {book.author} (id {book.id})")


@app.command("rent")
def cli_rent(book_id: int, user: str = typer.Option(..., "--user", "-u", help="Customer id")):
    """Rent a book for a customer."""
    try:
        rental = StoreManager.rentals().rent_book(book_id, user)
    except BookstoreError as e:
        _fail(e)
    print(f"Rental {rental.id} started: {rental.book_title}")


@app.command("rentals")
def cli_rentals(user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this customer's rentals")):
    """List rentals, newest first."""
    print_rentals(StoreManager.rentals().list_rentals(user))


@app.command("quote")
def cli_quote(rental_id: int):
    """Show what returning a rental now would cost."""
    try:
        cost = StoreManager.rentals().quote(rental_id)
    except BookstoreError as e:
        _fail(e)
    print_cost(cost)


@app.command("return")
def cli_return(
    rental_id: int,
    method: str = typer.Option("credit_card", "--method", "-m", help="credit_card | debit_card"),
    amount: Optional[str] = typer.Option(None, "--amount", help="Expected amount; refused if it differs"),
):
    """Return a rented book and record its payment."""
    try:
        payment = StoreManager.rentals().return_rental(rental_id, method, amount)
    except BookstoreError as e:
        _fail(e)
    print(f"Rental {rental_id} returned. Paid ${payment.amount} by {payment.payment_method.value}.")


@app.command("buy")
def cli_buy(
    book_id: int,
    user: str = typer.Option(..., "--user", "-u", help="Customer id"),
    method: str = typer.Option("credit_card", "--method", "-m", help="credit_card | debit_card"),
):
    """Buy a book at its catalog price."""
    try:
        payment = StoreManager.sales().purchase_book(book_id, user, method)
    except BookstoreError as e:
        _fail(e)
    print(f"Purchased {payment.book_title} for ${payment.amount}.")


@app.command("invoices")
def cli_invoices(user: str = typer.Option(..., "--user", "-u", help="Customer id")):
    """List a customer's invoices."""
    print_payments(payment_records.list_payments(user))


@app.command("stats")
def cli_stats():
    """Show catalog, rental and sales statistics."""
    print_stats_result(StoreManager.library().get_statistics())


@config_app.command("show")
def cli_config_show():
    """Show the per-day rental rates."""
    StoreManager.library()
    try:
        config = get_config()
    except BookstoreError as e:
        _fail(e)
    print_config(config)


@config_app.command("set")
def cli_config_set(
    tier_one: str = typer.Option(..., "--tier-one", help="Price per day for days 31-60"),
    tier_two: str = typer.Option(..., "--tier-two", help="Price per day after day 60"),
):
    """Overwrite the per-day rental rates."""
    StoreManager.library()
    try:
        config = update_config(tier_one, tier_two)
    except BookstoreError as e:
        _fail(e)
    print("Config updated successfully!")
    print_config(config)


@app.command("serve")
def cli_serve(open_browser: bool = typer.Option(True, "--browser/--no-browser")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    if open_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error as e:
            logger.warning(f"Could not open a browser: {e}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "bookstore.api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        console.print("[dim]Server stopped[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
