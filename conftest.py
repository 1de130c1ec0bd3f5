import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Modules that open the store at import time (bookstore.api) must not touch ./bookstore.db
os.environ.setdefault("LIBRARY_DB_FILE", os.path.join(tempfile.gettempdir(), f"bookstore_test_{os.getpid()}.db"))

from bookstore import database
from bookstore.book import Book
from bookstore.config import settings
from bookstore.library import Library
from bookstore.rentals import RentalManager
from bookstore.sales import SalesManager

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def db_file(tmp_path, monkeypatch):
    # Each test gets its own database file
    path = str(tmp_path / "bookstore_test.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    monkeypatch.setattr(settings, "book_webhook_url", None)
    database.initialize_database()
    yield path


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rental_manager(lib, clock):
    return RentalManager(lib, clock=clock, apply_loyalty_discount=True)


@pytest.fixture
def sales_manager(lib, clock):
    return SalesManager(lib, clock=clock)


@pytest.fixture
def book(lib):
    return lib.add_book(Book("Dune", "Frank Herbert", "9780441013593", purchase_amount="24.99"))
