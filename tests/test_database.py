from datetime import datetime, timedelta, timezone

import pytest

from bookstore import database
from bookstore.config import settings
from bookstore.exceptions import NotFound, TransactionFailure


def _book_count():
    conn = database.get_db_connection()
    try:
        return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
    finally:
        conn.close()


def _insert_book(conn, isbn="9780441013593"):
    conn.execute(
        "INSERT INTO books (title, author, isbn, purchase_amount, created_at) VALUES (?, ?, ?, ?, ?)",
        ("Dune", "Frank Herbert", isbn, "24.99", "2024-01-01T00:00:00+00:00")
    )


def test_transaction_commits():
    with database.transaction() as conn:
        _insert_book(conn)
    assert _book_count() == 1


def test_storage_error_rolls_back():
    with pytest.raises(TransactionFailure):
        with database.transaction() as conn:
            _insert_book(conn)
            conn.execute("INSERT INTO no_such_table VALUES (1)")
    assert _book_count() == 0


def test_domain_error_rolls_back_and_propagates():
    with pytest.raises(NotFound):
        with database.transaction() as conn:
            _insert_book(conn)
            raise NotFound("gone")
    assert _book_count() == 0


def test_tables_exist():
    conn = database.get_db_connection()
    try:
        names = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()
    assert {"books", "rental_config", "rentals", "book_sales", "payments"} <= names


def test_timestamps_are_utc():
    local = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    text = database.format_timestamp(local)
    assert text == "2024-05-01T12:00:00+00:00"
    assert database.parse_timestamp(text) == local
    assert database.parse_timestamp(None) is None


def test_naive_timestamps_are_taken_as_utc():
    assert database.format_timestamp(datetime(2024, 5, 1, 12, 0)) == "2024-05-01T12:00:00+00:00"


def test_database_file_from_environment(monkeypatch):
    monkeypatch.setenv("LIBRARY_DB_FILE", "/srv/bookstore/custom.db")
    assert database.resolve_database_file() == "/srv/bookstore/custom.db"


def test_database_file_defaults_to_data_file(monkeypatch):
    # Without an override every run shares the same persistent file
    monkeypatch.delenv("LIBRARY_DB_FILE", raising=False)
    monkeypatch.setattr(settings, "data_file", "bookstore.db")
    assert database.resolve_database_file() == "bookstore.db"
    assert database.resolve_database_file() == database.resolve_database_file()
