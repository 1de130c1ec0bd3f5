import logging
import sqlite3
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bookstore import database
from bookstore.book import Book
from bookstore.database import format_timestamp, get_db_connection, initialize_database, utcnow
from bookstore.exceptions import InvalidState, NotFound, ValidationError
from bookstore.notifications import notify_book_added
from bookstore.validators import ISBNValidator, TextValidator, parse_money

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "id, title, author, isbn, description, purchase_amount, pdf_link, image_url, created_at"
_UPDATABLE_FIELDS = ("title", "author", "isbn", "description", "purchase_amount", "pdf_link", "image_url")


class Library:
    """Manages the book catalog."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # Callers (tests included) may point the module-level helpers at another database file.
        if db_file:
            database.DATABASE_FILE = db_file
        initialize_database()

    # ------------------------- Core operations ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Validate and insert a book; returns it with its new id."""
        self._validate(book.title, book.author, book.isbn, book.purchase_amount)
        book.isbn = ISBNValidator.normalize_isbn(book.isbn)
        book.created_at = format_timestamp(utcnow())

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO books (title, author, isbn, description, purchase_amount, pdf_link, image_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (book.title, book.author, book.isbn, book.description, str(book.purchase_amount),
                 book.pdf_link, book.image_url, book.created_at)
            )
            conn.commit()
            book.id = cursor.lastrowid
        finally:
            conn.close()

        logger.info(f"Book {book.id} added: {book.title} by {book.author}")
        notify_book_added(book)
        return book

    def find_book(self, book_id: int) -> Optional[Book]:
        conn = get_db_connection()
        try:
            row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def get_book(self, book_id: int) -> Book:
        """Like find_book, but a missing book raises NotFound."""
        book = self.find_book(book_id)
        if book is None:
            raise NotFound(f"book {book_id} not found")
        return book

    def list_books(self) -> List[Book]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY created_at DESC, id DESC").fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def search_books(self, query: str) -> List[Book]:
        """Search for books by title, author or ISBN."""
        conn = get_db_connection()
        try:
            rows = conn.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books WHERE title LIKE ? OR author LIKE ? OR isbn LIKE ? ORDER BY title",
                (f"%{query}%", f"%{query}%", f"%{query}%")
            ).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def update_book(self, book_id: int, **fields: Any) -> Optional[Book]:
        """Update the given fields of a book. Returns the updated book or None if not found."""
        changes = {k: v for k, v in fields.items() if v is not None}
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError({name: "Unknown field" for name in sorted(unknown)})
        if not changes:
            raise ValidationError({"book": "Nothing to update"})

        book = self.find_book(book_id)
        if not book:
            return None

        for name, value in changes.items():
            setattr(book, name, value.strip() if isinstance(value, str) else value)
        self._validate(book.title, book.author, book.isbn, book.purchase_amount)
        book.isbn = ISBNValidator.normalize_isbn(book.isbn)
        book.purchase_amount = Decimal(str(book.purchase_amount))

        conn = get_db_connection()
        try:
            conn.execute(
                """
                UPDATE books
                SET title = ?, author = ?, isbn = ?, description = ?, purchase_amount = ?, pdf_link = ?, image_url = ?
                WHERE id = ?
                """,
                (book.title, book.author, book.isbn, book.description, str(book.purchase_amount),
                 book.pdf_link, book.image_url, book_id)
            )
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Book {book_id} updated: {', '.join(sorted(changes))}")
        return book

    def remove_book(self, book_id: int) -> bool:
        """Delete a book. Books with rentals or sales cannot be deleted."""
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
            removed = cursor.rowcount > 0
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise InvalidState(f"book {book_id} has rentals or sales and cannot be deleted") from exc
        finally:
            conn.close()
        if removed:
            logger.info(f"Book {book_id} removed")
        return removed

    def get_statistics(self) -> Dict[str, Any]:
        """Catalog, rental and sales figures."""
        conn = get_db_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM books")
            total_books = cursor.fetchone()[0]

            cursor.execute("SELECT COUNT(DISTINCT author) FROM books")
            unique_authors = cursor.fetchone()[0]

            cursor.execute("SELECT is_returned, COUNT(*) FROM rentals GROUP BY is_returned")
            rentals_by_state = {bool(row[0]): row[1] for row in cursor.fetchall()}

            cursor.execute("SELECT COUNT(*) FROM book_sales")
            total_sales = cursor.fetchone()[0]

            # amounts are TEXT decimals; sum them exactly in Python
            cursor.execute("SELECT type, amount FROM payments")
            revenue = {"purchase": Decimal("0.00"), "rent": Decimal("0.00")}
            for row in cursor.fetchall():
                revenue[row["type"]] += Decimal(row["amount"])

            return {
                "total_books": total_books,
                "unique_authors": unique_authors,
                "active_rentals": rentals_by_state.get(False, 0),
                "returned_rentals": rentals_by_state.get(True, 0),
                "total_sales": total_sales,
                "sales_revenue": revenue["purchase"],
                "rental_revenue": revenue["rent"],
            }
        finally:
            conn.close()

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _validate(title: Optional[str], author: Optional[str], isbn: Optional[str], purchase_amount: Any) -> None:
        errors: Dict[str, str] = {}
        if not TextValidator.validate_title(title):
            errors["title"] = "Title is required"
        if not TextValidator.validate_author(author):
            errors["author"] = "Author is required"
        if not ISBNValidator.is_valid_isbn(isbn):
            errors["isbn"] = "Invalid ISBN"
        parse_money(purchase_amount, "purchase_amount", errors)
        if errors:
            raise ValidationError(errors)

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
