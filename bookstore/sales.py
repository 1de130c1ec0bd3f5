import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from bookstore.book import Book
from bookstore.database import format_timestamp, get_db_connection, parse_timestamp, transaction, utcnow
from bookstore.exceptions import ValidationError
from bookstore.library import Library
from bookstore.payment import BookingType, BookSale, Payment, PaymentMethod
from bookstore.pricing import to_money
from bookstore.validators import parse_money, validate_payment

logger = logging.getLogger(__name__)


class SalesManager:
    """One-shot book purchases: a sale and its payment, written together."""

    def __init__(self, library: Optional[Library] = None, clock: Callable[[], datetime] = utcnow) -> None:
        self.library = library or Library()
        self._clock = clock

    def purchase_book(self, book_id: int, user_id: str, payment_method: Any, payment_amount: Any = None) -> Payment:
        """Buy a book at its catalog price; a mismatching client echo is rejected."""
        book = self.library.get_book(book_id)
        price = to_money(book.purchase_amount)
        if payment_amount is not None:
            errors = {}
            echoed = parse_money(payment_amount, "payment_amount", errors)
            if errors:
                raise ValidationError(errors)
            if to_money(echoed) != price:
                raise ValidationError({"payment_amount": f"Payment amount does not match the book price of {price}"})
        return self.record_sale(book_id, user_id, price, payment_method)

    def record_sale(self, book_id: int, user_id: str, payment_amount: Any, payment_method: Any) -> Payment:
        """Create a BookSale and its purchase Payment in one transaction.

        Books have no inventory: any user may buy any book any number of times.
        """
        amount, method = validate_payment(payment_amount, payment_method)
        if not user_id:
            raise ValidationError({"user_id": "User is required"})
        amount = to_money(amount)
        book = self.library.get_book(book_id)
        created_at = self._clock()
        stamp = format_timestamp(created_at)

        with transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO book_sales (book_id, user_id, created_at) VALUES (?, ?, ?)",
                (book.id, user_id, stamp)
            )
            sale_id = cursor.lastrowid
            cursor = conn.execute(
                """
                INSERT INTO payments (amount, payment_method, type, created_at, book_sale_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(amount), method.value, BookingType.PURCHASE.value, stamp, sale_id)
            )
            payment_id = cursor.lastrowid

        logger.info(f"Sale {sale_id} recorded: book {book.id} to user {user_id} for {amount} by {method.value}")
        return Payment(
            id=payment_id,
            amount=amount,
            payment_method=method,
            type=BookingType.PURCHASE,
            created_at=created_at,
            book_sale_id=sale_id,
            book_title=book.title,
        )

    def list_sales(self, user_id: Optional[str] = None) -> List[BookSale]:
        """Sales newest first; every user's sales when ``user_id`` is None."""
        query = """
            SELECT s.id, s.book_id, s.user_id, s.created_at, b.title AS book_title,
                   p.id AS payment_id, p.amount, p.payment_method, p.type, p.created_at AS payment_created_at
            FROM book_sales s
            JOIN books b ON b.id = s.book_id
            LEFT JOIN payments p ON p.book_sale_id = s.id
        """
        params: tuple = ()
        if user_id is not None:
            query += " WHERE s.user_id = ?"
            params = (user_id,)
        query += " ORDER BY s.created_at DESC, s.id DESC"

        conn = get_db_connection()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()

        sales = []
        for row in rows:
            payment = None
            if row["payment_id"] is not None:
                payment = Payment(
                    id=row["payment_id"],
                    amount=to_money(row["amount"]),
                    payment_method=PaymentMethod(row["payment_method"]),
                    type=BookingType(row["type"]),
                    created_at=parse_timestamp(row["payment_created_at"]),
                    book_sale_id=row["id"],
                    book_title=row["book_title"],
                )
            sales.append(BookSale(
                id=row["id"],
                book_id=row["book_id"],
                user_id=row["user_id"],
                created_at=parse_timestamp(row["created_at"]),
                book_title=row["book_title"],
                payment=payment,
            ))
        return sales

    def purchased_books(self, user_id: str) -> List[Book]:
        """Distinct books the user has bought, newest catalog entries first."""
        conn = get_db_connection()
        try:
            rows = conn.execute(
                """
                SELECT id, title, author, isbn, description, purchase_amount, pdf_link, image_url, created_at
                FROM books
                WHERE id IN (SELECT book_id FROM book_sales WHERE user_id = ?)
                ORDER BY created_at DESC, id DESC
                """,
                (user_id,)
            ).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()
