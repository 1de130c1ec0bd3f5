from typing import List

from bookstore.database import get_db_connection
from bookstore.exceptions import NotFound
from bookstore.payment import Payment

_PAYMENT_QUERY = """
    SELECT p.id, p.amount, p.payment_method, p.type, p.created_at, p.book_sale_id, p.rental_book_id,
           COALESCE(sb.title, rb.title) AS book_title
    FROM payments p
    LEFT JOIN book_sales s ON s.id = p.book_sale_id
    LEFT JOIN books sb ON sb.id = s.book_id
    LEFT JOIN rentals r ON r.id = p.rental_book_id
    LEFT JOIN books rb ON rb.id = r.book_id
"""


def list_payments(user_id: str) -> List[Payment]:
    """A user's invoices: payments for their purchases and returned rentals, newest first."""
    conn = get_db_connection()
    try:
        rows = conn.execute(
            _PAYMENT_QUERY + """
            WHERE s.user_id = ?
               OR (r.user_id = ? AND r.is_returned = 1)
            ORDER BY p.created_at DESC, p.id DESC
            """,
            (user_id, user_id)
        ).fetchall()
        return [Payment.from_row(row) for row in rows]
    finally:
        conn.close()


def get_payment(payment_id: int) -> Payment:
    conn = get_db_connection()
    try:
        row = conn.execute(_PAYMENT_QUERY + " WHERE p.id = ?", (payment_id,)).fetchone()
    finally:
        conn.close()
    if row is None:
        raise NotFound("payment not found")
    return Payment.from_row(row)


def payment_owner(payment_id: int) -> str:
    """The user a payment belongs to, via its sale or rental."""
    conn = get_db_connection()
    try:
        row = conn.execute(
            """
            SELECT COALESCE(s.user_id, r.user_id) AS user_id
            FROM payments p
            LEFT JOIN book_sales s ON s.id = p.book_sale_id
            LEFT JOIN rentals r ON r.id = p.rental_book_id
            WHERE p.id = ?
            """,
            (payment_id,)
        ).fetchone()
    finally:
        conn.close()
    if row is None:
        raise NotFound("payment not found")
    return row["user_id"]
