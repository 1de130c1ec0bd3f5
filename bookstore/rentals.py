"""Rental lifecycle and settlement.

A rental is created when a customer rents a book and is mutated exactly once,
when it is settled: the return date and the ``rent`` payment are written in a
single transaction, so ``is_returned``, ``return_date`` and the payment are
either all present or all absent.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional

from bookstore.config import settings
from bookstore.database import format_timestamp, get_db_connection, parse_timestamp, transaction, utcnow
from bookstore.exceptions import NotFound, RentalAlreadyReturned, ValidationError
from bookstore.library import Library
from bookstore.payment import BookingType, Payment, PaymentMethod
from bookstore.pricing import RentalCost, calculate_rental_cost, to_money
from bookstore.rental import Rental
from bookstore.rental_config import get_config
from bookstore.validators import parse_money, validate_payment

logger = logging.getLogger(__name__)

_RENTAL_QUERY = """
    SELECT r.id, r.book_id, r.user_id, r.rented_at, r.return_date, r.is_returned,
           b.title AS book_title,
           p.id AS payment_id, p.amount, p.payment_method, p.type, p.created_at AS payment_created_at
    FROM rentals r
    JOIN books b ON b.id = r.book_id
    LEFT JOIN payments p ON p.rental_book_id = r.id
"""


def _rental_from_row(row) -> Rental:
    payment = None
    if row["payment_id"] is not None:
        payment = Payment(
            id=row["payment_id"],
            amount=Decimal(row["amount"]),
            payment_method=PaymentMethod(row["payment_method"]),
            type=BookingType(row["type"]),
            created_at=parse_timestamp(row["payment_created_at"]),
            rental_book_id=row["id"],
            book_title=row["book_title"],
        )
    return Rental(
        id=row["id"],
        book_id=row["book_id"],
        user_id=row["user_id"],
        rented_at=parse_timestamp(row["rented_at"]),
        return_date=parse_timestamp(row["return_date"]),
        is_returned=bool(row["is_returned"]),
        book_title=row["book_title"],
        payment=payment,
    )


class RentalManager:
    """Creates, prices and settles rentals."""

    def __init__(self, library: Optional[Library] = None, clock: Callable[[], datetime] = utcnow,
                 apply_loyalty_discount: Optional[bool] = None) -> None:
        self.library = library or Library()
        self._clock = clock
        if apply_loyalty_discount is None:
            apply_loyalty_discount = settings.apply_loyalty_discount
        self.apply_loyalty_discount = apply_loyalty_discount

    def rent_book(self, book_id: int, user_id: str) -> Rental:
        """Start a rental. No availability check: a title may be rented by many users at once."""
        if not user_id:
            raise ValidationError({"user_id": "User is required"})
        book = self.library.get_book(book_id)
        rented_at = self._clock()

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO rentals (book_id, user_id, rented_at, is_returned) VALUES (?, ?, ?, 0)",
                (book.id, user_id, format_timestamp(rented_at))
            )
            conn.commit()
            rental_id = cursor.lastrowid
        finally:
            conn.close()

        logger.info(f"Rental {rental_id} created: book {book.id} for user {user_id}")
        return Rental(id=rental_id, book_id=book.id, user_id=user_id, rented_at=rented_at, book_title=book.title)

    def find_rental(self, rental_id: int) -> Optional[Rental]:
        conn = get_db_connection()
        try:
            row = conn.execute(_RENTAL_QUERY + " WHERE r.id = ?", (rental_id,)).fetchone()
            return _rental_from_row(row) if row else None
        finally:
            conn.close()

    def get_rental(self, rental_id: int) -> Rental:
        rental = self.find_rental(rental_id)
        if rental is None:
            raise NotFound("rental not found")
        return rental

    def list_rentals(self, user_id: Optional[str] = None) -> List[Rental]:
        """Rentals newest first; every user's rentals when ``user_id`` is None."""
        conn = get_db_connection()
        try:
            if user_id is None:
                rows = conn.execute(_RENTAL_QUERY + " ORDER BY r.rented_at DESC, r.id DESC").fetchall()
            else:
                rows = conn.execute(
                    _RENTAL_QUERY + " WHERE r.user_id = ? ORDER BY r.rented_at DESC, r.id DESC",
                    (user_id,)
                ).fetchall()
            return [_rental_from_row(row) for row in rows]
        finally:
            conn.close()

    # ------------------------- Pricing ------------------------- #
    def quote(self, rental_id: int, now: Optional[datetime] = None) -> RentalCost:
        """Price a rental: as of now while active, as of its return date once settled."""
        rental = self.get_rental(rental_id)
        return self._price(rental, rental.priced_as_of(now or self._clock()))

    def _price(self, rental: Rental, as_of: datetime) -> RentalCost:
        config = get_config()
        book = self.library.get_book(rental.book_id)
        return calculate_rental_cost(
            rental.rented_at,
            as_of,
            config,
            book.purchase_amount,
            apply_loyalty_discount=self.apply_loyalty_discount,
        )

    # ------------------------- Settlement ------------------------- #
    def return_rental(self, rental_id: int, payment_method: Any, payment_amount: Any = None) -> Payment:
        """Return a rented book and pay for it.

        The amount charged is always recomputed here. ``payment_amount`` is the
        client's echo of what it expects to pay; a mismatch is rejected.
        """
        now = self._clock()
        rental = self.get_rental(rental_id)
        if rental.is_returned:
            logger.warning(f"Rental {rental_id} return refused: already returned")
            raise RentalAlreadyReturned(rental_id)

        cost = self._price(rental, now)
        if payment_amount is not None:
            errors = {}
            echoed = parse_money(payment_amount, "payment_amount", errors)
            if errors:
                raise ValidationError(errors)
            if to_money(echoed) != cost.total:
                logger.warning(f"Rental {rental_id} return refused: echo {echoed} != computed {cost.total}")
                raise ValidationError(
                    {"payment_amount": f"Payment amount does not match the rental cost of {cost.total}"}
                )

        return self.settle_rental(rental_id, cost.total, payment_method, returned_at=now)

    def settle_rental(self, rental_id: int, payment_amount: Any, payment_method: Any,
                      returned_at: Optional[datetime] = None) -> Payment:
        """Mark a rental returned and record its payment, atomically.

        The amount is taken as given; callers price the rental first. A rental
        that is missing raises ``NotFound``; one that is already returned raises
        ``RentalAlreadyReturned`` and no second payment is written.
        """
        amount, method = validate_payment(payment_amount, payment_method)
        amount = to_money(amount)
        returned_at = returned_at or self._clock()
        stamp = format_timestamp(returned_at)

        with transaction() as conn:
            # Conditional update: only an unreturned rental can change, so two racing
            # settlements cannot both succeed.
            cursor = conn.execute(
                "UPDATE rentals SET return_date = ?, is_returned = 1 WHERE id = ? AND return_date IS NULL",
                (stamp, rental_id)
            )
            if cursor.rowcount == 0:
                exists = conn.execute("SELECT 1 FROM rentals WHERE id = ?", (rental_id,)).fetchone()
                if exists is None:
                    raise NotFound("rental not found")
                logger.warning(f"Rental {rental_id} settlement refused: already returned")
                raise RentalAlreadyReturned(rental_id)

            cursor = conn.execute(
                """
                INSERT INTO payments (amount, payment_method, type, created_at, rental_book_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(amount), method.value, BookingType.RENT.value, stamp, rental_id)
            )
            payment_id = cursor.lastrowid

        logger.info(f"Rental {rental_id} settled: {amount} by {method.value} (payment {payment_id})")
        return Payment(
            id=payment_id,
            amount=amount,
            payment_method=method,
            type=BookingType.RENT,
            created_at=returned_at,
            rental_book_id=rental_id,
        )
