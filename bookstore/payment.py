from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from bookstore.database import format_timestamp, parse_timestamp


class PaymentMethod(str, Enum):
    """Accepted payment methods"""
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"


class BookingType(str, Enum):
    """What a payment settles"""
    PURCHASE = "purchase"
    RENT = "rent"


@dataclass
class Payment:
    """Immutable payment record, linked to exactly one sale or rental."""
    id: int
    amount: Decimal
    payment_method: PaymentMethod
    type: BookingType
    created_at: datetime
    book_sale_id: Optional[int] = None
    rental_book_id: Optional[int] = None
    book_title: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Payment":
        keys = row.keys()
        return cls(
            id=row["id"],
            amount=Decimal(row["amount"]),
            payment_method=PaymentMethod(row["payment_method"]),
            type=BookingType(row["type"]),
            created_at=parse_timestamp(row["created_at"]),
            book_sale_id=row["book_sale_id"],
            rental_book_id=row["rental_book_id"],
            book_title=row["book_title"] if "book_title" in keys else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "payment_method": self.payment_method.value,
            "type": self.type.value,
            "created_at": format_timestamp(self.created_at),
            "book_sale_id": self.book_sale_id,
            "rental_book_id": self.rental_book_id,
            "book_title": self.book_title,
        }


@dataclass
class BookSale:
    """One purchase of a book by a user."""
    id: int
    book_id: int
    user_id: str
    created_at: datetime
    book_title: Optional[str] = None
    payment: Optional[Payment] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "created_at": format_timestamp(self.created_at),
            "book_title": self.book_title,
            "payment": self.payment.to_dict() if self.payment else None,
        }
