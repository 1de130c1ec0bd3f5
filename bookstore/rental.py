from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from bookstore.database import format_timestamp
from bookstore.payment import Payment


@dataclass
class Rental:
    """A checkout of one book by one user.

    ``is_returned`` is set together with ``return_date`` at settlement, in the
    same transaction that writes the rental's payment.
    """
    id: int
    book_id: int
    user_id: str
    rented_at: datetime
    return_date: Optional[datetime] = None
    is_returned: bool = False
    book_title: Optional[str] = None
    payment: Optional[Payment] = None

    def priced_as_of(self, now: datetime) -> datetime:
        """The moment a rental is priced at: its return date, or ``now`` while active."""
        return self.return_date if self.return_date is not None else now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "rented_at": format_timestamp(self.rented_at),
            "return_date": format_timestamp(self.return_date) if self.return_date else None,
            "is_returned": self.is_returned,
            "book_title": self.book_title,
            "payment": self.payment.to_dict() if self.payment else None,
        }
