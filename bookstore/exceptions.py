from typing import Dict, Optional


class BookstoreError(Exception):
    """Base exception for bookstore errors."""


class NotFound(BookstoreError):
    """Referenced rental, book, sale or payment does not exist."""


class ConfigurationMissing(BookstoreError):
    """The rental pricing configuration slot is empty.

    This is a deployment/seeding defect, not a user error.
    """

    def __init__(self, message: str = "rental config not found") -> None:
        super().__init__(message)


class ValidationError(BookstoreError):
    """Malformed or out-of-range input, rejected before any write."""

    def __init__(self, field_errors: Dict[str, str], message: Optional[str] = None) -> None:
        self.field_errors = dict(field_errors)
        if message is None:
            message = "; ".join(f"{field}: {error}" for field, error in self.field_errors.items())
        super().__init__(message)


class InvalidState(BookstoreError):
    """The record exists but is not in a state that allows the operation."""


class RentalAlreadyReturned(InvalidState):
    def __init__(self, rental_id: int) -> None:
        self.rental_id = rental_id
        super().__init__(f"rental {rental_id} is already returned")


class TransactionFailure(BookstoreError):
    """The storage transaction aborted and was rolled back."""
