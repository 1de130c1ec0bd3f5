import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from bookstore.exceptions import ValidationError
from bookstore.payment import PaymentMethod

# Keeps every priced amount within Decimal context precision when rounded to cents
MAX_AMOUNT = Decimal("1000000000")


class ISBNValidator:
    """ISBN-10 / ISBN-13 checks for catalog entries."""

    @staticmethod
    def normalize_isbn(raw: str) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: str) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            total = 0
            for i, ch in enumerate(s[:-1], 1):
                if not ch.isdigit():
                    return False
                total += i * int(ch)
            check = s[-1]
            if check == 'X':
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            # weights 1..9 on the body, 10 on the check digit
            return (total + 10 * check_val) % 11 == 0
        elif len(s) == 13 and s.isdigit():
            total = 0
            for i, ch in enumerate(s[:-1]):
                factor = 1 if i % 2 == 0 else 3
                total += factor * int(ch)
            check_val = (10 - (total % 10)) % 10
            return check_val == int(s[-1])
        return False


class TextValidator:
    """Basic text validations for titles and authors."""

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        if title is None:
            return False
        t = title.strip()
        return bool(t) and any(c.isalnum() for c in t)

    @staticmethod
    def validate_author(author: Optional[str]) -> bool:
        # must not be digits only
        if author is None:
            return False
        t = author.strip()
        if not t:
            return False
        return not t.isdigit()


def parse_money(value: Any, field: str, errors: Dict[str, str]) -> Optional[Decimal]:
    """Parse a non-negative decimal amount, recording a field error on failure.

    Floats are converted through ``str`` so ``0.1`` stays ``Decimal("0.1")``.
    """
    if value is None or isinstance(value, bool):
        errors[field] = "Amount is required"
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        errors[field] = "Amount must be a number"
        return None
    if not amount.is_finite():
        errors[field] = "Amount must be a number"
        return None
    if amount < 0:
        errors[field] = "Amount must not be negative"
        return None
    if amount > MAX_AMOUNT:
        errors[field] = "Amount is too large"
        return None
    return amount


def parse_payment_method(value: Any, errors: Dict[str, str], field: str = "payment_method") -> Optional[PaymentMethod]:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).strip().lower())
    except ValueError:
        errors[field] = "Please select a payment method"
        return None


def validate_payment(amount: Any, method: Any) -> tuple:
    """Validate an amount/method pair; raises ``ValidationError`` listing every bad field."""
    errors: Dict[str, str] = {}
    parsed_amount = parse_money(amount, "payment_amount", errors)
    parsed_method = parse_payment_method(method, errors)
    if errors:
        raise ValidationError(errors)
    return parsed_amount, parsed_method
