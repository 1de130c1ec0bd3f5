"""Rental cost calculation.

Days 1-30 of a rental are free, days 31-60 are billed at the tier one rate and
every day after 60 at the tier two rate. A rental held longer than 100 days is
billed the book's purchase price instead. A 10% loyalty discount applies to
any positive subtotal when enabled.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict

from bookstore.rental_config import RentalConfig

FREE_RENTAL_DAYS = 30
TIER_ONE_LAST_DAY = 60
CAP_AFTER_DAYS = 100
LOYALTY_DISCOUNT_RATE = Decimal("0.10")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
_ONE_DAY = timedelta(days=1)


def to_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RentalCost:
    """Cost breakdown of one rental; money fields are rounded to cents."""
    rental_days: int
    free_rental_days: int
    tier_one_days: int
    tier_one_cost: Decimal
    tier_two_days: int
    tier_two_cost: Decimal
    cap_cost: Decimal
    subtotal: Decimal
    discount: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rental_days": self.rental_days,
            "free_rental_days": self.free_rental_days,
            "tier_one_days": self.tier_one_days,
            "tier_one_cost": self.tier_one_cost,
            "tier_two_days": self.tier_two_days,
            "tier_two_cost": self.tier_two_cost,
            "cap_cost": self.cap_cost,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "total": self.total,
        }


def count_rental_days(rented_at: datetime, as_of: datetime) -> int:
    """Whole days started between the two instants, never negative.

    Uses integer division on timedeltas so partial days round up exactly.
    """
    elapsed = as_of - rented_at
    if elapsed <= timedelta(0):
        return 0
    full_days, remainder = divmod(elapsed, _ONE_DAY)
    return full_days + (1 if remainder else 0)


def calculate_rental_cost(
    rented_at: datetime,
    as_of: datetime,
    config: RentalConfig,
    purchase_amount: Decimal,
    apply_loyalty_discount: bool = True,
) -> RentalCost:
    """Price a rental from ``rented_at`` to ``as_of``.

    ``as_of`` is the return date of a settled rental or the current time for a
    preview. Pure function: identical inputs give identical output.
    """
    rental_days = count_rental_days(rented_at, as_of)

    free_rental_days = min(rental_days, FREE_RENTAL_DAYS)
    tier_one_days = min(max(rental_days - FREE_RENTAL_DAYS, 0), TIER_ONE_LAST_DAY - FREE_RENTAL_DAYS)
    tier_two_days = max(rental_days - TIER_ONE_LAST_DAY, 0)

    tier_one_cost = to_money(tier_one_days * config.tier_one_rate_per_day)
    tier_two_cost = to_money(tier_two_days * config.tier_two_rate_per_day)
    cap_cost = to_money(purchase_amount) if rental_days > CAP_AFTER_DAYS else ZERO

    subtotal = cap_cost if cap_cost > 0 else tier_one_cost + tier_two_cost

    if apply_loyalty_discount and subtotal > 0:
        total = to_money(subtotal * (1 - LOYALTY_DISCOUNT_RATE))
    else:
        total = subtotal
    discount = subtotal - total

    return RentalCost(
        rental_days=rental_days,
        free_rental_days=free_rental_days,
        tier_one_days=tier_one_days,
        tier_one_cost=tier_one_cost,
        tier_two_days=tier_two_days,
        tier_two_cost=tier_two_cost,
        cap_cost=cap_cost,
        subtotal=subtotal,
        discount=discount,
        total=total,
    )
