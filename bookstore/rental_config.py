"""Access to the singleton rental pricing configuration.

The configuration lives in a single well-known slot (``rental_config.id = 1``)
holding the two per-day rates. Nothing can be priced without it, so an empty
slot raises ``ConfigurationMissing`` everywhere.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from bookstore.database import format_timestamp, get_db_connection, parse_timestamp, utcnow
from bookstore.exceptions import ConfigurationMissing, ValidationError
from bookstore.validators import parse_money

logger = logging.getLogger(__name__)

CONFIG_SLOT_ID = 1


@dataclass(frozen=True)
class RentalConfig:
    """Per-day rates for the 31-60 day band (tier one) and the 61+ band (tier two)."""
    tier_one_rate_per_day: Decimal
    tier_two_rate_per_day: Decimal
    id: int = CONFIG_SLOT_ID
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tier_one_rate_per_day": self.tier_one_rate_per_day,
            "tier_two_rate_per_day": self.tier_two_rate_per_day,
            "updated_at": format_timestamp(self.updated_at) if self.updated_at else None,
        }


def get_config() -> RentalConfig:
    """Return the rental config; raises ``ConfigurationMissing`` if the slot is empty."""
    conn = get_db_connection()
    try:
        row = conn.execute(
            "SELECT id, tier_one_rate_per_day, tier_two_rate_per_day, updated_at FROM rental_config WHERE id = ?",
            (CONFIG_SLOT_ID,),
        ).fetchone()
    finally:
        conn.close()

    if row is None:
        logger.critical("No rental config found; pricing is unavailable until it is seeded")
        raise ConfigurationMissing()

    return RentalConfig(
        id=row["id"],
        tier_one_rate_per_day=Decimal(row["tier_one_rate_per_day"]),
        tier_two_rate_per_day=Decimal(row["tier_two_rate_per_day"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def update_config(tier_one_rate: Any, tier_two_rate: Any) -> RentalConfig:
    """Overwrite both rates of the singleton config. No history is kept."""
    errors: Dict[str, str] = {}
    tier_one = parse_money(tier_one_rate, "tier_one_rate_per_day", errors)
    tier_two = parse_money(tier_two_rate, "tier_two_rate_per_day", errors)
    if errors:
        raise ValidationError(errors)

    conn = get_db_connection()
    try:
        cursor = conn.execute(
            """
            UPDATE rental_config
            SET tier_one_rate_per_day = ?, tier_two_rate_per_day = ?, updated_at = ?
            WHERE id = ?
            """,
            (str(tier_one), str(tier_two), format_timestamp(utcnow()), CONFIG_SLOT_ID),
        )
        conn.commit()
        updated = cursor.rowcount
    finally:
        conn.close()

    if not updated:
        logger.critical("Cannot update rental config: the config slot is empty")
        raise ConfigurationMissing()

    logger.info(f"Rental config updated: tier one {tier_one}/day, tier two {tier_two}/day")
    return get_config()


def ensure_config() -> RentalConfig:
    """Startup check that the config slot is filled."""
    return get_config()
