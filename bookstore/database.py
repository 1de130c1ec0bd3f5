import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from dotenv import load_dotenv

from bookstore.config import settings
from bookstore.exceptions import TransactionFailure

# Make sure .env is loaded before the environment is read below, whatever the import order.
load_dotenv()

logger = logging.getLogger(__name__)


def resolve_database_file() -> str:
    """Database file to use.

    Priority:
    1) LIBRARY_DB_FILE (explicit override)
    2) Settings.data_file (LIBRARY_DATA_FILE, default "bookstore.db" in the working directory)
    """
    return os.environ.get("LIBRARY_DB_FILE") or settings.data_file


DATABASE_FILE = resolve_database_file()


def get_db_connection() -> sqlite3.Connection:
    """Open a new connection to the SQLite database.

    Connections are per operation; callers close them in a ``finally`` block.
    """
    conn = sqlite3.connect(DATABASE_FILE, timeout=settings.database_timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    # WAL lets readers proceed while a settlement holds the write lock
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run a block of writes as one all-or-nothing transaction.

    ``BEGIN IMMEDIATE`` takes the write lock up front, so two concurrent
    transactions are serialized instead of interleaving their reads and writes.
    Storage errors are rolled back and re-raised as ``TransactionFailure``;
    any other exception is rolled back and propagated unchanged.
    """
    conn = get_db_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        logger.error(f"Transaction rolled back: {exc}")
        raise TransactionFailure(f"storage transaction failed: {exc}") from exc
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def create_tables() -> None:
    """Create the tables if they do not exist yet."""
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT NOT NULL,
                description TEXT,
                purchase_amount TEXT NOT NULL,
                pdf_link TEXT,
                image_url TEXT,
                created_at TEXT NOT NULL
            )
        """)

        # Singleton pricing slot: the CHECK keeps it to the one well-known row
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS rental_config (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                tier_one_rate_per_day TEXT NOT NULL,
                tier_two_rate_per_day TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS rentals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                rented_at TEXT NOT NULL,
                return_date TEXT,
                is_returned INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE RESTRICT,
                CHECK ((is_returned = 0 AND return_date IS NULL)
                    OR (is_returned = 1 AND return_date IS NOT NULL))
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS book_sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE RESTRICT
            )
        """)

        # Exactly one of book_sale_id / rental_book_id is set, matching type
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                amount TEXT NOT NULL,
                payment_method TEXT NOT NULL CHECK (payment_method IN ('credit_card', 'debit_card')),
                type TEXT NOT NULL CHECK (type IN ('purchase', 'rent')),
                created_at TEXT NOT NULL,
                book_sale_id INTEGER UNIQUE,
                rental_book_id INTEGER UNIQUE,
                FOREIGN KEY (book_sale_id) REFERENCES book_sales(id) ON DELETE RESTRICT,
                FOREIGN KEY (rental_book_id) REFERENCES rentals(id) ON DELETE RESTRICT,
                CHECK ((type = 'purchase' AND book_sale_id IS NOT NULL AND rental_book_id IS NULL)
                    OR (type = 'rent' AND rental_book_id IS NOT NULL AND book_sale_id IS NULL))
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_author ON books(author)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_rentals_user_id ON rentals(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_rentals_book_id ON rentals(book_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_book_sales_user_id ON book_sales(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_payments_created_at ON payments(created_at DESC)")
        conn.commit()
    finally:
        conn.close()


def seed_rental_config() -> None:
    """Fill the pricing slot with the default rates if it is empty."""
    conn = get_db_connection()
    try:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO rental_config (id, tier_one_rate_per_day, tier_two_rate_per_day, updated_at)
            VALUES (1, ?, ?, ?)
            """,
            (settings.default_tier_one_rate, settings.default_tier_two_rate, format_timestamp(utcnow())),
        )
        conn.commit()
        if cursor.rowcount:
            logger.info(
                f"Seeded rental config: tier one {settings.default_tier_one_rate}/day, "
                f"tier two {settings.default_tier_two_rate}/day"
            )
    finally:
        conn.close()


def initialize_database() -> None:
    """Create the tables and, unless disabled, seed the rental config."""
    create_tables()
    if settings.seed_rental_config:
        seed_rental_config()
