import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    data_file: str = os.getenv("LIBRARY_DATA_FILE", "bookstore.db")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "5"))

    # Rental pricing seed values, used only when the config slot is empty
    default_tier_one_rate: str = os.getenv("DEFAULT_TIER_ONE_RATE", "6")
    default_tier_two_rate: str = os.getenv("DEFAULT_TIER_TWO_RATE", "3")
    seed_rental_config: bool = _env_flag("SEED_RENTAL_CONFIG", "True")
    apply_loyalty_discount: bool = _env_flag("APPLY_LOYALTY_DISCOUNT", "True")

    # New book notifications
    book_webhook_url: Optional[str] = os.getenv("BOOK_WEBHOOK_URL")
    book_webhook_timeout: float = float(os.getenv("BOOK_WEBHOOK_TIMEOUT", "10"))
    notification_email: str = os.getenv("NOTIFICATION_EMAIL", "staff@bookstore.local")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Bookstore Rentals")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_flag("DEBUG", "False")
    environment: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()
