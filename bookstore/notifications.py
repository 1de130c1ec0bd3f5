import logging
import time
from typing import Any, Dict, Optional

import httpx

from bookstore.book import Book
from bookstore.config import settings

logger = logging.getLogger(__name__)


def _http_post_with_retry(url: str, payload: Dict[str, Any], timeout: float, retries: int = 3,
                          backoff: float = 0.5) -> Optional[httpx.Response]:
    """Retry wrapper around httpx.post for transient network errors.

    Returns None once all attempts fail.
    """
    for attempt in range(retries):
        try:
            return httpx.post(url, json=payload, timeout=timeout)
        except httpx.RequestError as exc:
            if attempt < retries - 1:
                time.sleep(backoff * (2 ** attempt))
            else:
                logger.error(f"Webhook {url} unreachable after {retries} attempts: {exc}")
    return None


def notify_book_added(book: Book) -> bool:
    """Tell staff that a new book was added to the catalog.

    Delivery is best effort: a failed notification never undoes the insert.
    Returns True when the webhook accepted the message.
    """
    url = settings.book_webhook_url
    if not url:
        logger.debug("No book webhook configured; skipping new book notification")
        return False

    payload = {
        "title": book.title,
        "author": book.author,
        "emailDetails": {
            "to": settings.notification_email,
            "subject": "New Book Added to the Library",
            "body": f'A new book titled "{book.title}" by {book.author} has been added to the library.',
        },
    }
    resp = _http_post_with_retry(url, payload, timeout=settings.book_webhook_timeout)
    if resp is None:
        return False
    if resp.status_code >= 300:
        logger.warning(f"Book webhook rejected notification: {resp.status_code}")
        return False
    logger.info(f"New book notification sent for book {book.id}")
    return True
