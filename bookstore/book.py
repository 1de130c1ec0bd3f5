from __future__ import annotations

from decimal import Decimal


class Book:
    """Represents a single book in the catalog."""

    def __init__(self, title: str, author: str, isbn: str, purchase_amount: Decimal | str | int = "0",
                 description: str | None = None, pdf_link: str | None = None, image_url: str | None = None,
                 id: int | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip()
        self.purchase_amount = Decimal(str(purchase_amount))
        self.description = description
        self.pdf_link = pdf_link
        self.image_url = image_url
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "purchase_amount": self.purchase_amount,
            "description": self.description,
            "pdf_link": self.pdf_link,
            "image_url": self.image_url,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            purchase_amount=data.get("purchase_amount") or "0",
            description=data.get("description"),
            pdf_link=data.get("pdf_link"),
            image_url=data.get("image_url"),
            created_at=data.get("created_at"),
        )
