from __future__ import annotations

from datetime import date
from enum import Enum


class Category(str, Enum):
    UNKNOWN = "UNKNOWN"
    FICTION = "FICTION"
    NON_FICTION = "NON_FICTION"
    SCIENCE = "SCIENCE"
    TECHNOLOGY = "TECHNOLOGY"
    HISTORY = "HISTORY"
    OTHERS = "OTHERS"

    @classmethod
    def parse(cls, value: "Category | str | None") -> "Category":
        if value is None or value == "":
            return cls.UNKNOWN
        if isinstance(value, Category):
            return value
        try:
            return cls(str(value).strip().upper().replace("-", "_").replace(" ", "_"))
        except ValueError:
            raise ValueError(f"Unknown category: {value}") from None


class Book:
    """A catalog title and its copy counts."""

    MAX_ISBN_LENGTH = 155

    def __init__(self, isbn: str, title: str, author: str, category: Category | str | None = None,
                 quantity: int = 0, available: int | None = None, price: float = 0.0,
                 is_active: bool = True, created_at: date | str | None = None) -> None:
        self.isbn = isbn.strip()
        self.title = title.strip()
        self.author = author.strip()
        self.category = Category.parse(category)
        self.quantity = int(quantity)
        # New titles start with every copy on the shelf
        self.available = self.quantity if available is None else int(available)
        self.price = float(price)
        self.is_active = bool(is_active)
        if isinstance(created_at, str):
            created_at = date.fromisoformat(created_at[:10])
        self.created_at = created_at or date.today()

    def validate(self) -> None:
        if not self.isbn:
            raise ValueError("ISBN cannot be empty.")
        if len(self.isbn) > self.MAX_ISBN_LENGTH:
            raise ValueError(f"ISBN cannot be longer than {self.MAX_ISBN_LENGTH} characters.")
        if not self.title or not self.author:
            raise ValueError("Title and author are required.")
        if self.quantity < 0:
            raise ValueError("Quantity cannot be negative.")
        if self.available < 0 or self.available > self.quantity:
            raise ValueError("Available copies must be between 0 and quantity.")
        if self.price < 0:
            raise ValueError("Price cannot be negative.")

    def to_dict(self) -> dict:
        return {
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "category": self.category.value,
            "quantity": self.quantity,
            "available": self.available,
            "price": self.price,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            isbn=data["isbn"],
            title=data["title"],
            author=data["author"],
            category=data.get("category"),
            quantity=data.get("quantity", 0),
            available=data.get("available"),
            price=data.get("price", 0.0),
            # SQLite hands booleans back as 0/1
            is_active=bool(data.get("is_active", 1)),
            created_at=data.get("created_at"),
        )
