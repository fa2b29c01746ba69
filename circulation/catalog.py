"""Catalog maintenance with the role rules of the loan desk.

ADMIN may change any book field; ASSISTANT may only touch the stock fields
(quantity, available, price). Loan-driven availability changes do not go
through here; see :mod:`circulation.loans`.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Union

from circulation.book import Book, Category
from circulation.errors import ConflictError, DataAccessError, InvalidStateError, NotFoundError
from circulation.policy import BOOK_FIELDS, Operation, Role, authorize, check_book_fields
from circulation.service import BaseService
from circulation.stores import BookInventoryStore, LoanStore

logger = logging.getLogger(__name__)

RoleLike = Union[Role, str, None]

_FIELD_TYPES = {
    "category": Category.parse,
    "quantity": int,
    "available": int,
    "price": float,
    "is_active": bool,
}


class CatalogService(BaseService):

    def create_book(self, isbn: str, title: str, author: str, category: Union[Category, str, None],
                    quantity: int, price: float, role: RoleLike) -> Book:
        actor = authorize(Operation.CREATE_BOOK, role)
        book = Book(isbn=isbn, title=title, author=author, category=category,
                    quantity=quantity, price=price, created_at=self.today())
        book.validate()
        with self.transaction("creating book") as conn:
            books = BookInventoryStore(conn)
            if books.find(book.isbn) is not None:
                raise ConflictError("A book with this ISBN already exists")
            books.save(book)
        logger.info(f"Book created successfully - ISBN: {book.isbn} by {actor.value}")
        return book

    def update_book(self, isbn: str, role: RoleLike, **changes: Any) -> Book:
        """Apply ``changes`` (field name -> new value) to a book.

        Fields outside the role's editable set are refused with
        UnauthorizedError rather than silently dropped.
        """
        actor = authorize(Operation.UPDATE_BOOK, role)
        unknown = set(changes) - BOOK_FIELDS
        if unknown:
            raise ValueError(f"Unknown book fields: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            raise ValueError("Nothing to update.")
        check_book_fields(actor, changes)

        with self.transaction("updating book") as conn:
            books = BookInventoryStore(conn)
            book = books.find(isbn)
            if book is None:
                raise NotFoundError(f"Book not found with ISBN: {isbn}")
            for field, value in changes.items():
                setattr(book, field, _FIELD_TYPES.get(field, str)(value))
            book.validate()
            # Checked-out copies must still fit on the shelf when they come back
            checked_out = LoanStore(conn).count_active_by_isbn(isbn)
            if book.available + checked_out > book.quantity:
                raise InvalidStateError(
                    f"{checked_out} copies are on loan; available plus on loan cannot exceed quantity"
                )
            if not books.update(book):
                raise DataAccessError("Failed to update book, no rows affected")

        logger.info(f"Book updated successfully - ISBN: {isbn} by {actor.value}")
        return book

    def delete_book(self, isbn: str, role: RoleLike) -> bool:
        actor = authorize(Operation.DELETE_BOOK, role)
        with self.transaction("deleting book") as conn:
            books = BookInventoryStore(conn)
            if books.find(isbn) is None:
                raise NotFoundError(f"Book not found with ISBN: {isbn}")
            loans = LoanStore(conn)
            if loans.count_active_by_isbn(isbn):
                raise ConflictError("Book has active loans and cannot be deleted")
            if loans.count_by_isbn(isbn):
                raise ConflictError("Book has loan history and cannot be deleted")
            if not books.delete(isbn):
                raise DataAccessError("Failed to delete book, no rows affected")
        logger.info(f"Book deleted successfully - ISBN: {isbn} by {actor.value}")
        return True

    def get_all_books(self, role: RoleLike) -> List[Book]:
        authorize(Operation.VIEW_BOOKS, role)
        with self.reading("getting all books") as conn:
            books = BookInventoryStore(conn).find_all()
        if not books:
            raise NotFoundError("No books found")
        return books

    def find_book_by_isbn(self, isbn: str, role: RoleLike) -> Book:
        authorize(Operation.VIEW_BOOKS, role)
        with self.reading("finding book") as conn:
            book = BookInventoryStore(conn).find(isbn)
        if book is None:
            raise NotFoundError(f"Book not found with ISBN: {isbn}")
        return book

    def find_books(self, role: RoleLike, category: Union[Category, str, None] = None,
                   author: Optional[str] = None) -> List[Book]:
        """Filter by category, author substring, or both."""
        authorize(Operation.VIEW_BOOKS, role)
        if category is None and not author:
            return self.get_all_books(role)

        with self.reading("finding books") as conn:
            store = BookInventoryStore(conn)
            if category is not None and author:
                category = Category.parse(category)
                books = store.find_by_category_and_author(category, author)
                criteria = f"category: {category.value} and author: {author}"
            elif category is not None:
                category = Category.parse(category)
                books = store.find_by_category(category)
                criteria = f"category: {category.value}"
            else:
                books = store.find_by_author(author)
                criteria = f"author: {author}"

        if not books:
            raise NotFoundError(f"No books found with {criteria}")
        logger.info(f"Found {len(books)} books with {criteria}")
        return books
