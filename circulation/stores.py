"""Persistence adapters for books, loans and members.

Each store wraps one open connection and never commits: the caller decides
what belongs to a unit of work. Writes report whether a row was touched and
the caller treats ``False`` as a failure. The stores do not enforce rules that
span two tables; that is the loan engine's job.
"""
from __future__ import annotations

import sqlite3
from datetime import date
from typing import List, Optional, Sequence

from circulation.book import Book, Category
from circulation.errors import ConflictError, DataAccessError
from circulation.loan import ACTIVE_STATUSES, Loan, LoanStatus
from circulation.member import Member

_LOAN_SELECT = """
    SELECT l.id, l.member_id, l.isbn, l.borrow_date, l.due_date, l.return_date,
           l.status, l.fine_amount, l.created_at,
           m.name AS member_name, b.title AS book_title
    FROM loans l
    LEFT JOIN members m ON l.member_id = m.id
    LEFT JOIN books b ON l.isbn = b.isbn
"""
_LOAN_ORDER = " ORDER BY l.created_at DESC, l.id DESC"
_ACTIVE = tuple(s.value for s in ACTIVE_STATUSES)


class _Store:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _fetch_all(self, sql: str, params: Sequence = (), what: str = "rows") -> List[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DataAccessError(f"Error finding {what}") from e

    def _fetch_one(self, sql: str, params: Sequence = (), what: str = "row") -> Optional[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise DataAccessError(f"Error finding {what}") from e

    def _write(self, sql: str, params: Sequence, what: str) -> int:
        try:
            return self.conn.execute(sql, params).rowcount
        except sqlite3.Error as e:
            raise DataAccessError(f"Error {what}") from e


class BookInventoryStore(_Store):
    """Book rows keyed by ISBN."""

    def save(self, book: Book) -> Book:
        try:
            cursor = self.conn.execute(
                """
                INSERT INTO books (isbn, title, author, category, quantity, available, price, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (book.isbn, book.title, book.author, book.category.value, book.quantity,
                 book.available, book.price, int(book.is_active), book.created_at.isoformat()),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise ConflictError(f"A book with ISBN {book.isbn} already exists") from e
            raise DataAccessError("Error saving book") from e
        except sqlite3.Error as e:
            raise DataAccessError("Error saving book") from e
        if cursor.rowcount == 0:
            raise DataAccessError("Creating book failed, no rows affected")
        return book

    def find(self, isbn: str) -> Optional[Book]:
        row = self._fetch_one("SELECT * FROM books WHERE isbn = ?", (isbn,), "book by ISBN")
        return Book.from_dict(dict(row)) if row else None

    def find_all(self) -> List[Book]:
        rows = self._fetch_all("SELECT * FROM books ORDER BY created_at DESC, title", what="all books")
        return [Book.from_dict(dict(row)) for row in rows]

    def find_by_category(self, category: Category) -> List[Book]:
        rows = self._fetch_all(
            "SELECT * FROM books WHERE category = ? ORDER BY title", (category.value,), "books by category"
        )
        return [Book.from_dict(dict(row)) for row in rows]

    def find_by_author(self, author: str) -> List[Book]:
        rows = self._fetch_all(
            "SELECT * FROM books WHERE author LIKE ? ORDER BY title", (f"%{author}%",), "books by author"
        )
        return [Book.from_dict(dict(row)) for row in rows]

    def find_by_category_and_author(self, category: Category, author: str) -> List[Book]:
        rows = self._fetch_all(
            "SELECT * FROM books WHERE category = ? AND author LIKE ? ORDER BY title",
            (category.value, f"%{author}%"),
            "books by category and author",
        )
        return [Book.from_dict(dict(row)) for row in rows]

    def update(self, book: Book) -> bool:
        affected = self._write(
            """
            UPDATE books
            SET title = ?, author = ?, category = ?, quantity = ?, available = ?, price = ?, is_active = ?
            WHERE isbn = ?
            """,
            (book.title, book.author, book.category.value, book.quantity, book.available,
             book.price, int(book.is_active), book.isbn),
            "updating book",
        )
        return affected > 0

    def adjust_available(self, isbn: str, delta: int) -> bool:
        """Apply a +1/-1 change to ``available``. Refuses to go below zero or above quantity."""
        affected = self._write(
            """
            UPDATE books SET available = available + ?
            WHERE isbn = ? AND available + ? >= 0 AND available + ? <= quantity
            """,
            (delta, isbn, delta, delta),
            "updating book availability",
        )
        return affected > 0

    def delete(self, isbn: str) -> bool:
        return self._write("DELETE FROM books WHERE isbn = ?", (isbn,), "deleting book") > 0


class LoanStore(_Store):
    """Loan rows keyed by generated id."""

    def save(self, loan: Loan) -> int:
        try:
            cursor = self.conn.execute(
                """
                INSERT INTO loans (member_id, isbn, borrow_date, due_date, return_date, status, fine_amount, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (loan.member_id, loan.isbn, loan.borrow_date.isoformat(), loan.due_date.isoformat(),
                 loan.return_date.isoformat() if loan.return_date else None, loan.status.value,
                 loan.fine_amount, loan.created_at.isoformat()),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise ConflictError("Member already has an active loan for this book") from e
            raise DataAccessError("Error saving loan") from e
        except sqlite3.Error as e:
            raise DataAccessError("Error saving loan") from e
        if cursor.rowcount == 0 or cursor.lastrowid is None:
            raise DataAccessError("Creating loan failed, no ID obtained")
        loan.id = cursor.lastrowid
        return loan.id

    def find(self, loan_id: int) -> Optional[Loan]:
        row = self._fetch_one(_LOAN_SELECT + " WHERE l.id = ?", (loan_id,), "loan by ID")
        return Loan.from_dict(dict(row)) if row else None

    def find_all(self) -> List[Loan]:
        return self._loans(_LOAN_SELECT + _LOAN_ORDER, (), "all loans")

    def find_by_member_id(self, member_id: int) -> List[Loan]:
        return self._loans(_LOAN_SELECT + " WHERE l.member_id = ?" + _LOAN_ORDER, (member_id,), "loans by member")

    def find_by_isbn(self, isbn: str) -> List[Loan]:
        return self._loans(_LOAN_SELECT + " WHERE l.isbn = ?" + _LOAN_ORDER, (isbn,), "loans by ISBN")

    def find_by_status(self, status: LoanStatus) -> List[Loan]:
        return self._loans(_LOAN_SELECT + " WHERE l.status = ?" + _LOAN_ORDER, (status.value,), "loans by status")

    def find_active_by_member_id(self, member_id: int) -> List[Loan]:
        return self._loans(
            _LOAN_SELECT + " WHERE l.member_id = ? AND l.status IN (?, ?)" + _LOAN_ORDER,
            (member_id, *_ACTIVE),
            "active loans by member",
        )

    def find_active_by_member_and_isbn(self, member_id: int, isbn: str) -> Optional[Loan]:
        row = self._fetch_one(
            _LOAN_SELECT + " WHERE l.member_id = ? AND l.isbn = ? AND l.status IN (?, ?)",
            (member_id, isbn, *_ACTIVE),
            "active loan by member and ISBN",
        )
        return Loan.from_dict(dict(row)) if row else None

    def count_active_by_isbn(self, isbn: str) -> int:
        row = self._fetch_one(
            "SELECT COUNT(*) FROM loans WHERE isbn = ? AND status IN (?, ?)", (isbn, *_ACTIVE), "active loans"
        )
        return row[0] if row else 0

    def count_by_isbn(self, isbn: str) -> int:
        """Every loan row for the title, returned ones included."""
        row = self._fetch_one("SELECT COUNT(*) FROM loans WHERE isbn = ?", (isbn,), "loans by ISBN")
        return row[0] if row else 0

    def update(self, loan: Loan) -> bool:
        affected = self._write(
            """
            UPDATE loans
            SET member_id = ?, isbn = ?, borrow_date = ?, due_date = ?, return_date = ?, status = ?, fine_amount = ?
            WHERE id = ?
            """,
            (loan.member_id, loan.isbn, loan.borrow_date.isoformat(), loan.due_date.isoformat(),
             loan.return_date.isoformat() if loan.return_date else None, loan.status.value,
             loan.fine_amount, loan.id),
            "updating loan",
        )
        return affected > 0

    def mark_overdue(self, loan_id: int, today: date) -> bool:
        """Flip one BORROWED loan past its due date to OVERDUE; other rows are left alone."""
        affected = self._write(
            "UPDATE loans SET status = ? WHERE id = ? AND status = ? AND due_date < ?",
            (LoanStatus.OVERDUE.value, loan_id, LoanStatus.BORROWED.value, today.isoformat()),
            "updating loan status",
        )
        return affected > 0

    def delete(self, loan_id: int) -> bool:
        return self._write("DELETE FROM loans WHERE id = ?", (loan_id,), "deleting loan") > 0

    def _loans(self, sql: str, params: Sequence, what: str) -> List[Loan]:
        return [Loan.from_dict(dict(row)) for row in self._fetch_all(sql, params, what)]


class MemberDirectory(_Store):
    """Member lookups for the loan desk; member editing lives elsewhere."""

    def save(self, member: Member) -> int:
        try:
            cursor = self.conn.execute(
                "INSERT INTO members (name, email, phone, is_active, created_at) VALUES (?, ?, ?, ?, ?)",
                (member.name, member.email, member.phone, int(member.is_active), member.created_at.isoformat()),
            )
        except sqlite3.Error as e:
            raise DataAccessError("Error saving member") from e
        if cursor.rowcount == 0:
            raise DataAccessError("Creating member failed, no rows affected")
        member.id = cursor.lastrowid
        return member.id

    def find(self, member_id: int) -> Optional[Member]:
        row = self._fetch_one("SELECT * FROM members WHERE id = ?", (member_id,), "member by ID")
        return Member.from_dict(dict(row)) if row else None

    def find_all(self) -> List[Member]:
        rows = self._fetch_all("SELECT * FROM members ORDER BY name", what="all members")
        return [Member.from_dict(dict(row)) for row in rows]

    def set_active(self, member_id: int, is_active: bool) -> bool:
        return self._write(
            "UPDATE members SET is_active = ? WHERE id = ?", (int(is_active), member_id), "updating member"
        ) > 0
