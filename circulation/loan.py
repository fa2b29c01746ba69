from __future__ import annotations

from datetime import date, timedelta
from enum import Enum


class LoanStatus(str, Enum):
    BORROWED = "BORROWED"
    OVERDUE = "OVERDUE"
    RETURNED = "RETURNED"

    @classmethod
    def parse(cls, value: "LoanStatus | str") -> "LoanStatus":
        if isinstance(value, LoanStatus):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown loan status: {value}") from None


ACTIVE_STATUSES = (LoanStatus.BORROWED, LoanStatus.OVERDUE)


def _as_date(value: date | str | None) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    return value


class Loan:
    """One checkout of one copy of a book by one member."""

    def __init__(self, member_id: int, isbn: str, borrow_date: date | str, due_date: date | str,
                 return_date: date | str | None = None, status: LoanStatus | str = LoanStatus.BORROWED,
                 fine_amount: float = 0.0, id: int | None = None, created_at: date | str | None = None,
                 member_name: str | None = None, book_title: str | None = None) -> None:
        self.id = id
        self.member_id = int(member_id)
        self.isbn = isbn
        self.borrow_date = _as_date(borrow_date)
        self.due_date = _as_date(due_date)
        self.return_date = _as_date(return_date)
        self.status = LoanStatus.parse(status)
        self.fine_amount = float(fine_amount or 0.0)
        self.created_at = _as_date(created_at) or self.borrow_date
        # Display-only joins
        self.member_name = member_name
        self.book_title = book_title

    @classmethod
    def open(cls, member_id: int, isbn: str, today: date, loan_period_days: int) -> "Loan":
        return cls(member_id=member_id, isbn=isbn, borrow_date=today,
                   due_date=today + timedelta(days=loan_period_days), created_at=today)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_past_due(self, today: date) -> bool:
        return today > self.due_date

    def days_overdue(self, on: date) -> int:
        """Whole calendar days between the due date and ``on``, never negative."""
        return max((on - self.due_date).days, 0)

    def mark_overdue(self, today: date) -> bool:
        """Flip BORROWED to OVERDUE once the due date has passed. Returns True if changed."""
        if self.status is LoanStatus.BORROWED and self.is_past_due(today):
            self.status = LoanStatus.OVERDUE
            return True
        return False

    def close(self, today: date, fine_per_day: float) -> None:
        """Record the return and fix the fine. No cap and no grace period."""
        self.return_date = today
        self.fine_amount = self.days_overdue(today) * fine_per_day
        self.status = LoanStatus.RETURNED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "member_name": self.member_name,
            "isbn": self.isbn,
            "book_title": self.book_title,
            "borrow_date": self.borrow_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "status": self.status.value,
            "fine_amount": self.fine_amount,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            id=data.get("id"),
            member_id=data["member_id"],
            isbn=data["isbn"],
            borrow_date=data["borrow_date"],
            due_date=data["due_date"],
            return_date=data.get("return_date"),
            status=data.get("status") or LoanStatus.BORROWED,
            fine_amount=data.get("fine_amount") or 0.0,
            created_at=data.get("created_at"),
            member_name=data.get("member_name"),
            book_title=data.get("book_title"),
        )
