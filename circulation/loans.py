"""Loan lifecycle engine.

Registers loans, takes returns and deletes loans while keeping every book's
``available`` counter in step with its open loans. Each mutating call runs in
one unit of work: the loan row and the book row are committed together or not
at all. Read calls flip BORROWED loans past their due date to OVERDUE before
handing them back.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, List, Union

from circulation.database import unit_of_work
from circulation.errors import ConflictError, DataAccessError, InvalidStateError, NotFoundError
from circulation.loan import Loan, LoanStatus
from circulation.policy import Operation, Role, authorize
from circulation.service import BaseService
from circulation.stores import BookInventoryStore, LoanStore, MemberDirectory

logger = logging.getLogger(__name__)

RoleLike = Union[Role, str, None]


class LoanService(BaseService):
    """Loan desk operations. The acting role is passed into every call."""

    # ------------------------- Mutations ------------------------- #
    def register_loan(self, member_id: int, isbn: str, role: RoleLike) -> Loan:
        """Check out one copy of ``isbn`` to ``member_id``.

        Raises UnauthorizedError, NotFoundError (member or book),
        InvalidStateError (inactive member or book, no copies left),
        ConflictError (member already holds this title) or PersistenceError.
        """
        actor = authorize(Operation.REGISTER_LOAN, role)
        with self.transaction("registering loan") as conn:
            members, books, loans = MemberDirectory(conn), BookInventoryStore(conn), LoanStore(conn)

            member = members.find(member_id)
            if member is None:
                raise NotFoundError(f"Member not found with ID: {member_id}")
            if not member.is_active:
                raise InvalidStateError("Member is not active")

            book = books.find(isbn)
            if book is None:
                raise NotFoundError(f"Book not found with ISBN: {isbn}")
            if not book.is_active:
                raise InvalidStateError("Book is not active")
            if book.available <= 0:
                raise InvalidStateError("Book is not available for loan")

            if loans.find_active_by_member_and_isbn(member_id, isbn) is not None:
                raise ConflictError("Member already has an active loan for this book")

            loan = Loan.open(member_id, isbn, self.today(), self.settings.loan_period_days)
            loans.save(loan)
            if not books.adjust_available(isbn, -1):
                raise InvalidStateError("Book is not available for loan")

            loan.member_name = member.name
            loan.book_title = book.title

        logger.info(
            f"Loan registered successfully - ID: {loan.id}, Member: {member_id}, ISBN: {isbn} by {actor.value}"
        )
        return loan

    def mark_return(self, loan_id: int, role: RoleLike) -> Loan:
        """Close an open loan, fix its fine and put the copy back on the shelf.

        A loan that is already RETURNED is refused with InvalidStateError; its
        return date and fine are never touched again.
        """
        actor = authorize(Operation.RETURN_LOAN, role)
        with self.transaction("marking loan as returned") as conn:
            books, loans = BookInventoryStore(conn), LoanStore(conn)

            loan = loans.find(loan_id)
            if loan is None:
                raise NotFoundError(f"Loan not found with ID: {loan_id}")
            if loan.status is LoanStatus.RETURNED:
                raise InvalidStateError("Loan is already marked as returned")

            today = self.today()
            days_overdue = loan.days_overdue(today)
            loan.close(today, self.settings.fine_per_day)

            if not loans.update(loan):
                raise DataAccessError("Failed to mark loan as returned, no rows affected")
            if not books.adjust_available(loan.isbn, +1):
                raise DataAccessError(f"Book {loan.isbn} inventory is out of step with its open loans")

        if days_overdue:
            logger.info(f"Loan overdue - ID: {loan_id}, Days: {days_overdue}, Fine: {loan.fine_amount:.2f}")
        logger.info(f"Loan marked as returned - ID: {loan_id} by {actor.value}")
        return loan

    def delete_loan(self, loan_id: int, role: RoleLike) -> bool:
        """Remove a loan record. An open loan gives its copy back first."""
        actor = authorize(Operation.DELETE_LOAN, role)
        with self.transaction("deleting loan") as conn:
            books, loans = BookInventoryStore(conn), LoanStore(conn)

            loan = loans.find(loan_id)
            if loan is None:
                raise NotFoundError(f"Loan not found with ID: {loan_id}")

            # The foreign key keeps the book row alive while any loan references it
            if loan.is_active and not books.adjust_available(loan.isbn, +1):
                raise DataAccessError(f"Book {loan.isbn} inventory is out of step with its open loans")

            if not loans.delete(loan_id):
                raise DataAccessError("Failed to delete loan, no rows affected")

        logger.info(f"Loan deleted successfully - ID: {loan_id} by {actor.value}")
        return True

    # ------------------------- Queries ------------------------- #
    def get_all_loans(self, role: RoleLike) -> List[Loan]:
        authorize(Operation.VIEW_LOANS, role)
        with self.reading("getting all loans") as conn:
            loans = LoanStore(conn).find_all()
        # An empty table is reported as NotFound; existing callers rely on it.
        if not loans:
            raise NotFoundError("No loans found")
        self._refresh_overdue(loans)
        return loans

    def find_loan_by_id(self, loan_id: int, role: RoleLike) -> Loan:
        authorize(Operation.VIEW_LOANS, role)
        with self.reading("finding loan") as conn:
            loan = LoanStore(conn).find(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan not found with ID: {loan_id}")
        self._refresh_overdue([loan])
        return loan

    def find_loans_by_member_id(self, member_id: int, role: RoleLike) -> List[Loan]:
        authorize(Operation.VIEW_LOANS, role)
        with self.reading("finding loans by member") as conn:
            loans = LoanStore(conn).find_by_member_id(member_id)
        if not loans:
            raise NotFoundError(f"No loans found for member ID: {member_id}")
        self._refresh_overdue(loans)
        logger.info(f"Found {len(loans)} loans for member ID: {member_id}")
        return loans

    def find_loans_by_isbn(self, isbn: str, role: RoleLike) -> List[Loan]:
        authorize(Operation.VIEW_LOANS, role)
        with self.reading("finding loans by ISBN") as conn:
            loans = LoanStore(conn).find_by_isbn(isbn)
        if not loans:
            raise NotFoundError(f"No loans found for ISBN: {isbn}")
        self._refresh_overdue(loans)
        logger.info(f"Found {len(loans)} loans for ISBN: {isbn}")
        return loans

    def find_loans_by_status(self, status: Union[LoanStatus, str], role: RoleLike) -> List[Loan]:
        authorize(Operation.VIEW_LOANS, role)
        status = LoanStatus.parse(status)
        # Refresh the whole table first so the status filter sees current values
        with self.reading("finding loans by status") as conn:
            everything = LoanStore(conn).find_all()
        self._refresh_overdue(everything)

        with self.reading("finding loans by status") as conn:
            loans = LoanStore(conn).find_by_status(status)
        if not loans:
            raise NotFoundError(f"No loans found with status: {status.value}")
        logger.info(f"Found {len(loans)} loans with status: {status.value}")
        return loans

    # ------------------------- Status refresh ------------------------- #
    def _refresh_overdue(self, loans: Iterable[Loan]) -> int:
        """Persist BORROWED -> OVERDUE for loans past their due date.

        Runs in its own transaction. A failure is logged and rolled back and
        never fails the read that triggered it. Returns the number of rows
        flipped; a second pass over the same data flips nothing.
        """
        today = self.today()
        stale = [loan for loan in loans if loan.status is LoanStatus.BORROWED and loan.is_past_due(today)]
        if not stale:
            return 0

        flipped = []
        try:
            with unit_of_work(self.db_file, self.settings.database_timeout) as conn:
                store = LoanStore(conn)
                for loan in stale:
                    if store.mark_overdue(loan.id, today):
                        flipped.append(loan)
        except (DataAccessError, sqlite3.Error):
            logger.exception("Error updating overdue statuses")
            return 0

        for loan in flipped:
            loan.mark_overdue(today)
        if flipped:
            logger.info(f"Marked {len(flipped)} loans as overdue")
        return len(flipped)
