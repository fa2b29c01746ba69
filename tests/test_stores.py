from datetime import date

import pytest

from circulation.book import Book, Category
from circulation.database import get_db_connection, initialize_database, unit_of_work
from circulation.errors import ConflictError, DataAccessError
from circulation.loan import Loan, LoanStatus
from circulation.member import Member
from circulation.stores import BookInventoryStore, LoanStore, MemberDirectory

TODAY = date(2024, 3, 1)


@pytest.fixture
def conn(settings):
    initialize_database(settings.database_file)
    conn = get_db_connection(settings.database_file)
    yield conn
    conn.close()


@pytest.fixture
def seeded(conn):
    member = Member("Ada Lovelace", created_at=TODAY)
    MemberDirectory(conn).save(member)
    book = Book("111", "Dune", "Frank Herbert", Category.FICTION, quantity=2, created_at=TODAY)
    BookInventoryStore(conn).save(book)
    return member, book


def test_adjust_available_stays_within_bounds(conn, seeded):
    _, book = seeded
    books = BookInventoryStore(conn)

    assert books.adjust_available(book.isbn, +1) is False
    assert books.adjust_available(book.isbn, -1) is True
    assert books.adjust_available(book.isbn, -1) is True
    assert books.adjust_available(book.isbn, -1) is False
    assert books.find(book.isbn).available == 0
    assert books.adjust_available("missing", -1) is False


def test_duplicate_isbn_conflicts(conn, seeded):
    with pytest.raises(ConflictError):
        BookInventoryStore(conn).save(Book("111", "Other", "Someone", quantity=1))


def test_books_filtered_by_category_and_author(conn, seeded):
    books = BookInventoryStore(conn)
    books.save(Book("222", "Cosmos", "Carl Sagan", Category.SCIENCE, quantity=1, created_at=TODAY))

    assert [b.isbn for b in books.find_by_category(Category.SCIENCE)] == ["222"]
    assert [b.isbn for b in books.find_by_author("herb")] == ["111"]
    assert books.find_by_category_and_author(Category.SCIENCE, "Herbert") == []
    assert len(books.find_all()) == 2


def test_one_active_loan_per_member_and_title(conn, seeded):
    member, book = seeded
    loans = LoanStore(conn)
    first = Loan.open(member.id, book.isbn, TODAY, 14)
    loans.save(first)

    with pytest.raises(ConflictError):
        loans.save(Loan.open(member.id, book.isbn, TODAY, 14))

    first.close(TODAY, 1500.0)
    assert loans.update(first) is True
    assert loans.save(Loan.open(member.id, book.isbn, TODAY, 14)) > first.id


def test_loan_rows_carry_member_and_title(conn, seeded):
    member, book = seeded
    loans = LoanStore(conn)
    loan_id = loans.save(Loan.open(member.id, book.isbn, TODAY, 14))

    found = loans.find(loan_id)
    assert found.member_name == "Ada Lovelace"
    assert found.book_title == "Dune"
    assert found.due_date == date(2024, 3, 15)
    assert loans.count_active_by_isbn(book.isbn) == 1
    assert [loan.id for loan in loans.find_active_by_member_id(member.id)] == [loan_id]


def test_mark_overdue_only_touches_borrowed_rows_past_due(conn, seeded):
    member, book = seeded
    loans = LoanStore(conn)
    loan_id = loans.save(Loan.open(member.id, book.isbn, TODAY, 14))

    assert loans.mark_overdue(loan_id, date(2024, 3, 15)) is False
    assert loans.mark_overdue(loan_id, date(2024, 3, 16)) is True
    assert loans.mark_overdue(loan_id, date(2024, 3, 17)) is False
    assert loans.find(loan_id).status is LoanStatus.OVERDUE


def test_mark_overdue_leaves_returned_rows_alone(conn, seeded):
    member, book = seeded
    loans = LoanStore(conn)
    loan = Loan.open(member.id, book.isbn, TODAY, 14)
    loans.save(loan)
    loan.close(TODAY, 1500.0)
    loans.update(loan)

    assert loans.mark_overdue(loan.id, date(2024, 4, 1)) is False
    assert loans.find(loan.id).status is LoanStatus.RETURNED


def test_writes_on_missing_rows_report_false(conn):
    loans = LoanStore(conn)
    ghost = Loan(member_id=1, isbn="x", borrow_date=TODAY, due_date=TODAY, id=99)
    assert loans.update(ghost) is False
    assert loans.delete(99) is False
    assert BookInventoryStore(conn).delete("x") is False
    assert MemberDirectory(conn).set_active(99, False) is False


def test_unit_of_work_rolls_back_on_error(settings, conn, seeded):
    _, book = seeded
    with pytest.raises(RuntimeError):
        with unit_of_work(settings.database_file) as tx:
            BookInventoryStore(tx).adjust_available(book.isbn, -1)
            raise RuntimeError("boom")

    assert BookInventoryStore(conn).find(book.isbn).available == 2


def test_count_by_isbn_includes_returned_loans(conn, seeded):
    member, book = seeded
    loans = LoanStore(conn)
    loan = Loan.open(member.id, book.isbn, TODAY, 14)
    loans.save(loan)
    loan.close(TODAY, 1500.0)
    loans.update(loan)

    assert loans.count_active_by_isbn(book.isbn) == 0
    assert loans.count_by_isbn(book.isbn) == 1


def test_book_with_loans_cannot_be_deleted(conn, seeded):
    member, book = seeded
    LoanStore(conn).save(Loan.open(member.id, book.isbn, TODAY, 14))

    with pytest.raises(DataAccessError):
        BookInventoryStore(conn).delete(book.isbn)
    assert BookInventoryStore(conn).find(book.isbn) is not None
