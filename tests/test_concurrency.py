import threading

from circulation.errors import ConflictError, InvalidStateError, LoanDeskError
from circulation.loans import LoanService


def _race(settings, clock, calls):
    """Run each call on its own thread, released together by a barrier."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, call):
        service = LoanService(settings=settings, today=clock)
        barrier.wait()
        try:
            results[index] = call(service)
        except LoanDeskError as e:
            results[index] = e

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_last_copy_goes_to_exactly_one_member(settings, clock, catalog, members):
    book = catalog.create_book("9780262033848", "Introduction to Algorithms", "Cormen",
                               "TECHNOLOGY", 1, 90.0, "ADMIN")
    first = members.add_member("Ada Lovelace")
    second = members.add_member("Grace Hopper")

    results = _race(settings, clock, [
        lambda s: s.register_loan(first.id, book.isbn, "ASSISTANT"),
        lambda s: s.register_loan(second.id, book.isbn, "ASSISTANT"),
    ])

    failures = [r for r in results if isinstance(r, LoanDeskError)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidStateError)
    assert catalog.find_book_by_isbn(book.isbn, "ADMIN").available == 0


def test_same_member_cannot_borrow_a_title_twice_concurrently(settings, clock, catalog, member, book):
    results = _race(settings, clock, [
        lambda s: s.register_loan(member.id, book.isbn, "ADMIN"),
        lambda s: s.register_loan(member.id, book.isbn, "ADMIN"),
    ])

    failures = [r for r in results if isinstance(r, LoanDeskError)]
    assert len(failures) == 1
    assert isinstance(failures[0], ConflictError)
    assert catalog.find_book_by_isbn(book.isbn, "ADMIN").available == 1


def test_concurrent_returns_credit_once(settings, clock, loans, catalog, member, book):
    loan = loans.register_loan(member.id, book.isbn, "ADMIN")

    results = _race(settings, clock, [
        lambda s: s.mark_return(loan.id, "ADMIN"),
        lambda s: s.mark_return(loan.id, "ASSISTANT"),
    ])

    failures = [r for r in results if isinstance(r, LoanDeskError)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidStateError)
    assert catalog.find_book_by_isbn(book.isbn, "ADMIN").available == 2
