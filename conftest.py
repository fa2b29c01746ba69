from datetime import date, timedelta

import pytest

from circulation.catalog import CatalogService
from circulation.config import Settings
from circulation.loans import LoanService
from circulation.members import MemberService
from circulation.output import OUTPUT_MODE_ENV


class FakeClock:
    """Stands in for ``date.today`` so tests can move the calendar."""

    def __init__(self, today: date) -> None:
        self.current = today

    def __call__(self) -> date:
        return self.current

    def advance(self, days: int) -> None:
        self.current += timedelta(days=days)


@pytest.fixture
def settings(tmp_path, request):
    # Each test gets its own database file
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    return Settings(
        database_file=db_file,
        database_timeout=5.0,
        loan_period_days=14,
        fine_per_day=1500.0,
        log_file="",
        api_key="test-key",
    )


@pytest.fixture
def clock():
    return FakeClock(date(2024, 3, 1))


@pytest.fixture
def loans(settings, clock):
    return LoanService(settings=settings, today=clock)


@pytest.fixture
def catalog(settings, clock):
    return CatalogService(settings=settings, today=clock)


@pytest.fixture
def members(settings, clock):
    return MemberService(settings=settings, today=clock)


@pytest.fixture
def member(members):
    return members.add_member("Ada Lovelace", "ada@example.com", "555-0100")


@pytest.fixture
def book(catalog):
    return catalog.create_book("9780199535675", "Ulysses", "James Joyce", "FICTION", 2, 25.0, "ADMIN")


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # --output writes to os.environ; the undo restores it after each test
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
