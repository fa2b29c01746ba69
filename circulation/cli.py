import os
import subprocess
import sys
from functools import wraps
from typing import Optional

import typer

from circulation.book import Category
from circulation.catalog import CatalogService
from circulation.config import configure_logging, settings
from circulation.errors import LoanDeskError, PersistenceError
from circulation.loans import LoanService
from circulation.members import MemberService
from circulation.output import print_books, print_loan, print_loans, set_output_mode

APP_NAME = "Loan Desk CLI"

app = typer.Typer(help=APP_NAME)
member_app = typer.Typer(help="Register and suspend members.")
book_app = typer.Typer(help="Maintain the catalog.")
loan_app = typer.Typer(help="Register, return and inspect loans.")
app.add_typer(member_app, name="member")
app.add_typer(book_app, name="book")
app.add_typer(loan_app, name="loan")


def report_errors(func):
    """Turn loan desk failures into a one-line message and exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PersistenceError as e:
            print(f"Error [{e.status_code}]: Something went wrong, please try again later.")
            raise typer.Exit(code=1)
        except LoanDeskError as e:
            print(f"Error [{e.status_code}]: {e}")
            raise typer.Exit(code=1)
        except ValueError as e:
            print(f"Error [400]: {e}")
            raise typer.Exit(code=1)
    return wrapper


def _role(ctx: typer.Context) -> Optional[str]:
    return ctx.obj.get("role") if ctx.obj else None


def _db(ctx: typer.Context) -> Optional[str]:
    return ctx.obj.get("db_file") if ctx.obj else None


@app.callback()
def _global_options(
    ctx: typer.Context,
    role: Optional[str] = typer.Option(
        None, "--role", "-r", help="Acting staff role: ADMIN | ASSISTANT (default: $LIB_CLI_ROLE)"
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: plain | json | rich (default: plain)"
    ),
    db_file: Optional[str] = typer.Option(None, "--db", help="SQLite database file (default: $LIBRARY_DB_FILE)"),
):
    """Global options for the loan desk."""
    if output:
        set_output_mode(output)
    if not os.environ.get("PYTEST_CURRENT_TEST"):
        configure_logging(settings)
    ctx.obj = {"role": role or settings.default_role, "db_file": db_file or settings.database_file}


@app.command("init-db")
@report_errors
def cli_init_db(ctx: typer.Context):
    """Create the database tables."""
    MemberService(db_file=_db(ctx))
    print(f"Database ready: {_db(ctx)}")


# ------------------------- Members ------------------------- #
@member_app.command("add")
@report_errors
def cli_member_add(ctx: typer.Context, name: str, email: str = typer.Option(""), phone: str = typer.Option("")):
    """Register a new member."""
    member = MemberService(db_file=_db(ctx)).add_member(name, email, phone)
    print(f"Member registered: {member.id} - {member.name}")


@member_app.command("deactivate")
@report_errors
def cli_member_deactivate(ctx: typer.Context, member_id: int):
    """Suspend a member; they can no longer borrow."""
    MemberService(db_file=_db(ctx)).set_member_active(member_id, False)
    print(f"Member {member_id} deactivated.")


# ------------------------- Books ------------------------- #
@book_app.command("add")
@report_errors
def cli_book_add(
    ctx: typer.Context,
    isbn: str,
    title: str,
    author: str,
    category: str = typer.Option(Category.UNKNOWN.value, "--category", "-c"),
    quantity: int = typer.Option(1, "--quantity", "-q"),
    price: float = typer.Option(0.0, "--price", "-p"),
):
    """Add a title to the catalog (ADMIN)."""
    book = CatalogService(db_file=_db(ctx)).create_book(isbn, title, author, category, quantity, price, _role(ctx))
    print(f"Successfully added: {book.title} by {book.author}")


@book_app.command("list")
@report_errors
def cli_book_list(
    ctx: typer.Context,
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
):
    """List the catalog, optionally filtered."""
    books = CatalogService(db_file=_db(ctx)).find_books(_role(ctx), category=category, author=author)
    print_books(books)


@book_app.command("update")
@report_errors
def cli_book_update(
    ctx: typer.Context,
    isbn: str,
    title: Optional[str] = typer.Option(None),
    author: Optional[str] = typer.Option(None),
    category: Optional[str] = typer.Option(None),
    quantity: Optional[int] = typer.Option(None),
    available: Optional[int] = typer.Option(None),
    price: Optional[float] = typer.Option(None),
):
    """Change book fields. ASSISTANT may only change quantity, available and price."""
    book = CatalogService(db_file=_db(ctx)).update_book(
        isbn, _role(ctx), title=title, author=author, category=category,
        quantity=quantity, available=available, price=price,
    )
    print(f"Book {book.isbn} updated.")


@book_app.command("remove")
@report_errors
def cli_book_remove(ctx: typer.Context, isbn: str):
    """Delete a title (ADMIN)."""
    CatalogService(db_file=_db(ctx)).delete_book(isbn, _role(ctx))
    print(f"Book with ISBN {isbn} has been removed.")


# ------------------------- Loans ------------------------- #
@loan_app.command("register")
@report_errors
def cli_loan_register(ctx: typer.Context, member_id: int, isbn: str):
    """Check a book out to a member."""
    loan = LoanService(db_file=_db(ctx)).register_loan(member_id, isbn, _role(ctx))
    print(f"Loan registered: {loan.id} (due {loan.due_date.isoformat()})")


@loan_app.command("return")
@report_errors
def cli_loan_return(ctx: typer.Context, loan_id: int):
    """Take a book back and settle any fine."""
    loan = LoanService(db_file=_db(ctx)).mark_return(loan_id, _role(ctx))
    print(f"Loan {loan.id} returned. Fine: {loan.fine_amount:.2f}")


@loan_app.command("delete")
@report_errors
def cli_loan_delete(ctx: typer.Context, loan_id: int):
    """Delete a loan record (ADMIN)."""
    LoanService(db_file=_db(ctx)).delete_loan(loan_id, _role(ctx))
    print(f"Loan {loan_id} deleted.")


@loan_app.command("show")
@report_errors
def cli_loan_show(ctx: typer.Context, loan_id: int):
    """Show one loan."""
    print_loan(LoanService(db_file=_db(ctx)).find_loan_by_id(loan_id, _role(ctx)))


@loan_app.command("list")
@report_errors
def cli_loan_list(
    ctx: typer.Context,
    member: Optional[int] = typer.Option(None, "--member", "-m"),
    isbn: Optional[str] = typer.Option(None, "--isbn", "-i"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="BORROWED | OVERDUE | RETURNED"),
):
    """List loans, filtered by member, ISBN or status."""
    service = LoanService(db_file=_db(ctx))
    role = _role(ctx)
    if member is not None:
        loans = service.find_loans_by_member_id(member, role)
    elif isbn:
        loans = service.find_loans_by_isbn(isbn, role)
    elif status:
        loans = service.find_loans_by_status(status, role)
    else:
        loans = service.get_all_loans(role)
    print_loans(loans, service.today())


@app.command("serve")
def cli_serve():
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "circulation.api:app",
        "--host", host,
        "--port", str(port),
    ]
    subprocess.run(args)


if __name__ == "__main__":
    app()
