import json
import os
from datetime import date
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Controls CLI output; allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _money(amount: float) -> str:
    return f"{amount:.2f}"


def _days_late(loan: Any, today: date) -> int:
    # Returned loans stop counting on their return date
    return loan.days_overdue(loan.return_date or today)


def print_loans(loans: List[Any], today: Optional[date] = None) -> None:
    """Print loans in the current output mode.
    - plain: '#ID ISBN -> member MEMBER_ID [STATUS] due DATE' lines, with days late and fine when set
    - json: JSON array of loan dicts
    - rich: Rich table
    """
    mode = get_output_mode()
    today = today or date.today()

    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Loans", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Member")
        table.add_column("Book")
        table.add_column("Due")
        table.add_column("Status")
        table.add_column("Days Late", justify="right")
        table.add_column("Fine", justify="right")
        for loan in loans:
            table.add_row(
                str(loan.id),
                f"{loan.member_id} {loan.member_name or ''}".strip(),
                f"{loan.isbn} {loan.book_title or ''}".strip(),
                loan.due_date.isoformat(),
                loan.status.value,
                str(_days_late(loan, today)),
                _money(loan.fine_amount),
            )
        _console.print(table)
    else:
        for loan in loans:
            line = f"#{loan.id} {loan.isbn} -> member {loan.member_id} [{loan.status.value}] due {loan.due_date.isoformat()}"
            late = _days_late(loan, today)
            if late:
                line += f" ({late} days late)"
            if loan.fine_amount:
                line += f" fine {_money(loan.fine_amount)}"
            print(line)


def print_loan(loan: Any) -> None:
    mode = get_output_mode()
    data: Dict[str, Any] = loan.to_dict()

    if mode == "json":
        print(json.dumps(data, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key}:[/] {value}" for key, value in data.items() if value is not None)
        _console.print(Panel.fit(content, title=f"Loan #{loan.id}", border_style="blue"))
    else:
        print(f"Loan ID: {loan.id}")
        print(f"Member: {loan.member_id}")
        print(f"ISBN: {loan.isbn}")
        print(f"Borrowed: {loan.borrow_date.isoformat()}")
        print(f"Due: {loan.due_date.isoformat()}")
        if loan.return_date:
            print(f"Returned: {loan.return_date.isoformat()}")
        print(f"Status: {loan.status.value}")
        print(f"Fine: {_money(loan.fine_amount)}")


def print_books(books: List[Any]) -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Books", show_lines=True, header_style="bold cyan")
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title")
        table.add_column("Author")
        table.add_column("Category")
        table.add_column("Available", justify="right")
        for b in books:
            table.add_row(b.isbn, b.title, b.author, b.category.value, f"{b.available}/{b.quantity}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.isbn} - {b.title} by {b.author} ({b.available}/{b.quantity} available)")
