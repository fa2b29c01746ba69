import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from circulation.config import settings

logger = logging.getLogger(__name__)


def get_db_connection(db_file: Optional[str] = None, timeout: Optional[float] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode; writes that must land together go
    through :func:`unit_of_work`, which issues its own BEGIN/COMMIT.
    """
    conn = sqlite3.connect(
        db_file or settings.database_file,
        timeout=settings.database_timeout if timeout is None else timeout,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def unit_of_work(db_file: Optional[str] = None, timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
    """Run the enclosed reads and writes as one all-or-nothing transaction.

    ``BEGIN IMMEDIATE`` takes the write lock before the first read, so a
    second desk working on the same rows waits here (up to ``timeout``) and
    then sees the first desk's committed state.
    """
    conn = get_db_connection(db_file, timeout)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables and indexes if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                isbn TEXT PRIMARY KEY CHECK(length(isbn) <= 155),
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                category TEXT NOT NULL DEFAULT 'UNKNOWN',
                quantity INTEGER NOT NULL DEFAULT 0 CHECK(quantity >= 0),
                available INTEGER NOT NULL DEFAULT 0 CHECK(available >= 0),
                price REAL NOT NULL DEFAULT 0 CHECK(price >= 0),
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT,
                phone TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL,
                isbn TEXT NOT NULL,
                borrow_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT,
                status TEXT NOT NULL DEFAULT 'BORROWED'
                    CHECK(status IN ('BORROWED', 'OVERDUE', 'RETURNED')),
                fine_amount REAL NOT NULL DEFAULT 0 CHECK(fine_amount >= 0),
                created_at TEXT NOT NULL,
                FOREIGN KEY (member_id) REFERENCES members(id),
                FOREIGN KEY (isbn) REFERENCES books(isbn)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_category ON books(category)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_author ON books(author)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_member_id ON loans(member_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_isbn ON loans(isbn)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_status ON loans(status)")
        # One open loan per member and title
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_loans_one_active
            ON loans(member_id, isbn) WHERE status IN ('BORROWED', 'OVERDUE')
        """)
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
    logger.debug(f"Database ready: {db_file or settings.database_file}")
