import logging
import sqlite3
from contextlib import contextmanager
from datetime import date
from typing import Callable, Iterator, Optional

from circulation.config import Settings, settings as default_settings
from circulation.database import get_db_connection, initialize_database, unit_of_work
from circulation.errors import DataAccessError, LoanDeskError, PersistenceError

logger = logging.getLogger(__name__)


class BaseService:
    """Shared plumbing for services that run against the loan desk database."""

    def __init__(self, db_file: Optional[str] = None, settings: Optional[Settings] = None,
                 today: Optional[Callable[[], date]] = None) -> None:
        self.settings = settings or default_settings
        self.db_file = db_file or self.settings.database_file
        self._today = today or date.today
        # Make sure the schema exists before the first operation
        initialize_database(self.db_file)

    def today(self) -> date:
        return self._today()

    @contextmanager
    def transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """One unit of work. Any error rolls every write back before it reaches the caller.

        Business errors pass through unchanged; store failures come out as
        :class:`PersistenceError` with the original chained.
        """
        try:
            with unit_of_work(self.db_file, self.settings.database_timeout) as conn:
                yield conn
        except LoanDeskError as e:
            logger.warning(f"Rolled back {action}: {e}")
            raise
        except (DataAccessError, sqlite3.Error) as e:
            logger.exception(f"Error {action}")
            raise PersistenceError(f"Error {action}") from e

    @contextmanager
    def reading(self, action: str) -> Iterator[sqlite3.Connection]:
        conn = None
        try:
            conn = get_db_connection(self.db_file, self.settings.database_timeout)
            yield conn
        except (DataAccessError, sqlite3.Error) as e:
            logger.exception(f"Error {action}")
            raise PersistenceError(f"Error {action}") from e
        finally:
            if conn is not None:
                conn.close()
