"""Error taxonomy shared by the loan engine, the catalog and the stores."""


class LoanDeskError(Exception):
    """Base class for failures surfaced to loan desk callers."""

    status_code = 500


class UnauthorizedError(LoanDeskError):
    status_code = 403


class NotFoundError(LoanDeskError):
    status_code = 404


class InvalidStateError(LoanDeskError):
    """The entity exists but a business precondition does not hold."""

    status_code = 400


class ConflictError(LoanDeskError):
    status_code = 409


class PersistenceError(LoanDeskError):
    """The underlying store failed; details are only in the server log."""

    status_code = 500


class DataAccessError(Exception):
    """Raised by the stores when a statement fails or touches no rows."""
