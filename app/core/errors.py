"""
Application error taxonomy.

Every failure that reaches a client is one of the ``AppError`` subclasses
below. Raw store exceptions are converted by ``translate_db_error`` at the
repository boundary so routers only ever see typed errors.
"""
import logging

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class AuthorizationError(AppError):
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(AppError):
    status_code = 409


class DatabaseError(AppError):
    status_code = 500

    def __init__(self, message: str = "Database operation failed. Please try again later."):
        super().__init__(message)


class ConfigurationError(RuntimeError):
    """Deployment fault (missing secret, bad settings). Never a client error."""


# SQLSTATE codes, see https://www.postgresql.org/docs/current/errcodes-appendix.html
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"
CHECK_VIOLATION = "23514"


def _sqlstate(orig) -> str | None:
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _not_null_column(orig, text: str) -> str:
    column = getattr(orig.__cause__, "column_name", None)
    if column:
        return column
    # sqlite: "NOT NULL constraint failed: tasks.title"
    if "constraint failed:" in text:
        return text.rsplit(".", 1)[-1].strip()
    return "field"


def translate_db_error(exc: BaseException) -> AppError:
    """
    Convert a raw store exception into the application taxonomy.

    PostgreSQL errors are classified by SQLSTATE, SQLite errors by their
    message. The original exception is logged here and never exposed.
    """
    if isinstance(exc, AppError):
        return exc

    orig = getattr(exc, "orig", None) or exc
    text = str(orig)
    lowered = text.lower()
    code = _sqlstate(orig)
    constraint = getattr(orig.__cause__, "constraint_name", None) or ""
    hint = f"{constraint} {lowered}".lower()

    logger.error(f"Database error ({type(exc).__name__}, code={code}): {text}")

    if code == UNIQUE_VIOLATION or "unique constraint" in lowered:
        if "email" in hint:
            return ConflictError(
                "Email already exists", {"email": "This email is already registered"}
            )
        if "team_members" in hint or "team_user" in hint:
            return ConflictError("User is already a member of this team")
        return ConflictError("Duplicate entry detected")

    if code == FOREIGN_KEY_VIOLATION or "foreign key constraint" in lowered:
        if "team_id" in hint:
            return NotFoundError("Team")
        if "assignee_id" in hint:
            return NotFoundError("Assignee")
        if "user_id" in hint or "owner_id" in hint:
            return NotFoundError("User")
        return ValidationError("Referenced resource does not exist")

    if code == NOT_NULL_VIOLATION or "not null constraint" in lowered:
        column = _not_null_column(orig, text)
        return ValidationError(f"{column} is required", {column: "This field is required"})

    if code == CHECK_VIOLATION or "check constraint" in lowered:
        if "status" in hint:
            return ValidationError("Invalid status value. Must be: todo, in_progress, or done")
        if "priority" in hint:
            return ValidationError("Invalid priority value. Must be: low, medium, or high")
        if "role" in hint:
            return ValidationError("Invalid role value. Must be: owner or member")
        return ValidationError("Invalid value for field")

    if isinstance(exc, (OperationalError, InterfaceError, OSError)) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        logger.error("Database connection error")
        return DatabaseError("Database connection failed. Please try again later.")

    return DatabaseError()
