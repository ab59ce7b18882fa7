from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional

# SQLSTATE codes for lock/serialization contention (PostgreSQL).
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03", "55006"}
RETRYABLE_PATTERN = re.compile(
    r"locked|SQLITE_BUSY|SQLITE_LOCKED|busy|code\s*5|code\s*6|code\s*49",
    re.IGNORECASE,
)


class ErrorKind(str, enum.Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class PersistenceError:
    """Classified view of a failed store operation."""

    kind: ErrorKind
    message: str
    cause: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.RETRYABLE


def error_cause(exc: BaseException) -> Optional[BaseException]:
    """Return the wrapped cause of an exception.

    SQLAlchemy DBAPI errors keep the driver exception on ``orig``; everything
    else uses the standard ``__cause__``/``__context__`` chain.
    """
    orig = getattr(exc, "orig", None)
    if isinstance(orig, BaseException) and orig is not exc:
        return orig
    return exc.__cause__ or exc.__context__


def _sqlstate(exc: Optional[BaseException]) -> Optional[str]:
    if exc is None:
        return None
    for attr in ("sqlstate", "pgcode"):
        value = getattr(exc, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def classify_error(exc: BaseException) -> PersistenceError:
    """Classify a store error as retryable contention or fatal."""
    cause = error_cause(exc)
    message = str(exc)
    cause_message = str(cause) if cause is not None else None

    code = _sqlstate(exc) or _sqlstate(cause)
    if code is not None:
        kind = ErrorKind.RETRYABLE if code in RETRYABLE_SQLSTATES else ErrorKind.FATAL
        return PersistenceError(kind=kind, message=message, cause=cause_message)

    match_text = f"{message} {cause_message or ''}"
    kind = ErrorKind.RETRYABLE if RETRYABLE_PATTERN.search(match_text) else ErrorKind.FATAL
    return PersistenceError(kind=kind, message=message, cause=cause_message)


def format_error(exc: BaseException) -> str:
    """Render ``Name: message`` plus the wrapped cause, for ScrapeRun.error_message."""
    name = type(exc).__name__
    message = str(exc) or name
    cause = error_cause(exc)
    if cause is not None and str(cause):
        return f"{name}: {message} | cause: {cause}"
    return f"{name}: {message}"
