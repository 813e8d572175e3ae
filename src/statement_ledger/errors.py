"""
Error taxonomy for the statement import pipeline.

Fatal conditions are raised as StatementImportError subclasses and turned into
an ErrorDescriptor at the pipeline boundary. Row-level problems are never
raised; they travel as ParseError records next to the successful results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    """Classification of pipeline failures."""

    FILE_READ = "file_read"
    FILE_FORMAT = "file_format"
    PARSING = "parsing"
    VALIDATION = "validation"
    STORAGE = "storage"
    NETWORK = "network"
    PERMISSION = "permission"
    DUPLICATE = "duplicate"
    ROLLBACK = "rollback"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """How bad a failure is for the user."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class StatementImportError(Exception):
    """Base exception for pipeline errors."""

    error_type: ErrorType = ErrorType.UNKNOWN


class FileParseError(StatementImportError):
    """The file could not be turned into any usable transaction."""

    error_type = ErrorType.FILE_FORMAT


class ValidationError(StatementImportError):
    """Caller input (config, selection, overrides) was rejected before any I/O."""

    error_type = ErrorType.VALIDATION

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)


class DuplicateDetectionError(StatementImportError):
    """Duplicate lookup failed for a single transaction (soft)."""

    error_type = ErrorType.DUPLICATE


class CategorySuggestionError(StatementImportError):
    """Category lookup failed for a single transaction (soft)."""

    error_type = ErrorType.STORAGE


class PersistenceError(StatementImportError):
    """A ledger write failed during commit."""

    error_type = ErrorType.STORAGE

    def __init__(self, message: str, index: int | None = None):
        self.index = index
        super().__init__(message)


class RollbackError(StatementImportError):
    """Compensating deletes failed; the ledger needs manual reconciliation."""

    error_type = ErrorType.ROLLBACK

    def __init__(self, message: str, remaining_ids: list[str]):
        self.remaining_ids = list(remaining_ids)
        super().__init__(message)


@dataclass(frozen=True)
class ErrorDescriptor:
    """Structured, user-facing description of a fatal failure."""

    error_type: ErrorType
    message: str
    user_message: str
    suggestions: tuple[str, ...] = ()
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "user_message": self.user_message,
            "suggestions": list(self.suggestions),
            "severity": self.severity.value,
            "retryable": self.retryable,
            "details": dict(self.details),
        }


# Human-facing text per error type: (user_message, suggestions, severity, retryable)
_ERROR_GUIDANCE: dict[ErrorType, tuple[str, tuple[str, ...], ErrorSeverity, bool]] = {
    ErrorType.FILE_READ: (
        "The file could not be read.",
        (
            "Make sure the file is not open in another program",
            "Try downloading the statement again",
        ),
        ErrorSeverity.HIGH,
        False,
    ),
    ErrorType.FILE_FORMAT: (
        "The file format is not supported or the file is damaged.",
        (
            "Upload a CSV or PDF statement",
            "Try exporting the statement as CSV from your bank",
            "Try a different file",
        ),
        ErrorSeverity.HIGH,
        False,
    ),
    ErrorType.PARSING: (
        "No transactions could be read from the file.",
        (
            "Check that the file contains date, description and amount columns",
            "Try exporting the statement as CSV from your bank",
        ),
        ErrorSeverity.MEDIUM,
        False,
    ),
    ErrorType.VALIDATION: (
        "The import settings are not valid.",
        ("Review the import settings and try again",),
        ErrorSeverity.MEDIUM,
        False,
    ),
    ErrorType.STORAGE: (
        "The transactions could not be saved. Nothing was imported.",
        (
            "Try the import again in a moment",
            "If the problem persists, import a smaller selection",
        ),
        ErrorSeverity.HIGH,
        True,
    ),
    ErrorType.NETWORK: (
        "Network problem while talking to the ledger. Nothing was imported.",
        (
            "Check your internet connection and try again",
            "Try again in a few minutes",
        ),
        ErrorSeverity.MEDIUM,
        True,
    ),
    ErrorType.PERMISSION: (
        "You do not have permission to write to this ledger.",
        (
            "Check that you are a member of the account group",
            "Sign in again and retry",
        ),
        ErrorSeverity.HIGH,
        False,
    ),
    ErrorType.DUPLICATE: (
        "Duplicate checking failed.",
        ("Review the selected transactions for duplicates manually",),
        ErrorSeverity.LOW,
        True,
    ),
    ErrorType.ROLLBACK: (
        "The import failed and some entries could not be removed again.",
        (
            "Review the ledger for the listed entries and delete them manually",
            "Do not retry the import until the ledger has been cleaned up",
        ),
        ErrorSeverity.CRITICAL,
        False,
    ),
    ErrorType.UNKNOWN: (
        "An unexpected error occurred. Nothing was imported.",
        ("Try again", "If the problem persists, contact support"),
        ErrorSeverity.MEDIUM,
        False,
    ),
}

# Message keywords for errors that don't come from our own hierarchy
_KEYWORD_RULES: list[tuple[ErrorType, tuple[str, ...]]] = [
    (ErrorType.NETWORK, ("network", "timeout", "timed out", "connect", "unavailable", "offline")),
    (ErrorType.PERMISSION, ("permission", "unauthorized", "forbidden", "403", "401")),
    (ErrorType.FILE_READ, ("could not read", "cannot read", "no such file")),
    (ErrorType.FILE_FORMAT, ("csv", "pdf", "format", "decode", "encoding")),
    (ErrorType.PARSING, ("parse", "invalid date", "invalid amount")),
    (ErrorType.STORAGE, ("database", "sqlite", "storage", "write", "insert")),
]


def classify_error(exc: BaseException) -> ErrorType:
    """Classify an exception into an ErrorType.

    Our own exceptions carry their type; anything else is classified by
    keywords in its message.
    """
    if isinstance(exc, StatementImportError):
        cause = exc.__cause__
        # A storage failure caused by a network problem is reported as network
        if exc.error_type == ErrorType.STORAGE and cause is not None:
            cause_type = classify_error(cause)
            if cause_type in (ErrorType.NETWORK, ErrorType.PERMISSION):
                return cause_type
        return exc.error_type

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return ErrorType.NETWORK
    if isinstance(exc, PermissionError):
        return ErrorType.PERMISSION

    text = str(exc).lower()
    for error_type, keywords in _KEYWORD_RULES:
        if any(keyword in text for keyword in keywords):
            return error_type
    return ErrorType.UNKNOWN


def describe_error(exc: BaseException, **details: Any) -> ErrorDescriptor:
    """Build the user-facing ErrorDescriptor for an exception."""
    error_type = classify_error(exc)
    user_message, suggestions, severity, retryable = _ERROR_GUIDANCE[error_type]

    if isinstance(exc, ValidationError):
        details.setdefault("errors", list(exc.errors))
    if isinstance(exc, RollbackError):
        details.setdefault("remaining_ids", list(exc.remaining_ids))
    if isinstance(exc, PersistenceError) and exc.index is not None:
        details.setdefault("failed_index", exc.index)

    return ErrorDescriptor(
        error_type=error_type,
        message=str(exc),
        user_message=user_message,
        suggestions=suggestions,
        severity=severity,
        retryable=retryable,
        details=details,
    )
