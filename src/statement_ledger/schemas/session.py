"""Preview sessions and commit results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import ImportConfig
    from ..errors import ErrorDescriptor
    from .transactions import (
        CategorySuggestion,
        DuplicateVerdict,
        NormalizedTransaction,
        ParseError,
        StatementMetadata,
    )


class SessionState(str, Enum):
    """Lifecycle of one import session."""

    IDLE = "IDLE"
    PREVIEWING = "PREVIEWING"
    PREVIEW_READY = "PREVIEW_READY"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


@dataclass
class ImportSession:
    """Preview result, held by the caller until it is committed or discarded.

    duplicate_verdicts and category_suggestions are index-aligned with
    transactions.
    """

    session_id: str
    config: ImportConfig
    state: SessionState = SessionState.IDLE
    transactions: list[NormalizedTransaction] = field(default_factory=list)
    duplicate_verdicts: list[DuplicateVerdict] = field(default_factory=list)
    category_suggestions: list[CategorySuggestion] = field(default_factory=list)
    parse_errors: list[ParseError] = field(default_factory=list)
    file_hash: str = ""
    file_type: str = ""
    metadata: StatementMetadata | None = None
    requires_image_fallback: bool = False
    error: ErrorDescriptor | None = None
    consumed: bool = False

    @property
    def success(self) -> bool:
        return self.state == SessionState.PREVIEW_READY and self.error is None

    def default_selection(self) -> list[int]:
        """Indices selected by default: everything not auto-skipped."""
        return [
            index
            for index, verdict in enumerate(self.duplicate_verdicts)
            if not verdict.auto_skip
        ]

    @property
    def warnings(self) -> list[str]:
        """Soft failures recorded on verdicts and suggestions."""
        messages: list[str] = []
        for index, verdict in enumerate(self.duplicate_verdicts):
            if verdict.error:
                messages.append(f"#{index}: duplicate check failed: {verdict.error}")
        for index, suggestion in enumerate(self.category_suggestions):
            if suggestion.error:
                messages.append(f"#{index}: category lookup failed: {suggestion.error}")
        return messages

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "transactions": [t.to_dict() for t in self.transactions],
            "duplicate_verdicts": [v.to_dict() for v in self.duplicate_verdicts],
            "category_suggestions": [s.to_dict() for s in self.category_suggestions],
            "parse_errors": [e.to_dict() for e in self.parse_errors],
            "requires_image_fallback": self.requires_image_fallback,
            "default_selection": self.default_selection(),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class ImportSummary:
    total_transactions: int = 0
    selected: int = 0
    imported: int = 0
    duplicates_skipped: int = 0
    errors: int = 0


class OutcomeStatus(str, Enum):
    """What happened to one transaction during commit."""

    IMPORTED = "IMPORTED"
    SKIPPED_DUPLICATE = "SKIPPED_DUPLICATE"
    NOT_SELECTED = "NOT_SELECTED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"
    NOT_ATTEMPTED = "NOT_ATTEMPTED"


@dataclass(frozen=True)
class TransactionOutcome:
    index: int
    status: OutcomeStatus
    entry_id: str | None = None
    category: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ImportResult:
    """Terminal result of one commit attempt."""

    success: bool
    summary: ImportSummary
    outcomes: tuple[TransactionOutcome, ...] = ()
    error: ErrorDescriptor | None = None
    import_batch_id: str | None = None
    duration_ms: int = 0

    @property
    def imported_ids(self) -> list[str]:
        return [
            o.entry_id
            for o in self.outcomes
            if o.status == OutcomeStatus.IMPORTED and o.entry_id is not None
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "summary": {
                "total_transactions": self.summary.total_transactions,
                "selected": self.summary.selected,
                "imported": self.summary.imported,
                "duplicates_skipped": self.summary.duplicates_skipped,
                "errors": self.summary.errors,
            },
            "outcomes": [
                {
                    "index": o.index,
                    "status": o.status.value,
                    "entry_id": o.entry_id,
                    "category": o.category,
                    "error": o.error,
                }
                for o in self.outcomes
            ],
            "error": self.error.to_dict() if self.error else None,
            "import_batch_id": self.import_batch_id,
            "duration_ms": self.duration_ms,
        }
