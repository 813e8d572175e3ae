"""Import services: preview/commit orchestration and progress reporting."""

from statement_ledger.services.importer import CompensationLog, ImportOrchestrator
from statement_ledger.services.progress import (
    ProgressChannel,
    ProgressEvent,
    ProgressListener,
    ProgressStep,
)

__all__ = [
    "CompensationLog",
    "ImportOrchestrator",
    "ProgressChannel",
    "ProgressEvent",
    "ProgressListener",
    "ProgressStep",
]
