"""Statement import orchestration service.

Two phases:

1. preview_import: parse -> normalize -> {duplicate check, category
   suggestion} -> ImportSession held by the caller.
2. commit_import: validate the caller's selection and overrides, build ledger
   entries, write them one at a time in selection order. If a write fails,
   every entry written by this commit is deleted again (newest first) so the
   ledger is left unchanged.

A compensation that cannot delete everything is a separate fatal condition:
the remaining entry ids are logged at CRITICAL and returned on the result.
"""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import TYPE_CHECKING

from ..categories.suggester import CategorySuggester
from ..config import AppConfig
from ..errors import (
    FileParseError,
    PersistenceError,
    RollbackError,
    StatementImportError,
    ValidationError,
    describe_error,
)
from ..matching.duplicates import DuplicateDetector
from ..normalizer import TransactionNormalizer
from ..parsers.router import FileParser
from ..schemas.fingerprint import compute_file_hash, generate_entry_external_id
from ..schemas.ledger_entry import LedgerEntry, SplitValidationError, build_ledger_entry
from ..schemas.session import (
    ImportResult,
    ImportSession,
    ImportSummary,
    OutcomeStatus,
    SessionState,
    TransactionOutcome,
)
from ..schemas.transactions import (
    CategorySuggestion,
    DuplicateVerdict,
    NormalizedTransaction,
    SuggestionSource,
)
from .progress import ProgressChannel, ProgressStep

if TYPE_CHECKING:
    from ..config import ImportConfig
    from ..state_store.base import LedgerStore, MerchantAliasStore

logger = logging.getLogger(__name__)


class CompensationLog:
    """Entries written by one commit, in write order."""

    def __init__(self) -> None:
        self._written: list[tuple[int, str]] = []

    def record(self, index: int, entry_id: str) -> None:
        self._written.append((index, entry_id))

    @property
    def written(self) -> list[tuple[int, str]]:
        """(transaction index, entry id) pairs, oldest first."""
        return list(self._written)

    @property
    def entry_ids(self) -> list[str]:
        return [entry_id for _, entry_id in self._written]

    def __len__(self) -> int:
        return len(self._written)

    def compensate(self, ledger: LedgerStore) -> list[str]:
        """Delete every recorded entry, newest first.

        Every delete is attempted even after one fails.

        Returns:
            Ids that could not be deleted, in write order (empty on success)
        """
        remaining: list[str] = []
        for index, entry_id in reversed(self._written):
            try:
                ledger.delete(entry_id)
                logger.info("Rolled back entry %s (transaction #%d)", entry_id, index)
            except Exception as e:
                logger.error(
                    "Could not roll back entry %s (transaction #%d): %s", entry_id, index, e
                )
                remaining.append(entry_id)
        remaining.reverse()
        self._written = [(i, eid) for i, eid in self._written if eid in remaining]
        return remaining


class ImportOrchestrator:
    """Coordinates preview and commit of a statement import.

    Usage:
        orchestrator = ImportOrchestrator(ledger_store, alias_store, app_config)
        session = orchestrator.preview_import(data, "csv", import_config)
        result = orchestrator.commit_import(session)
    """

    def __init__(
        self,
        ledger_store: LedgerStore,
        alias_store: MerchantAliasStore | None = None,
        app_config: AppConfig | None = None,
        file_parser: FileParser | None = None,
        normalizer: TransactionNormalizer | None = None,
        detector: DuplicateDetector | None = None,
        suggester: CategorySuggester | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            ledger_store: Where entries are read from and written to.
            alias_store: Merchant aliases for category suggestions.
            app_config: Installation settings (defaults used if None).
            file_parser, normalizer, detector, suggester: Pipeline stages;
                built from app_config when not given.
        """
        self.ledger_store = ledger_store
        self.alias_store = alias_store
        self.app_config = app_config or AppConfig()
        self.file_parser = file_parser or FileParser(self.app_config.parsing)
        self.normalizer = normalizer or TransactionNormalizer(self.app_config.defaults)
        self.detector = detector or DuplicateDetector(self.app_config.duplicates)
        self.suggester = suggester or CategorySuggester(
            alias_store=alias_store, config=self.app_config.categories
        )

    # Preview

    def preview_import(
        self,
        file_bytes: bytes,
        declared_type: str,
        config: ImportConfig,
        progress: ProgressChannel | None = None,
    ) -> ImportSession:
        """Parse a statement and annotate every transaction.

        Fatal problems do not raise: the returned session is FAILED and
        carries an ErrorDescriptor.
        """
        channel = progress or ProgressChannel()
        start_time = time.time()
        session = ImportSession(
            session_id=uuid.uuid4().hex,
            config=config,
            state=SessionState.PREVIEWING,
            file_type=declared_type,
        )

        try:
            self._validate_config(config)

            channel.emit(ProgressStep.PARSING, progress=0)
            logger.info("Preview - Phase 1: Parsing %s file", declared_type)
            session.file_hash = compute_file_hash(file_bytes or b"")
            outcome = self.file_parser.parse(
                file_bytes, declared_type, template_key=config.bank_template
            )
            session.metadata = outcome.metadata
            session.parse_errors = list(outcome.errors)

            fatal = [e for e in outcome.errors if e.fatal]
            if fatal:
                raise FileParseError(fatal[0].message)

            if outcome.requires_image_fallback:
                channel.emit(ProgressStep.PARSING, progress=100)
                session.requires_image_fallback = True
                session.state = SessionState.PREVIEW_READY
                logger.info("Preview needs image-based extraction, no text transactions")
                return session

            normalized = self.normalizer.normalize_batch(
                outcome.records, config, outcome.metadata
            )
            session.transactions = normalized.transactions
            session.parse_errors.extend(normalized.errors)
            channel.emit(ProgressStep.PARSING, progress=100)

            if not session.transactions:
                raise FileParseError(
                    f"No usable transactions found ({len(outcome.records)} records, "
                    f"{len(session.parse_errors)} errors)"
                )

            logger.info("Preview - Phase 2: Duplicates and categories")
            channel.emit(ProgressStep.CHECKING_DUPLICATES, progress=0)
            verdicts, suggestions = self._analyze(session.transactions, config)
            channel.emit(ProgressStep.CHECKING_DUPLICATES, progress=100)
            session.duplicate_verdicts = verdicts
            session.category_suggestions = suggestions

            channel.emit(ProgressStep.PROCESSING, progress=100)
            session.state = SessionState.PREVIEW_READY
            logger.info(
                "Preview ready: %d transactions, %d parse errors, %d selected by default (%d ms)",
                len(session.transactions),
                len(session.parse_errors),
                len(session.default_selection()),
                int((time.time() - start_time) * 1000),
            )

        except StatementImportError as e:
            logger.error("Preview failed: %s", e)
            session.state = SessionState.FAILED
            session.error = describe_error(e)
        except Exception as e:
            logger.exception("Preview failed: %s", e)
            session.state = SessionState.FAILED
            session.error = describe_error(e)

        return session

    def _analyze(
        self,
        transactions: list[NormalizedTransaction],
        config: ImportConfig,
    ) -> tuple[list[DuplicateVerdict], list[CategorySuggestion]]:
        """Run duplicate detection and category suggestion.

        The two analyses are independent; with parallel_analysis they share a
        two-worker pool. Results stay index-aligned with transactions.
        """

        def duplicates() -> list[DuplicateVerdict]:
            if not config.detect_duplicates:
                logger.info("Duplicate detection disabled for this import")
                return [DuplicateVerdict.none() for _ in transactions]
            return self.detector.detect(transactions, self.ledger_store, config.ledger_group_id)

        def categories() -> list[CategorySuggestion]:
            return self.suggester.suggest_all(transactions, config)

        if self.app_config.defaults.parallel_analysis:
            with ThreadPoolExecutor(max_workers=2) as pool:
                duplicate_future = pool.submit(duplicates)
                category_future = pool.submit(categories)
                return duplicate_future.result(), category_future.result()
        return duplicates(), categories()

    # Commit

    def commit_import(
        self,
        session: ImportSession,
        selected_indices: list[int] | None = None,
        category_overrides: dict[int, str] | None = None,
        config: ImportConfig | None = None,
        progress: ProgressChannel | None = None,
    ) -> ImportResult:
        """Write the selected transactions to the ledger, all or nothing.

        Args:
            session: A PREVIEW_READY session from preview_import.
            selected_indices: Transactions to import; defaults to everything
                not auto-skipped as a duplicate.
            category_overrides: index -> category chosen by the user.
            config: Run configuration; defaults to the preview's.
            progress: Channel receiving processing/importing events.

        Returns:
            ImportResult. Validation failures leave the session usable;
            any other outcome consumes it.
        """
        channel = progress or ProgressChannel()
        config = config or session.config
        overrides = dict(category_overrides or {})
        start_time = time.time()
        batch_id = uuid.uuid4().hex

        try:
            selected = self._validate_commit(session, selected_indices, overrides, config)
            channel.emit(ProgressStep.PROCESSING, progress=0)
            entries = self._build_entries(session, selected, overrides, config, batch_id)
            channel.emit(ProgressStep.PROCESSING, progress=100)
        except ValidationError as e:
            logger.error("Commit rejected: %s", e)
            return ImportResult(
                success=False,
                summary=ImportSummary(total_transactions=len(session.transactions)),
                error=describe_error(e),
                duration_ms=int((time.time() - start_time) * 1000),
            )

        session.consumed = True
        session.state = SessionState.COMMITTING
        logger.info(
            "Committing %d of %d transactions (batch %s)",
            len(entries),
            len(session.transactions),
            batch_id,
        )

        log = CompensationLog()
        try:
            self._write_entries(entries, log, channel)
        except PersistenceError as e:
            result = self._roll_back(session, selected, entries, log, e, batch_id)
            session.state = SessionState.FAILED
            return self._with_duration(result, start_time)

        self._record_alias_usage(session, selected, overrides)
        session.state = SessionState.COMMITTED

        written = dict(log.written)
        outcomes = self._outcomes(
            session,
            selected,
            lambda index: TransactionOutcome(
                index=index,
                status=OutcomeStatus.IMPORTED,
                entry_id=written[index],
                category=entries[index].category,
            ),
        )
        summary = ImportSummary(
            total_transactions=len(session.transactions),
            selected=len(selected),
            imported=len(log),
            duplicates_skipped=self._duplicates_skipped(session, selected),
            errors=0,
        )
        logger.info(
            "Commit completed: %d imported, %d duplicates skipped (batch %s)",
            summary.imported,
            summary.duplicates_skipped,
            batch_id,
        )
        return self._with_duration(
            ImportResult(
                success=True,
                summary=summary,
                outcomes=outcomes,
                import_batch_id=batch_id,
            ),
            start_time,
        )

    def _validate_config(self, config: ImportConfig) -> None:
        errors = config.validate()
        if errors:
            raise ValidationError(f"Invalid import configuration: {'; '.join(errors)}", errors)

    def _validate_commit(
        self,
        session: ImportSession,
        selected_indices: list[int] | None,
        overrides: dict[int, str],
        config: ImportConfig,
    ) -> list[int]:
        """Check the commit request before any write.

        Returns:
            Selected indices, de-duplicated, in selection order
        """
        if session.consumed:
            raise ValidationError("Session has already been committed")
        if session.state != SessionState.PREVIEW_READY:
            raise ValidationError(
                f"Session is not ready for commit (state {session.state.value})"
            )

        self._validate_config(config)
        if config.ledger_group_id != session.config.ledger_group_id:
            raise ValidationError(
                "Commit group differs from the previewed group; preview the file again"
            )

        count = len(session.transactions)
        if selected_indices is None:
            selected = session.default_selection()
        else:
            selected = []
            for index in selected_indices:
                if index not in selected:
                    selected.append(index)

        errors: list[str] = []
        invalid = [i for i in selected if not isinstance(i, int) or not 0 <= i < count]
        if invalid:
            errors.append(f"Selected indices out of range 0..{count - 1}: {invalid}")
        for index, category in overrides.items():
            if not isinstance(index, int) or not 0 <= index < count:
                errors.append(f"Category override for unknown transaction #{index}")
            elif not category or not config.allows_category(category):
                errors.append(f"Category {category!r} is not available (transaction #{index})")
        limit = self.app_config.parsing.max_import_size
        if len(selected) > limit:
            errors.append(f"{len(selected)} transactions selected, maximum is {limit}")

        if errors:
            raise ValidationError("; ".join(errors), errors)
        return selected

    def _build_entries(
        self,
        session: ImportSession,
        selected: list[int],
        overrides: dict[int, str],
        config: ImportConfig,
        batch_id: str,
    ) -> dict[int, LedgerEntry]:
        """Ledger entries keyed by transaction index, in selection order."""
        entries: dict[int, LedgerEntry] = {}
        for index in selected:
            transaction = session.transactions[index]
            category = overrides.get(index) or self._suggested_category(session, index, config)
            try:
                entries[index] = build_ledger_entry(
                    transaction,
                    category,
                    config,
                    external_id=generate_entry_external_id(
                        session.file_hash,
                        index,
                        transaction.amount,
                        transaction.date,
                        config.ledger_group_id,
                        transaction.description,
                    ),
                    import_batch_id=batch_id,
                )
            except (SplitValidationError, ValueError) as e:
                raise ValidationError(f"Transaction #{index}: {e}") from e
        return entries

    @staticmethod
    def _suggested_category(session: ImportSession, index: int, config: ImportConfig) -> str:
        if index < len(session.category_suggestions):
            suggestion = session.category_suggestions[index]
            if config.allows_category(suggestion.category):
                return suggestion.category
        return config.default_category_key

    def _write_entries(
        self,
        entries: dict[int, LedgerEntry],
        log: CompensationLog,
        channel: ProgressChannel,
    ) -> None:
        """Write entries sequentially. Stops at the first failure."""
        total = len(entries)
        for position, (index, entry) in enumerate(entries.items(), start=1):
            try:
                entry_id = self.ledger_store.insert(entry)
            except Exception as e:
                raise PersistenceError(
                    f"Failed to write transaction #{index}: {e}", index=index
                ) from e
            log.record(index, entry_id)
            channel.emit(
                ProgressStep.IMPORTING,
                progress=int(position * 100 / total),
                current=position,
                total=total,
            )

    def _roll_back(
        self,
        session: ImportSession,
        selected: list[int],
        entries: dict[int, LedgerEntry],
        log: CompensationLog,
        error: PersistenceError,
        batch_id: str,
    ) -> ImportResult:
        logger.error("%s; rolling back %d written entries", error, len(log))
        written = dict(log.written)
        remaining = log.compensate(self.ledger_store)

        if remaining:
            rollback_error = RollbackError(
                f"Rollback incomplete after write failure: {len(remaining)} entries "
                f"could not be deleted",
                remaining_ids=remaining,
            )
            rollback_error.__cause__ = error
            logger.critical(
                "Manual reconciliation required for batch %s, entries left in ledger: %s",
                batch_id,
                ", ".join(remaining),
            )
            descriptor = describe_error(rollback_error, batch_id=batch_id)
        else:
            logger.info("Rollback complete, ledger unchanged")
            descriptor = describe_error(error, batch_id=batch_id)

        def outcome(index: int) -> TransactionOutcome:
            category = entries[index].category
            if index == error.index:
                return TransactionOutcome(
                    index=index, status=OutcomeStatus.FAILED, category=category, error=str(error)
                )
            if index not in written:
                return TransactionOutcome(
                    index=index, status=OutcomeStatus.NOT_ATTEMPTED, category=category
                )
            if written[index] in remaining:
                return TransactionOutcome(
                    index=index,
                    status=OutcomeStatus.FAILED,
                    entry_id=written[index],
                    category=category,
                    error="Entry could not be rolled back",
                )
            return TransactionOutcome(
                index=index, status=OutcomeStatus.ROLLED_BACK, category=category
            )

        return ImportResult(
            success=False,
            summary=ImportSummary(
                total_transactions=len(session.transactions),
                selected=len(selected),
                imported=len(remaining),
                duplicates_skipped=self._duplicates_skipped(session, selected),
                errors=len(selected),
            ),
            outcomes=self._outcomes(session, selected, outcome),
            error=descriptor,
            import_batch_id=batch_id,
        )

    def _record_alias_usage(
        self,
        session: ImportSession,
        selected: list[int],
        overrides: dict[int, str],
    ) -> None:
        """Count alias hits for committed transactions that kept the alias category."""
        if self.alias_store is None:
            return
        for index in selected:
            if index >= len(session.category_suggestions):
                continue
            suggestion = session.category_suggestions[index]
            if suggestion.source != SuggestionSource.ALIAS or not suggestion.alias_key:
                continue
            if overrides.get(index, suggestion.category) != suggestion.category:
                continue
            try:
                self.alias_store.record_usage(suggestion.alias_key)
            except Exception as e:
                logger.warning("Could not record alias usage for %r: %s", suggestion.alias_key, e)

    @staticmethod
    def _duplicates_skipped(session: ImportSession, selected: list[int]) -> int:
        chosen = set(selected)
        return sum(
            1
            for index, verdict in enumerate(session.duplicate_verdicts)
            if verdict.auto_skip and index not in chosen
        )

    @staticmethod
    def _outcomes(
        session: ImportSession,
        selected: list[int],
        selected_outcome,
    ) -> tuple[TransactionOutcome, ...]:
        """One outcome per transaction, in transaction order."""
        chosen = set(selected)
        outcomes: list[TransactionOutcome] = []
        for index in range(len(session.transactions)):
            if index in chosen:
                outcomes.append(selected_outcome(index))
                continue
            verdict = (
                session.duplicate_verdicts[index]
                if index < len(session.duplicate_verdicts)
                else None
            )
            status = (
                OutcomeStatus.SKIPPED_DUPLICATE
                if verdict is not None and verdict.auto_skip
                else OutcomeStatus.NOT_SELECTED
            )
            outcomes.append(TransactionOutcome(index=index, status=status))
        return tuple(outcomes)

    @staticmethod
    def _with_duration(result: ImportResult, start_time: float) -> ImportResult:
        return replace(result, duration_ms=int((time.time() - start_time) * 1000))
