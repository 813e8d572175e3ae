"""
SQLite-based state store implementation.

Tables:
- ledger_entries: Committed expense entries (local ledger backend)
- merchant_aliases: User-defined merchant names and categories
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..categories.suggester import normalize_merchant
from ..schemas.ledger_entry import CURRENCY_PRECISION, LedgerEntry
from .base import AliasExistsError, AliasMatch, AliasRecord, ExistingEntry

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _alias_from_row(row: sqlite3.Row) -> AliasRecord:
    return AliasRecord(
        id=row["id"],
        merchant_key=row["merchant_key"],
        original_text=row["original_text"],
        alias_name=row["alias_name"],
        category=row["category"],
        usage_count=row["usage_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class StateStore:
    """
    SQLite-based store for the import pipeline.

    Implements both LedgerStore (local ledger) and MerchantAliasStore.
    Each call opens its own connection, so one instance may be shared by
    worker threads.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_entries (
                    id TEXT PRIMARY KEY,
                    group_id TEXT NOT NULL,
                    date TEXT NOT NULL,  -- ISO date
                    description TEXT NOT NULL,
                    amount TEXT NOT NULL,  -- Decimal as string
                    currency TEXT NOT NULL,
                    category TEXT NOT NULL,
                    payer TEXT NOT NULL,
                    splits TEXT,  -- JSON array
                    external_id TEXT,
                    import_batch_id TEXT,
                    source_ref TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS merchant_aliases (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    merchant_key TEXT NOT NULL UNIQUE,
                    original_text TEXT NOT NULL,
                    alias_name TEXT NOT NULL,
                    category TEXT,
                    usage_count INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_ledger_group_date ON ledger_entries(group_id, date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_ledger_batch ON ledger_entries(import_batch_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    # Ledger methods

    def query_candidates(
        self,
        date_range: tuple[date, date],
        amount: Decimal,
        group_id: str,
    ) -> list[ExistingEntry]:
        """Entries of a group with exactly this amount inside the date range."""
        start, end = date_range
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, group_id, date, description, amount, currency
                FROM ledger_entries
                WHERE group_id = ? AND amount = ? AND date BETWEEN ? AND ?
                ORDER BY date, id
            """,
                (
                    group_id,
                    str(amount.quantize(CURRENCY_PRECISION)),
                    start.isoformat(),
                    end.isoformat(),
                ),
            ).fetchall()
            return [
                ExistingEntry(
                    entry_id=row["id"],
                    date=date.fromisoformat(row["date"]),
                    amount=Decimal(row["amount"]),
                    description=row["description"],
                    currency=row["currency"],
                    group_id=row["group_id"],
                )
                for row in rows
            ]

    def insert(self, entry: LedgerEntry) -> str:
        """Write an entry and return its generated id."""
        entry_id = uuid.uuid4().hex
        data = entry.to_dict()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO ledger_entries
                (id, group_id, date, description, amount, currency, category, payer,
                 splits, external_id, import_batch_id, source_ref, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    entry_id,
                    data["group_id"],
                    data["date"],
                    data["description"],
                    data["amount"],
                    data["currency"],
                    data["category"],
                    data["payer"],
                    json.dumps(data["splits"]),
                    data["external_id"],
                    data["import_batch_id"],
                    data["source_ref"],
                    _now(),
                ),
            )
        logger.debug("Inserted ledger entry %s (%s)", entry_id, entry.external_id)
        return entry_id

    def delete(self, entry_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM ledger_entries WHERE id = ?", (entry_id,))
        logger.debug("Deleted ledger entry %s", entry_id)

    def get_entry(self, entry_id: str) -> dict[str, Any] | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM ledger_entries WHERE id = ?", (entry_id,)).fetchone()
            return self._entry_dict(row) if row else None

    def list_entries(self, group_id: str | None = None) -> list[dict[str, Any]]:
        """All entries, optionally for one group, oldest first."""
        with self._transaction() as conn:
            if group_id is None:
                rows = conn.execute(
                    "SELECT * FROM ledger_entries ORDER BY date, created_at"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM ledger_entries WHERE group_id = ? ORDER BY date, created_at",
                    (group_id,),
                ).fetchall()
            return [self._entry_dict(row) for row in rows]

    @staticmethod
    def _entry_dict(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "group_id": row["group_id"],
            "date": row["date"],
            "description": row["description"],
            "amount": row["amount"],
            "currency": row["currency"],
            "category": row["category"],
            "payer": row["payer"],
            "splits": json.loads(row["splits"]) if row["splits"] else [],
            "external_id": row["external_id"],
            "import_batch_id": row["import_batch_id"],
            "source_ref": row["source_ref"],
            "created_at": row["created_at"],
        }

    # Merchant alias methods

    def lookup(self, normalized_description: str) -> AliasMatch | None:
        """Find the alias for a normalized description."""
        key = normalize_merchant(normalized_description)
        if not key:
            return None
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT alias_name, category FROM merchant_aliases WHERE merchant_key = ?", (key,)
            ).fetchone()
            if row:
                return AliasMatch(category=row["category"], alias_name=row["alias_name"])
            return None

    def create(
        self,
        original_merchant_text: str,
        alias_name: str,
        category: str | None = None,
    ) -> AliasRecord:
        """Create an alias for a merchant.

        Raises:
            ValueError: If the merchant text or alias name is empty
            AliasExistsError: If the merchant already has an alias
        """
        key = normalize_merchant(original_merchant_text)
        if not key:
            raise ValueError("Merchant text is empty")
        if not alias_name or not alias_name.strip():
            raise ValueError("Alias name is empty")

        now = _now()
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM merchant_aliases WHERE merchant_key = ?", (key,)
            ).fetchone()
            if existing:
                raise AliasExistsError(f"Alias already exists for {key!r} (id {existing['id']})")
            cursor = conn.execute(
                """
                INSERT INTO merchant_aliases
                (merchant_key, original_text, alias_name, category, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (key, original_merchant_text.strip(), alias_name.strip(), category, now, now),
            )
            row = conn.execute(
                "SELECT * FROM merchant_aliases WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()

        logger.info("Created merchant alias %r -> %r (%s)", key, alias_name, category)
        return _alias_from_row(row)

    def record_usage(self, merchant_key: str) -> None:
        """Count one more use of an alias."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE merchant_aliases
                SET usage_count = usage_count + 1, updated_at = ?
                WHERE merchant_key = ?
            """,
                (_now(), normalize_merchant(merchant_key)),
            )

    def list_aliases(self, limit: int = 50) -> list[AliasRecord]:
        """Aliases ordered by usage, most used first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM merchant_aliases
                ORDER BY usage_count DESC, merchant_key ASC
                LIMIT ?
            """,
                (limit,),
            ).fetchall()
            return [_alias_from_row(row) for row in rows]

    def get_alias(self, alias_id: int) -> AliasRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM merchant_aliases WHERE id = ?", (alias_id,)).fetchone()
            return _alias_from_row(row) if row else None

    def delete_alias(self, alias_id: int) -> bool:
        """Delete an alias. Returns False if it did not exist."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM merchant_aliases WHERE id = ?", (alias_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted merchant alias %d", alias_id)
        return deleted

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        with self._transaction() as conn:
            entries = conn.execute("SELECT COUNT(*) as count FROM ledger_entries").fetchone()
            batches = conn.execute(
                "SELECT COUNT(DISTINCT import_batch_id) as count FROM ledger_entries "
                "WHERE import_batch_id IS NOT NULL"
            ).fetchone()
            groups = conn.execute(
                "SELECT COUNT(DISTINCT group_id) as count FROM ledger_entries"
            ).fetchone()
            aliases = conn.execute("SELECT COUNT(*) as count FROM merchant_aliases").fetchone()

            return {
                "ledger_entries": entries["count"] if entries else 0,
                "import_batches": batches["count"] if batches else 0,
                "groups": groups["count"] if groups else 0,
                "merchant_aliases": aliases["count"] if aliases else 0,
            }
