"""Tests for state store."""

from datetime import date
from decimal import Decimal

import pytest

from statement_ledger.schemas.ledger_entry import LedgerEntry, SplitShare
from statement_ledger.state_store import (
    AliasExistsError,
    AliasMatch,
    LedgerStore,
    MerchantAliasStore,
    StateStore,
)


def make_entry(
    description: str = "WHOLE FOODS",
    amount: str = "42.00",
    entry_date: date = date(2024, 1, 15),
    group_id: str = "household",
    batch: str | None = "batch-1",
) -> LedgerEntry:
    return LedgerEntry(
        group_id=group_id,
        date=entry_date,
        description=description,
        amount=Decimal(amount),
        currency="USD",
        category="groceries",
        payer="alice",
        splits=[SplitShare("alice", Decimal(amount))],
        external_id=f"stmt:abc:0:{description}",
        import_batch_id=batch,
        source_ref="csv:l2",
    )


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "ledger_entries" in table_names
            assert "merchant_aliases" in table_names
            assert "schema_version" in table_names
        finally:
            conn.close()

    def test_reopen_keeps_data(self, temp_db):
        StateStore(temp_db).insert(make_entry())

        assert len(StateStore(temp_db).list_entries()) == 1

    def test_implements_protocols(self, store):
        assert isinstance(store, LedgerStore)
        assert isinstance(store, MerchantAliasStore)


class TestLedgerOperations:
    """Tests for ledger entry operations."""

    def test_insert_and_get(self, store):
        """Inserted entries round-trip through the database."""
        entry_id = store.insert(make_entry())

        stored = store.get_entry(entry_id)
        assert stored["description"] == "WHOLE FOODS"
        assert stored["amount"] == "42.00"
        assert stored["date"] == "2024-01-15"
        assert stored["splits"] == [{"participant": "alice", "amount": "42.00"}]
        assert stored["import_batch_id"] == "batch-1"

    def test_insert_generates_unique_ids(self, store):
        first = store.insert(make_entry())
        second = store.insert(make_entry())

        assert first != second

    def test_delete(self, store):
        entry_id = store.insert(make_entry())

        store.delete(entry_id)

        assert store.get_entry(entry_id) is None

    def test_delete_missing_is_not_an_error(self, store):
        store.delete("does-not-exist")

    def test_list_entries_by_group(self, store):
        store.insert(make_entry(entry_date=date(2024, 1, 16)))
        store.insert(make_entry(entry_date=date(2024, 1, 14)))
        store.insert(make_entry(group_id="office"))

        entries = store.list_entries("household")

        assert [e["date"] for e in entries] == ["2024-01-14", "2024-01-16"]
        assert len(store.list_entries()) == 3

    def test_query_candidates(self, store):
        """Only same group, same amount and inside the date range."""
        match_id = store.insert(make_entry())
        store.insert(make_entry(amount="42.01"))
        store.insert(make_entry(entry_date=date(2024, 1, 20)))
        store.insert(make_entry(group_id="office"))

        candidates = store.query_candidates(
            (date(2024, 1, 12), date(2024, 1, 18)), Decimal("42.0"), "household"
        )

        assert [c.entry_id for c in candidates] == [match_id]
        assert candidates[0].amount == Decimal("42.00")
        assert candidates[0].group_id == "household"
        assert candidates[0].currency == "USD"

    def test_query_candidates_inclusive_bounds(self, store):
        store.insert(make_entry(entry_date=date(2024, 1, 12)))
        store.insert(make_entry(entry_date=date(2024, 1, 18)))

        candidates = store.query_candidates(
            (date(2024, 1, 12), date(2024, 1, 18)), Decimal("42.00"), "household"
        )

        assert len(candidates) == 2


class TestAliasOperations:
    """Tests for merchant alias operations."""

    def test_create_and_lookup(self, store):
        record = store.create("WHL FDS #12345", "Whole Foods", "groceries")

        assert record.merchant_key == "whl fds 12345"
        assert record.original_text == "WHL FDS #12345"
        assert record.usage_count == 0
        assert store.lookup("whl fds 12345") == AliasMatch("groceries", "Whole Foods")
        assert store.lookup("WHL FDS 12345") == AliasMatch("groceries", "Whole Foods")

    def test_lookup_missing(self, store):
        assert store.lookup("unknown merchant") is None
        assert store.lookup("") is None

    def test_create_duplicate(self, store):
        store.create("WHL FDS #12345", "Whole Foods")

        with pytest.raises(AliasExistsError):
            store.create("whl fds 12345", "Whole Foods Market")

    @pytest.mark.parametrize("text,name", [("", "Name"), ("###", "Name"), ("SHOP", "  ")])
    def test_create_invalid(self, store, text, name):
        with pytest.raises(ValueError):
            store.create(text, name)

    def test_record_usage(self, store):
        store.create("NETFLIX.COM", "Netflix", "fun")

        store.record_usage("netflix com")
        store.record_usage("NETFLIX.COM")

        aliases = store.list_aliases()
        assert aliases[0].usage_count == 2
        assert aliases[0].updated_at is not None

    def test_list_by_usage(self, store):
        store.create("AAA", "A")
        store.create("BBB", "B")
        store.record_usage("bbb")

        assert [a.alias_name for a in store.list_aliases()] == ["B", "A"]
        assert len(store.list_aliases(limit=1)) == 1

    def test_delete_alias(self, store):
        record = store.create("AAA", "A")

        assert store.delete_alias(record.id)
        assert not store.delete_alias(record.id)
        assert store.get_alias(record.id) is None


class TestStatistics:
    def test_stats(self, store):
        store.insert(make_entry(batch="b1"))
        store.insert(make_entry(batch="b1"))
        store.insert(make_entry(batch="b2", group_id="office"))
        store.create("AAA", "A")

        assert store.get_stats() == {
            "ledger_entries": 3,
            "import_batches": 2,
            "groups": 2,
            "merchant_aliases": 1,
        }
