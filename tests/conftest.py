"""Test fixtures and utilities."""

import io
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from statement_ledger.config import ImportConfig
from statement_ledger.schemas.ledger_entry import LedgerEntry
from statement_ledger.schemas.transactions import NormalizedTransaction
from statement_ledger.state_store import ExistingEntry, StateStore

# Scenario: three rows, one with a non-numeric amount
SAMPLE_CSV = b"""Date,Description,Amount
01/15/2024,WHOLE FOODS MARKET,42.00
01/16/2024,SHELL OIL 10234,abc
01/17/2024,NETFLIX.COM,15.99
"""

# Five purchases for commit tests
FIVE_ROW_CSV = b"""Date,Description,Amount
2024-02-01,TRADER JOES #552,23.10
2024-02-02,UBER TRIP,14.75
2024-02-03,STARBUCKS STORE 1123,6.40
2024-02-04,CVS PHARMACY,18.99
2024-02-05,SPOTIFY USA,10.99
"""

# Bank export with preamble, signed amounts and a totals footer
CHASE_CSV = b"""Chase Bank Account Activity
Account: ****4321

Transaction Date,Description,Amount,Balance
03/01/2024,"AMAZON MKTPLACE PMTS",-25.50,974.50
03/02/2024,"PAYROLL DIRECT DEP",1500.00,2474.50
03/03/2024,"SHELL OIL 574",-40.00,2434.50
Total,,1434.50,
"""


class MemoryLedger:
    """In-memory LedgerStore with switchable failures."""

    def __init__(self, fail_on_insert: int | None = None, fail_on_delete: tuple = ()):
        self.entries: dict[str, LedgerEntry] = {}
        self.fail_on_insert = fail_on_insert
        self.fail_on_delete = set(fail_on_delete)
        self.insert_calls = 0
        self.deleted: list[str] = []
        self.existing: list[ExistingEntry] = []

    def query_candidates(self, date_range, amount, group_id):
        start, end = date_range
        found = [
            e
            for e in self.existing
            if e.group_id == group_id and start <= e.date <= end and e.amount == amount
        ]
        for entry_id, entry in self.entries.items():
            if entry.group_id == group_id and start <= entry.date <= end and entry.amount == amount:
                found.append(
                    ExistingEntry(
                        entry_id=entry_id,
                        date=entry.date,
                        amount=entry.amount,
                        description=entry.description,
                        currency=entry.currency,
                        group_id=entry.group_id,
                    )
                )
        return found

    def insert(self, entry):
        self.insert_calls += 1
        if self.fail_on_insert == self.insert_calls:
            raise RuntimeError("write rejected by ledger")
        entry_id = f"entry-{self.insert_calls}"
        self.entries[entry_id] = entry
        return entry_id

    def delete(self, entry_id):
        if entry_id in self.fail_on_delete:
            raise RuntimeError(f"delete of {entry_id} refused")
        self.entries.pop(entry_id, None)
        self.deleted.append(entry_id)


class BrokenStore:
    """Store whose every call fails, for soft-failure paths."""

    def query_candidates(self, date_range, amount, group_id):
        raise ConnectionError("ledger unreachable")

    def insert(self, entry):
        raise ConnectionError("ledger unreachable")

    def delete(self, entry_id):
        raise ConnectionError("ledger unreachable")

    def lookup(self, normalized_description):
        raise ConnectionError("alias store unreachable")

    def record_usage(self, merchant_key):
        raise ConnectionError("alias store unreachable")


def make_transaction(
    description: str = "WHOLE FOODS",
    amount: str = "42.00",
    tx_date: date = date(2024, 1, 15),
    currency: str = "USD",
    source_ref: str = "csv:l2",
) -> NormalizedTransaction:
    return NormalizedTransaction(
        date=tx_date,
        description=description,
        amount=Decimal(amount),
        currency=currency,
        source_ref=source_ref,
    )


def make_pdf(lines: list[str]) -> bytes:
    """Single-page text PDF with one line per string."""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=letter)
    pdf.setFont("Courier", 12)
    y = 740
    for line in lines:
        pdf.drawString(72, y, line)
        y -= 16
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def make_image_only_pdf() -> bytes:
    """PDF with a filled shape and no text layer, like a scanned page."""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=letter)
    pdf.rect(72, 400, 300, 200, fill=1)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def import_config() -> ImportConfig:
    """Run configuration for the 'household' group."""
    return ImportConfig(ledger_group_id="household", default_payer="alice")


@pytest.fixture
def sample_csv() -> bytes:
    return SAMPLE_CSV


@pytest.fixture
def five_row_csv() -> bytes:
    return FIVE_ROW_CSV


@pytest.fixture
def chase_csv() -> bytes:
    return CHASE_CSV
