"""
Base parser interface and column-role detection shared by the backends.
"""

import re
import unicodedata
from abc import ABC, abstractmethod
from typing import Optional

from ..schemas.transactions import ColumnRoles, ParseOutcome

# Header names per column role (lowercase, accents stripped)
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "date": (
        "date",
        "transaction date",
        "trans. date",
        "trans date",
        "posting date",
        "posted date",
        "post date",
        "value date",
        "booking date",
        "fecha",
        "fecha operacion",
        "fecha valor",
    ),
    "description": (
        "description",
        "details",
        "transaction",
        "transaction details",
        "narrative",
        "memo",
        "payee",
        "merchant",
        "name",
        "particulars",
        "descripcion",
        "concepto",
        "detalle",
        "comercio",
    ),
    "amount": (
        "amount",
        "transaction amount",
        "amount (usd)",
        "value",
        "importe",
        "monto",
        "valor",
    ),
    "debit": (
        "debit",
        "debits",
        "debit amount",
        "withdrawal",
        "withdrawals",
        "money out",
        "paid out",
        "cargo",
        "cargos",
        "retiro",
        "debe",
    ),
    "credit": (
        "credit",
        "credits",
        "credit amount",
        "deposit",
        "deposits",
        "money in",
        "paid in",
        "abono",
        "abonos",
        "deposito",
        "haber",
    ),
    "currency": ("currency", "ccy", "moneda", "divisa"),
    "balance": (
        "balance",
        "running bal.",
        "running balance",
        "saldo",
    ),
}

# Rows that close a statement table rather than describe a transaction
FOOTER_MARKERS = (
    "total",
    "totals",
    "ending balance",
    "closing balance",
    "opening balance",
    "beginning balance",
    "balance forward",
    "end of statement",
    "saldo final",
    "saldo anterior",
)


def normalize_header(value: str) -> str:
    """Lowercase, strip accents and surrounding punctuation from a header cell."""
    value = unicodedata.normalize("NFKD", value)
    value = "".join(c for c in value if not unicodedata.combining(c))
    value = re.sub(r"\s+", " ", value.strip().strip('"').strip()).lower()
    return value.strip(":*")


def match_role(header: str) -> Optional[str]:
    """Return the column role for a header cell, or None."""
    name = normalize_header(header)
    if not name:
        return None
    for role, aliases in COLUMN_ALIASES.items():
        if name in aliases:
            return role
    # Partial match for decorated headers like "Amount (EUR)"; longest alias wins
    best_role, best_length = None, 0
    for role, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if len(alias) > 4 and len(alias) > best_length and alias in name:
                best_role, best_length = role, len(alias)
    return best_role


def detect_roles(headers: list[str]) -> ColumnRoles:
    """Map header cells to column roles (first match per role wins)."""
    found: dict[str, int] = {}
    for index, header in enumerate(headers):
        role = match_role(header)
        if role and role not in found:
            found[role] = index
    return ColumnRoles(**found)


def is_footer(cells: list[str]) -> bool:
    """True if a row is a summary/total line rather than a transaction."""
    first = normalize_header(next((c for c in cells if c.strip()), ""))
    return any(first == marker or first.startswith(marker + " ") for marker in FOOTER_MARKERS)


class BaseParser(ABC):
    """
    Base class for statement format backends.

    Each backend turns file bytes into RawRecords in source order.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Parser name for logging and metadata."""
        pass

    @property
    @abstractmethod
    def file_type(self) -> str:
        """Declared file type this parser handles (csv, pdf)."""
        pass

    @abstractmethod
    def can_parse(self, file_bytes: bytes) -> bool:
        """
        Check whether the bytes look like this parser's format.

        Used when the caller declares the type as "auto".
        """
        pass

    @abstractmethod
    def parse(self, file_bytes: bytes, template_key: Optional[str] = None) -> ParseOutcome:
        """
        Parse file bytes into raw records.

        Args:
            file_bytes: Raw file content
            template_key: Optional bank template to apply

        Returns:
            ParseOutcome with records, per-line errors and statement metadata
        """
        pass
