"""
Bank-specific statement templates.

A template pins column names, the date format and the sign convention for a
bank's CSV export. Templates are picked explicitly via ImportConfig.bank_template
or detected from identifiers in the leading text of a statement.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from ..config import SignConvention
from ..schemas.transactions import ColumnRoles
from .base import normalize_header

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BankTemplate:
    """Column layout of one bank's statement export."""

    key: str
    name: str
    identifiers: tuple[str, ...]
    date_column: str
    description_column: str
    amount_column: Optional[str] = None
    debit_column: Optional[str] = None
    credit_column: Optional[str] = None
    balance_column: Optional[str] = None
    date_format: str = "MM/DD/YYYY"
    sign_convention: SignConvention = SignConvention.AUTO

    def roles_for(self, headers: list[str]) -> Optional[ColumnRoles]:
        """Resolve column roles against a header row.

        Returns None if the header row lacks the template's required columns.
        """
        index = {normalize_header(h): i for i, h in enumerate(headers)}

        def find(column: Optional[str]) -> Optional[int]:
            if column is None:
                return None
            return index.get(normalize_header(column))

        roles = ColumnRoles(
            date=find(self.date_column),
            description=find(self.description_column),
            amount=find(self.amount_column),
            debit=find(self.debit_column),
            credit=find(self.credit_column),
            balance=find(self.balance_column),
        )
        return roles if roles.is_usable else None


BANK_TEMPLATES: dict[str, BankTemplate] = {
    template.key: template
    for template in (
        BankTemplate(
            key="chase",
            name="Chase Bank",
            identifiers=("chase", "jpmorgan"),
            date_column="Transaction Date",
            description_column="Description",
            amount_column="Amount",
            balance_column="Balance",
            sign_convention=SignConvention.DEBIT_NEGATIVE,
        ),
        BankTemplate(
            key="bofa",
            name="Bank of America",
            identifiers=("bank of america", "bofa"),
            date_column="Date",
            description_column="Description",
            debit_column="Withdrawals",
            credit_column="Deposits",
            balance_column="Running Bal.",
        ),
        BankTemplate(
            key="wellsfargo",
            name="Wells Fargo",
            identifiers=("wells fargo", "wellsfargo"),
            date_column="Date",
            description_column="Description",
            amount_column="Amount",
            sign_convention=SignConvention.DEBIT_NEGATIVE,
        ),
        BankTemplate(
            key="citi",
            name="Citibank",
            identifiers=("citibank", "citi"),
            date_column="Date",
            description_column="Description",
            debit_column="Debit",
            credit_column="Credit",
            balance_column="Balance",
        ),
        BankTemplate(
            key="capitalone",
            name="Capital One",
            identifiers=("capital one", "capitalone"),
            date_column="Transaction Date",
            description_column="Description",
            debit_column="Debit",
            credit_column="Credit",
            balance_column="Balance",
            date_format="YYYY-MM-DD",
        ),
        BankTemplate(
            key="discover",
            name="Discover",
            identifiers=("discover",),
            date_column="Trans. Date",
            description_column="Description",
            amount_column="Amount",
            sign_convention=SignConvention.DEBIT_POSITIVE,
        ),
        BankTemplate(
            key="amex",
            name="American Express",
            identifiers=("american express", "amex"),
            date_column="Date",
            description_column="Description",
            amount_column="Amount",
            sign_convention=SignConvention.DEBIT_POSITIVE,
        ),
        BankTemplate(
            key="usbank",
            name="US Bank",
            identifiers=("us bank", "usbank"),
            date_column="Date",
            description_column="Transaction Description",
            amount_column="Amount",
            balance_column="Balance",
            sign_convention=SignConvention.DEBIT_NEGATIVE,
        ),
    )
}


def get_template(key: Optional[str]) -> Optional[BankTemplate]:
    """Look up a template by key (case-insensitive)."""
    if not key:
        return None
    template = BANK_TEMPLATES.get(key.strip().lower())
    if template is None:
        logger.warning("Unknown bank template %r, falling back to auto-detection", key)
    return template


def detect_template(text: str) -> Optional[BankTemplate]:
    """Detect a bank template from identifiers in statement text."""
    if not text:
        return None
    lowered = text.lower()
    for template in BANK_TEMPLATES.values():
        for identifier in template.identifiers:
            if re.search(rf"\b{re.escape(identifier)}\b", lowered):
                logger.debug("Detected bank template %s via %r", template.key, identifier)
                return template
    return None
