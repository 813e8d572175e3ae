"""
Text-layer PDF statement parser.

Strategy:
1. Extract layout-preserving text per page (pdfplumber).
2. Too little text -> scanned statement, signal requires_image_fallback.
3. A header line (date + description columns) starts a table region; rows are
   sliced into the header's columns by horizontal position. The region ends
   at summary markers (total, ending balance, end of statement).
4. Lines that start with a date but don't fit the table fall back to a
   "date description amount [CR|DR] [balance]" pattern.
"""

import io
import logging
import re
from collections import Counter
from dataclasses import replace
from typing import Optional

import pdfplumber

from ..schemas.transactions import (
    ColumnRoles,
    ParseError,
    ParseOutcome,
    RawRecord,
    StatementMetadata,
)
from .base import BaseParser, detect_roles, is_footer
from .templates import detect_template, get_template

logger = logging.getLogger(__name__)

_DATE = r"(?:\d{4}-\d{2}-\d{2}|\d{1,2}[/.-]\d{1,2}(?:[/.-]\d{2,4})?|\d{1,2} [A-Za-z]{3}(?: \d{4})?)"
_MONEY = r"[-(]?\s?(?:(?:USD|EUR|GBP|MXN|CAD|AUD)\s?)?[$€£¥]?\s?\d[\d,]*\.\d{2}\)?-?"

DATE_START_PATTERN = re.compile(rf"^{_DATE}\b")
LINE_PATTERN = re.compile(
    rf"^(?P<date>{_DATE})\s+(?P<description>.+?)\s+(?P<amount>{_MONEY})"
    rf"(?:\s*(?P<marker>CR|DR|cr|dr))?(?:\s+(?P<balance>{_MONEY}))?$"
)
SHORT_DATE_PATTERN = re.compile(r"^(\d{1,2}[/.-]\d{1,2})$")

ACCOUNT_PATTERN = re.compile(
    r"account\s*(?:number|no\.?|#)?\s*[:#]?\s*([X*\d][X*\d -]{3,}\d)", re.IGNORECASE
)
PERIOD_PATTERN = re.compile(
    rf"(?:statement\s+period|period|from)\s*:?\s*(?P<start>{_DATE}(?:,? \d{{4}})?)\s*"
    rf"(?:-|–|to|through)\s*(?P<end>{_DATE}(?:,? \d{{4}})?)",
    re.IGNORECASE,
)
YEAR_PATTERN = re.compile(r"\b(19|20)\d{2}\b")
CURRENCY_CODES = ("USD", "EUR", "GBP", "MXN", "COP", "PEN", "BRL", "CAD", "AUD", "CHF", "INR")
# A bare "$" is ambiguous and resolves to the run currency
CURRENCY_SYMBOLS = {"€": "EUR", "£": "GBP", "¥": "CNY", "₹": "INR"}

# Description column words; a header line needs one of these plus a date column
_HEADER_DESCRIPTION_WORDS = ("description", "details", "transaction", "payee", "merchant", "concepto")


def _column_chunks(line: str) -> list[tuple[int, int, str]]:
    """Split a layout line on runs of 2+ spaces, keeping character offsets."""
    return [(m.start(), m.end(), m.group()) for m in re.finditer(r"\S+(?: \S+)*", line)]


def mask_account(number: str) -> str:
    """Keep only the last four digits of an account number."""
    digits = re.sub(r"\D", "", number)
    return f"****{digits[-4:]}" if len(digits) >= 4 else number.strip()


class PdfStatementParser(BaseParser):
    """Parser for text-extractable PDF statements."""

    def __init__(self, min_text_chars: int = 80):
        self.min_text_chars = min_text_chars

    @property
    def name(self) -> str:
        return "pdf_text"

    @property
    def file_type(self) -> str:
        return "pdf"

    def can_parse(self, file_bytes: bytes) -> bool:
        return file_bytes.lstrip()[:5] == b"%PDF-"

    def extract_pages(self, file_bytes: bytes) -> list[str]:
        """Return layout-preserving text for each page."""
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            return [page.extract_text(layout=True) or "" for page in pdf.pages]

    def parse(self, file_bytes: bytes, template_key: Optional[str] = None) -> ParseOutcome:
        outcome = ParseOutcome()

        try:
            pages = self.extract_pages(file_bytes)
        except Exception as e:
            # pdfminer raises a variety of syntax/type errors for damaged files
            logger.warning("Could not read PDF: %s", e)
            outcome.errors.append(ParseError(message=f"Could not read PDF: {e}", fatal=True))
            return outcome

        full_text = "\n".join(pages)
        text_chars = sum(1 for c in full_text if not c.isspace())
        metadata = self._extract_metadata(full_text, len(pages), template_key)

        if text_chars < self.min_text_chars:
            logger.info(
                "PDF has %d text characters over %d pages, needs image-based extraction",
                text_chars,
                len(pages),
            )
            outcome.requires_image_fallback = True
            outcome.metadata = self._with_note(metadata, "insufficient text layer")
            return outcome

        year = self._statement_year(metadata, full_text)
        for page_number, page_text in enumerate(pages, start=1):
            self._parse_page(page_text, page_number, year, outcome)

        if not outcome.records:
            logger.info("No transaction table found in PDF text, needs image-based extraction")
            outcome.requires_image_fallback = True
            metadata = self._with_note(metadata, "no transaction table found")

        outcome.metadata = metadata
        logger.info(
            "Parsed %d records from %d PDF pages (%d line errors)",
            len(outcome.records),
            len(pages),
            len(outcome.errors),
        )
        return outcome

    def _parse_page(
        self,
        page_text: str,
        page_number: int,
        year: Optional[int],
        outcome: ParseOutcome,
    ) -> None:
        header_spans: Optional[list[tuple[int, int]]] = None
        header_roles: Optional[ColumnRoles] = None

        for line_number, raw_line in enumerate(page_text.splitlines(), start=1):
            line = raw_line.rstrip()
            stripped = line.strip()
            if not stripped:
                continue

            chunks = _column_chunks(line)
            cells = [text for _, _, text in chunks]

            if header_roles is None or not DATE_START_PATTERN.match(stripped):
                roles = self._header_roles(cells)
                if roles is not None:
                    header_roles = roles
                    header_spans = [(start, end) for start, end, _ in chunks]
                    logger.debug(
                        "Table header on page %d line %d: %s", page_number, line_number, cells
                    )
                    continue

            if is_footer(cells):
                header_roles, header_spans = None, None
                continue

            if not DATE_START_PATTERN.match(stripped):
                continue

            record = None
            if header_roles is not None and header_spans is not None:
                record = self._table_record(
                    chunks, header_spans, header_roles, line_number, page_number, year
                )
            if record is None:
                record = self._pattern_record(stripped, line_number, page_number, year)

            if record is None:
                outcome.errors.append(
                    ParseError(
                        message="Unrecognized transaction line",
                        line_number=line_number,
                        page=page_number,
                        raw=stripped,
                    )
                )
                continue
            outcome.records.append(record)

    def _header_roles(self, cells: list[str]) -> Optional[ColumnRoles]:
        """Column roles if the cells form a transaction table header."""
        if len(cells) < 3:
            return None
        lowered = " ".join(cells).lower()
        if not any(word in lowered for word in _HEADER_DESCRIPTION_WORDS):
            return None
        roles = detect_roles(cells)
        return roles if roles.is_usable else None

    def _table_record(
        self,
        chunks: list[tuple[int, int, str]],
        header_spans: list[tuple[int, int]],
        roles: ColumnRoles,
        line_number: int,
        page_number: int,
        year: Optional[int],
    ) -> Optional[RawRecord]:
        """Slice a row into header columns by horizontal position.

        A chunk goes to the header column it overlaps most, or to the nearest
        column centre when it overlaps none.
        """
        columns: list[list[str]] = [[] for _ in header_spans]
        centres = [(start + end) / 2 for start, end in header_spans]
        for start, end, text in chunks:
            overlaps = [
                max(0, min(end, h_end) - max(start, h_start)) for h_start, h_end in header_spans
            ]
            best = max(range(len(overlaps)), key=lambda i: overlaps[i])
            if overlaps[best] == 0:
                centre = (start + end) / 2
                best = min(range(len(centres)), key=lambda i: abs(centres[i] - centre))
            columns[best].append(text)

        fields = [" ".join(parts) for parts in columns]
        if roles.date is None or not DATE_START_PATTERN.match(fields[roles.date]):
            return None
        if roles.description is None or not fields[roles.description]:
            return None
        amount_cells = [
            fields[i] for i in (roles.amount, roles.debit, roles.credit) if i is not None
        ]
        if not any(cell for cell in amount_cells):
            return None

        fields[roles.date] = self._with_year(fields[roles.date], year)
        return RawRecord(
            fields=tuple(fields),
            roles=roles,
            line_number=line_number,
            page=page_number,
            source="pdf",
        )

    def _pattern_record(
        self,
        line: str,
        line_number: int,
        page_number: int,
        year: Optional[int],
    ) -> Optional[RawRecord]:
        match = LINE_PATTERN.match(line)
        if not match:
            return None
        amount = match.group("amount")
        if match.group("marker"):
            amount = f"{amount} {match.group('marker').upper()}"
        return RawRecord(
            fields=(
                self._with_year(match.group("date"), year),
                match.group("description").strip(),
                amount,
                "",
            ),
            roles=ColumnRoles(date=0, description=1, amount=2, currency=3),
            line_number=line_number,
            page=page_number,
            source="pdf",
        )

    @staticmethod
    def _with_year(value: str, year: Optional[int]) -> str:
        """Complete a MM/DD date with the statement year."""
        if year is not None and SHORT_DATE_PATTERN.match(value):
            separator = "/" if "/" in value else ("." if "." in value else "-")
            return f"{value}{separator}{year}"
        return value

    @staticmethod
    def _statement_year(metadata: StatementMetadata, text: str) -> Optional[int]:
        for value in (metadata.period_end, metadata.period_start):
            if value:
                match = YEAR_PATTERN.search(value)
                if match:
                    return int(match.group(0))
        years = Counter(m.group(0) for m in YEAR_PATTERN.finditer(text))
        if years:
            return int(years.most_common(1)[0][0])
        return None

    def _extract_metadata(
        self, text: str, page_count: int, template_key: Optional[str]
    ) -> StatementMetadata:
        head = "\n".join(text.splitlines()[:40])

        template = get_template(template_key) or detect_template(head)
        bank_name = template.name if template else None
        if bank_name is None:
            for line in head.splitlines():
                if "bank" in line.lower() and len(line.strip()) < 60:
                    bank_name = line.strip()
                    break

        account = None
        account_match = ACCOUNT_PATTERN.search(head)
        if account_match:
            account = mask_account(account_match.group(1))

        period_start = period_end = None
        period_match = PERIOD_PATTERN.search(head)
        if period_match:
            period_start = period_match.group("start")
            period_end = period_match.group("end")

        # Only the statement header names the account currency; codes and
        # symbols inside transaction descriptions do not
        header = self._header_region(text)
        currency = None
        for code in CURRENCY_CODES:
            if re.search(rf"\b{code}\b", header):
                currency = code
                break
        if currency is None:
            for symbol, code in CURRENCY_SYMBOLS.items():
                if symbol in header:
                    currency = code
                    break

        return StatementMetadata(
            parser=self.name,
            bank_name=bank_name,
            account_number=account,
            period_start=period_start,
            period_end=period_end,
            currency=currency,
            template=template.key if template else None,
            page_count=page_count,
        )

    def _header_region(self, text: str, max_lines: int = 40) -> str:
        """Lines above the first transaction table header or dated line."""
        lines: list[str] = []
        for line in text.splitlines()[:max_lines]:
            stripped = line.strip()
            if DATE_START_PATTERN.match(stripped):
                break
            if self._header_roles([chunk for _, _, chunk in _column_chunks(line)]) is not None:
                break
            lines.append(line)
        return "\n".join(lines)

    @staticmethod
    def _with_note(metadata: StatementMetadata, note: str) -> StatementMetadata:
        return replace(metadata, notes=metadata.notes + (note,))
