"""
Delimited-text (CSV-like) statement parser.

Handles:
- UTF-8 BOM and cp1252 exports
- Comma, semicolon, tab and pipe delimiters
- Quoted fields containing the delimiter or a line break; an unterminated
  quote is a row error on its own line
- Header rows anywhere in the first few rows (preamble lines are skipped)
- Header-less files via a positional guess
- Footer/summary rows (totals, balances)
"""

import csv
import io
import logging
import re
from collections import Counter
from typing import Optional

from ..schemas.transactions import (
    ColumnRoles,
    ParseError,
    ParseOutcome,
    RawRecord,
    StatementMetadata,
)
from .base import BaseParser, detect_roles, is_footer
from .templates import BankTemplate, detect_template, get_template

logger = logging.getLogger(__name__)

DELIMITERS = (",", ";", "\t", "|")
# Extra lines a quoted field may span before its quote counts as unterminated
MAX_CONTINUATION_LINES = 3

# Loose shapes used to guess column roles when there is no header
_DATE_SHAPE = re.compile(
    r"^(\d{4}[-/.]\d{1,2}[-/.]\d{1,2}|\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}"
    r"|\d{1,2}[ -][A-Za-z]{3,9}[ ,-]*\d{2,4}|[A-Za-z]{3,9}\.? \d{1,2},? \d{4})$"
)
_AMOUNT_SHAPE = re.compile(
    r"^[(\-+]?\s*[A-Z]{0,3}\s?[$€£¥₹]?\s*[(\-+]?\d[\d.,' ]*\)?\s*-?\s*(CR|DR)?$",
    re.IGNORECASE,
)


def decode_text(file_bytes: bytes) -> str:
    """Decode statement bytes, stripping a UTF-8 BOM."""
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("File is not UTF-8, decoding as cp1252")
        return file_bytes.decode("cp1252", errors="replace")


def has_open_quote(text: str, delimiter: str) -> bool:
    """True if text ends inside a quoted field.

    Follows the csv module: a quote opens a field only at its start (after
    optional spaces), and a doubled quote inside the field is literal.
    """
    in_quotes = False
    field_start = True
    index = 0
    while index < len(text):
        char = text[index]
        if in_quotes:
            if char == '"':
                if text[index + 1 : index + 2] == '"':
                    index += 1
                else:
                    in_quotes = False
        elif char == '"' and field_start:
            in_quotes = True
            field_start = False
        elif char == delimiter or char in "\r\n":
            field_start = True
        elif char != " ":
            field_start = False
        index += 1
    return in_quotes


def _split_row(line: str, delimiter: str) -> list[str]:
    return next(csv.reader(io.StringIO(line), delimiter=delimiter, skipinitialspace=True), [])


def _dominant_width(lines: list[str], delimiter: str) -> int:
    """Most common column count among lines that parse on their own."""
    widths: Counter = Counter()
    for line in lines:
        if not line.strip() or has_open_quote(line, delimiter):
            continue
        try:
            widths[len(_split_row(line, delimiter))] += 1
        except csv.Error:
            continue
    return widths.most_common(1)[0][0] if widths else 0


def sniff_delimiter(text: str, sample_rows: int = 10) -> str:
    """Pick the delimiter that splits the sample into the most consistent columns."""
    sample = [line for line in text.splitlines() if line.strip()][:sample_rows]
    if not sample:
        return ","

    best, best_score = ",", (0, 0)
    for delimiter in DELIMITERS:
        # One line at a time so a stray quote cannot swallow the sample
        rows = [
            next(csv.reader([line], delimiter=delimiter), [])
            for line in sample
            if not has_open_quote(line, delimiter)
        ]
        widths = Counter(len(row) for row in rows if len(row) > 1)
        if not widths:
            continue
        width, count = widths.most_common(1)[0]
        score = (count, width)
        if score > best_score:
            best, best_score = delimiter, score

    return best


def _classify(cells: list[str], pattern: re.Pattern) -> float:
    """Fraction of non-empty cells matching pattern."""
    filled = [c.strip() for c in cells if c.strip()]
    if not filled:
        return 0.0
    return sum(1 for c in filled if pattern.match(c)) / len(filled)


def guess_roles(rows: list[list[str]]) -> ColumnRoles:
    """Guess column roles from data rows when no header row was found."""
    if not rows:
        return ColumnRoles()
    width = max(len(row) for row in rows)
    columns = [[row[i] if i < len(row) else "" for row in rows] for i in range(width)]

    date_col: Optional[int] = None
    numeric_cols: list[int] = []
    text_cols: list[int] = []
    for index, cells in enumerate(columns):
        if date_col is None and _classify(cells, _DATE_SHAPE) >= 0.6:
            date_col = index
        elif _classify(cells, _AMOUNT_SHAPE) >= 0.6:
            numeric_cols.append(index)
        elif any(c.strip() for c in cells):
            text_cols.append(index)

    description_col = None
    if text_cols:
        description_col = max(
            text_cols, key=lambda i: sum(len(c.strip()) for c in columns[i]) / len(rows)
        )

    roles: dict[str, int] = {}
    if date_col is not None:
        roles["date"] = date_col
    if description_col is not None:
        roles["description"] = description_col

    if len(numeric_cols) >= 2:
        first, second = numeric_cols[0], numeric_cols[1]
        # Debit/credit pairs never have both cells filled on the same row
        exclusive = all(
            not (columns[first][r].strip() and columns[second][r].strip())
            for r in range(len(rows))
        )
        if exclusive:
            roles["debit"], roles["credit"] = first, second
            if len(numeric_cols) >= 3:
                roles["balance"] = numeric_cols[-1]
        else:
            roles["amount"] = first
            roles["balance"] = numeric_cols[-1]
    elif numeric_cols:
        roles["amount"] = numeric_cols[0]

    return ColumnRoles(**roles)


class DelimitedTextParser(BaseParser):
    """Parser for CSV-like statement exports."""

    def __init__(self, header_scan_rows: int = 5):
        self.header_scan_rows = header_scan_rows

    @property
    def name(self) -> str:
        return "delimited_text"

    @property
    def file_type(self) -> str:
        return "csv"

    def can_parse(self, file_bytes: bytes) -> bool:
        if file_bytes.startswith(b"%PDF"):
            return False
        return b"\x00" not in file_bytes[:1024]

    def parse(self, file_bytes: bytes, template_key: Optional[str] = None) -> ParseOutcome:
        text = decode_text(file_bytes)
        delimiter = sniff_delimiter(text)
        all_rows, read_errors = self._read_rows(text, delimiter)
        rows = [(line, cells) for line, cells in all_rows if any(cell.strip() for cell in cells)]

        outcome = ParseOutcome()
        outcome.errors.extend(read_errors)
        if not rows:
            outcome.errors.append(ParseError(message="File contains no rows", fatal=True))
            return outcome

        template = get_template(template_key)
        roles, header_at, applied = self._find_header(rows, template)
        if template is None and header_at:
            # Bank name in the preamble above the header
            preamble = "\n".join(" ".join(cells) for _, cells in rows[:header_at])
            detected = detect_template(preamble)
            if detected is not None:
                detected_roles = detected.roles_for(rows[header_at][1])
                if detected_roles is not None:
                    roles, applied = detected_roles, detected
        data_rows = rows[header_at + 1 :] if header_at is not None else rows
        if roles is None:
            roles = guess_roles([cells for _, cells in data_rows[: self.header_scan_rows]])
            logger.info("No header row found, guessed column roles: %s", roles)

        outcome.metadata = StatementMetadata(
            parser=self.name,
            template=applied.key if applied else None,
            bank_name=applied.name if applied else None,
            notes=(f"delimiter={delimiter!r}",),
        )

        if not roles.is_usable:
            outcome.errors.append(
                ParseError(
                    message="Could not identify date, description and amount columns",
                    fatal=True,
                )
            )
            return outcome

        header_cells = rows[header_at][1] if header_at is not None else None
        needed = roles.max_index() + 1
        for line_number, cells in data_rows:
            if header_cells is not None and cells == header_cells:
                continue  # Repeated header (page break in some exports)
            if is_footer(cells):
                logger.debug("Skipping summary row at line %d: %s", line_number, cells)
                continue
            if len(cells) < needed:
                outcome.errors.append(
                    ParseError(
                        message=f"Expected at least {needed} columns, found {len(cells)}",
                        line_number=line_number,
                        raw=delimiter.join(cells),
                    )
                )
                continue
            outcome.records.append(
                RawRecord(
                    fields=tuple(cell.strip() for cell in cells),
                    roles=roles,
                    line_number=line_number,
                    source="csv",
                )
            )

        logger.info(
            "Parsed %d records (%d row errors) with delimiter %r",
            len(outcome.records),
            len(outcome.errors),
            delimiter,
        )
        return outcome

    def _read_rows(
        self, text: str, delimiter: str
    ) -> tuple[list[tuple[int, list[str]]], list[ParseError]]:
        """Read (line_number, cells) rows; line_number is where the row starts.

        A quoted field may continue onto the next few lines when the joined
        row has the file's usual width. A quote that never closes is reported
        on the line where it opened and reading resumes on the next line.
        """
        lines = text.splitlines(keepends=True)
        width = _dominant_width(lines, delimiter)
        rows: list[tuple[int, list[str]]] = []
        errors: list[ParseError] = []

        index = 0
        while index < len(lines):
            start = index
            chunk = lines[index]
            index += 1
            while (
                has_open_quote(chunk, delimiter)
                and index < len(lines)
                and index - start <= MAX_CONTINUATION_LINES
            ):
                chunk += lines[index]
                index += 1

            cells = None
            if not has_open_quote(chunk, delimiter):
                try:
                    cells = _split_row(chunk, delimiter)
                except csv.Error as e:
                    logger.warning("Unreadable row at line %d: %s", start + 1, e)
                    errors.append(
                        ParseError(
                            message=f"Unreadable row: {e}",
                            line_number=start + 1,
                            raw=lines[start].rstrip("\r\n"),
                        )
                    )
                    index = start + 1
                    continue
                if index - start > 1 and len(cells) != width:
                    cells = None

            if cells is None:
                logger.warning("Unterminated quote at line %d", start + 1)
                errors.append(
                    ParseError(
                        message="Unterminated quoted field",
                        line_number=start + 1,
                        raw=lines[start].rstrip("\r\n"),
                    )
                )
                index = start + 1
                continue

            rows.append((start + 1, cells))

        return rows, errors

    def _find_header(
        self,
        rows: list[tuple[int, list[str]]],
        template: Optional[BankTemplate],
    ) -> tuple[Optional[ColumnRoles], Optional[int], Optional[BankTemplate]]:
        """Search the first rows for a header.

        Returns:
            (roles, index into rows, template actually applied)
        """
        for index, (_, cells) in enumerate(rows[: self.header_scan_rows]):
            if template is not None:
                roles = template.roles_for(cells)
                if roles is not None:
                    return roles, index, template
            roles = detect_roles(cells)
            if roles.date is not None and roles.has_amount:
                return roles, index, None
        return None, None, None
