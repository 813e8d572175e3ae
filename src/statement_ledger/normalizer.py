"""
Transaction normalizer.

Turns RawRecords into canonical NormalizedTransactions:
- dates in several formats: the caller's explicit format first, then DD/MM
  vs MM/DD resolved from evidence across the whole file, then the locale
  default
- amounts with currency symbols, thousands/decimal separators (the decimal
  mark decided once per file), parentheses, trailing minus and CR/DR markers
- sign conventions, so that amount > 0 always means money spent

Rows that cannot be normalized become ParseErrors; credits (refunds, deposits)
are reported and excluded.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from .config import DefaultsConfig, ImportConfig, SignConvention
from .parsers.templates import BankTemplate, get_template
from .schemas.transactions import (
    CANONICAL_ROLES,
    NormalizedTransaction,
    ParseError,
    RawRecord,
    StatementMetadata,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000")
MIN_YEAR = 1900
MAX_FUTURE_DAYS = 365


class DateOrder(str, Enum):
    """Day/month order for numeric dates such as 03/04/2024."""

    MDY = "MDY"
    DMY = "DMY"


# Longest symbols first so "US$" wins over "$"
CURRENCY_SYMBOLS: tuple[tuple[str, Optional[str]], ...] = (
    ("COL$", "COP"),
    ("US$", "USD"),
    ("MX$", "MXN"),
    ("R$", "BRL"),
    ("S/", "PEN"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "CNY"),
    ("₹", "INR"),
    ("$", None),  # Ambiguous, resolved to the statement currency
)
CURRENCY_CODE_PATTERN = re.compile(
    r"\b(USD|EUR|GBP|MXN|COP|PEN|BRL|CAD|AUD|CHF|INR|CNY|JPY)\b", re.IGNORECASE
)
MARKER_PATTERN = re.compile(r"\s*\b(CR|DR)\.?\s*$", re.IGNORECASE)

_ISO_DATE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[T ].*)?$")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{2}|\d{4})$")
_TEXT_DATE_FORMATS = (
    "%d %b %Y",
    "%d %B %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%d %b %y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%b. %d, %Y",
)
_HINT_ORDERS = {"MM/DD/YYYY": DateOrder.MDY, "DD/MM/YYYY": DateOrder.DMY}


@dataclass(frozen=True)
class ParsedAmount:
    """A parsed amount string.

    value keeps the sign as written; marker is "CR"/"DR" when the source
    labelled the amount explicitly.
    """

    value: Decimal
    currency: Optional[str] = None
    marker: Optional[str] = None


@dataclass
class NormalizationResult:
    """Outcome of normalizing a batch of records, in source order."""

    transactions: list[NormalizedTransaction] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    date_order: DateOrder = DateOrder.MDY
    sign_convention: SignConvention = SignConvention.DEBIT_POSITIVE
    credits_excluded: int = 0
    decimal_mark: Optional[str] = None


def parse_amount(text: str, decimal_mark: Optional[str] = None) -> ParsedAmount:
    """
    Parse an amount string.

    Examples:
        "1,234.56" -> 1234.56
        "1.234,56" -> 1234.56
        "(42.00)" -> -42.00
        "42.00-" -> -42.00
        "€ 12,50" -> 12.50 EUR
        "100.00 CR" -> 100.00, marker CR

    decimal_mark ("." or ",") is the file's decimal separator when known;
    it settles strings like "1.234" that read either way.

    Raises:
        ValueError: If text is not a recognizable amount
    """
    if text is None:
        raise ValueError("Amount is empty")
    s = text.strip()
    if not s:
        raise ValueError("Amount is empty")

    marker = None
    marker_match = MARKER_PATTERN.search(s)
    if marker_match:
        marker = marker_match.group(1).upper()
        s = s[: marker_match.start()].strip()

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1].strip()

    currency = None
    code_match = CURRENCY_CODE_PATTERN.search(s)
    if code_match:
        currency = code_match.group(1).upper()
        s = (s[: code_match.start()] + s[code_match.end() :]).strip()
    for symbol, code in CURRENCY_SYMBOLS:
        if symbol in s:
            currency = currency or code
            s = s.replace(symbol, "").strip()
            break

    if s.endswith("-"):
        negative = not negative
        s = s[:-1].strip()
    if s.startswith("-"):
        negative = not negative
        s = s[1:].strip()
    elif s.startswith("+"):
        s = s[1:].strip()
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1].strip()

    s = s.replace(" ", "").replace("\u00a0", "").replace("'", "")
    s = _strip_separators(s, decimal_mark)

    if not re.fullmatch(r"\d+(\.\d+)?", s):
        raise ValueError(f"Not a valid amount: {text!r}")
    try:
        value = Decimal(s)
    except InvalidOperation as e:
        raise ValueError(f"Not a valid amount: {text!r}") from e

    if negative:
        value = -value
    return ParsedAmount(value=value, currency=currency, marker=marker)


def _strip_separators(s: str, decimal_mark: Optional[str] = None) -> str:
    """Reduce thousands/decimal separators to a plain "1234.56" form.

    The right-most separator is the decimal point when both kinds appear.
    With a known decimal mark, a lone mark is the decimal point and the other
    separator in thousands groups is stripped. Otherwise a lone comma in
    thousands groups is a thousands separator, as are repeated dots.
    """
    has_comma, has_dot = "," in s, "." in s
    if has_comma and has_dot:
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if decimal_mark in (",", "."):
        other = "." if decimal_mark == "," else ","
        if other in s and re.fullmatch(r"\d{1,3}(" + re.escape(other) + r"\d{3})+", s):
            return s.replace(other, "")
        if s.count(decimal_mark) == 1:
            return s.replace(decimal_mark, ".")
    if has_comma:
        if re.fullmatch(r"\d{1,3}(,\d{3})+", s):
            return s.replace(",", "")
        if s.count(",") == 1:
            return s.replace(",", ".")
        return s
    if has_dot and s.count(".") > 1 and re.fullmatch(r"\d{1,3}(\.\d{3})+", s):
        return s.replace(".", "")
    return s


def resolve_decimal_mark(values: list[str]) -> Optional[str]:
    """Decide a file's decimal separator from its amount strings.

    "1.234,56" and "12,50" point to a comma; "1,234.56" and "12.50" to a
    dot. "1.234" reads either way and counts for neither. Returns None
    without evidence or on a tie.
    """
    votes = {",": 0, ".": 0}
    for value in values:
        digits = re.sub(r"[^\d.,]", "", value or "")
        if "," in digits and "." in digits:
            votes["," if digits.rfind(",") > digits.rfind(".") else "."] += 1
            continue
        match = re.search(r"\d([.,])\d{1,2}$", digits)
        if match and digits.count(match.group(1)) == 1:
            votes[match.group(1)] += 1
    if votes[","] == votes["."]:
        return None
    mark = "," if votes[","] > votes["."] else "."
    if min(votes.values()):
        logger.warning(
            "Amounts use both decimal separators (%d comma, %d dot), using %r",
            votes[","],
            votes["."],
            mark,
        )
    return mark


def _full_year(year: int) -> int:
    if year >= 100:
        return year
    return 2000 + year if year < 70 else 1900 + year


def numeric_date_pins(value: str) -> Optional[DateOrder]:
    """Return the order a numeric date forces, if any.

    13/01/2024 can only be DMY; 01/13/2024 can only be MDY.
    """
    match = _NUMERIC_DATE.match(value.strip())
    if not match:
        return None
    first, second = int(match.group(1)), int(match.group(2))
    if first > 12 and second <= 12:
        return DateOrder.DMY
    if second > 12 and first <= 12:
        return DateOrder.MDY
    return None


def resolve_date_order(
    values: list[str], fallback: DateOrder = DateOrder.MDY
) -> DateOrder:
    """Pick the date order for a file from unambiguous values in it."""
    pins = [pin for pin in (numeric_date_pins(v) for v in values if v) if pin is not None]
    if not pins:
        return fallback
    dmy = sum(1 for pin in pins if pin is DateOrder.DMY)
    mdy = len(pins) - dmy
    if dmy and mdy:
        logger.warning(
            "Conflicting date evidence in file (%d DD/MM, %d MM/DD), using majority", dmy, mdy
        )
    if dmy == mdy:
        return fallback
    return DateOrder.DMY if dmy > mdy else DateOrder.MDY


def parse_date(
    value: str,
    date_order: DateOrder = DateOrder.MDY,
    date_format: Optional[str] = None,
) -> date:
    """
    Parse a statement date.

    Args:
        value: Raw date text
        date_order: Order used when a numeric date is ambiguous
        date_format: Explicit hint ("MM/DD/YYYY", "DD/MM/YYYY", "YYYY-MM-DD"),
            tried before anything else

    Raises:
        ValueError: If the date cannot be parsed
    """
    if not value or not value.strip():
        raise ValueError("Date is empty")
    s = re.sub(r"\s+", " ", value.strip())

    hinted = _HINT_ORDERS.get(date_format or "")
    if hinted is not None:
        parsed = _numeric_date(s, hinted)
        if parsed is not None:
            return parsed

    iso = _ISO_DATE.match(s)
    if iso:
        return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    numeric = _NUMERIC_DATE.match(s)
    if numeric:
        pinned = numeric_date_pins(s)
        parsed = _numeric_date(s, pinned or date_order)
        if parsed is not None:
            return parsed
        raise ValueError(f"Invalid date: {value!r}")

    for fmt in _TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    raise ValueError(f"Unrecognized date format: {value!r}")


def _numeric_date(value: str, order: DateOrder) -> Optional[date]:
    match = _NUMERIC_DATE.match(value)
    if not match:
        return None
    first, second, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
    month, day = (first, second) if order is DateOrder.MDY else (second, first)
    try:
        return date(_full_year(year), month, day)
    except ValueError:
        return None


def resolve_sign_convention(records: list[RawRecord]) -> SignConvention:
    """Infer the sign convention of a signed amount column.

    Statements list mostly purchases, so a column whose values are mostly
    negative reports spending as negative.
    """
    negatives = positives = 0
    for record in records:
        raw = record.get("amount")
        if raw is None:
            continue
        try:
            parsed = parse_amount(raw)
        except ValueError:
            continue
        if parsed.marker or parsed.value == 0:
            continue
        if parsed.value < 0:
            negatives += 1
        else:
            positives += 1
    if negatives > positives:
        return SignConvention.DEBIT_NEGATIVE
    return SignConvention.DEBIT_POSITIVE


def normalize_to_raw(transaction: NormalizedTransaction) -> RawRecord:
    """Render a transaction back into a RawRecord in canonical layout.

    Normalizing the result yields an equivalent transaction under any sign
    convention, since the amount is placed in a debit column.
    """
    return RawRecord(
        fields=(
            transaction.date.isoformat(),
            transaction.description,
            str(transaction.amount),
            transaction.currency,
        ),
        roles=CANONICAL_ROLES,
        line_number=0,
        source="normalized",
        ref=transaction.source_ref,
    )


class TransactionNormalizer:
    """Converts RawRecords into NormalizedTransactions."""

    def __init__(
        self,
        defaults: Optional[DefaultsConfig] = None,
        max_amount: Decimal = MAX_AMOUNT,
        today: Optional[date] = None,
    ):
        self.defaults = defaults or DefaultsConfig()
        self.max_amount = max_amount
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def normalize(
        self,
        record: RawRecord,
        config: ImportConfig,
        date_order: Optional[DateOrder] = None,
        sign_convention: Optional[SignConvention] = None,
        default_currency: Optional[str] = None,
        date_format: Optional[str] = None,
        decimal_mark: Optional[str] = None,
    ) -> Union[NormalizedTransaction, ParseError]:
        """
        Normalize one record.

        Args:
            record: Raw record from the parser
            config: Run configuration
            date_order: Order for ambiguous numeric dates (batch evidence)
            sign_convention: Convention for a signed amount column
            default_currency: Currency when the row names none
            date_format: Explicit date format, overriding the config hint
            decimal_mark: Decimal separator of the file ("." or ","), if known

        Returns:
            NormalizedTransaction, or ParseError naming the problem
        """
        order = date_order or self._locale_order(config)
        if date_format is None and config.date_format_hint != "auto":
            date_format = config.date_format_hint
        convention = sign_convention or config.sign_convention
        if convention is SignConvention.AUTO:
            convention = self.defaults.sign_convention
        if convention is SignConvention.AUTO:
            convention = SignConvention.DEBIT_POSITIVE

        raw_date = record.get("date")
        if raw_date is None:
            return self._error(record, "Missing date")
        try:
            tx_date = parse_date(raw_date, order, date_format)
        except ValueError as e:
            return self._error(record, f"Invalid date: {e}")
        if tx_date.year < MIN_YEAR:
            return self._error(record, f"Date {tx_date.isoformat()} is before {MIN_YEAR}")
        if tx_date > self.today + timedelta(days=MAX_FUTURE_DAYS):
            return self._error(record, f"Date {tx_date.isoformat()} is too far in the future")

        description = re.sub(r"\s+", " ", (record.get("description") or "")).strip().strip('"').strip()
        if not description:
            return self._error(record, "Missing description")

        spend = self._spend_amount(record, convention, decimal_mark)
        if isinstance(spend, ParseError):
            return spend
        amount, row_currency = spend

        if amount == 0:
            return self._error(record, "Zero amount")
        if amount < 0:
            return self._error(
                record, f"Credit of {abs(amount)} excluded (refund, deposit or payment)"
            )
        if amount > self.max_amount:
            return self._error(record, f"Amount {amount} exceeds {self.max_amount}")

        currency = self._currency(record, row_currency, default_currency or config.currency)

        return NormalizedTransaction(
            date=tx_date,
            description=description,
            amount=amount.quantize(CENTS, rounding=ROUND_HALF_UP),
            currency=currency,
            source_ref=record.source_ref,
        )

    def normalize_batch(
        self,
        records: list[RawRecord],
        config: ImportConfig,
        metadata: Optional[StatementMetadata] = None,
    ) -> NormalizationResult:
        """
        Normalize all records of one file.

        Date order and sign convention are decided once per file so every
        row is read the same way.
        """
        template = self._template(config, metadata)

        hint = config.date_format_hint if config.date_format_hint != "auto" else None
        fmt = hint
        if fmt is None and template is not None:
            fmt = template.date_format

        fallback = _HINT_ORDERS.get(fmt or "") or self._locale_order(config)
        order = resolve_date_order([r.get("date") or "" for r in records], fallback)

        convention = config.sign_convention
        if convention is SignConvention.AUTO and template is not None:
            convention = template.sign_convention
        if convention is SignConvention.AUTO:
            convention = self.defaults.sign_convention
        if convention is SignConvention.AUTO:
            convention = resolve_sign_convention(records)

        mark = resolve_decimal_mark(
            [
                value
                for r in records
                for value in (r.get("amount"), r.get("debit"), r.get("credit"))
                if value
            ]
        )
        currency = (metadata.currency if metadata else None) or config.currency
        # The caller's hint is tried first on every row. A template's numeric
        # format only breaks ties, since evidence in the file outranks it.
        row_format = hint or ("" if fmt in _HINT_ORDERS else fmt)

        result = NormalizationResult(
            date_order=order, sign_convention=convention, decimal_mark=mark
        )
        for record in records:
            normalized = self.normalize(
                record,
                config,
                date_order=order,
                sign_convention=convention,
                default_currency=currency,
                date_format=row_format,
                decimal_mark=mark,
            )
            if isinstance(normalized, ParseError):
                result.errors.append(normalized)
                if normalized.message.startswith("Credit"):
                    result.credits_excluded += 1
            else:
                result.transactions.append(normalized)

        logger.info(
            "Normalized %d of %d records (%s, %s, %d credits excluded)",
            len(result.transactions),
            len(records),
            order.value,
            convention.value,
            result.credits_excluded,
        )
        return result

    def _spend_amount(
        self,
        record: RawRecord,
        convention: SignConvention,
        decimal_mark: Optional[str] = None,
    ) -> Union[tuple[Decimal, Optional[str]], ParseError]:
        """Return (amount, currency) with spending positive."""
        debit_raw = record.get("debit")
        credit_raw = record.get("credit")
        amount_raw = record.get("amount")

        try:
            if debit_raw is not None:
                debit = parse_amount(debit_raw, decimal_mark)
                if debit.value != 0:
                    if debit.marker == "CR":
                        return -abs(debit.value), debit.currency
                    return abs(debit.value), debit.currency
            if credit_raw is not None:
                credit = parse_amount(credit_raw, decimal_mark)
                if credit.value != 0:
                    return -abs(credit.value), credit.currency
            if amount_raw is not None:
                parsed = parse_amount(amount_raw, decimal_mark)
                if parsed.marker == "DR":
                    return abs(parsed.value), parsed.currency
                if parsed.marker == "CR":
                    return -abs(parsed.value), parsed.currency
                if convention is SignConvention.DEBIT_NEGATIVE:
                    return -parsed.value, parsed.currency
                return parsed.value, parsed.currency
        except ValueError as e:
            return self._error(record, f"Invalid amount: {e}")

        if debit_raw is None and credit_raw is None and amount_raw is None:
            return self._error(record, "Missing amount")
        return Decimal("0"), None

    def _currency(
        self, record: RawRecord, row_currency: Optional[str], default: str
    ) -> str:
        column = record.get("currency")
        if column:
            code = column.strip().upper()
            if len(code) == 3 and code.isalpha():
                return code
        return row_currency or default.upper()

    def _locale_order(self, config: ImportConfig) -> DateOrder:
        hinted = _HINT_ORDERS.get(config.date_format_hint)
        if hinted is not None:
            return hinted
        try:
            return DateOrder(self.defaults.locale_date_order)
        except ValueError:
            return DateOrder.MDY

    @staticmethod
    def _template(
        config: ImportConfig, metadata: Optional[StatementMetadata]
    ) -> Optional[BankTemplate]:
        if config.bank_template:
            return get_template(config.bank_template)
        if metadata is not None and metadata.template:
            return get_template(metadata.template)
        return None

    @staticmethod
    def _error(record: RawRecord, message: str) -> ParseError:
        return ParseError(
            message=message,
            line_number=record.line_number,
            page=record.page,
            raw=record.text,
        )
