"""Tests for transaction normalization."""

from datetime import date
from decimal import Decimal

import pytest

from statement_ledger.config import DefaultsConfig, ImportConfig, SignConvention
from statement_ledger.normalizer import (
    DateOrder,
    TransactionNormalizer,
    normalize_to_raw,
    numeric_date_pins,
    parse_amount,
    parse_date,
    resolve_decimal_mark,
    resolve_date_order,
    resolve_sign_convention,
)
from statement_ledger.parsers import FileParser
from statement_ledger.schemas.transactions import (
    ColumnRoles,
    ParseError,
    RawRecord,
    StatementMetadata,
)

from conftest import make_transaction

AMOUNT_ROLES = ColumnRoles(date=0, description=1, amount=2)
DEBIT_CREDIT_ROLES = ColumnRoles(date=0, description=1, debit=2, credit=3)


def record(*fields: str, roles: ColumnRoles = AMOUNT_ROLES, line: int = 2) -> RawRecord:
    return RawRecord(fields=tuple(fields), roles=roles, line_number=line)


@pytest.fixture
def normalizer() -> TransactionNormalizer:
    return TransactionNormalizer(today=date(2024, 6, 30))


class TestParseAmount:
    """Tests for parse_amount."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("42.00", Decimal("42.00")),
            ("1,234.56", Decimal("1234.56")),
            ("1.234,56", Decimal("1234.56")),
            ("1 234,56", Decimal("1234.56")),
            ("1'234.50", Decimal("1234.50")),
            ("12,50", Decimal("12.50")),
            ("1,234", Decimal("1234")),
            ("1.234.567", Decimal("1234567")),
            ("(42.00)", Decimal("-42.00")),
            ("42.00-", Decimal("-42.00")),
            ("-$42.00", Decimal("-42.00")),
            ("+5", Decimal("5")),
        ],
    )
    def test_values(self, text, expected):
        assert parse_amount(text).value == expected

    def test_currency_symbols(self):
        assert parse_amount("€ 12,50").currency == "EUR"
        assert parse_amount("US$ 10.00").currency == "USD"
        assert parse_amount("R$ 99,90").currency == "BRL"
        assert parse_amount("25.00 GBP").currency == "GBP"

    def test_dollar_sign_is_ambiguous(self):
        """A bare $ leaves the currency to the statement."""
        parsed = parse_amount("$42.00")

        assert parsed.value == Decimal("42.00")
        assert parsed.currency is None

    def test_markers(self):
        assert parse_amount("100.00 CR").marker == "CR"
        assert parse_amount("100.00 dr").marker == "DR"
        assert parse_amount("100.00").marker is None

    def test_non_breaking_space(self):
        assert parse_amount("1\u00a0234,00").value == Decimal("1234.00")

    def test_file_decimal_mark(self):
        """A known decimal mark settles strings that read either way."""
        assert parse_amount("1.234", ",").value == Decimal("1234")
        assert parse_amount("1.234", ".").value == Decimal("1.234")
        assert parse_amount("1,234", ",").value == Decimal("1.234")
        assert parse_amount("1.234.567", ",").value == Decimal("1234567")
        assert parse_amount("1.234,56", ".").value == Decimal("1234.56")
        assert parse_amount("12,50", ".").value == Decimal("12.50")

    def test_resolve_decimal_mark(self):
        assert resolve_decimal_mark(["12,50", "1.234"]) == ","
        assert resolve_decimal_mark(["€ 1.234,56", "3,10"]) == ","
        assert resolve_decimal_mark(["1,234.56", "$5.00"]) == "."
        assert resolve_decimal_mark(["1.234", "1,234"]) is None
        assert resolve_decimal_mark(["12,50", "5.00"]) is None
        assert resolve_decimal_mark([]) is None

    @pytest.mark.parametrize("text", ["", "   ", "abc", "12.34.56,7,8", "--"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_amount(text)


class TestParseDate:
    """Tests for parse_date and date-order resolution."""

    def test_iso(self):
        assert parse_date("2024-01-15") == date(2024, 1, 15)
        assert parse_date("2024/01/15") == date(2024, 1, 15)
        assert parse_date("2024-01-15T10:30:00") == date(2024, 1, 15)

    def test_ambiguous_numeric_uses_order(self):
        assert parse_date("03/04/2024", DateOrder.MDY) == date(2024, 3, 4)
        assert parse_date("03/04/2024", DateOrder.DMY) == date(2024, 4, 3)

    def test_unambiguous_numeric_ignores_order(self):
        assert parse_date("13/01/2024", DateOrder.MDY) == date(2024, 1, 13)
        assert parse_date("01/13/2024", DateOrder.DMY) == date(2024, 1, 13)

    def test_hint_is_tried_first(self):
        assert parse_date("03/04/2024", DateOrder.MDY, "DD/MM/YYYY") == date(2024, 4, 3)

    def test_two_digit_years(self):
        assert parse_date("01/15/24") == date(2024, 1, 15)
        assert parse_date("01/15/95") == date(1995, 1, 15)

    def test_text_formats(self):
        assert parse_date("15 Jan 2024") == date(2024, 1, 15)
        assert parse_date("Jan 15, 2024") == date(2024, 1, 15)
        assert parse_date("15-Jan-24") == date(2024, 1, 15)
        assert parse_date("January 15, 2024") == date(2024, 1, 15)

    @pytest.mark.parametrize("value", ["", "yesterday", "32/13/2024", "2024-02-30"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_date(value)

    def test_pins(self):
        assert numeric_date_pins("13/01/2024") is DateOrder.DMY
        assert numeric_date_pins("01/13/2024") is DateOrder.MDY
        assert numeric_date_pins("01/02/2024") is None
        assert numeric_date_pins("2024-01-13") is None

    def test_resolve_order_from_evidence(self):
        values = ["01/02/2024", "15/02/2024", "03/02/2024"]

        assert resolve_date_order(values, DateOrder.MDY) is DateOrder.DMY

    def test_resolve_order_majority_and_tie(self):
        assert resolve_date_order(["13/01/2024", "14/01/2024", "01/13/2024"]) is DateOrder.DMY
        assert (
            resolve_date_order(["13/01/2024", "01/13/2024"], DateOrder.MDY) is DateOrder.MDY
        )
        assert resolve_date_order([], DateOrder.DMY) is DateOrder.DMY


class TestNormalize:
    """Tests for single-record normalization."""

    def test_basic_record(self, normalizer, import_config):
        result = normalizer.normalize(
            record("01/15/2024", "  WHOLE   FOODS  ", "42.005"), import_config
        )

        assert result.date == date(2024, 1, 15)
        assert result.description == "WHOLE FOODS"
        assert result.amount == Decimal("42.01")
        assert result.currency == "USD"
        assert result.source_ref == "csv:l2"

    def test_quoted_description(self, normalizer, import_config):
        result = normalizer.normalize(record("2024-01-15", '"SHOP"', "5.00"), import_config)

        assert result.description == "SHOP"

    @pytest.mark.parametrize(
        "fields,message",
        [
            (("", "SHOP", "5.00"), "Missing date"),
            (("someday", "SHOP", "5.00"), "Invalid date"),
            (("2024-01-15", "  ", "5.00"), "Missing description"),
            (("2024-01-15", "SHOP", "abc"), "Invalid amount"),
            (("2024-01-15", "SHOP", ""), "Missing amount"),
            (("2024-01-15", "SHOP", "0.00"), "Zero amount"),
            (("1850-01-15", "SHOP", "5.00"), "before 1900"),
            (("2026-01-15", "SHOP", "5.00"), "too far in the future"),
            (("2024-01-15", "SHOP", "2000000.00"), "exceeds"),
        ],
    )
    def test_row_errors(self, normalizer, import_config, fields, message):
        result = normalizer.normalize(record(*fields, line=7), import_config)

        assert isinstance(result, ParseError)
        assert message in result.message
        assert result.line_number == 7
        assert not result.fatal

    def test_negative_amount_is_credit(self, normalizer, import_config):
        """Under debit-positive, a negative amount is a refund and is excluded."""
        result = normalizer.normalize(
            record("2024-01-15", "REFUND", "-5.00"),
            import_config,
            sign_convention=SignConvention.DEBIT_POSITIVE,
        )

        assert isinstance(result, ParseError)
        assert result.message.startswith("Credit of 5.00 excluded")

    def test_debit_negative_convention(self, normalizer, import_config):
        result = normalizer.normalize(
            record("2024-01-15", "SHOP", "-5.00"),
            import_config,
            sign_convention=SignConvention.DEBIT_NEGATIVE,
        )

        assert result.amount == Decimal("5.00")

    def test_markers_override_convention(self, normalizer, import_config):
        debit = normalizer.normalize(
            record("2024-01-15", "SHOP", "5.00 DR"),
            import_config,
            sign_convention=SignConvention.DEBIT_NEGATIVE,
        )
        credit = normalizer.normalize(
            record("2024-01-15", "PAYMENT", "5.00 CR"), import_config
        )

        assert debit.amount == Decimal("5.00")
        assert isinstance(credit, ParseError)

    def test_debit_and_credit_columns(self, normalizer, import_config):
        spent = normalizer.normalize(
            record("2024-01-15", "RENT", "1,200.00", "", roles=DEBIT_CREDIT_ROLES), import_config
        )
        received = normalizer.normalize(
            record("2024-01-15", "SALARY", "", "2,000.00", roles=DEBIT_CREDIT_ROLES),
            import_config,
        )

        assert spent.amount == Decimal("1200.00")
        assert isinstance(received, ParseError)
        assert received.message.startswith("Credit")

    def test_currency_from_symbol_and_column(self, normalizer, import_config):
        roles = ColumnRoles(date=0, description=1, amount=2, currency=3)
        by_symbol = normalizer.normalize(record("2024-01-15", "CAFE", "€4,50"), import_config)
        by_column = normalizer.normalize(
            record("2024-01-15", "CAFE", "4.50", "gbp", roles=roles), import_config
        )
        by_default = normalizer.normalize(
            record("2024-01-15", "CAFE", "$4.50"), import_config, default_currency="MXN"
        )

        assert by_symbol.currency == "EUR"
        assert by_column.currency == "GBP"
        assert by_default.currency == "MXN"

    def test_round_trip(self, normalizer, import_config):
        """Normalizing a rendered transaction gives the same transaction."""
        original = make_transaction(description="SHELL OIL 574", amount="40.00")

        for convention in (SignConvention.DEBIT_POSITIVE, SignConvention.DEBIT_NEGATIVE):
            again = normalizer.normalize(
                normalize_to_raw(original), import_config, sign_convention=convention
            )
            assert again == original


class TestNormalizeBatch:
    """Tests for whole-file normalization."""

    def test_sample_statement(self, normalizer, import_config, sample_csv):
        """Two good rows and one malformed amount."""
        outcome = FileParser().parse(sample_csv, "csv")

        result = normalizer.normalize_batch(outcome.records, import_config, outcome.metadata)

        assert [t.description for t in result.transactions] == [
            "WHOLE FOODS MARKET",
            "NETFLIX.COM",
        ]
        assert len(result.errors) == 1
        assert result.errors[0].line_number == 3
        assert "Invalid amount" in result.errors[0].message
        assert result.sign_convention is SignConvention.DEBIT_POSITIVE

    def test_day_month_order_from_file(self, normalizer, import_config):
        """One unambiguous DD/MM date decides the order for the whole file."""
        records = [
            record("03/04/2024", "A", "1.00"),
            record("25/04/2024", "B", "2.00"),
        ]

        result = normalizer.normalize_batch(records, import_config)

        assert result.date_order is DateOrder.DMY
        assert [t.date for t in result.transactions] == [date(2024, 4, 3), date(2024, 4, 25)]

    def test_hint_without_file_evidence(self, normalizer):
        """The caller's hint applies when the file has no evidence."""
        config = ImportConfig(
            ledger_group_id="g", default_payer="p", date_format_hint="DD/MM/YYYY"
        )

        result = normalizer.normalize_batch([record("03/04/2024", "A", "1.00")], config)

        assert result.transactions[0].date == date(2024, 4, 3)

    def test_hint_beats_file_evidence(self, normalizer):
        """An explicit format is tried first on every row.

        Rows the hint cannot read still fall back to the file's evidence.
        """
        config = ImportConfig(
            ledger_group_id="g", default_payer="p", date_format_hint="DD/MM/YYYY"
        )
        records = [record("03/04/2024", "A", "1.00"), record("04/25/2024", "B", "1.00")]

        result = normalizer.normalize_batch(records, config)

        assert [t.date for t in result.transactions] == [date(2024, 4, 3), date(2024, 4, 25)]

    def test_batch_agrees_with_single_row(self, normalizer):
        config = ImportConfig(
            ledger_group_id="g", default_payer="p", date_format_hint="DD/MM/YYYY"
        )
        row = record("03/04/2024", "A", "1.00")

        batch = normalizer.normalize_batch([row, record("04/25/2024", "B", "1.00")], config)

        assert batch.transactions[0].date == normalizer.normalize(row, config).date

    def test_locale_default(self, import_config):
        normalizer = TransactionNormalizer(
            DefaultsConfig(locale_date_order="DMY"), today=date(2024, 6, 30)
        )

        result = normalizer.normalize_batch([record("03/04/2024", "A", "1.00")], import_config)

        assert result.transactions[0].date == date(2024, 4, 3)

    def test_thousands_dot_in_decimal_comma_file(self, normalizer, import_config):
        """Comma decimals elsewhere in the file make a lone dot a thousands mark."""
        records = [record("15/01/2024", "MERCADONA", "1.234"), record("16/01/2024", "BAR", "12,50")]

        result = normalizer.normalize_batch(records, import_config)

        assert result.decimal_mark == ","
        assert [t.amount for t in result.transactions] == [Decimal("1234.00"), Decimal("12.50")]

    def test_thousands_comma_in_decimal_dot_file(self, normalizer, import_config):
        records = [record("2024-01-15", "RENT", "1,234"), record("2024-01-16", "CAFE", "5.00")]

        result = normalizer.normalize_batch(records, import_config)

        assert result.decimal_mark == "."
        assert [t.amount for t in result.transactions] == [Decimal("1234.00"), Decimal("5.00")]

    def test_mostly_negative_column_flips_sign(self, normalizer, import_config):
        records = [
            record("2024-01-15", "SHOP", "-10.00"),
            record("2024-01-16", "CAFE", "-4.50"),
            record("2024-01-17", "REFUND SHOP", "10.00"),
        ]

        result = normalizer.normalize_batch(records, import_config)

        assert result.sign_convention is SignConvention.DEBIT_NEGATIVE
        assert [t.amount for t in result.transactions] == [Decimal("10.00"), Decimal("4.50")]
        assert result.credits_excluded == 1

    def test_bank_template_convention(self, normalizer, import_config, chase_csv):
        """The detected template's sign convention and statement layout apply."""
        outcome = FileParser().parse(chase_csv, "csv")

        result = normalizer.normalize_batch(outcome.records, import_config, outcome.metadata)

        assert result.sign_convention is SignConvention.DEBIT_NEGATIVE
        assert [(t.date, t.amount) for t in result.transactions] == [
            (date(2024, 3, 1), Decimal("25.50")),
            (date(2024, 3, 3), Decimal("40.00")),
        ]
        assert result.credits_excluded == 1

    def test_statement_currency(self, normalizer, import_config):
        result = normalizer.normalize_batch(
            [record("2024-01-15", "CAFE", "$4.50")],
            import_config,
            StatementMetadata(currency="CAD"),
        )

        assert result.transactions[0].currency == "CAD"

    def test_caller_convention_wins(self, normalizer):
        config = ImportConfig(
            ledger_group_id="g",
            default_payer="p",
            sign_convention=SignConvention.DEBIT_POSITIVE,
        )
        records = [record("2024-01-15", "A", "-1.00"), record("2024-01-16", "B", "-2.00")]

        result = normalizer.normalize_batch(records, config)

        assert result.transactions == []
        assert result.credits_excluded == 2


class TestResolveSignConvention:
    """Tests for sign convention inference."""

    def test_majority_sign(self):
        negative = [record("2024-01-15", "A", "-1.00"), record("2024-01-16", "B", "-2.00")]
        positive = [record("2024-01-15", "A", "1.00"), record("2024-01-16", "B", "-2.00")]

        assert resolve_sign_convention(negative) is SignConvention.DEBIT_NEGATIVE
        assert resolve_sign_convention(positive) is SignConvention.DEBIT_POSITIVE

    def test_markers_and_garbage_ignored(self):
        records = [
            record("2024-01-15", "A", "-1.00 CR"),
            record("2024-01-16", "B", "n/a"),
            record("2024-01-17", "C", "3.00"),
        ]

        assert resolve_sign_convention(records) is SignConvention.DEBIT_POSITIVE
