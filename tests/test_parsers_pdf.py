"""Tests for the text-layer PDF statement parser."""

from statement_ledger.config import ImportConfig
from statement_ledger.normalizer import TransactionNormalizer
from statement_ledger.parsers import FileParser, PdfStatementParser
from statement_ledger.parsers.pdf import mask_account

from conftest import make_image_only_pdf, make_pdf


def _row(*cells: str) -> str:
    """Lay out a statement row in fixed columns."""
    date, description, amount, balance = cells
    return f"{date:<12}{description:<28}{amount:>10}{balance:>12}"


STATEMENT_PAGE = "\n".join(
    [
        "ACME SAVINGS BANK",
        "Account Number: 1234-5678-9012",
        "Statement Period: 01/01/2024 - 01/31/2024",
        "",
        _row("Date", "Description", "Amount", "Balance"),
        _row("01/15", "WHOLE FOODS MARKET", "42.00", "958.00"),
        _row("01/16", "NETFLIX.COM", "15.99", "942.01"),
        _row("01/20", "PAYROLL DEPOSIT", "500.00 CR", "1442.01"),
        "Ending Balance" + " " * 48 + "1442.01",
        "01/31 Interest paid this period 0.12",
    ]
)


class StubPdfParser(PdfStatementParser):
    """PDF parser fed with pre-extracted page text."""

    def __init__(self, pages: list[str], min_text_chars: int = 80):
        super().__init__(min_text_chars=min_text_chars)
        self.pages = pages

    def extract_pages(self, file_bytes: bytes) -> list[str]:
        return self.pages


class TestPdfLayoutParsing:
    """Tests for table and line-pattern extraction from page text."""

    def test_table_rows(self):
        """Rows under a header are sliced into the header's columns."""
        outcome = StubPdfParser([STATEMENT_PAGE]).parse(b"%PDF-1.4")

        descriptions = [r.get("description") for r in outcome.records]
        assert descriptions[:3] == ["WHOLE FOODS MARKET", "NETFLIX.COM", "PAYROLL DEPOSIT"]
        first = outcome.records[0]
        assert first.get("date") == "01/15/2024"
        assert first.get("amount") == "42.00"
        assert first.get("balance") == "958.00"
        assert first.page == 1
        assert first.source_ref.startswith("pdf:p1:")
        assert outcome.records[2].get("amount") == "500.00 CR"

    def test_line_pattern_after_table(self):
        """A dated line outside the table falls back to the line pattern."""
        outcome = StubPdfParser([STATEMENT_PAGE]).parse(b"%PDF-1.4")

        last = outcome.records[-1]
        assert len(outcome.records) == 4
        assert last.get("date") == "01/31/2024"
        assert last.get("description") == "Interest paid this period"
        assert last.get("amount") == "0.12"

    def test_metadata(self):
        outcome = StubPdfParser([STATEMENT_PAGE]).parse(b"%PDF-1.4")

        metadata = outcome.metadata
        assert metadata.parser == "pdf_text"
        assert metadata.bank_name == "ACME SAVINGS BANK"
        assert metadata.account_number == "****9012"
        assert metadata.period_start == "01/01/2024"
        assert metadata.period_end == "01/31/2024"
        assert metadata.page_count == 1

    def test_records_keep_page_order(self):
        page_one = "\n".join(
            ["Statement 2024", "01/02/2024 COFFEE BAR 3.50", "01/03/2024 BOOK SHOP 12.00"]
        )
        page_two = "\n".join(["Continued", "01/05/2024 PHARMACY PLUS 8.25"])

        outcome = StubPdfParser([page_one, page_two], min_text_chars=10).parse(b"%PDF-1.4")

        assert [(r.page, r.get("description")) for r in outcome.records] == [
            (1, "COFFEE BAR"),
            (1, "BOOK SHOP"),
            (2, "PHARMACY PLUS"),
        ]

    def test_unrecognized_dated_line(self):
        page = "\n".join(["Statement 2024 with enough text to count", "01/02/2024 NO AMOUNT HERE"])

        outcome = StubPdfParser([page], min_text_chars=10).parse(b"%PDF-1.4")

        assert outcome.records == []
        assert outcome.errors[0].message == "Unrecognized transaction line"
        assert outcome.errors[0].page == 1
        assert outcome.requires_image_fallback

    def test_little_text_needs_image_fallback(self):
        outcome = StubPdfParser(["Page 1", ""]).parse(b"%PDF-1.4")

        assert outcome.requires_image_fallback
        assert outcome.records == []
        assert "insufficient text layer" in outcome.metadata.notes

    def test_dollar_amounts_use_run_currency(self):
        """A bare "$" names no currency; the run's currency applies."""
        page = "\n".join(
            [
                "MAPLE CREDIT UNION",
                "Statement Period: 01/01/2024 - 01/31/2024",
                "01/15/2024 TIM HORTONS $12.40",
                "01/16/2024 CANADIAN TIRE $45.10",
            ]
        )
        outcome = StubPdfParser([page], min_text_chars=10).parse(b"%PDF-1.4")
        config = ImportConfig(ledger_group_id="g", default_payer="p", currency="CAD")

        result = TransactionNormalizer().normalize_batch(outcome.records, config, outcome.metadata)

        assert outcome.metadata.currency is None
        assert [t.currency for t in result.transactions] == ["CAD", "CAD"]

    def test_currency_from_statement_header(self):
        page = "\n".join(["Currency: EUR", STATEMENT_PAGE])

        outcome = StubPdfParser([page]).parse(b"%PDF-1.4")

        assert outcome.metadata.currency == "EUR"

    def test_currency_code_in_description_ignored(self):
        page = "\n".join(
            [
                "MAPLE CREDIT UNION",
                "01/15/2024 FX FEE EUR PURCHASE 3.10",
                "01/16/2024 GROCERY 45.10",
            ]
        )

        outcome = StubPdfParser([page], min_text_chars=10).parse(b"%PDF-1.4")

        assert len(outcome.records) == 2
        assert outcome.metadata.currency is None

    def test_mask_account(self):
        assert mask_account("1234 5678 9012") == "****9012"
        assert mask_account("12") == "12"


class TestPdfFiles:
    """Tests against real PDF bytes."""

    def test_text_pdf(self):
        data = make_pdf(
            [
                "First National Bank statement for January 2024",
                "01/15/2024 WHOLE FOODS MARKET 42.00",
                "01/16/2024 NETFLIX.COM 15.99",
                "01/18/2024 SHELL OIL 10234 38.50",
            ]
        )

        outcome = FileParser().parse(data, "pdf")

        assert not outcome.has_fatal_error
        assert not outcome.requires_image_fallback
        assert [r.get("amount") for r in outcome.records] == ["42.00", "15.99", "38.50"]
        assert " ".join(outcome.records[0].get("description").split()) == "WHOLE FOODS MARKET"

    def test_image_only_pdf(self):
        """A PDF without a text layer signals image-based extraction."""
        outcome = FileParser().parse(make_image_only_pdf(), "pdf")

        assert outcome.requires_image_fallback
        assert outcome.records == []
        assert not outcome.has_fatal_error

    def test_auto_detects_pdf(self):
        outcome = FileParser().parse(make_image_only_pdf(), "auto")

        assert outcome.metadata.parser == "pdf_text"

    def test_damaged_pdf(self):
        outcome = FileParser().parse(b"%PDF-1.4 this is not really a pdf", "pdf")

        assert outcome.has_fatal_error
        assert outcome.errors[0].message.startswith("Could not read PDF")
