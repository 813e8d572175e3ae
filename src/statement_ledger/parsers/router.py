"""
File parser router - validates input and dispatches to a format backend.
"""

import logging
from typing import Optional

from ..config import ParsingConfig
from ..schemas.transactions import ParseError, ParseOutcome, StatementMetadata
from .base import BaseParser
from .delimited import DelimitedTextParser
from .pdf import PdfStatementParser

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("csv", "pdf", "auto")


class FileParser:
    """
    Converts raw file bytes into ordered RawRecords.

    Backends:
    1. Delimited text (CSV, TSV, semicolon/pipe separated)
    2. Text-layer PDF (scanned PDFs signal requires_image_fallback)

    Records keep source order (top-to-bottom, page-by-page), so parsing the
    same bytes twice yields the same indices.
    """

    def __init__(
        self,
        config: Optional[ParsingConfig] = None,
        parsers: Optional[list[BaseParser]] = None,
    ):
        self.config = config or ParsingConfig()
        self.parsers: list[BaseParser] = parsers or [
            PdfStatementParser(min_text_chars=self.config.pdf_min_text_chars),
            DelimitedTextParser(header_scan_rows=self.config.header_scan_rows),
        ]

    def parse(
        self,
        file_bytes: bytes,
        declared_type: str,
        template_key: Optional[str] = None,
    ) -> ParseOutcome:
        """
        Parse a statement file.

        Args:
            file_bytes: Raw file content
            declared_type: "csv", "pdf" or "auto"
            template_key: Optional bank template key

        Returns:
            ParseOutcome; whole-file problems are reported as fatal ParseErrors
        """
        file_type = (declared_type or "").strip().lower().lstrip(".")

        validation_error = self._validate(file_bytes, file_type)
        if validation_error is not None:
            logger.warning("Rejected file: %s", validation_error.message)
            return ParseOutcome(errors=[validation_error])

        parser = self._select(file_bytes, file_type)
        if parser is None:
            return ParseOutcome(
                errors=[ParseError(message=f"No parser for file type {file_type!r}", fatal=True)]
            )

        logger.info("Parsing %d bytes as %s with %s", len(file_bytes), file_type, parser.name)
        outcome = parser.parse(file_bytes, template_key=template_key)
        if not outcome.metadata.parser:
            outcome.metadata = StatementMetadata(parser=parser.name)
        return outcome

    def _validate(self, file_bytes: bytes, file_type: str) -> Optional[ParseError]:
        if file_type not in SUPPORTED_TYPES:
            return ParseError(
                message=f"Unsupported file type {file_type!r}; expected CSV or PDF",
                fatal=True,
            )
        if not file_bytes or not file_bytes.strip():
            return ParseError(message="File is empty", fatal=True)
        max_bytes = self.config.max_file_size_mb * 1024 * 1024
        if len(file_bytes) > max_bytes:
            return ParseError(
                message=(
                    f"File is {len(file_bytes) / (1024 * 1024):.1f} MB, "
                    f"maximum is {self.config.max_file_size_mb} MB"
                ),
                fatal=True,
            )
        return None

    def _select(self, file_bytes: bytes, file_type: str) -> Optional[BaseParser]:
        if file_type == "auto":
            for parser in self.parsers:
                if parser.can_parse(file_bytes):
                    return parser
            return None
        for parser in self.parsers:
            if parser.file_type == file_type:
                return parser
        return None
