"""
Statement parsers.

Each parser converts file bytes into ordered RawRecords.
"""

from .base import COLUMN_ALIASES, BaseParser, detect_roles, is_footer, match_role
from .delimited import DelimitedTextParser, guess_roles, sniff_delimiter
from .pdf import PdfStatementParser
from .router import FileParser
from .templates import BANK_TEMPLATES, BankTemplate, detect_template, get_template

__all__ = [
    "BANK_TEMPLATES",
    "COLUMN_ALIASES",
    "BankTemplate",
    "BaseParser",
    "DelimitedTextParser",
    "FileParser",
    "PdfStatementParser",
    "detect_roles",
    "detect_template",
    "get_template",
    "guess_roles",
    "is_footer",
    "match_role",
    "sniff_delimiter",
]
