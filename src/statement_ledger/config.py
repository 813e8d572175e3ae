"""
Configuration management.

Two layers:
- AppConfig: installation settings loaded from YAML (with env overrides).
  Thresholds, limits and the ledger backend live here.
- ImportConfig: immutable per-run input supplied by the caller (account group,
  payer, split rule, categories). Validated at pipeline entry.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


class SignConvention(str, Enum):
    """How a source reports money the user spent."""

    AUTO = "auto"  # Decided per file from the majority sign
    DEBIT_POSITIVE = "debit_positive"  # Purchases are positive
    DEBIT_NEGATIVE = "debit_negative"  # Purchases are negative


DATE_FORMAT_HINTS = ("auto", "MM/DD/YYYY", "DD/MM/YYYY")
SPLIT_RULE_TYPES = ("equal", "custom")


@dataclass
class LedgerConfig:
    """Ledger backend settings.

    backend "sqlite" uses the local state database, "http" talks to a remote
    ledger service at base_url.
    """

    backend: str = "sqlite"
    base_url: str = ""
    token: str = ""
    timeout_seconds: int = 30
    max_retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class DuplicateConfig:
    """Duplicate detection settings."""

    # Candidates must fall within +/- this many days
    date_window_days: int = 3
    # Minimum description similarity for a candidate to count at all
    description_floor: float = 0.5
    # Flag for review at or above this confidence
    review_threshold: float = 0.55
    # Excluded from default selection at or above this confidence
    auto_skip_threshold: float = 0.95


@dataclass
class CategoryConfig:
    """Category suggestion settings."""

    confidence_threshold: float = 0.55
    max_alternatives: int = 2
    # category key -> extra keywords, merged into the defaults
    custom_keywords: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class ParsingConfig:
    """File parsing limits."""

    max_file_size_mb: int = 50
    # Below this many non-blank characters a PDF is treated as scanned
    pdf_min_text_chars: int = 80
    header_scan_rows: int = 5
    max_import_size: int = 1000


@dataclass
class DefaultsConfig:
    """Fallbacks used when neither the file nor the caller says otherwise."""

    currency: str = "USD"
    locale_date_order: str = "MDY"
    sign_convention: SignConvention = SignConvention.AUTO
    parallel_analysis: bool = True


@dataclass
class AppConfig:
    """Application configuration.

    All installation-level keys are defined here; no other module should
    invent config keys.
    """

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    duplicates: DuplicateConfig = field(default_factory=DuplicateConfig)
    categories: CategoryConfig = field(default_factory=CategoryConfig)
    parsing: ParsingConfig = field(default_factory=ParsingConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.ledger.backend not in ("sqlite", "http"):
            errors.append(f"ledger.backend must be 'sqlite' or 'http', got {self.ledger.backend!r}")
        if self.ledger.backend == "http" and not self.ledger.base_url:
            errors.append("ledger.base_url is required for the http backend")

        dup = self.duplicates
        if dup.date_window_days < 0:
            errors.append("duplicates.date_window_days must be >= 0")
        for name in ("description_floor", "review_threshold", "auto_skip_threshold"):
            value = getattr(dup, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"duplicates.{name} must be between 0 and 1")
        if dup.auto_skip_threshold < dup.review_threshold:
            errors.append("duplicates.auto_skip_threshold must be >= review_threshold")

        if not 0.0 <= self.categories.confidence_threshold <= 1.0:
            errors.append("categories.confidence_threshold must be between 0 and 1")
        if self.categories.max_alternatives < 0:
            errors.append("categories.max_alternatives must be >= 0")

        if self.parsing.max_file_size_mb <= 0:
            errors.append("parsing.max_file_size_mb must be positive")
        if self.parsing.max_import_size <= 0:
            errors.append("parsing.max_import_size must be positive")

        if self.defaults.locale_date_order not in ("MDY", "DMY"):
            errors.append("defaults.locale_date_order must be 'MDY' or 'DMY'")
        if len(self.defaults.currency) != 3:
            errors.append("defaults.currency must be a 3-letter ISO code")

        return errors


@dataclass(frozen=True)
class SplitRule:
    """How an imported expense is shared between participants.

    equal: amount divided evenly among participants.
    custom: shares maps participant -> percentage (must sum to 100).
    With no participants the whole amount goes to the payer.
    """

    type: str = "equal"
    participants: tuple[str, ...] = ()
    shares: tuple[tuple[str, float], ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SplitRule":
        if not data:
            return cls()
        shares = data.get("shares") or {}
        participants = data.get("participants") or list(shares.keys())
        return cls(
            type=data.get("type", "equal"),
            participants=tuple(participants),
            shares=tuple((str(k), float(v)) for k, v in shares.items()),
        )

    def validate(self) -> list[str]:
        errors: list[str] = []
        if self.type not in SPLIT_RULE_TYPES:
            errors.append(f"split_rule.type must be one of {SPLIT_RULE_TYPES}, got {self.type!r}")
        if self.type == "custom":
            if not self.shares:
                errors.append("split_rule.shares is required for custom splits")
            elif any(pct < 0 for _, pct in self.shares):
                errors.append("split_rule.shares must not be negative")
            elif abs(sum(pct for _, pct in self.shares) - 100.0) > 0.01:
                errors.append("split_rule.shares must sum to 100")
        return errors


@dataclass(frozen=True)
class ImportConfig:
    """Immutable input to one pipeline run, supplied by the caller."""

    ledger_group_id: str
    default_payer: str
    split_rule: SplitRule = field(default_factory=SplitRule)
    default_category_key: str = "other"
    detect_duplicates: bool = True
    available_categories: tuple[str, ...] = ()
    date_format_hint: str = "auto"
    currency: str = "USD"
    sign_convention: SignConvention = SignConvention.AUTO
    bank_template: str | None = None

    # camelCase names used by API callers
    _ALIASES = {
        "ledgerGroupId": "ledger_group_id",
        "defaultPayer": "default_payer",
        "splitRule": "split_rule",
        "defaultCategoryKey": "default_category_key",
        "detectDuplicates": "detect_duplicates",
        "availableCategories": "available_categories",
        "dateFormatHint": "date_format_hint",
        "signConvention": "sign_convention",
        "bankTemplate": "bank_template",
    }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportConfig":
        """Build an ImportConfig from snake_case or camelCase keys."""
        values = {cls._ALIASES.get(key, key): value for key, value in data.items()}
        split = values.get("split_rule")
        return cls(
            ledger_group_id=str(values.get("ledger_group_id") or ""),
            default_payer=str(values.get("default_payer") or ""),
            split_rule=split if isinstance(split, SplitRule) else SplitRule.from_dict(split),
            default_category_key=values.get("default_category_key", "other"),
            detect_duplicates=bool(values.get("detect_duplicates", True)),
            available_categories=tuple(values.get("available_categories") or ()),
            date_format_hint=values.get("date_format_hint", "auto"),
            currency=str(values.get("currency", "USD")).upper(),
            sign_convention=SignConvention(values.get("sign_convention", SignConvention.AUTO)),
            bank_template=values.get("bank_template"),
        )

    def validate(self) -> list[str]:
        """Validate the run configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.ledger_group_id:
            errors.append("ledger_group_id is required")
        if not self.default_payer:
            errors.append("default_payer is required")
        if not self.default_category_key:
            errors.append("default_category_key is required")
        elif self.available_categories and self.default_category_key not in self.available_categories:
            errors.append(
                f"default_category_key {self.default_category_key!r} is not in available_categories"
            )
        if self.date_format_hint not in DATE_FORMAT_HINTS:
            errors.append(f"date_format_hint must be one of {DATE_FORMAT_HINTS}")
        if len(self.currency) != 3 or not self.currency.isalpha():
            errors.append("currency must be a 3-letter ISO code")
        errors.extend(self.split_rule.validate())

        return errors

    def allows_category(self, category: str) -> bool:
        """Return True if category may be used in this run."""
        return not self.available_categories or category in self.available_categories


def load_config(config_path: Path) -> AppConfig:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - LEDGER_BACKEND (sqlite/http)
    - LEDGER_URL
    - LEDGER_TOKEN
    - STATEMENT_LEDGER_DB (state database path)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Ledger backend
    ledger_data = data.get("ledger", {})
    ledger = LedgerConfig(
        backend=os.environ.get("LEDGER_BACKEND", ledger_data.get("backend", "sqlite")),
        base_url=os.environ.get("LEDGER_URL", ledger_data.get("base_url", "")),
        token=os.environ.get("LEDGER_TOKEN", ledger_data.get("token", "")),
        timeout_seconds=int(ledger_data.get("timeout_seconds", 30)),
        max_retries=int(ledger_data.get("max_retries", 3)),
        backoff_factor=float(ledger_data.get("backoff_factor", 0.5)),
    )

    # Duplicate detection
    dup_data = data.get("duplicates", {})
    duplicates = DuplicateConfig(
        date_window_days=int(dup_data.get("date_window_days", 3)),
        description_floor=float(dup_data.get("description_floor", 0.5)),
        review_threshold=float(dup_data.get("review_threshold", 0.55)),
        auto_skip_threshold=float(dup_data.get("auto_skip_threshold", 0.95)),
    )

    # Categories
    cat_data = data.get("categories", {})
    categories = CategoryConfig(
        confidence_threshold=float(cat_data.get("confidence_threshold", 0.55)),
        max_alternatives=int(cat_data.get("max_alternatives", 2)),
        custom_keywords={
            str(key): [str(word) for word in words or []]
            for key, words in (cat_data.get("custom_keywords") or {}).items()
        },
    )

    # Parsing limits
    parse_data = data.get("parsing", {})
    parsing = ParsingConfig(
        max_file_size_mb=int(parse_data.get("max_file_size_mb", 50)),
        pdf_min_text_chars=int(parse_data.get("pdf_min_text_chars", 80)),
        header_scan_rows=int(parse_data.get("header_scan_rows", 5)),
        max_import_size=int(parse_data.get("max_import_size", 1000)),
    )

    # Defaults
    defaults_data = data.get("defaults", {})
    try:
        sign_convention = SignConvention(defaults_data.get("sign_convention", "auto"))
    except ValueError as e:
        raise ConfigValidationError(f"defaults.sign_convention: {e}") from e
    defaults = DefaultsConfig(
        currency=str(defaults_data.get("currency", "USD")).upper(),
        locale_date_order=str(defaults_data.get("locale_date_order", "MDY")).upper(),
        sign_convention=sign_convention,
        parallel_analysis=bool(defaults_data.get("parallel_analysis", True)),
    )

    state_db = os.environ.get("STATEMENT_LEDGER_DB", data.get("state_db_path", "data/state.db"))

    config = AppConfig(
        ledger=ledger,
        duplicates=duplicates,
        categories=categories,
        parsing=parsing,
        defaults=defaults,
        state_db_path=Path(state_db),
    )

    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Statement import configuration

# Where imported ledger entries are written
ledger:
  backend: "sqlite"                 # sqlite (local state db) or http (remote ledger)
  base_url: ""                      # Remote ledger URL (http backend only)
  token: ""                         # Bearer token (http backend only)
  timeout_seconds: 30
  max_retries: 3                    # Retries for transient 429/5xx responses
  backoff_factor: 0.5

# Duplicate detection against the existing ledger
duplicates:
  date_window_days: 3               # Candidates within +/- N days
  description_floor: 0.5            # Minimum description similarity
  review_threshold: 0.55            # Flag for review at or above
  auto_skip_threshold: 0.95         # Deselect by default at or above

# Category suggestions
categories:
  confidence_threshold: 0.55        # Below this a suggestion is not surfaced
  max_alternatives: 2
  custom_keywords: {}               # e.g. {groceries: ["farmers market"]}

# File limits
parsing:
  max_file_size_mb: 50
  pdf_min_text_chars: 80            # Less text than this means a scanned PDF
  header_scan_rows: 5
  max_import_size: 1000             # Max transactions per commit

defaults:
  currency: "USD"
  locale_date_order: "MDY"          # MDY or DMY, used for ambiguous dates
  sign_convention: "auto"           # auto, debit_positive, debit_negative
  parallel_analysis: true           # Run duplicate and category checks concurrently

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
