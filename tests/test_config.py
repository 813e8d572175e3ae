"""Tests for configuration loading and run configuration validation."""

from pathlib import Path

import pytest

from statement_ledger.config import (
    AppConfig,
    ConfigValidationError,
    ImportConfig,
    SignConvention,
    SplitRule,
    create_default_config,
    load_config,
)


class TestLoadConfig:
    """Tests for YAML config loading."""

    def test_missing_file_gives_defaults(self, tmp_path):
        """A missing config file yields the built-in defaults."""
        config = load_config(tmp_path / "missing.yaml")

        assert config.ledger.backend == "sqlite"
        assert config.duplicates.date_window_days == 3
        assert config.duplicates.auto_skip_threshold == 0.95
        assert config.categories.confidence_threshold == 0.55
        assert config.parsing.max_import_size == 1000
        assert config.defaults.sign_convention is SignConvention.AUTO

    def test_default_config_file_round_trips(self, tmp_path):
        """The generated default config loads without errors."""
        path = tmp_path / "config.yaml"
        create_default_config(path)

        config = load_config(path)
        assert config.validate() == []
        assert config.state_db_path == Path("data/state.db")

    def test_yaml_values_are_applied(self, tmp_path):
        """Values from YAML override defaults."""
        path = tmp_path / "config.yaml"
        path.write_text(
            """
duplicates:
  date_window_days: 5
  review_threshold: 0.6
categories:
  custom_keywords:
    groceries: ["farmers market"]
defaults:
  currency: eur
  locale_date_order: dmy
  parallel_analysis: false
"""
        )

        config = load_config(path)
        assert config.duplicates.date_window_days == 5
        assert config.duplicates.review_threshold == 0.6
        assert config.categories.custom_keywords == {"groceries": ["farmers market"]}
        assert config.defaults.currency == "EUR"
        assert config.defaults.locale_date_order == "DMY"
        assert config.defaults.parallel_analysis is False

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Environment variables take precedence over the file."""
        monkeypatch.setenv("LEDGER_BACKEND", "http")
        monkeypatch.setenv("LEDGER_URL", "https://ledger.test")
        monkeypatch.setenv("LEDGER_TOKEN", "secret")
        monkeypatch.setenv("STATEMENT_LEDGER_DB", str(tmp_path / "env.db"))

        config = load_config(tmp_path / "missing.yaml")
        assert config.ledger.backend == "http"
        assert config.ledger.base_url == "https://ledger.test"
        assert config.ledger.token == "secret"
        assert config.state_db_path == tmp_path / "env.db"

    def test_http_backend_requires_url(self, tmp_path):
        """The http backend without a URL is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("ledger:\n  backend: http\n")

        with pytest.raises(ConfigValidationError, match="base_url"):
            load_config(path)

    def test_invalid_sign_convention(self, tmp_path):
        """An unknown sign convention is a config error."""
        path = tmp_path / "config.yaml"
        path.write_text("defaults:\n  sign_convention: sideways\n")

        with pytest.raises(ConfigValidationError, match="sign_convention"):
            load_config(path)


class TestAppConfigValidation:
    """Tests for AppConfig.validate."""

    def test_defaults_are_valid(self):
        assert AppConfig().validate() == []

    def test_threshold_order(self):
        """Auto-skip threshold below review threshold is rejected."""
        config = AppConfig()
        config.duplicates.auto_skip_threshold = 0.4

        errors = config.validate()
        assert any("auto_skip_threshold" in e for e in errors)

    def test_threshold_range(self):
        config = AppConfig()
        config.categories.confidence_threshold = 1.5

        assert any("confidence_threshold" in e for e in config.validate())


class TestImportConfig:
    """Tests for the per-run configuration."""

    def test_minimal_config_is_valid(self, import_config):
        assert import_config.validate() == []

    def test_required_fields(self):
        """Group and payer are required."""
        errors = ImportConfig(ledger_group_id="", default_payer="").validate()

        assert "ledger_group_id is required" in errors
        assert "default_payer is required" in errors

    def test_default_category_must_be_available(self):
        """The default category must be one of the available categories."""
        config = ImportConfig(
            ledger_group_id="g",
            default_payer="p",
            default_category_key="misc",
            available_categories=("food", "other"),
        )

        assert any("default_category_key" in e for e in config.validate())

    def test_unknown_date_hint(self):
        config = ImportConfig(ledger_group_id="g", default_payer="p", date_format_hint="YYYY")

        assert any("date_format_hint" in e for e in config.validate())

    def test_from_dict_accepts_camel_case(self):
        """API callers may send camelCase keys."""
        config = ImportConfig.from_dict(
            {
                "ledgerGroupId": "trip",
                "defaultPayer": "bob",
                "splitRule": {"type": "equal", "participants": ["bob", "carol"]},
                "availableCategories": ["food", "other"],
                "dateFormatHint": "DD/MM/YYYY",
                "currency": "eur",
                "signConvention": "debit_negative",
            }
        )

        assert config.ledger_group_id == "trip"
        assert config.default_payer == "bob"
        assert config.split_rule.participants == ("bob", "carol")
        assert config.available_categories == ("food", "other")
        assert config.date_format_hint == "DD/MM/YYYY"
        assert config.currency == "EUR"
        assert config.sign_convention is SignConvention.DEBIT_NEGATIVE
        assert config.validate() == []

    def test_allows_category(self):
        """Empty available_categories allows everything."""
        open_config = ImportConfig(ledger_group_id="g", default_payer="p")
        closed_config = ImportConfig(
            ledger_group_id="g", default_payer="p", available_categories=("food", "other")
        )

        assert open_config.allows_category("anything")
        assert closed_config.allows_category("food")
        assert not closed_config.allows_category("fun")


class TestSplitRule:
    """Tests for split rule parsing and validation."""

    def test_custom_shares_must_sum_to_100(self):
        rule = SplitRule.from_dict({"type": "custom", "shares": {"a": 60, "b": 30}})

        assert "split_rule.shares must sum to 100" in rule.validate()

    def test_custom_participants_from_shares(self):
        rule = SplitRule.from_dict({"type": "custom", "shares": {"a": 60, "b": 40}})

        assert rule.participants == ("a", "b")
        assert rule.validate() == []

    def test_unknown_type(self):
        rule = SplitRule(type="weighted")

        assert any("split_rule.type" in e for e in rule.validate())
