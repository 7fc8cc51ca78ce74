"""
Tests for consolidation_config: YAML parsing, validation and defaults.
"""

from decimal import Decimal

import pytest

from consolidation_config import (
    EngineSettings,
    RetrySettings,
    compute_checksum,
    load_settings,
    parse_settings,
)
from consolidation_kernel.domain.ledger import AccountType
from consolidation_kernel.exceptions import SettingsError


class TestDefaults:
    def test_packaged_defaults_load(self):
        settings = load_settings()
        assert settings.max_workers == 4
        assert settings.retry == RetrySettings()
        assert settings.intercompany_tolerance is None
        assert settings.accounts.translation_adjustment.account_id == "3800"

    def test_empty_mapping_gives_defaults(self):
        assert parse_settings({}) == EngineSettings()


class TestParsing:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "max_workers: 8\n"
            "retry:\n"
            "  max_attempts: 5\n"
            "  base_delay_seconds: 0.1\n"
            "intercompany_tolerance: \"1.00\"\n"
            "accounts:\n"
            "  non_controlling_interest:\n"
            "    account_id: \"3950\"\n"
            "    name: Minority interest\n"
        )
        settings = load_settings(path)
        assert settings.max_workers == 8
        assert settings.retry.max_attempts == 5
        assert settings.retry.base_delay_seconds == 0.1
        assert settings.retry.max_delay_seconds == 5.0
        assert settings.intercompany_tolerance == Decimal("1.00")
        nci = settings.accounts.non_controlling_interest
        assert nci.account_id == "3950"
        assert nci.name == "Minority interest"
        assert nci.account_type == AccountType.EQUITY

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_unknown_top_level_key(self):
        with pytest.raises(SettingsError, match="unknown keys"):
            parse_settings({"max_worker": 2})

    def test_unknown_retry_key(self):
        with pytest.raises(SettingsError):
            parse_settings({"retry": {"attempts": 2}})

    def test_unknown_account(self):
        with pytest.raises(SettingsError):
            parse_settings({"accounts": {"suspense": {"account_id": "9999"}}})

    def test_float_tolerance_rejected(self):
        with pytest.raises(SettingsError, match="quoted"):
            parse_settings({"intercompany_tolerance": 0.5})

    def test_negative_tolerance_rejected(self):
        with pytest.raises(SettingsError):
            parse_settings({"intercompany_tolerance": "-1"})

    def test_max_workers_must_be_positive(self):
        with pytest.raises(SettingsError):
            parse_settings({"max_workers": 0})

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(SettingsError):
            parse_settings({"retry": {"max_attempts": 0}})

    def test_duplicate_account_ids_rejected(self):
        with pytest.raises(SettingsError, match="distinct"):
            parse_settings({"accounts": {"goodwill": {"account_id": "3800"}}})

    def test_bad_account_type(self):
        with pytest.raises(SettingsError):
            parse_settings({"accounts": {"goodwill": {"account_type": "bogus"}}})


class TestRetrySettings:
    def test_exponential_backoff_is_capped(self):
        retry = RetrySettings(max_attempts=5, base_delay_seconds=0.5, max_delay_seconds=1.5)
        assert [retry.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.5, 1.5]


class TestChecksum:
    def test_deterministic(self):
        assert compute_checksum(EngineSettings()) == compute_checksum(EngineSettings())

    def test_changes_with_settings(self):
        assert compute_checksum(EngineSettings()) != compute_checksum(EngineSettings(max_workers=9))
