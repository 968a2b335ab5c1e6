"""
Unit Tests for Configuration Module

These tests verify that the configuration system works correctly:
- Default values are applied when needed
- Accounts load from the inline list and from a JSON file
- Missing base URLs get the default host of the account kind
- Validation catches invalid configurations

Run with:
    pytest tests/unit/test_config.py -v
"""

import json
import logging

import pytest

from core.config import Settings, load_account_configs, settings, validate_configuration
from core.fetch_state import BackoffPolicy
from core.schemas import AccountKind


ACCOUNTS = [
    {"name": "SF1", "exchange": "binance", "accountType": "futures", "apiKey": "k1", "apiSecret": "s1"},
    {"name": "PM1", "exchange": "Binance", "accountType": "portfolioMargin", "apiKey": "k2", "apiSecret": "s2"},
    {
        "name": "BY1",
        "exchange": "bybit",
        "accountType": "unified",
        "apiKey": "k3",
        "apiSecret": "s3",
        "baseUrl": "https://api-testnet.bybit.com",
    },
]


class TestConfigurationLoading:
    """Test that configuration loads with sane values"""

    def test_app_port_is_valid_integer(self):
        """Verify app port is a valid integer"""
        assert isinstance(settings.app_port, int)
        assert 1 <= settings.app_port <= 65535

    def test_debug_mode_is_boolean(self):
        """Verify debug setting is a boolean"""
        assert isinstance(settings.debug, bool)

    def test_log_level_is_set(self):
        """Verify log level is configured"""
        assert settings.log_level is not None
        assert len(settings.log_level) > 0

    def test_polling_defaults(self):
        """Verify polling constants default to the documented values"""
        config = Settings()
        assert config.fetch_interval_ms == 40_000
        assert config.failure_threshold == 5
        assert config.initial_backoff_ms == 30_000
        assert config.backoff_cap_exponent == 5
        assert config.health_window_ms == 60_000
        assert config.fetch_concurrently is True

    def test_base_urls_are_http(self):
        for url in (settings.binance_futures_base_url, settings.binance_pm_base_url, settings.bybit_base_url):
            assert url.startswith("http")


class TestDerivedValues:
    """Test the Settings helper properties"""

    def test_cors_origins_list(self):
        config = Settings(cors_origins="http://a.test, http://b.test ,")
        assert config.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_backoff_policy(self):
        config = Settings(failure_threshold=3, initial_backoff_ms=1000, backoff_cap_exponent=2)
        assert config.backoff_policy == BackoffPolicy(3, 1000, 2)

    def test_default_base_url_per_kind(self):
        config = Settings()
        assert "fapi" in config.default_base_url(AccountKind.BINANCE_FUTURES)
        assert "papi" in config.default_base_url(AccountKind.BINANCE_PORTFOLIO_MARGIN)
        assert "bybit" in config.default_base_url(AccountKind.BYBIT_UNIFIED)


class TestAccountLoading:
    """Test load_account_configs()"""

    def test_accounts_from_env(self, monkeypatch):
        monkeypatch.setenv("ACCOUNTS", json.dumps(ACCOUNTS))

        accounts = load_account_configs(Settings())

        assert [a.name for a in accounts] == ["SF1", "PM1", "BY1"]
        assert accounts[1].exchange == "binance"
        assert accounts[1].kind == AccountKind.BINANCE_PORTFOLIO_MARGIN
        assert accounts[0].api_secret.get_secret_value() == "s1"

    def test_missing_base_url_filled_from_defaults(self):
        config = Settings(accounts=ACCOUNTS)

        accounts = {a.name: a for a in load_account_configs(config)}

        assert accounts["SF1"].base_url == config.binance_futures_base_url
        assert accounts["PM1"].base_url == config.binance_pm_base_url
        assert accounts["BY1"].base_url == "https://api-testnet.bybit.com"

    def test_accounts_file_appended(self, tmp_path):
        path = tmp_path / "accounts.json"
        path.write_text(json.dumps({"accounts": ACCOUNTS[2:]}), encoding="utf-8")

        accounts = load_account_configs(Settings(accounts=ACCOUNTS[:1], accounts_file=str(path)))

        assert [a.name for a in accounts] == ["SF1", "BY1"]

    def test_unsupported_account_passed_through(self):
        """Verify unsupported kinds are left for registration to reject"""
        raw = [{"name": "K1", "exchange": "kraken", "accountType": "spot"}]

        accounts = load_account_configs(Settings(accounts=raw))

        assert accounts[0].name == "K1"
        assert accounts[0].base_url is None

    def test_secret_not_in_repr(self):
        account = load_account_configs(Settings(accounts=ACCOUNTS[:1]))[0]
        assert "s1" not in repr(account)
        assert "apiSecret" not in account.public_view()


class TestConfigurationValidation:
    """Test that validation catches invalid configurations"""

    def test_validate_default_configuration(self):
        """Verify default configuration passes validation"""
        validate_configuration(Settings(accounts=ACCOUNTS))

    def test_invalid_port_fails(self):
        with pytest.raises(ValueError, match="Invalid port"):
            validate_configuration(Settings(app_port=70000))

    def test_invalid_log_level_fails(self):
        with pytest.raises(ValueError, match="LOG_LEVEL"):
            validate_configuration(Settings(log_level="LOUD"))

    def test_non_positive_interval_fails(self):
        with pytest.raises(ValueError, match="FETCH_INTERVAL_MS"):
            validate_configuration(Settings(fetch_interval_ms=0))

    def test_duplicate_account_names_only_warn(self, caplog):
        """Verify duplicate names are left to registration, which reports them"""
        with caplog.at_level(logging.WARNING, logger="positionhub"):
            validate_configuration(Settings(accounts=ACCOUNTS + ACCOUNTS[:1]))

        assert "Duplicate account names in configuration: SF1" in caplog.text
