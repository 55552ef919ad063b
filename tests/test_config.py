"""
Tests for environment driven configuration
"""

from summit_ledger import config as config_module
from summit_ledger.config import LedgerConfig, get_config, reload_config


class TestLedgerConfig:

    def teardown_method(self):
        reload_config()

    def test_defaults(self):
        config = LedgerConfig()
        assert config.lock_timeout_seconds == 5.0
        assert config.cost_basis_precision == 6
        assert config.deposit_savings_only is False
        assert config.min_initial_deposit == "0.00"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SUMMIT_LOCK_TIMEOUT_SECONDS", "0.5")
        monkeypatch.setenv("SUMMIT_DEPOSIT_SAVINGS_ONLY", "true")
        monkeypatch.setenv("SUMMIT_DATABASE_URL", "memory://")

        reloaded = reload_config()

        assert reloaded is get_config()
        assert reloaded is config_module.config
        assert reloaded.lock_timeout_seconds == 0.5
        assert reloaded.deposit_savings_only is True
        assert reloaded.database_url == "memory://"
