"""Tests for configuration management."""

import logging
import pytest

from src.utils import config as config_module
from src.utils.config import Config, get_config, reset_config


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Isolate every test from the process environment and the singleton."""
    for variable in (
        config_module.ENVIRONMENT_VARIABLE,
        config_module.POS_CUSTOMER_VARIABLE,
        config_module.DATABASE_URL_VARIABLE,
    ):
        monkeypatch.delenv(variable, raising=False)
    reset_config()
    yield
    reset_config()


class TestConfig:
    """Tests for the Config class."""

    def test_testing_uses_in_memory_database(self):
        config = Config("testing")

        assert config.database_path is None
        assert config.database_url == "sqlite:///:memory:"
        assert config.database_exists()
        assert config.is_testing

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValueError):
            Config("staging")

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv(config_module.DATABASE_URL_VARIABLE, "sqlite:////tmp/cafe.db")

        assert Config("testing").database_url == "sqlite:////tmp/cafe.db"

    def test_pos_customer_from_environment(self, monkeypatch):
        monkeypatch.setenv(config_module.POS_CUSTOMER_VARIABLE, "42")

        assert Config("testing").pos_customer_id == "42"

    def test_explicit_pos_customer_wins(self, monkeypatch):
        monkeypatch.setenv(config_module.POS_CUSTOMER_VARIABLE, "42")

        assert Config("testing", pos_customer_id="7").pos_customer_id == "7"

    def test_pos_customer_unset(self):
        assert Config("testing").pos_customer_id is None


class TestGetConfig:
    """Tests for the configuration singleton."""

    def test_environment_from_variable(self, monkeypatch):
        monkeypatch.setenv(config_module.ENVIRONMENT_VARIABLE, "testing")

        assert get_config().environment == "testing"

    def test_singleton_does_not_switch_environment(self, caplog):
        first = get_config("testing")

        with caplog.at_level(logging.WARNING):
            second = get_config("development")

        assert second is first
        assert second.environment == "testing"
        assert "Returning existing singleton" in caplog.text
