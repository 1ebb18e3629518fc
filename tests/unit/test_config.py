"""
Unit tests for configuration loading.
"""

import logging

import json_log_formatter
import pytest

from fieldsync.config import ObservabilityConfig, ServerConfig, SyncConfig
from fieldsync.main import setup_logging


class TestServerConfig:
    """Tests for ServerConfig."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "FIELDSYNC_DB_PATH",
            "FIELDSYNC_SYNC_PAGE_LIMIT",
            "FIELDSYNC_SYNC_TICKET_TTL_DAYS",
            "FIELDSYNC_LOG_FORMAT",
            "FIELDSYNC_LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = ServerConfig.from_env()
        assert config.sync.page_limit == 2000
        assert config.sync.ticket_ttl_days == 7
        assert config.storage.wal_mode is True
        assert config.observability.log_format == "json"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FIELDSYNC_DB_PATH", str(tmp_path / "app.db"))
        monkeypatch.setenv("FIELDSYNC_SYNC_PAGE_LIMIT", "50")
        monkeypatch.setenv("FIELDSYNC_LOG_FORMAT", "text")

        config = ServerConfig.from_env()

        assert config.storage.path == str(tmp_path / "app.db")
        assert config.sync.page_limit == 50
        assert config.observability.log_format == "text"

    def test_rejects_non_positive_page_limit(self):
        config = ServerConfig(sync=SyncConfig(page_limit=0))
        with pytest.raises(ValueError, match="PAGE_LIMIT"):
            config.validate_settings()

    def test_rejects_unknown_log_format(self):
        config = ServerConfig(observability=ObservabilityConfig(log_format="xml"))
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate_settings()

    def test_from_env_validates(self, monkeypatch):
        monkeypatch.setenv("FIELDSYNC_SYNC_TICKET_TTL_DAYS", "0")
        with pytest.raises(ValueError):
            ServerConfig.from_env()


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="json")))
        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self):
        setup_logging(
            ServerConfig(observability=ObservabilityConfig(log_format="text", log_level="debug"))
        )
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
