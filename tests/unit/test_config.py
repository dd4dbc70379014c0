"""
Unit tests for environment-driven configuration.
"""

import logging

import json_log_formatter
import pytest

from tiering.tiervault.cold import LocalColdStore, S3ColdStore, create_cold_store
from tiering.tiervault.config import (
    ArchivalConfig,
    ColdBackend,
    LocalColdConfig,
    ReadConfig,
    RetryConfig,
    S3Config,
    ServerConfig,
)
from tiering.tiervault.main import setup_logging


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("COLD_BACKEND", "ARCHIVAL_AGE_DAYS", "HTTP_PORT", "COLD_PREFIX"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()

        assert config.cold_backend == ColdBackend.S3
        assert config.archival.age_threshold_days == 90
        assert config.read.hot_timeout_ms == 500
        assert config.read.cold_timeout_ms == 5000
        assert config.retry.max_attempts == 5
        assert config.http.port == 8080
        assert config.cold_prefix == "records"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("COLD_BACKEND", "local")
        monkeypatch.setenv("COLD_ROOT_DIR", "/tmp/cold")
        monkeypatch.setenv("COLD_PREFIX", "archive")
        monkeypatch.setenv("ARCHIVAL_AGE_DAYS", "30")
        monkeypatch.setenv("ARCHIVAL_MAX_WORKERS", "16")
        monkeypatch.setenv("RECONCILE_ENABLED", "false")
        monkeypatch.setenv("READ_MAX_ATTEMPTS", "1")

        config = ServerConfig.from_env()

        assert config.cold_backend == ColdBackend.LOCAL
        assert config.local_cold.root_dir == "/tmp/cold"
        assert config.cold_prefix == "archive"
        assert config.archival.age_threshold_ms == 30 * 24 * 3600 * 1000
        assert config.archival.max_workers == 16
        assert config.reconciliation.enabled is False
        assert config.retry.read_max_attempts == 1

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("COLD_BACKEND", "tape")
        with pytest.raises(ValueError, match="COLD_BACKEND"):
            ServerConfig.from_env()

    def test_control_db_defaults_under_data_dir(self, monkeypatch):
        monkeypatch.setenv("DATA_DIR", "/data")
        monkeypatch.delenv("CONTROL_DB_PATH", raising=False)
        assert ServerConfig.from_env().control.db_path == "/data/control.db"

    @pytest.mark.parametrize(
        "config",
        [
            ServerConfig(archival=ArchivalConfig(max_workers=0)),
            ServerConfig(archival=ArchivalConfig(max_inflight_hot_ops=0)),
            ServerConfig(archival=ArchivalConfig(batch_size=0)),
            ServerConfig(retry=RetryConfig(max_attempts=0)),
            ServerConfig(read=ReadConfig(hot_timeout_ms=1000, cold_timeout_ms=500)),
            ServerConfig(s3=S3Config(bucket="")),
        ],
    )
    def test_validate_rejects(self, config):
        with pytest.raises(ValueError):
            config.validate()

    def test_missing_bucket_ok_for_local(self):
        ServerConfig(cold_backend=ColdBackend.LOCAL, s3=S3Config(bucket="")).validate()

    def test_log_config_redacts_secrets(self, caplog):
        config = ServerConfig(s3=S3Config(access_key_id="AKIA", secret_access_key="hunter2"))
        with caplog.at_level(logging.INFO):
            config.log_config()

        for record in caplog.records:
            assert "hunter2" not in str(record.__dict__)


class TestColdStoreFactory:
    """Tests for create_cold_store()."""

    def test_s3(self):
        assert isinstance(create_cold_store(ServerConfig()), S3ColdStore)

    def test_local(self, tmp_path):
        config = ServerConfig(
            cold_backend=ColdBackend.LOCAL,
            local_cold=LocalColdConfig(root_dir=str(tmp_path)),
        )
        assert isinstance(create_cold_store(config), LocalColdStore)


class TestSetupLogging:
    """Tests for main.setup_logging()."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        setup_logging(ServerConfig.from_env())

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("botocore").level == logging.WARNING

    def test_text_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "text")
        setup_logging(ServerConfig.from_env())

        formatter = logging.getLogger().handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)
