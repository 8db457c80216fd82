"""Tests for environment-driven configuration."""
import logging

from osintforge.base import config as config_module
from osintforge.base.config import LogConfig, OsintConfig, StorageConfig, get_config, set_config, setup_logging


def test_defaults(tmp_path):
    cfg = OsintConfig(storage=StorageConfig(base_dir=tmp_path / "data"))
    assert cfg.sandbox.uploads_dir.name == "uploads"
    assert cfg.sandbox.max_output_bytes == 10 * 1024 * 1024
    assert cfg.webhook.max_attempts == 5
    assert cfg.webhook.backoff_seconds == (5, 30, 60, 300, 900)
    assert cfg.webhook.user_agent == "OSINT-Webhook/1.0"
    assert cfg.rate_limit.fail_open is True
    assert cfg.rate_limit.redis_url is None
    # base dir is created eagerly
    assert (tmp_path / "data").is_dir()
    assert cfg.storage.db_path == tmp_path / "data" / "osintforge.db"


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("OSINT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("OSINT_REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("OSINT_RATE_LIMIT_FAIL_OPEN", "false")
    monkeypatch.setenv("OSINT_UPLOADS_DIR", str(tmp_path / "in"))
    monkeypatch.setenv("OSINT_WEBHOOK_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("OSINT_WORKER_CONCURRENCY", "2")
    monkeypatch.setenv("OSINT_API_PORT", "9000")

    cfg = OsintConfig.from_env()

    assert cfg.storage.base_dir == tmp_path
    assert cfg.rate_limit.redis_url == "redis://cache:6379/1"
    assert cfg.rate_limit.fail_open is False
    assert cfg.sandbox.uploads_dir == tmp_path / "in"
    assert cfg.webhook.max_attempts == 3
    assert cfg.worker.concurrency == 2
    assert cfg.api_port == 9000


def test_empty_redis_url_means_memory(monkeypatch, tmp_path):
    monkeypatch.setenv("OSINT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("OSINT_REDIS_URL", "")
    assert OsintConfig.from_env().rate_limit.redis_url is None


def test_get_and_set_config(monkeypatch, tmp_path):
    monkeypatch.setattr(config_module, "_config", None)
    custom = OsintConfig(storage=StorageConfig(base_dir=tmp_path))
    set_config(custom)
    assert get_config() is custom


def test_setup_logging_with_file(tmp_path):
    cfg = OsintConfig(storage=StorageConfig(base_dir=tmp_path), log=LogConfig(file_enabled=True))
    setup_logging(cfg)
    root = logging.getLogger()
    try:
        assert any(type(h).__name__ == "RotatingFileHandler" for h in root.handlers)
    finally:
        for handler in list(root.handlers):
            if type(handler).__name__ == "RotatingFileHandler":
                root.removeHandler(handler)
                handler.close()
