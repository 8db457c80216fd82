# osintforge/base/config.py
# Environment-driven configuration for the job pipeline

from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class SandboxConfig:
    docker_binary: str = "docker"
    # Only files under this directory may be bind-mounted into a container
    uploads_dir: Path = field(default_factory=lambda: Path.home() / ".osintforge" / "uploads")
    max_timeout_ms: int = 900_000
    max_output_bytes: int = 10 * 1024 * 1024
    pull_timeout_seconds: float = 600.0
    kill_grace_seconds: float = 2.0
    pids_limit: int = 256


@dataclass(frozen=True)
class RateLimitConfig:
    redis_url: Optional[str] = None
    fail_open: bool = True
    key_prefix: str = "ratelimit"


@dataclass(frozen=True)
class WebhookConfig:
    max_attempts: int = 5
    timeout_seconds: float = 30.0
    test_timeout_seconds: float = 10.0
    user_agent: str = "OSINT-Webhook/1.0"
    backoff_seconds: Tuple[int, ...] = (5, 30, 60, 300, 900)
    max_response_body: int = 1000
    retry_poll_interval: float = 5.0
    retry_batch_size: int = 50
    # Added to the request timeout to form the claim lease of an in-flight delivery
    lease_grace_seconds: float = 30.0


@dataclass(frozen=True)
class WorkerConfig:
    concurrency: int = 5


@dataclass(frozen=True)
class StorageConfig:
    base_dir: Path = field(default_factory=lambda: Path.home() / ".osintforge")
    db_name: str = "osintforge.db"

    @property
    def db_path(self) -> Path:
        return self.base_dir / self.db_name


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_enabled: bool = False
    file_name: str = "osintforge.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


@dataclass
class OsintConfig:
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)
    debug: bool = False
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    def __post_init__(self):
        self.storage.base_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "OsintConfig":
        sandbox = SandboxConfig(
            docker_binary=os.getenv("OSINT_DOCKER_BINARY", "docker"),
            uploads_dir=Path(os.getenv("OSINT_UPLOADS_DIR", str(Path.home() / ".osintforge" / "uploads"))),
            max_timeout_ms=int(os.getenv("OSINT_TOOL_MAX_TIMEOUT_MS", "900000")),
            max_output_bytes=int(os.getenv("OSINT_MAX_OUTPUT_BYTES", str(10 * 1024 * 1024))),
            pull_timeout_seconds=float(os.getenv("OSINT_IMAGE_PULL_TIMEOUT", "600")),
        )

        rate_limit = RateLimitConfig(
            redis_url=os.getenv("OSINT_REDIS_URL") or None,
            # Fail open by default: a Redis outage must not take intake down
            fail_open=_env_bool("OSINT_RATE_LIMIT_FAIL_OPEN", "true"),
        )

        webhook = WebhookConfig(
            max_attempts=int(os.getenv("OSINT_WEBHOOK_MAX_ATTEMPTS", "5")),
            timeout_seconds=float(os.getenv("OSINT_WEBHOOK_TIMEOUT", "30")),
            retry_poll_interval=float(os.getenv("OSINT_WEBHOOK_RETRY_POLL", "5")),
        )

        worker = WorkerConfig(
            concurrency=int(os.getenv("OSINT_WORKER_CONCURRENCY", "5")),
        )

        base_dir = Path(os.getenv("OSINT_DATA_DIR", str(Path.home() / ".osintforge")))
        storage = StorageConfig(base_dir=base_dir)

        log = LogConfig(
            level=os.getenv("OSINT_LOG_LEVEL", "INFO"),
            file_enabled=_env_bool("OSINT_LOG_FILE", "false"),
        )

        return cls(
            sandbox=sandbox,
            rate_limit=rate_limit,
            webhook=webhook,
            worker=worker,
            storage=storage,
            log=log,
            debug=_env_bool("OSINT_DEBUG", "false"),
            api_host=os.getenv("OSINT_API_HOST", "127.0.0.1"),
            api_port=int(os.getenv("OSINT_API_PORT", "8765")),
        )


_config: Optional[OsintConfig] = None


def get_config() -> OsintConfig:
    global _config
    if _config is None:
        _config = OsintConfig.from_env()
    return _config


def set_config(config: OsintConfig) -> None:
    global _config
    _config = config


def setup_logging(config: Optional[OsintConfig] = None) -> None:
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        log_path = cfg.storage.base_dir / cfg.log.file_name
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, cfg.log.level.upper()),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
