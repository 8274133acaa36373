import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentdock.constants import (
    CANCEL_CHECK_INTERVAL,
    CLAUDE_DEFAULT_MODEL,
    CLEANUP_INTERVAL,
    CODEX_DEFAULT_MODEL,
    CODEX_REASONING_EFFORT,
    CODEX_RESUME_POLL_INTERVAL,
    CODEX_RESUME_TIMEOUT,
    EVENT_QUEUE_CAPACITY,
    HEARTBEAT_INTERVAL,
    JOB_MAX_ATTEMPTS,
    JOB_RETENTION_DAYS,
    POLL_INTERVAL,
    RETRY_BASE_DELAY,
    WORKER_CONCURRENCY,
)

AGENTDOCK_DIR = Path.home() / ".agentdock"
CODEX_HISTORY_PATH = Path.home() / ".codex" / "history.jsonl"
CLAUDE_PROJECTS_DIR = Path.home() / ".claude" / "projects"


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AGENTDOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        populate_by_name=True,
    )

    data_dir: Path = Field(default_factory=lambda: AGENTDOCK_DIR)
    log_level: str = "INFO"
    log_json: bool = False

    # Worker pool
    worker_concurrency: int = WORKER_CONCURRENCY
    poll_interval: float = POLL_INTERVAL
    cancel_check_interval: float = CANCEL_CHECK_INTERVAL
    cleanup_interval: float = CLEANUP_INTERVAL

    # Retry / retention
    job_max_attempts: int = JOB_MAX_ATTEMPTS
    retry_base_delay: float = RETRY_BASE_DELAY
    job_retention_days: int = JOB_RETENTION_DAYS

    # SSE
    event_queue_capacity: int = EVENT_QUEUE_CAPACITY
    heartbeat_interval: float = HEARTBEAT_INTERVAL

    # Claude (SDK)
    claude_model: str = CLAUDE_DEFAULT_MODEL
    claude_cli_path: Path | None = None

    # Codex (subprocess)
    codex_command: str = "codex"
    codex_model: str = CODEX_DEFAULT_MODEL
    codex_reasoning_effort: str = CODEX_REASONING_EFFORT
    codex_history_path: Path = Field(default_factory=lambda: CODEX_HISTORY_PATH)
    codex_resume_timeout: float = CODEX_RESUME_TIMEOUT
    codex_resume_poll_interval: float = CODEX_RESUME_POLL_INTERVAL

    # Sessions must live under this directory when set
    projects_root: Path | None = None

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelNamesMapping().get(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("worker_concurrency", "job_max_attempts", "event_queue_capacity", "job_retention_days")
    @classmethod
    def _validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator(
        "poll_interval",
        "cancel_check_interval",
        "cleanup_interval",
        "heartbeat_interval",
        "codex_resume_timeout",
        "codex_resume_poll_interval",
    )
    @classmethod
    def _validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"interval must be positive, got {v}")
        return v

    @field_validator("retry_base_delay")
    @classmethod
    def _validate_base_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"retry_base_delay must be >= 0, got {v}")
        return v

    @field_validator("projects_root")
    @classmethod
    def _validate_projects_root(cls, v: Path | None) -> Path | None:
        if v is None:
            return v
        return v.expanduser().resolve()

    @property
    def db_path(self) -> Path:
        return self.data_dir / "agentdock.db"


def get_config() -> Config:
    return Config()
