"""Configuration models for the apply worker.

Settings come from environment variables (``APPLY_`` prefix, ``__`` for
nested groups, optional ``.env``) or from a YAML file via
``Settings.from_yaml``. Each concern gets its own model so components only
receive the group they need.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DOMAIN_INTERVALS: dict[str, float] = {
    "greenhouse.io": 5.0,
    "lever.co": 5.0,
    "workday.com": 10.0,
    "icims.com": 8.0,
    "smartrecruiters.com": 6.0,
}

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BrowserConfig(BaseModel):
    """Browser pool configuration."""

    headless: bool = True
    timeout_ms: int = Field(default=30000, ge=1000)
    navigation_timeout_ms: int = Field(default=30000, ge=1000)
    viewport_width: int = Field(default=1920, ge=320)
    viewport_height: int = Field(default=1080, ge=240)
    max_concurrent_contexts: int = Field(default=5, ge=1)
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"
    timezone_id: str = "America/New_York"
    launch_args: list[str] = Field(
        default_factory=lambda: [
            "--disable-blink-features=AutomationControlled",
            "--disable-dev-shm-usage",
            "--no-sandbox",
        ],
    )


class WorkerConfig(BaseModel):
    """Task loop behaviour."""

    poll_interval_s: float = Field(default=5.0, gt=0.0)
    max_run_duration_s: float = Field(default=300.0, gt=0.0)
    dry_run: bool = False
    use_generic_answers: bool = False
    reclaim_stale_after_s: float | None = Field(default=None, gt=0.0)


class RetryConfig(BaseModel):
    """Exponential backoff for transient browser failures."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay_s: float = Field(default=1.0, ge=0.0)
    max_delay_s: float = Field(default=10.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)


class RateLimitConfig(BaseModel):
    """Minimum spacing between requests to the same registrable domain."""

    default_interval_s: float = Field(default=5.0, ge=0.0)
    domain_intervals: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_DOMAIN_INTERVALS),
    )

    @field_validator("domain_intervals")
    @classmethod
    def intervals_not_negative(cls, v: dict[str, float]) -> dict[str, float]:
        for domain, interval in v.items():
            if interval < 0:
                msg = f"interval for {domain} must not be negative"
                raise ValueError(msg)
        return {domain.lower(): interval for domain, interval in v.items()}


class ArtifactConfig(BaseModel):
    """Screenshot / snapshot capture."""

    enabled: bool = True
    upload: bool = True


class DatabaseConfig(BaseModel):
    """SQLite database and local file storage."""

    path: str = "data/worker.db"
    storage_dir: str = "data/storage"


class LogConfig(BaseModel):
    level: str = "INFO"
    structured: bool = False

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"unknown log level: {v}"
            raise ValueError(msg)
        return level


class Settings(BaseSettings):
    """Top-level settings, read from the environment or a YAML file."""

    model_config = SettingsConfigDict(
        env_prefix="APPLY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    artifacts: ArtifactConfig = Field(default_factory=ArtifactConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file. Environment variables fill keys the file omits."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls(**raw)
