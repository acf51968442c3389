from __future__ import annotations

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from croniter import CroniterBadCronError, croniter
from pydantic import BaseModel, Field, field_validator

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TOKEN_ENV = "GITHUB_TOKEN"
DEFAULT_OUT_DIR = "archives"
DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_REUSE_WINDOW_MINUTES = 60


class ConfigurationError(Exception):
    """Raised when the backup configuration is invalid or incomplete."""


# --- Auth --------------------------------------------------------------------


class GitHubAuthConfig(BaseModel):
    token: Optional[str] = Field(default=None, description="Explicit token string (discouraged).")
    token_env: str = Field(default=DEFAULT_TOKEN_ENV, description="Environment variable containing token.")

    def resolved_token(self) -> Optional[str]:
        if self.token:
            return self.token
        return os.getenv(self.token_env) or None


# --- Logging / scheduling ----------------------------------------------------


class LoggingConfig(BaseModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


class SchedulerConfig(BaseModel):
    cron: str
    timezone: str = "UTC"
    run_on_startup: bool = True

    @field_validator("cron")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        try:
            croniter(value, datetime.now())
        except (CroniterBadCronError, ValueError) as exc:  # pragma: no cover - library errors
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc
        return value

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except ZoneInfoNotFoundError as exc:  # pragma: no cover - library errors
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value


# --- Backup run --------------------------------------------------------------


class BackupConfig(BaseModel):
    auth: GitHubAuthConfig = GitHubAuthConfig()
    api_url: str = DEFAULT_API_URL
    out_dir: Path = Path(DEFAULT_OUT_DIR)
    force_new_migration: bool = False
    extract: bool = False
    keep_archives: bool = False
    exclude: List[str] = Field(default_factory=list, description="Regexes matched against user/org names.")
    exclude_repo: List[str] = Field(default_factory=list, description="Regexes matched against owner/repo.")
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, ge=0)
    reuse_window_minutes: int = Field(default=DEFAULT_REUSE_WINDOW_MINUTES, gt=0)
    logging: LoggingConfig = LoggingConfig()
    scheduler: Optional[SchedulerConfig] = None

    @field_validator("out_dir")
    @classmethod
    def _expand_out_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("exclude", "exclude_repo")
    @classmethod
    def _validate_patterns(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid exclusion pattern '{pattern}': {exc}") from exc
        return value


def read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return raw


def build_config(
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> BackupConfig:
    """Merge defaults, an optional YAML file and explicit overrides.

    Overrides whose value is ``None`` are ignored so that unset CLI flags do
    not clobber values coming from the file.
    """
    raw: Dict[str, Any] = read_config_file(path) if path else {}
    for key, value in (overrides or {}).items():
        if value is not None:
            raw[key] = value

    try:
        return BackupConfig.model_validate(raw)
    except Exception as exc:  # noqa: BLE001
        raise ConfigurationError(str(exc)) from exc


def load_config(path: Path) -> BackupConfig:
    return build_config(path)
