"""Unified configuration schema for backlog_jira_sync.

Defines Pydantic models for the YAML config with one section per concern
(Jira connection, Backlog CLI, sync, watch, logging), plus an adapter to
the flat ``Config`` dataclass that collaborators are built from.

Usage:
    from backlog_jira_sync.config_schema import (
        UnifiedConfig, build_config, to_legacy_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_legacy_config(unified, cli_overrides={"url": "https://..."})
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

from .config import Config
from .sync.mapping import DEFAULT_PRIORITY_MAPPING, DEFAULT_STATUS_MAPPING
from .sync.models import ConflictStrategy
from .sync.watch import parse_interval

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class JiraConfig(BaseModel):
    """Jira connection settings.

    All fields are optional: env vars and CLI args can supply them at
    runtime instead.
    """

    url: str | None = Field(default=None, description="Jira base URL")
    email: str | None = Field(default=None, description="Account email")
    api_token: str | None = Field(default=None, description="API token")
    project_key: str | None = Field(
        default=None, description="Project for created and imported issues"
    )
    issue_type: str = Field(
        default="Task", description="Issue type for created issues"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class BacklogConfig(BaseModel):
    """Backlog.md CLI location and vocabulary tables."""

    cli_path: str = Field(
        default="backlog", description="Path to the backlog executable"
    )
    status_mapping: dict[str, list[str]] = Field(
        default_factory=lambda: dict(DEFAULT_STATUS_MAPPING),
        description="Local status -> acceptable Jira statuses",
    )
    priority_mapping: dict[str, list[str]] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_MAPPING),
        description="Local priority -> acceptable Jira priorities",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync engine settings."""

    conflict_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.PROMPT,
        description="Default conflict strategy",
    )
    batch_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Entities processed concurrently (1-100)",
    )
    state_dir: str = Field(
        default=".backlog-jira", description="Directory of the sync database"
    )
    db_name: str = Field(
        default="jira-sync.db", description="Sync database file name"
    )
    import_query: str | None = Field(
        default=None, description="Default JQL for 'pull --import'"
    )

    model_config = {"frozen": True}


class WatchConfig(BaseModel):
    """Watch mode settings.  Durations are in seconds."""

    interval: str = Field(default="60s", description="Time between cycles")
    strategy: ConflictStrategy = Field(
        default=ConflictStrategy.PREFER_LOCAL,
        description="Conflict strategy for unattended cycles",
    )
    stop_on_error: bool = Field(default=False)
    backoff_base: float = Field(default=5.0, gt=0)
    rate_limit_backoff_base: float = Field(default=30.0, gt=0)
    max_backoff: float = Field(default=300.0, gt=0)

    model_config = {"frozen": True}

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, value: str) -> str:
        parse_interval(value)
        return value

    @property
    def interval_seconds(self) -> float:
        return parse_interval(self.interval)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", pattern="^(text|json)$")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    jira: JiraConfig = Field(default_factory=JiraConfig)
    backlog: BacklogConfig = Field(default_factory=BacklogConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from ``load_hierarchical_config()`` output.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Flatten a ``UnifiedConfig`` into the ``Config`` dataclass.

    Precedence: CLI override > unified config value > default.  Override
    keys: url, email, api_token, project_key, insecure, debug.

    The result is NOT validated; run ``validate_config()`` on it.
    """
    overrides = cli_overrides or {}
    jira = unified.jira

    return Config(
        jira_url=overrides.get("url") or jira.url or "",
        email=overrides.get("email") or jira.email or "",
        api_token=overrides.get("api_token") or jira.api_token or "",
        project_key=overrides.get("project_key") or jira.project_key,
        issue_type=jira.issue_type,
        insecure=overrides.get("insecure", False) or jira.insecure,
        debug=overrides.get("debug", False) or jira.debug,
        backlog_cli=unified.backlog.cli_path,
        batch_size=unified.sync.batch_size,
    )
