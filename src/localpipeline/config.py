"""Configuration management for localpipeline.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Programmatic overrides (passed to PipelineConfig constructor)
2. Environment variables (LOCALPIPELINE_* prefix)
3. TOML configuration file
4. Default values defined in this module

Example TOML configuration:
    [agents]
    names = ["ember", "flow", "tempest", "terra"]
    max_retries = 3

    [git]
    repo_root = "/Users/me/work/project/main"

Example environment variable override:
    LOCALPIPELINE_WEB__WEBHOOK_SECRET="s3cret"
    LOCALPIPELINE_AGENTS__POLL_INTERVAL_SECONDS=5
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, ImportString, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AGENT_NAMES = ["ember", "flow", "tempest", "terra"]
DEFAULT_DATA_DIR = Path.home() / ".localpipeline"


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stdout only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALPIPELINE_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=20, ge=1, le=1000)
    retention_count: int = Field(default=5, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class AgentsConfig(BaseSettings):
    """Agent pool configuration.

    Attributes:
        names: Fixed, ordered pool of agent names. Order is the claim order.
        max_retries: Retry budget for a failed work item before it is released
        poll_interval_seconds: Interval of the retry supervisor loop
        command: Executable of the coding-agent subprocess
        command_args: Extra arguments appended after the task brief
        auto_drain_queue: Dispatch queued items when an agent becomes free
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALPIPELINE_AGENTS__",
        extra="forbid",
    )

    names: list[str] = Field(default_factory=lambda: list(DEFAULT_AGENT_NAMES))
    max_retries: int = Field(default=3, ge=0, le=10)
    poll_interval_seconds: float = Field(default=2.0, gt=0.0, le=300.0)
    command: str = Field(default="claude")
    command_args: list[str] = Field(
        default_factory=lambda: ["--dangerously-skip-permissions"]
    )
    auto_drain_queue: bool = Field(default=False)

    @field_validator("names")
    @classmethod
    def validate_names(cls, v: list[str]) -> list[str]:
        """Validate the pool is non-empty and has unique slug-safe names."""
        if not v:
            raise ValueError("Agent pool must contain at least one name")
        if len(set(v)) != len(v):
            raise ValueError(f"Agent names must be unique: {v}")
        for name in v:
            if not name.isalnum() or name.lower() != name:
                raise ValueError(f"Agent name must be lowercase alphanumeric: {name!r}")
        return v


class GitConfig(BaseSettings):
    """Git workspace configuration.

    Attributes:
        repo_root: Main working copy; agent workspaces are created next to it
        main_branch: Upstream default branch new agent branches start from
        remote: Remote the main branch is fetched from
        install_command: Dependency install command run inside a new workspace
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALPIPELINE_GIT__",
        extra="forbid",
    )

    repo_root: Path = Field(default_factory=Path.cwd)
    main_branch: str = Field(default="main")
    remote: str = Field(default="origin")
    install_command: list[str] = Field(default_factory=lambda: ["npm", "install"])


class StorageConfig(BaseSettings):
    """Persisted state configuration.

    Attributes:
        data_dir: Directory holding agents.json, queue.json, the activity log
            and the per-agent subprocess logs
        reset_on_corrupt: Reset the agent pool to idle when agents.json cannot
            be parsed (after backing it up). When False, startup fails instead.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALPIPELINE_STORAGE__",
        extra="forbid",
    )

    data_dir: Path = Field(default=DEFAULT_DATA_DIR)
    reset_on_corrupt: bool = Field(default=True)

    @property
    def agents_file(self) -> Path:
        return self.data_dir / "agents.json"

    @property
    def queue_file(self) -> Path:
        return self.data_dir / "queue.json"

    @property
    def activity_file(self) -> Path:
        return self.data_dir / "agent-activity.jsonl"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"


class WebConfig(BaseSettings):
    """Webhook server configuration.

    Attributes:
        host: Bind host address
        port: Bind port number
        webhook_secret: Shared secret expected in the X-Webhook-Secret header
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALPIPELINE_WEB__",
        extra="forbid",
    )

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    webhook_secret: str | None = Field(default=None)


class TrackersConfig(BaseSettings):
    """Tracker collaborator configuration.

    Attributes:
        collaborators: Import paths of tracker collaborator factories
            (``"package.module:factory"``), called without arguments. Their
            order is the order in which status updates are attempted.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALPIPELINE_TRACKERS__",
        extra="forbid",
    )

    collaborators: list[ImportString[Any]] = Field(default_factory=list)


class PipelineConfig(BaseSettings):
    """Root configuration for localpipeline.

    Environment variable format for nested config:
        LOCALPIPELINE_<SECTION>__<KEY>=value

    Example:
        LOCALPIPELINE_GIT__MAIN_BRANCH="develop"
        LOCALPIPELINE_AGENTS__MAX_RETRIES=5
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALPIPELINE_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    trackers: TrackersConfig = Field(default_factory=TrackersConfig)


def load_config(config_path: Path | None = None) -> PipelineConfig:
    """Load configuration from TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./localpipeline.toml (current directory)
    3. ~/.localpipeline/config.toml

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        PipelineConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If TOML file contains invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path = config_path
    else:
        search_paths = [
            Path.cwd() / "localpipeline.toml",
            DEFAULT_DATA_DIR / "config.toml",
        ]
        selected_path = None
        for path in search_paths:
            if path.exists():
                selected_path = path
                break

    if selected_path is not None:
        with open(selected_path, "rb") as f:
            toml_data = tomli.load(f)

    try:
        return PipelineConfig(**toml_data)
    except Exception as e:
        if selected_path:
            raise ValueError(
                f"Invalid configuration in {selected_path}: {e}"
            ) from e
        else:
            raise ValueError(f"Invalid configuration: {e}") from e
