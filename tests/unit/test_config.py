"""Unit tests for configuration management.

Tests cover:
- Default configuration values
- TOML file loading and search order
- Environment variable overrides
- Validation errors for invalid configurations
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from localpipeline.config import (
    DEFAULT_AGENT_NAMES,
    AgentsConfig,
    GitConfig,
    PipelineConfig,
    StorageConfig,
    TrackersConfig,
    WebConfig,
    load_config,
)
from localpipeline.trackers.base import CardStatus


@pytest.fixture(autouse=True)
def isolated_search_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep load_config away from the developer's real config files."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("localpipeline.config.DEFAULT_DATA_DIR", tmp_path / "home")


class TestAgentsConfig:
    """Test AgentsConfig defaults and validation."""

    def test_default_values(self) -> None:
        config = AgentsConfig()
        assert config.names == DEFAULT_AGENT_NAMES
        assert config.max_retries == 3
        assert config.poll_interval_seconds == 2.0
        assert config.command == "claude"
        assert config.command_args == ["--dangerously-skip-permissions"]
        assert config.auto_drain_queue is False

    def test_empty_pool_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least one name"):
            AgentsConfig(names=[])

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(ValidationError, match="unique"):
            AgentsConfig(names=["ember", "ember"])

    @pytest.mark.parametrize("name", ["Ember", "ember-1", "ember/x", ""])
    def test_names_must_be_slug_safe(self, name: str) -> None:
        with pytest.raises(ValidationError):
            AgentsConfig(names=[name])

    def test_retry_budget_bounds(self) -> None:
        AgentsConfig(max_retries=0)
        with pytest.raises(ValidationError):
            AgentsConfig(max_retries=-1)
        with pytest.raises(ValidationError):
            AgentsConfig(max_retries=11)


class TestOtherSections:
    """Test defaults of the remaining sections."""

    def test_git_defaults(self) -> None:
        config = GitConfig()
        assert config.main_branch == "main"
        assert config.remote == "origin"
        assert config.install_command == ["npm", "install"]

    def test_storage_paths(self, tmp_path: Path) -> None:
        config = StorageConfig(data_dir=tmp_path)
        assert config.reset_on_corrupt is True
        assert config.agents_file == tmp_path / "agents.json"
        assert config.queue_file == tmp_path / "queue.json"
        assert config.activity_file == tmp_path / "agent-activity.jsonl"
        assert config.logs_dir == tmp_path / "logs"

    def test_web_defaults(self) -> None:
        config = WebConfig()
        assert config.port == 3000
        assert config.webhook_secret is None

    def test_web_port_validation(self) -> None:
        with pytest.raises(ValidationError):
            WebConfig(port=0)

    def test_collaborators_resolve_import_paths(self) -> None:
        config = TrackersConfig(collaborators=["localpipeline.trackers.base:CardStatus"])
        assert config.collaborators == [CardStatus]


class TestLoadConfig:
    """Test TOML configuration loading."""

    def test_load_defaults_when_no_file(self) -> None:
        config = load_config()
        assert isinstance(config, PipelineConfig)
        assert config.agents.names == DEFAULT_AGENT_NAMES

    def test_explicit_path_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config(tmp_path / "missing.toml")

    def test_load_from_toml_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "custom.toml"
        config_file.write_text(
            """
[agents]
names = ["ember", "flow"]
max_retries = 5

[git]
repo_root = "/work/project/main"
main_branch = "develop"

[web]
webhook_secret = "s3cret"
"""
        )

        config = load_config(config_file)
        assert config.agents.names == ["ember", "flow"]
        assert config.agents.max_retries == 5
        assert config.git.repo_root == Path("/work/project/main")
        assert config.git.main_branch == "develop"
        assert config.web.webhook_secret == "s3cret"
        # Unspecified values stay default
        assert config.agents.command == "claude"
        assert config.web.port == 3000

    def test_search_current_directory(self, tmp_path: Path) -> None:
        (tmp_path / "localpipeline.toml").write_text("[web]\nport = 4567\n")
        assert load_config().web.port == 4567

    def test_search_data_dir(self, tmp_path: Path) -> None:
        home = tmp_path / "home"
        home.mkdir()
        (home / "config.toml").write_text("[agents]\nmax_retries = 1\n")
        assert load_config().agents.max_retries == 1

    def test_invalid_toml_value_raises_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "invalid.toml"
        config_file.write_text('[agents]\nmax_retries = "many"\n')

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(config_file)

    def test_unknown_key_rejected(self, tmp_path: Path) -> None:
        config_file = tmp_path / "typo.toml"
        config_file.write_text("[agents]\nmax_retry = 2\n")

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(config_file)

    def test_environment_variables_without_toml(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOCALPIPELINE_WEB__PORT", "9000")
        monkeypatch.setenv("LOCALPIPELINE_AGENTS__MAX_RETRIES", "5")
        monkeypatch.setenv("LOCALPIPELINE_LOGGING__LEVEL", "WARNING")

        config = load_config()
        assert config.web.port == 9000
        assert config.agents.max_retries == 5
        assert config.logging.level == "WARNING"
