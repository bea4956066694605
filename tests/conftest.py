"""Shared fixtures: on-disk stores in a temp data dir, sample work items, a stand-in agent."""

from __future__ import annotations

from pathlib import Path

import pytest

from fakes import POOL, FakeProvisioner
from localpipeline.config import AgentsConfig, GitConfig, PipelineConfig, StorageConfig
from localpipeline.context.generator import ContextGenerator
from localpipeline.models.work_item import WorkItem
from localpipeline.orchestrator.dispatcher import Dispatcher
from localpipeline.store.activity import ActivityLog
from localpipeline.store.queue import PendingQueue
from localpipeline.store.registry import AgentRegistry


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def registry(data_dir: Path) -> AgentRegistry:
    return AgentRegistry(data_dir / "agents.json", POOL)


@pytest.fixture
def queue(data_dir: Path) -> PendingQueue:
    return PendingQueue(data_dir / "queue.json")


@pytest.fixture
def activity(data_dir: Path) -> ActivityLog:
    return ActivityLog(data_dir / "agent-activity.jsonl")


@pytest.fixture
def agents_config() -> AgentsConfig:
    return AgentsConfig(names=POOL, max_retries=3, poll_interval_seconds=0.05)


@pytest.fixture
def pipeline_config(tmp_path: Path, data_dir: Path, agents_config: AgentsConfig) -> PipelineConfig:
    repo_root = tmp_path / "repos" / "main"
    repo_root.mkdir(parents=True)
    return PipelineConfig(
        agents=agents_config,
        git=GitConfig(repo_root=repo_root, install_command=[]),
        storage=StorageConfig(data_dir=data_dir),
    )


@pytest.fixture
def item() -> WorkItem:
    return WorkItem(
        id="LIN-42",
        title="Fix auth flow",
        description="Users are logged out after refresh.",
        source="Linear",
        labels=["bug"],
    )


@pytest.fixture
def make_item():
    def make(n: int, source: str = "Linear") -> WorkItem:
        return WorkItem(id=f"LIN-{n}", title=f"Task number {n}", source=source)

    return make


@pytest.fixture
def agent_script(tmp_path: Path):
    """Factory for stand-in coding-agent executables.

    The script prints its working directory and arguments, optionally
    sleeps, then exits with the given code.
    """

    def make(exit_code: int = 0, sleep: float = 0) -> str:
        path = tmp_path / "bin" / f"fake-agent-{exit_code}-{sleep}"
        path.parent.mkdir(exist_ok=True)
        path.write_text(
            "#!/bin/sh\n"
            "pwd\n"
            "printf '%s\\n' \"$@\"\n"
            f"sleep {sleep}\n"
            f"exit {exit_code}\n"
        )
        path.chmod(0o755)
        return str(path)

    return make


@pytest.fixture
def make_dispatcher(pipeline_config: PipelineConfig, registry, activity, data_dir: Path):
    """Factory for a Dispatcher wired to the shared registry and activity log."""

    def make(command: str, fail_step: str | None = None) -> Dispatcher:
        agents = pipeline_config.agents.model_copy(update={"command": command, "command_args": []})
        return Dispatcher(
            agents,
            registry,
            FakeProvisioner(pipeline_config.git, fail_step=fail_step),
            ContextGenerator(project_name="acme-app"),
            activity,
            data_dir / "logs",
        )

    return make
