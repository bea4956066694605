"""Test doubles shared by unit and integration tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from localpipeline.config import GitConfig
from localpipeline.models.work_item import WorkItem
from localpipeline.pipeline.worktree import (
    CONTEXT_DOCUMENT_NAME,
    ProvisioningFailure,
    WorkspaceProvisioner,
    workspace_path,
)

POOL = ["ember", "flow", "tempest", "terra"]


class FakeTracker:
    """In-memory tracker collaborator recording every call.

    Capabilities are opted into per instance so tests can model trackers that
    lack some of them.
    """

    def __init__(
        self,
        name: str,
        capabilities: tuple[str, ...] = ("move_to_status", "add_comment", "mark_done"),
        fail: bool = False,
    ) -> None:
        self.name = name
        self.fail = fail
        self.calls: list[tuple[Any, ...]] = []
        for cap in capabilities:
            setattr(self, cap, self._recorder(cap))

    def _recorder(self, cap: str):
        async def call(*args: Any) -> None:
            self.calls.append((cap, *args))
            if self.fail:
                raise RuntimeError(f"{self.name} rejected {cap}")

        return call

    def fetch_assigned_items(self) -> list[WorkItem]:
        return []

    def calls_for(self, cap: str) -> list[tuple[Any, ...]]:
        return [c[1:] for c in self.calls if c[0] == cap]


class FakeProvisioner(WorkspaceProvisioner):
    """Creates plain directories instead of git worktrees."""

    def __init__(self, config: GitConfig, fail_step: str | None = None) -> None:
        super().__init__(config)
        self.fail_step = fail_step
        self.provisioned: list[tuple[str, str]] = []

    def provision(self, agent: str, branch: str, context_document: str) -> Path:
        if self.fail_step is not None:
            raise ProvisioningFailure(agent, self.fail_step, "simulated failure")
        path = workspace_path(self.repo_root, agent)
        path.mkdir(parents=True, exist_ok=True)
        (path / CONTEXT_DOCUMENT_NAME).write_text(context_document, encoding="utf-8")
        self.provisioned.append((agent, branch))
        return path
