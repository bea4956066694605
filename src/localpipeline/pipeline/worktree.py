"""Workspace provisioning for agent assignments.

Each agent works in its own git worktree, a sibling directory of the main
working copy named ``agent-{name}``, bound to a dedicated branch
``agent/{name}/{id}-{slug}`` that starts from the latest upstream default
branch.

The WorkspaceProvisioner handles:
- Deterministic branch and workspace naming
- Fetching the upstream default branch
- Replacing any previous workspace of the agent
- Creating or force-resetting the agent branch
- Writing the task-context document into the workspace
- Installing the workspace's dependencies

Every step failure is raised as ProvisioningFailure naming the step.

Example usage:
    >>> provisioner = WorkspaceProvisioner(GitConfig(repo_root=Path("/work/app/main")))
    >>> layout = provisioner.layout("ember", item)
    >>> provisioner.provision("ember", layout.branch, context_document)
"""

from __future__ import annotations

import re
import subprocess
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import NamedTuple

from localpipeline.config import GitConfig
from localpipeline.logging import get_logger
from localpipeline.models.work_item import WorkItem
from localpipeline.pipeline.git_ops import GitManager

CONTEXT_DOCUMENT_NAME = "CLAUDE.md"
MAX_SLUG_LENGTH = 40
MAX_SHORT_ID_LENGTH = 8

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class ProvisioningFailure(Exception):
    """Raised when a workspace provisioning step fails.

    Attributes:
        agent: Agent whose workspace was being provisioned.
        step: Name of the failed step (fetch, remove, branch, worktree,
            context, install).
        reason: Underlying error message.
    """

    def __init__(self, agent: str, step: str, reason: str) -> None:
        self.agent = agent
        self.step = step
        self.reason = reason
        super().__init__(f"Provisioning {step} failed for agent {agent}: {reason}")


class WorkspaceLayout(NamedTuple):
    """Branch and path an assignment will use."""

    branch: str
    path: Path


def slugify(title: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to one dash, trim, cap at 40."""
    slug = _NON_ALNUM.sub("-", title.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].strip("-")


def branch_name(agent: str, item_id: str, title: str) -> str:
    """Branch for an assignment: ``agent/{agent}/{id[:8]}-{slug}``."""
    short_id = item_id[:MAX_SHORT_ID_LENGTH]
    slug = slugify(title)
    if not slug:
        return f"agent/{agent}/{short_id}"
    return f"agent/{agent}/{short_id}-{slug}"


def workspace_path(repo_root: Path, agent: str) -> Path:
    """Sibling directory of the main working copy reserved for ``agent``."""
    return repo_root.parent / f"agent-{agent}"


class WorkspaceProvisioner:
    """Creates and resets per-agent git worktrees.

    Attributes:
        config: Git configuration (repo root, remote, default branch,
            install command).
        logger: Structured logger instance.
    """

    def __init__(self, config: GitConfig, git_manager: GitManager | None = None) -> None:
        self.config = config
        self.repo_root = config.repo_root
        self._git_manager = git_manager
        self.logger = get_logger(__name__)

    @property
    def git(self) -> GitManager:
        if self._git_manager is None:
            self._git_manager = GitManager(self.repo_root)
        return self._git_manager

    @property
    def upstream_ref(self) -> str:
        return f"{self.config.remote}/{self.config.main_branch}"

    def layout(self, agent: str, item: WorkItem) -> WorkspaceLayout:
        return WorkspaceLayout(
            branch=branch_name(agent, item.id, item.title),
            path=workspace_path(self.repo_root, agent),
        )

    @contextmanager
    def _step(self, agent: str, step: str) -> Iterator[None]:
        try:
            yield
        except ProvisioningFailure:
            raise
        except Exception as e:
            self.logger.error(
                "provisioning_step_failed",
                agent=agent,
                step=step,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProvisioningFailure(agent, step, str(e)) from e

    def provision(self, agent: str, branch: str, context_document: str) -> Path:
        """Produce a fresh workspace for ``agent`` on ``branch``.

        Blocking; callers on the event loop run it in a worker thread.

        Args:
            agent: Agent name; selects the workspace directory.
            branch: Branch to create or reset from the upstream default branch.
            context_document: Content written to CLAUDE.md in the workspace.

        Returns:
            Path of the ready workspace.

        Raises:
            ProvisioningFailure: If any step fails.
        """
        path = workspace_path(self.repo_root, agent)
        self.logger.info("provisioning_started", agent=agent, branch=branch, path=str(path))

        with self._step(agent, "open"):
            git_manager = self.git
        with self._step(agent, "fetch"):
            git_manager.fetch(self.config.remote, self.config.main_branch)
        with self._step(agent, "remove"):
            git_manager.remove_worktree(path)
        with self._step(agent, "branch"):
            git_manager.create_or_reset_branch(branch, self.upstream_ref)
        with self._step(agent, "worktree"):
            git_manager.add_worktree(path, branch)
        with self._step(agent, "context"):
            (path / CONTEXT_DOCUMENT_NAME).write_text(context_document, encoding="utf-8")
        with self._step(agent, "install"):
            self._install_dependencies(path)

        self.logger.info("provisioning_completed", agent=agent, branch=branch, path=str(path))
        return path

    def _install_dependencies(self, path: Path) -> None:
        command = self.config.install_command
        if not command:
            return
        result = subprocess.run(
            command,
            cwd=path,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            output = (result.stderr or result.stdout).strip()
            raise RuntimeError(
                f"{' '.join(command)} exited with code {result.returncode}: {output[-500:]}"
            )
        self.logger.debug("dependencies_installed", path=str(path), command=command)

    def cleanup(self, agent: str) -> bool:
        """Remove the agent's workspace, if any, and prune worktree metadata.

        Returns:
            True if a workspace directory was removed.
        """
        path = workspace_path(self.repo_root, agent)
        removed = self.git.remove_worktree(path)
        self.logger.info("workspace_cleaned", agent=agent, path=str(path), removed=removed)
        return removed
