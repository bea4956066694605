"""Git operations wrapper for localpipeline.

This module provides the git primitives the workspace provisioner needs,
using GitPython with structured logging: fetching the upstream default
branch, creating or force-resetting agent branches, and adding, removing
and pruning worktrees.

Example usage:
    >>> from pathlib import Path
    >>> from localpipeline.pipeline.git_ops import GitManager
    >>>
    >>> git_manager = GitManager(repo_path=Path("/work/project/main"))
    >>> git_manager.fetch("origin", "main")
    >>> git_manager.create_or_reset_branch("agent/ember/LIN-42-fix-auth", "origin/main")
    >>> git_manager.add_worktree(Path("/work/project/agent-ember"), "agent/ember/LIN-42-fix-auth")
"""

from __future__ import annotations

import shutil
from pathlib import Path

import git
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from localpipeline.logging import get_logger


class GitManager:
    """Worktree-oriented git operations on the main working copy.

    Attributes:
        repo_path: Path to the main working copy
        repo: GitPython Repo object
        logger: Structured logger instance
    """

    def __init__(self, repo_path: Path) -> None:
        """Open the repository at repo_path.

        Raises:
            InvalidGitRepositoryError: If repo_path is not a valid git repository
            NoSuchPathError: If repo_path does not exist
        """
        self.repo_path = repo_path
        self.logger = get_logger(__name__)

        try:
            self.repo = git.Repo(repo_path)
            self.logger.debug("git_manager_initialized", repo_path=str(repo_path))
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            self.logger.error(
                "git_manager_init_failed",
                repo_path=str(repo_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    def fetch(self, remote: str, branch: str) -> None:
        """Fetch ``branch`` from ``remote``.

        Raises:
            GitCommandError: If the fetch fails.
        """
        self.repo.git.fetch(remote, branch)
        self.logger.info("remote_fetched", remote=remote, branch=branch)

    def create_or_reset_branch(self, branch_name: str, start_point: str) -> str:
        """Create ``branch_name`` at ``start_point``, or force it there if it exists.

        Returns:
            The branch name.

        Raises:
            GitCommandError: If neither the create nor the forced reset works.
        """
        try:
            self.repo.git.branch(branch_name, start_point)
            self.logger.info(
                "branch_created", branch_name=branch_name, start_point=start_point
            )
        except GitCommandError:
            self.repo.git.branch("-f", branch_name, start_point)
            self.logger.info(
                "branch_reset", branch_name=branch_name, start_point=start_point
            )
        return branch_name

    def add_worktree(self, path: Path, branch_name: str) -> Path:
        """Check ``branch_name`` out into a new worktree at ``path``."""
        self.repo.git.worktree("add", str(path), branch_name)
        self.logger.info("worktree_added", path=str(path), branch_name=branch_name)
        return path

    def remove_worktree(self, path: Path) -> bool:
        """Remove the worktree at ``path``.

        Tries ``git worktree remove --force`` first. If git refuses (for
        example because the directory is not a registered worktree), the
        directory is deleted and stale worktree metadata pruned.

        Returns:
            True if something was removed, False if nothing existed.
        """
        if not path.exists():
            self.prune_worktrees()
            return False

        try:
            self.repo.git.worktree("remove", "--force", str(path))
            self.logger.info("worktree_removed", path=str(path))
        except GitCommandError as e:
            self.logger.warning(
                "worktree_remove_fallback",
                path=str(path),
                error=str(e),
            )
            shutil.rmtree(path, ignore_errors=True)
            self.prune_worktrees()
        return True

    def prune_worktrees(self) -> None:
        """Drop metadata of worktrees whose directories are gone."""
        try:
            self.repo.git.worktree("prune")
        except GitCommandError as e:
            self.logger.warning("worktree_prune_failed", error=str(e))

    def list_worktrees(self) -> list[Path]:
        """Paths of all worktrees registered with the repository."""
        output = self.repo.git.worktree("list", "--porcelain")
        return [
            Path(line.split(" ", 1)[1])
            for line in output.splitlines()
            if line.startswith("worktree ")
        ]
