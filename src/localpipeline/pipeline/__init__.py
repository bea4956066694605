"""Workspace pipeline: git operations and per-agent worktree provisioning."""

from localpipeline.pipeline.git_ops import GitManager
from localpipeline.pipeline.worktree import (
    ProvisioningFailure,
    WorkspaceLayout,
    WorkspaceProvisioner,
    branch_name,
    slugify,
    workspace_path,
)

__all__ = [
    "GitManager",
    "ProvisioningFailure",
    "WorkspaceLayout",
    "WorkspaceProvisioner",
    "branch_name",
    "slugify",
    "workspace_path",
]
