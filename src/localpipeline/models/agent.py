"""Agent record model for localpipeline.

Defines the AgentStatus enum and the AgentRecord persisted for every member
of the fixed agent pool. Records are serialized with camelCase keys so the
agents.json file stays readable by the dashboard tooling that shares it.
"""

from __future__ import annotations

import enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AgentStatus(str, enum.Enum):
    """Lifecycle of a pool agent.

    States:
        idle: Free to take a work item.
        provisioning: Claimed; its workspace is being prepared.
        working: The coding-agent subprocess is running.
        done: The subprocess exited successfully; awaiting release.
        error: Provisioning, spawning or the subprocess failed.
    """

    idle = "idle"
    provisioning = "provisioning"
    working = "working"
    done = "done"
    error = "error"


class AgentRecord(BaseModel):
    """Persisted state of one pool agent.

    Attributes:
        name: Pool member name, immutable.
        status: Current lifecycle state.
        work_item_id: Assigned work item id (None iff status is idle).
        work_item_title: Assigned work item title.
        work_item_source: Name of the tracker the work item came from.
        branch: Git branch the agent works on.
        workspace_path: Path of the agent's git worktree.
        pid: Subprocess id while provisioning/working.
        started_at: ISO timestamp of the last launch.
        error: Last failure message.
        retry_count: Retries since the last release.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=False,
    )

    name: str
    status: AgentStatus = AgentStatus.idle
    work_item_id: str | None = None
    work_item_title: str | None = None
    work_item_source: str | None = None
    branch: str | None = None
    workspace_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("workspacePath", "worktreePath", "workspace_path"),
        serialization_alias="workspacePath",
    )
    pid: int | None = None
    started_at: str | None = None
    error: str | None = None
    retry_count: int = 0

    @property
    def is_idle(self) -> bool:
        return self.status == AgentStatus.idle

    @property
    def has_live_assignment(self) -> bool:
        """Whether a subprocess may currently be running for this agent."""
        return self.status in (AgentStatus.provisioning, AgentStatus.working)

    def to_storage(self) -> dict[str, object]:
        """Serialize to the camelCase document stored in agents.json."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def default(cls, name: str) -> AgentRecord:
        """Fresh idle record for a pool member."""
        return cls(name=name)
