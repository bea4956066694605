"""Wiring of the orchestrator components from configuration.

Both the webhook server and the CLI build the same object graph: registry,
queue and activity log on disk, the workspace provisioner, the dispatcher,
the status synchronizer and the retry supervisor.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from localpipeline.config import PipelineConfig
from localpipeline.context.generator import ContextGenerator
from localpipeline.logging import get_logger
from localpipeline.orchestrator.dispatcher import Dispatcher
from localpipeline.orchestrator.supervisor import RetrySupervisor
from localpipeline.orchestrator.synchronizer import StatusSynchronizer
from localpipeline.pipeline.worktree import WorkspaceProvisioner
from localpipeline.store.activity import ActivityLog
from localpipeline.store.queue import PendingQueue
from localpipeline.store.registry import AgentRegistry
from localpipeline.trackers import build_collaborators

logger = get_logger(__name__)


@dataclass
class PipelineRuntime:
    """The assembled orchestrator."""

    config: PipelineConfig
    registry: AgentRegistry
    queue: PendingQueue
    activity: ActivityLog
    provisioner: WorkspaceProvisioner
    dispatcher: Dispatcher
    synchronizer: StatusSynchronizer
    supervisor: RetrySupervisor


def build_runtime(
    config: PipelineConfig,
    collaborators: Sequence[Any] | None = None,
    provisioner: WorkspaceProvisioner | None = None,
) -> PipelineRuntime:
    """Build every component, loading (and recovering) persisted agent state.

    Args:
        config: Loaded configuration.
        collaborators: Tracker collaborators; defaults to instantiating
            ``config.trackers.collaborators``.
        provisioner: Workspace provisioner override.
    """
    storage = config.storage
    storage.data_dir.mkdir(parents=True, exist_ok=True)

    registry = AgentRegistry(
        storage.agents_file,
        config.agents.names,
        reset_on_corrupt=storage.reset_on_corrupt,
    )
    queue = PendingQueue(storage.queue_file)
    activity = ActivityLog(storage.activity_file)

    if collaborators is None:
        collaborators = build_collaborators(config.trackers.collaborators)
    synchronizer = StatusSynchronizer(collaborators)

    if provisioner is None:
        provisioner = WorkspaceProvisioner(config.git)
    context_generator = ContextGenerator(project_name=config.git.repo_root.name)

    dispatcher = Dispatcher(
        config.agents,
        registry,
        provisioner,
        context_generator,
        activity,
        storage.logs_dir,
    )
    supervisor = RetrySupervisor(
        config.agents,
        registry,
        dispatcher,
        synchronizer,
        activity,
        storage.logs_dir,
        queue=queue,
    )

    logger.info(
        "runtime_built",
        agents=list(registry.agent_names),
        data_dir=str(storage.data_dir),
        repo_root=str(config.git.repo_root),
        collaborators=[c.name for c in synchronizer.collaborators],
    )
    return PipelineRuntime(
        config=config,
        registry=registry,
        queue=queue,
        activity=activity,
        provisioner=provisioner,
        dispatcher=dispatcher,
        synchronizer=synchronizer,
        supervisor=supervisor,
    )
