"""Dispatch controller for the localpipeline orchestrator.

The Dispatcher performs the end-to-end assignment of one work item to one
agent:

1. Record the intended assignment (agent -> provisioning) before any
   external side effect, so a crash mid-provision is still attributable.
2. Provision the agent's git worktree (in a worker thread).
3. Render the task brief and launch the coding-agent subprocess, its
   combined output appended to ``logs/agent-{name}.log``.
4. Move the agent to working with the subprocess id.
5. Watch the subprocess in a background task: exit code 0 moves the agent
   to done, anything else (or an error while waiting) to error.

Every transition is paired with an activity event. Failures before launch
move the agent straight to error; retrying is the RetrySupervisor's job.
Apart from claim validation in ``dispatch``, no exception leaves this class.

There is deliberately no subprocess timeout: a hung subprocess is only
noticed as stale after a restart.
"""

from __future__ import annotations

import asyncio
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import IO

import structlog

from localpipeline.config import AgentsConfig
from localpipeline.context.generator import ContextGenerator
from localpipeline.logging import bind_agent_context
from localpipeline.models.event import ActivityEventType
from localpipeline.models.work_item import WorkItem
from localpipeline.orchestrator.state_machine import InvalidTransitionError
from localpipeline.pipeline.worktree import WorkspaceLayout, WorkspaceProvisioner
from localpipeline.store.activity import ActivityLog
from localpipeline.store.registry import AgentRegistry

logger = structlog.get_logger(__name__)


class SpawnFailure(Exception):
    """Raised when the coding-agent subprocess cannot be started."""

    def __init__(self, agent: str, reason: str) -> None:
        self.agent = agent
        self.reason = reason
        super().__init__(f"Failed to spawn agent process for {agent}: {reason}")


class Dispatcher:
    """Assigns work items to agents and launches their subprocesses.

    Attributes:
        config: Agent pool configuration (command, arguments).
        registry: Agent pool registry; the only writer of agent state.
        provisioner: Workspace provisioner for git worktrees.
        context_generator: Renders the task brief and context document.
        activity: Activity log receiving lifecycle events.
        logs_dir: Directory of the per-agent subprocess logs.
    """

    def __init__(
        self,
        config: AgentsConfig,
        registry: AgentRegistry,
        provisioner: WorkspaceProvisioner,
        context_generator: ContextGenerator,
        activity: ActivityLog,
        logs_dir: Path,
    ) -> None:
        self.config = config
        self.registry = registry
        self.provisioner = provisioner
        self.context_generator = context_generator
        self.activity = activity
        self.logs_dir = logs_dir

        self._watchers: dict[str, asyncio.Task[None]] = {}
        self._logger = logger.bind(component="Dispatcher")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def dispatch(self, agent_name: str, item: WorkItem) -> bool:
        """Dispatch ``item`` to a specific idle agent.

        Returns:
            True if the subprocess was launched, False if the attempt failed
            (the agent is then in error).

        Raises:
            UnknownAgentError: If agent_name is not a pool member.
            AgentBusyError: If the agent is not idle.
        """
        layout = self.provisioner.layout(agent_name, item)
        self.registry.mark_provisioning(agent_name, item, layout.branch, layout.path)
        self._record_dispatched(agent_name, item)
        return await self._launch(agent_name, item, layout)

    async def dispatch_next(self, item: WorkItem) -> str | None:
        """Claim the first free agent and dispatch ``item`` to it.

        Only the claim and the launch are awaited, not the subprocess.

        Returns:
            The claimed agent name, or None if every agent is busy.
        """
        agent_name = self.registry.claim_next_free(item, self.provisioner.layout)
        if agent_name is None:
            self._logger.info("all_agents_busy", work_item_id=item.id)
            return None

        self._record_dispatched(agent_name, item)
        await self._launch(agent_name, item, self.provisioner.layout(agent_name, item))
        return agent_name

    async def retry(self, agent_name: str) -> bool:
        """Relaunch an errored agent on its stored work item and branch.

        The workspace is reset from the upstream default branch. Failures are
        recorded on the agent (error status), never raised.

        Returns:
            True if the subprocess was relaunched.
        """
        record = self.registry.get_agent(agent_name)
        if not record.work_item_id or not record.work_item_title or not record.branch:
            self._fail(
                agent_name,
                WorkItem(id=record.work_item_id or "unknown", title=record.work_item_title or ""),
                f"Agent {agent_name} missing work item info for retry",
            )
            return False

        item = WorkItem(
            id=record.work_item_id,
            title=record.work_item_title,
            source=record.work_item_source or "",
        )
        layout = WorkspaceLayout(
            branch=record.branch,
            path=self.provisioner.layout(agent_name, item).path,
        )
        self._logger.info(
            "agent_retry_launching",
            agent=agent_name,
            work_item_id=item.id,
            retry_count=record.retry_count,
        )
        return await self._launch(agent_name, item, layout)

    # ------------------------------------------------------------------
    # Launch sequence
    # ------------------------------------------------------------------

    def _record_dispatched(self, agent_name: str, item: WorkItem) -> None:
        self.activity.append(
            agent_name,
            ActivityEventType.DISPATCHED,
            work_item_id=item.id,
            work_item_title=item.title,
        )
        self._logger.info(
            "work_item_dispatched",
            agent=agent_name,
            work_item_id=item.id,
            source=item.source,
        )

    async def _launch(self, agent_name: str, item: WorkItem, layout: WorkspaceLayout) -> bool:
        try:
            context_document = self.context_generator.build_context_document(
                agent_name, layout.branch
            )
            workspace = await asyncio.to_thread(
                self.provisioner.provision, agent_name, layout.branch, context_document
            )
            brief = self.context_generator.build_task_brief(item, agent_name)
            process, log_file = await self._spawn(agent_name, item, brief, workspace)
        except Exception as e:
            self._fail(agent_name, item, str(e))
            return False

        try:
            self.registry.mark_busy(
                agent_name,
                item.id,
                item.title,
                item.source,
                layout.branch,
                workspace,
                process.pid,
            )
        except InvalidTransitionError as e:
            # Agent was released while we were provisioning.
            self._logger.warning(
                "agent_changed_during_launch", agent=agent_name, error=str(e)
            )
            process.terminate()
            log_file.close()
            return False

        self.activity.append(
            agent_name,
            ActivityEventType.WORKING,
            work_item_id=item.id,
            work_item_title=item.title,
        )
        self._logger.info(
            "agent_process_started",
            agent=agent_name,
            work_item_id=item.id,
            pid=process.pid,
            workspace=str(workspace),
        )

        self._watchers[agent_name] = asyncio.create_task(
            self._watch(agent_name, item, process, log_file),
            name=f"agent-watch-{agent_name}",
        )
        return True

    async def _spawn(
        self, agent_name: str, item: WorkItem, brief: str, workspace: Path
    ) -> tuple[asyncio.subprocess.Process, IO[bytes]]:
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.logs_dir / f"agent-{agent_name}.log"
        log_file = open(log_path, "ab")
        stamp = datetime.now(timezone.utc).isoformat()
        log_file.write(f"\n=== {stamp} {item.id}: {item.title} ===\n".encode())
        log_file.flush()

        args = [self.config.command, "-p", brief, *self.config.command_args]
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(workspace),
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            log_file.close()
            raise SpawnFailure(agent_name, str(e)) from e
        return process, log_file

    async def _watch(
        self,
        agent_name: str,
        item: WorkItem,
        process: asyncio.subprocess.Process,
        log_file: IO[bytes],
    ) -> None:
        bind_agent_context(agent_name, item.id)
        try:
            code = await process.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(agent_name, item, str(e))
            return
        finally:
            log_file.close()
            self._watchers.pop(agent_name, None)

        if code != 0:
            self._fail(agent_name, item, f"Process exited with code {code}")
            return

        try:
            self.registry.mark_done(agent_name)
        except InvalidTransitionError as e:
            self._logger.warning("agent_done_ignored", agent=agent_name, error=str(e))
            return
        self.activity.append(
            agent_name,
            ActivityEventType.DONE,
            work_item_id=item.id,
            work_item_title=item.title,
        )
        self._logger.info("agent_process_succeeded", agent=agent_name, work_item_id=item.id)

    def _fail(self, agent_name: str, item: WorkItem, message: str) -> None:
        try:
            self.registry.mark_error(agent_name, message)
        except InvalidTransitionError as e:
            self._logger.warning("agent_error_ignored", agent=agent_name, error=str(e))
            return
        self.activity.append(
            agent_name,
            ActivityEventType.ERROR,
            work_item_id=item.id,
            work_item_title=item.title,
            message=message,
        )
        self._logger.error(
            "agent_failed", agent=agent_name, work_item_id=item.id, error=message
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def watcher_for(self, agent_name: str) -> asyncio.Task[None] | None:
        """Background task watching the agent's subprocess, if one is running."""
        return self._watchers.get(agent_name)

    async def shutdown(self) -> None:
        """Stop watching subprocesses. The subprocesses themselves keep running."""
        watchers = list(self._watchers.values())
        for task in watchers:
            task.cancel()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)
        self._watchers.clear()
        self._logger.info("dispatcher_shutdown", detached=len(watchers))
