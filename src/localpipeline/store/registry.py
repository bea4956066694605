"""Agent pool registry for localpipeline.

The registry is the single source of truth for agent state. It holds one
AgentRecord per member of the fixed pool, persists the whole pool to
agents.json after every mutation, and detects dead subprocesses whenever it
loads state from disk, so restart recovery is a side effect of loading.

All reads-then-writes run under one re-entrant lock. ``claim_next_free``
finds an idle agent and moves it to provisioning inside that lock, which
closes the check-then-act race between concurrent webhook deliveries.

Example usage:
    >>> registry = AgentRegistry(Path("~/.localpipeline/agents.json"), ["ember", "flow"])
    >>> name = registry.claim_next_free(item, provisioner.layout)
    >>> registry.mark_busy(name, item.id, item.title, item.source, branch, path, pid)
    >>> registry.mark_done(name)
    >>> registry.release(name)
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from localpipeline.logging import get_logger
from localpipeline.models.agent import AgentRecord, AgentStatus
from localpipeline.models.work_item import WorkItem
from localpipeline.orchestrator.state_machine import ensure_transition
from localpipeline.store.files import file_signature, quarantine, read_json, write_json_atomic

logger = get_logger(__name__)

STALE_PROCESS_MESSAGE = "Process died unexpectedly"

# (agent name, item) -> (branch, workspace path)
LayoutFn = Callable[[str, WorkItem], tuple[str, Any]]


class UnknownAgentError(KeyError):
    """Raised when a name outside the configured pool is used."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown agent: {name}")


class AgentBusyError(Exception):
    """Raised when an explicit claim targets an agent that is not idle."""

    def __init__(self, name: str, status: AgentStatus) -> None:
        self.name = name
        self.status = status
        super().__init__(f"Agent {name} is not idle (status: {status.value})")


class PersistenceReadFailure(Exception):
    """Raised when persisted agent state exists but cannot be read."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read agent state from {path}: {reason}")


def is_process_alive(pid: int) -> bool:
    """Return True if ``pid`` refers to a running process."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except (ProcessLookupError, OverflowError):
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    return True


class AgentRegistry:
    """Durable, crash-consistent store of the fixed agent pool.

    Attributes:
        path: Location of agents.json.
        agent_names: Pool members in claim order.
        reset_on_corrupt: Reset to idle defaults (after backing the file up)
            when agents.json is unreadable, instead of raising
            PersistenceReadFailure.
    """

    def __init__(
        self,
        path: Path,
        agent_names: Sequence[str],
        reset_on_corrupt: bool = True,
        process_probe: Callable[[int], bool] = is_process_alive,
    ) -> None:
        if not agent_names:
            raise ValueError("Agent pool must contain at least one name")
        self.path = path
        self.agent_names: tuple[str, ...] = tuple(agent_names)
        self.reset_on_corrupt = reset_on_corrupt
        self._process_probe = process_probe
        self._lock = threading.RLock()
        self._agents: dict[str, AgentRecord] = {}
        self._signature: tuple[int, int, int] | None = None
        self._logger = logger.bind(component="AgentRegistry")

        self.load_or_init()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_or_init(self) -> list[str]:
        """Load persisted state, fill in missing agents, detect dead processes.

        Returns:
            Names of agents that were moved to error by stale detection.

        Raises:
            PersistenceReadFailure: If agents.json is unreadable and
                reset_on_corrupt is False.
        """
        with self._lock:
            self._agents = self._read()
            self._signature = file_signature(self.path)
            if self._signature is None:
                self._save()
            return self._detect_stale_processes()

    def reload(self) -> list[str]:
        """Re-read agents.json, discarding in-memory state."""
        return self.load_or_init()

    def refresh(self) -> bool:
        """Reload only if another process rewrote agents.json since our last write.

        Returns:
            True if state was reloaded.
        """
        with self._lock:
            if file_signature(self.path) == self._signature:
                return False
            self.load_or_init()
            return True

    def _defaults(self) -> dict[str, AgentRecord]:
        return {name: AgentRecord.default(name) for name in self.agent_names}

    def _read(self) -> dict[str, AgentRecord]:
        agents = self._defaults()
        if not self.path.exists():
            return agents

        try:
            raw = read_json(self.path)
            stored = raw.get("agents", {}) if isinstance(raw, dict) else None
            if not isinstance(stored, dict):
                raise ValueError("'agents' must be an object")
            for name in self.agent_names:
                record = stored.get(name)
                if not isinstance(record, dict):
                    continue
                merged = {**agents[name].to_storage(), **record, "name": name}
                agents[name] = AgentRecord.model_validate(merged)
        except (OSError, ValueError, ValidationError) as e:
            return self._handle_unreadable(e)

        return agents

    def _handle_unreadable(self, error: Exception) -> dict[str, AgentRecord]:
        if not self.reset_on_corrupt:
            self._logger.error(
                "agent_state_unreadable",
                path=str(self.path),
                error=str(error),
                error_type=type(error).__name__,
            )
            raise PersistenceReadFailure(self.path, str(error)) from error

        backup: Path | None
        try:
            backup = quarantine(self.path)
        except OSError:
            backup = None
        self._logger.warning(
            "agent_state_reset_to_defaults",
            path=str(self.path),
            backup=str(backup) if backup else None,
            error=str(error),
            error_type=type(error).__name__,
        )
        defaults = self._defaults()
        self._agents = defaults
        self._save()
        return defaults

    def _detect_stale_processes(self) -> list[str]:
        stale: list[str] = []
        for name in self.agent_names:
            record = self._agents[name]
            if not record.has_live_assignment or record.pid is None:
                continue
            if self._process_probe(record.pid):
                continue
            self._agents[name] = record.model_copy(
                update={
                    "status": AgentStatus.error,
                    "error": STALE_PROCESS_MESSAGE,
                    "pid": None,
                }
            )
            stale.append(name)
            self._logger.warning(
                "stale_process_detected",
                agent=name,
                pid=record.pid,
                previous_status=record.status.value,
                work_item_id=record.work_item_id,
            )

        if stale:
            self._save()
        return stale

    def _save(self) -> None:
        document = {
            "agents": {name: self._agents[name].to_storage() for name in self.agent_names}
        }
        write_json_atomic(self.path, document)
        self._signature = file_signature(self.path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_all(self) -> list[AgentRecord]:
        """Snapshot of every agent in pool order."""
        with self._lock:
            return [self._agents[name].model_copy() for name in self.agent_names]

    def get_agent(self, name: str) -> AgentRecord:
        """Snapshot of a single agent.

        Raises:
            UnknownAgentError: If name is not a pool member.
        """
        with self._lock:
            return self._require(name).model_copy()

    def get_next_free_agent(self) -> str | None:
        """Name of the first idle agent in pool order, or None."""
        with self._lock:
            for name in self.agent_names:
                if self._agents[name].is_idle:
                    return name
            return None

    def agent_for_item(self, work_item_id: str) -> AgentRecord | None:
        """The non-idle agent currently assigned to a work item, if any."""
        with self._lock:
            for name in self.agent_names:
                record = self._agents[name]
                if not record.is_idle and record.work_item_id == work_item_id:
                    return record.model_copy()
            return None

    def _require(self, name: str) -> AgentRecord:
        try:
            return self._agents[name]
        except KeyError:
            raise UnknownAgentError(name) from None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, name: str, target: AgentStatus, **changes: Any) -> AgentRecord:
        with self._lock:
            record = self._require(name)
            ensure_transition(record.status, target, name)
            updated = record.model_copy(update={"status": target, **changes})
            self._agents[name] = updated
            self._save()

        self._logger.info(
            "agent_transition",
            agent=name,
            from_status=record.status.value,
            to_status=target.value,
            work_item_id=updated.work_item_id,
        )
        return updated.model_copy()

    def claim_next_free(self, item: WorkItem, layout: LayoutFn) -> str | None:
        """Atomically claim the first idle agent for ``item``.

        The agent is moved to provisioning with the branch and workspace
        returned by ``layout`` before the lock is released.

        Returns:
            The claimed agent name, or None when every agent is busy.
        """
        with self._lock:
            name = self.get_next_free_agent()
            if name is None:
                return None
            branch, workspace_path = layout(name, item)
            self.mark_provisioning(name, item, branch, workspace_path)
            return name

    def mark_provisioning(
        self,
        name: str,
        item: WorkItem,
        branch: str,
        workspace_path: str | Path,
    ) -> AgentRecord:
        """Record the intended assignment before any external side effect.

        Raises:
            UnknownAgentError: If name is not a pool member.
            AgentBusyError: If the agent is not idle.
        """
        with self._lock:
            record = self._require(name)
            if not record.is_idle:
                raise AgentBusyError(name, record.status)
            return self._transition(
                name,
                AgentStatus.provisioning,
                work_item_id=item.id,
                work_item_title=item.title,
                work_item_source=item.source,
                branch=branch,
                workspace_path=str(workspace_path),
                pid=None,
                error=None,
                started_at=None,
            )

    def mark_busy(
        self,
        name: str,
        work_item_id: str,
        work_item_title: str,
        work_item_source: str | None,
        branch: str,
        workspace_path: str | Path,
        pid: int,
    ) -> AgentRecord:
        """Move to working with the running subprocess id.

        The retry counter is kept; it is only reset by release.
        """
        return self._transition(
            name,
            AgentStatus.working,
            work_item_id=work_item_id,
            work_item_title=work_item_title,
            work_item_source=work_item_source,
            branch=branch,
            workspace_path=str(workspace_path),
            pid=pid,
            started_at=datetime.now(timezone.utc).isoformat(),
            error=None,
        )

    def mark_done(self, name: str) -> AgentRecord:
        return self._transition(name, AgentStatus.done, pid=None)

    def mark_error(self, name: str, message: str) -> AgentRecord:
        return self._transition(name, AgentStatus.error, error=message, pid=None)

    def increment_retry(self, name: str) -> int:
        """Increment and persist the retry counter.

        Returns:
            The new retry count.
        """
        with self._lock:
            record = self._require(name)
            count = record.retry_count + 1
            self._agents[name] = record.model_copy(update={"retry_count": count})
            self._save()
        self._logger.info("agent_retry_incremented", agent=name, retry_count=count)
        return count

    def release(self, name: str, force: bool = False) -> AgentRecord:
        """Reset an agent to a fresh idle record.

        Args:
            name: Agent to release.
            force: Skip transition validation (operator release of an agent
                stuck in provisioning or working).

        Raises:
            InvalidTransitionError: If not forced and the agent is neither
                done nor error.
        """
        with self._lock:
            record = self._require(name)
            if not force:
                ensure_transition(record.status, AgentStatus.idle, name)
            fresh = AgentRecord.default(name)
            self._agents[name] = fresh
            self._save()

        self._logger.info(
            "agent_released",
            agent=name,
            previous_status=record.status.value,
            work_item_id=record.work_item_id,
            forced=force,
        )
        return fresh.model_copy()
