"""Retry supervisor for the localpipeline agent pool.

A periodic loop over the registry that turns terminal agent states into
follow-up actions:

- done agents have their work item closed in the originating tracker and are
  released back to idle
- errored agents under the retry budget are relaunched on the same item
- errored agents over the budget get a failure log entry and a tracker
  comment, and are released

Handling of any one agent is at-most-once concurrently: an agent already
being finalized or retried is skipped until that handling completes.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import structlog

from localpipeline.config import AgentsConfig
from localpipeline.models.agent import AgentRecord, AgentStatus
from localpipeline.models.event import ActivityEventType
from localpipeline.orchestrator.dispatcher import Dispatcher
from localpipeline.orchestrator.synchronizer import StatusSynchronizer, SyncOutcome
from localpipeline.store.activity import ActivityLog
from localpipeline.store.queue import PendingQueue
from localpipeline.store.registry import AgentRegistry

logger = structlog.get_logger(__name__)

UNKNOWN_ERROR = "Unknown error"


class RetrySupervisor:
    """Background loop that finalizes, retries and releases agents.

    Attributes:
        config: Agent pool configuration (retry budget, poll interval).
        registry: Agent pool registry.
        dispatcher: Dispatcher used to relaunch errored agents.
        synchronizer: Tracker status synchronizer.
        activity: Activity log.
        logs_dir: Directory receiving ``agent-{name}-failures.log``.
        queue: Pending queue drained when ``auto_drain_queue`` is enabled.
    """

    def __init__(
        self,
        config: AgentsConfig,
        registry: AgentRegistry,
        dispatcher: Dispatcher,
        synchronizer: StatusSynchronizer,
        activity: ActivityLog,
        logs_dir: Path,
        queue: PendingQueue | None = None,
    ):
        self.config = config
        self.registry = registry
        self.dispatcher = dispatcher
        self.synchronizer = synchronizer
        self.activity = activity
        self.logs_dir = logs_dir
        self.queue = queue

        self._finalizing: set[str] = set()
        self._retrying: set[str] = set()
        self._draining = False
        self._pending: set[asyncio.Task[None]] = set()
        self._running = False
        self._loop_task: asyncio.Task[None] | None = None
        self._logger = logger.bind(component="RetrySupervisor")

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    async def start(self) -> None:
        """Start the supervision loop. No-op if already running."""
        if self._running:
            self._logger.warning("supervisor_already_running")
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._supervision_loop())
        self._logger.info(
            "supervisor_started",
            poll_interval=self.config.poll_interval_seconds,
            max_retries=self.max_retries,
        )

    async def stop(self) -> None:
        """Stop the loop and cancel in-flight handling."""
        if not self._running:
            self._logger.warning("supervisor_not_running")
            return

        self._running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass

        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._logger.info("supervisor_stopped")

    async def check_agents(self) -> list[asyncio.Task[None]]:
        """Run one supervision pass.

        Picks up state written by other processes, then schedules handling
        for every done or errored agent not already being handled.

        Returns:
            The tasks scheduled during this pass.
        """
        self.registry.refresh()
        scheduled: list[asyncio.Task[None]] = []

        for record in self.registry.get_all():
            name = record.name
            if record.status is AgentStatus.done and name not in self._finalizing:
                self._finalizing.add(name)
                scheduled.append(self._schedule(self._finalize(record), self._finalizing, name))
            elif record.status is AgentStatus.error and name not in self._retrying:
                self._retrying.add(name)
                if record.retry_count < self.max_retries:
                    handler = self._retry(record)
                else:
                    handler = self._give_up(record)
                scheduled.append(self._schedule(handler, self._retrying, name))

        if self.config.auto_drain_queue and self.queue is not None and not self._draining:
            if len(self.queue) and self.registry.get_next_free_agent() is not None:
                self._draining = True
                task = asyncio.create_task(self._drain_one())
                self._track(task)
                scheduled.append(task)

        return scheduled

    def _schedule(self, coro, guard: set[str], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"supervise-{name}")
        task.add_done_callback(lambda _: guard.discard(name))
        self._track(task)
        return task

    def _track(self, task: asyncio.Task[None]) -> None:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _finalize(self, record: AgentRecord) -> None:
        try:
            if record.work_item_id:
                result = await self.synchronizer.mark_done(
                    record.work_item_id, record.work_item_source
                )
                source = record.work_item_source or "tracker"
                if result.outcome is SyncOutcome.SYNCED:
                    self.activity.append_for(
                        record, ActivityEventType.MARKED_DONE, f"Marked as done in {source}"
                    )
                elif result.outcome is SyncOutcome.FAILED:
                    error = result.error or UNKNOWN_ERROR
                    self.activity.append_for(
                        record,
                        ActivityEventType.MARK_DONE_FAILED,
                        f"Could not mark as done in {source}: {error}",
                    )
        except Exception as e:
            self._logger.error(
                "finalize_sync_error", agent=record.name, error=str(e), exc_info=True
            )

        self._release(record, "Auto-released after completion")

    async def _retry(self, record: AgentRecord) -> None:
        attempt = self.registry.increment_retry(record.name)
        self.activity.append_for(
            record,
            ActivityEventType.RETRY,
            f"Retry {attempt}/{self.max_retries}: {record.error or UNKNOWN_ERROR}",
        )
        self._logger.info(
            "agent_retry_scheduled",
            agent=record.name,
            work_item_id=record.work_item_id,
            attempt=attempt,
            max_retries=self.max_retries,
        )
        try:
            await self.dispatcher.retry(record.name)
        except Exception as e:
            # The dispatcher records launch failures itself; anything here is unexpected.
            self._logger.error(
                "agent_retry_error", agent=record.name, error=str(e), exc_info=True
            )

    async def _give_up(self, record: AgentRecord) -> None:
        error = record.error or UNKNOWN_ERROR
        self.activity.append_for(
            record,
            ActivityEventType.MAX_RETRIES,
            f"Failed after {self.max_retries} attempts: {error}",
        )
        comment = f"Agent {record.name} failed after {self.max_retries} attempts: {error}"
        self._logger.warning(
            "agent_max_retries_exceeded",
            agent=record.name,
            work_item_id=record.work_item_id,
            error=error,
        )

        try:
            self._write_failure_log(record.name, comment)
        except OSError as e:
            self._logger.error("failure_log_write_failed", agent=record.name, error=str(e))

        if record.work_item_id:
            try:
                await self.synchronizer.add_comment(record.work_item_id, comment)
            except Exception as e:
                self._logger.error(
                    "failure_comment_error", agent=record.name, error=str(e), exc_info=True
                )

        self._release(record, "Released after max retries exceeded")

    def _write_failure_log(self, agent_name: str, comment: str) -> Path:
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        path = self.logs_dir / f"agent-{agent_name}-failures.log"
        stamp = datetime.now(timezone.utc).isoformat()
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"[{stamp}] {comment}\n")
        return path

    def _release(self, record: AgentRecord, message: str) -> None:
        self.activity.append_for(record, ActivityEventType.RELEASED, message)
        try:
            self.registry.release(record.name)
        except Exception as e:
            self._logger.error(
                "agent_release_failed", agent=record.name, error=str(e), exc_info=True
            )

    async def _drain_one(self) -> None:
        try:
            item = self.queue.peek() if self.queue is not None else None
            if item is None:
                return
            if self.registry.get_next_free_agent() is None:
                return
            self.queue.pop()
            agent = await self.dispatcher.dispatch_next(item)
            if agent is None:
                # Lost the free agent to a concurrent webhook; keep its place at the head.
                self.queue.requeue_front(item)
            else:
                self._logger.info("queued_item_dispatched", agent=agent, work_item_id=item.id)
        finally:
            self._draining = False

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _supervision_loop(self) -> None:
        self._logger.info("supervisor_loop_started")

        while self._running:
            try:
                await self.check_agents()
                await asyncio.sleep(self.config.poll_interval_seconds)
            except asyncio.CancelledError:
                self._logger.info("supervisor_loop_cancelled")
                break
            except Exception as e:
                self._logger.error("supervisor_loop_error", error=str(e), exc_info=True)
                await asyncio.sleep(self.config.poll_interval_seconds)
