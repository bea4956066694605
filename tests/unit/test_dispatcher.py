"""Unit tests for the dispatch controller.

The coding agent is replaced by a small shell script and the provisioner by
one that creates plain directories, so these tests exercise the real
subprocess launch and exit handling.

Tests cover:
- Dispatch to the first free agent and to a named agent
- Subprocess exit handling (success, non-zero exit)
- Provisioning and spawn failures
- Retry on the stored work item and branch
- Shutdown detaching from running subprocesses
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path

import pytest

from localpipeline.models.agent import AgentStatus
from localpipeline.models.event import ActivityEventType
from localpipeline.models.work_item import WorkItem
from localpipeline.orchestrator.dispatcher import Dispatcher
from localpipeline.store.activity import ActivityLog
from localpipeline.store.registry import AgentBusyError, AgentRegistry


async def finish(dispatcher: Dispatcher, agent: str) -> None:
    task = dispatcher.watcher_for(agent)
    if task is not None:
        await asyncio.wait_for(task, timeout=10)


async def stop_agents(dispatcher: Dispatcher, registry: AgentRegistry) -> None:
    await dispatcher.shutdown()
    for record in registry.get_all():
        if record.pid:
            try:
                os.kill(record.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass


def event_types(activity: ActivityLog, agent: str) -> list[ActivityEventType]:
    return [e.event for e in activity.read_events(agent=agent)]


@pytest.mark.asyncio
async def test_dispatch_next_runs_agent_to_done(
    make_dispatcher, agent_script, registry: AgentRegistry, activity: ActivityLog,
    item: WorkItem, data_dir: Path,
) -> None:
    dispatcher = make_dispatcher(agent_script(exit_code=0))

    agent = await dispatcher.dispatch_next(item)

    assert agent == "ember"
    working = registry.get_agent("ember")
    assert working.status is AgentStatus.working
    assert working.pid is not None
    assert working.branch == "agent/ember/LIN-42-fix-auth-flow"
    assert working.started_at is not None

    await finish(dispatcher, "ember")

    done = registry.get_agent("ember")
    assert done.status is AgentStatus.done
    assert done.pid is None
    assert done.work_item_id == "LIN-42"
    assert event_types(activity, "ember") == [
        ActivityEventType.DISPATCHED,
        ActivityEventType.WORKING,
        ActivityEventType.DONE,
    ]

    output = (data_dir / "logs" / "agent-ember.log").read_text()
    workspace = Path(done.workspace_path)
    assert str(workspace) in output
    assert "-p" in output
    assert 'You are agent "Ember"' in output
    assert (workspace / "CLAUDE.md").read_text().startswith("# acme-app")


@pytest.mark.asyncio
async def test_subprocess_log_is_appended(
    make_dispatcher, agent_script, registry: AgentRegistry, make_item, data_dir: Path
) -> None:
    dispatcher = make_dispatcher(agent_script(exit_code=0))

    await dispatcher.dispatch("flow", make_item(1))
    await finish(dispatcher, "flow")
    registry.release("flow")
    await dispatcher.dispatch("flow", make_item(2))
    await finish(dispatcher, "flow")

    output = (data_dir / "logs" / "agent-flow.log").read_text()
    assert "LIN-1: Task number 1" in output
    assert "LIN-2: Task number 2" in output


@pytest.mark.asyncio
async def test_non_zero_exit_moves_to_error(
    make_dispatcher, agent_script, registry: AgentRegistry, activity: ActivityLog,
    item: WorkItem,
) -> None:
    dispatcher = make_dispatcher(agent_script(exit_code=3))

    await dispatcher.dispatch_next(item)
    await finish(dispatcher, "ember")

    record = registry.get_agent("ember")
    assert record.status is AgentStatus.error
    assert record.error == "Process exited with code 3"
    assert record.pid is None
    errors = activity.read_events(agent="ember")[-1]
    assert errors.event is ActivityEventType.ERROR
    assert errors.message == "Process exited with code 3"


@pytest.mark.asyncio
async def test_provisioning_failure_moves_to_error(
    make_dispatcher, agent_script, registry: AgentRegistry, activity: ActivityLog,
    item: WorkItem,
) -> None:
    dispatcher = make_dispatcher(agent_script(), fail_step="fetch")

    agent = await dispatcher.dispatch_next(item)

    assert agent == "ember"
    assert dispatcher.watcher_for("ember") is None
    record = registry.get_agent("ember")
    assert record.status is AgentStatus.error
    assert "Provisioning fetch failed" in record.error
    assert record.work_item_id == "LIN-42"
    assert event_types(activity, "ember") == [
        ActivityEventType.DISPATCHED,
        ActivityEventType.ERROR,
    ]


@pytest.mark.asyncio
async def test_spawn_failure_moves_to_error(
    make_dispatcher, registry: AgentRegistry, item: WorkItem, tmp_path: Path
) -> None:
    dispatcher = make_dispatcher(str(tmp_path / "no-such-agent"))

    launched = await dispatcher.dispatch("terra", item)

    assert launched is False
    record = registry.get_agent("terra")
    assert record.status is AgentStatus.error
    assert record.error.startswith("Failed to spawn agent process for terra")


@pytest.mark.asyncio
async def test_dispatch_to_busy_agent_raises(
    make_dispatcher, agent_script, registry: AgentRegistry, make_item
) -> None:
    dispatcher = make_dispatcher(agent_script(sleep=5))
    await dispatcher.dispatch("ember", make_item(1))

    with pytest.raises(AgentBusyError):
        await dispatcher.dispatch("ember", make_item(2))

    assert registry.get_agent("ember").work_item_id == "LIN-1"
    await stop_agents(dispatcher, registry)


@pytest.mark.asyncio
async def test_dispatch_next_returns_none_when_all_busy(
    make_dispatcher, agent_script, registry: AgentRegistry, make_item
) -> None:
    dispatcher = make_dispatcher(agent_script(sleep=5))
    for n in range(4):
        assert await dispatcher.dispatch_next(make_item(n)) is not None

    assert await dispatcher.dispatch_next(make_item(99)) is None
    assert registry.agent_for_item("LIN-99") is None
    await stop_agents(dispatcher, registry)


@pytest.mark.asyncio
async def test_retry_relaunches_on_stored_branch(
    make_dispatcher, agent_script, registry: AgentRegistry, activity: ActivityLog,
    item: WorkItem,
) -> None:
    failing = make_dispatcher(agent_script(exit_code=1))
    await failing.dispatch_next(item)
    await finish(failing, "ember")
    registry.increment_retry("ember")
    branch = registry.get_agent("ember").branch

    succeeding = make_dispatcher(agent_script(exit_code=0))
    assert await succeeding.retry("ember") is True
    relaunched = registry.get_agent("ember")
    assert relaunched.status is AgentStatus.working
    assert relaunched.branch == branch
    assert relaunched.retry_count == 1
    assert relaunched.error is None

    await finish(succeeding, "ember")
    assert registry.get_agent("ember").status is AgentStatus.done
    assert event_types(activity, "ember").count(ActivityEventType.DISPATCHED) == 1


@pytest.mark.asyncio
async def test_retry_without_work_item_records_error(
    make_dispatcher, agent_script, registry: AgentRegistry, item: WorkItem
) -> None:
    dispatcher = make_dispatcher(agent_script())
    registry.mark_provisioning("flow", item, "", "/w")
    registry.mark_error("flow", "boom")

    assert await dispatcher.retry("flow") is False
    record = registry.get_agent("flow")
    assert record.status is AgentStatus.error
    assert "missing work item info" in record.error


@pytest.mark.asyncio
async def test_shutdown_detaches_running_agents(
    make_dispatcher, agent_script, registry: AgentRegistry, item: WorkItem
) -> None:
    dispatcher = make_dispatcher(agent_script(sleep=5))
    await dispatcher.dispatch_next(item)

    await dispatcher.shutdown()

    assert dispatcher.watcher_for("ember") is None
    assert registry.get_agent("ember").status is AgentStatus.working
    await stop_agents(dispatcher, registry)
