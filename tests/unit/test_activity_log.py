"""Unit tests for the append-only activity log."""

from __future__ import annotations

import json
from pathlib import Path

from localpipeline.models.agent import AgentRecord, AgentStatus
from localpipeline.models.event import ActivityEventType
from localpipeline.store.activity import ActivityLog


def test_read_missing_file(activity: ActivityLog) -> None:
    assert activity.read_events() == []


def test_append_writes_one_json_line_per_event(data_dir: Path, activity: ActivityLog) -> None:
    activity.append("ember", ActivityEventType.DISPATCHED, "LIN-42", "Fix auth flow")
    activity.append("ember", ActivityEventType.WORKING, "LIN-42", "Fix auth flow")

    lines = (data_dir / "agent-activity.jsonl").read_text().splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["agent"] == "ember"
    assert first["event"] == "dispatched"
    assert first["workItemId"] == "LIN-42"
    assert first["workItemTitle"] == "Fix auth flow"
    assert "timestamp" in first


def test_append_for_copies_work_item(activity: ActivityLog) -> None:
    record = AgentRecord(
        name="flow",
        status=AgentStatus.error,
        work_item_id="LIN-7",
        work_item_title="Seven",
    )

    event = activity.append_for(record, ActivityEventType.RETRY, "Retry 1/3: boom")

    assert event.work_item_id == "LIN-7"
    assert event.work_item_title == "Seven"
    assert activity.read_events()[0].message == "Retry 1/3: boom"


def test_read_filters_and_limits(activity: ActivityLog) -> None:
    for n in range(5):
        activity.append("ember", ActivityEventType.RETRY, f"LIN-{n}")
        activity.append("flow", ActivityEventType.ERROR, f"LIN-{n}")

    ember = activity.read_events(agent="ember")
    assert len(ember) == 5
    assert {e.agent for e in ember} == {"ember"}

    latest = activity.read_events(limit=3)
    assert [(e.agent, e.work_item_id) for e in latest] == [
        ("flow", "LIN-3"),
        ("ember", "LIN-4"),
        ("flow", "LIN-4"),
    ]


def test_malformed_lines_are_skipped(data_dir: Path, activity: ActivityLog) -> None:
    activity.append("ember", ActivityEventType.DONE, "LIN-1")
    with open(data_dir / "agent-activity.jsonl", "a", encoding="utf-8") as f:
        f.write("not json\n\n")
        f.write('{"agent": "ember", "event": "exploded"}\n')
    activity.append("ember", ActivityEventType.RELEASED, "LIN-1")

    events = activity.read_events()
    assert [e.event for e in events] == [ActivityEventType.DONE, ActivityEventType.RELEASED]
