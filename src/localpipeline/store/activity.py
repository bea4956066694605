"""Append-only activity log.

One JSON-encoded ActivityEvent per line in ``agent-activity.jsonl``.
Readers skip lines that do not parse instead of failing.
"""

from __future__ import annotations

import threading
from pathlib import Path

from pydantic import ValidationError

from localpipeline.logging import get_logger
from localpipeline.models.agent import AgentRecord
from localpipeline.models.event import ActivityEvent, ActivityEventType

logger = get_logger(__name__)


class ActivityLog:
    """Writer and reader for the lifecycle event log.

    Attributes:
        path: Location of the JSONL file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def record(self, event: ActivityEvent) -> ActivityEvent:
        """Append a prepared event."""
        line = event.to_json_line()
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

        logger.debug(
            "activity_recorded",
            agent=event.agent,
            event_type=event.event.value,
            work_item_id=event.work_item_id,
        )
        return event

    def append(
        self,
        agent: str,
        event: ActivityEventType,
        work_item_id: str | None = None,
        work_item_title: str | None = None,
        message: str | None = None,
    ) -> ActivityEvent:
        return self.record(
            ActivityEvent(
                agent=agent,
                event=event,
                work_item_id=work_item_id,
                work_item_title=work_item_title,
                message=message,
            )
        )

    def append_for(
        self,
        record: AgentRecord,
        event: ActivityEventType,
        message: str | None = None,
    ) -> ActivityEvent:
        """Append an event carrying the agent's current work item."""
        return self.append(
            record.name,
            event,
            work_item_id=record.work_item_id,
            work_item_title=record.work_item_title,
            message=message,
        )

    def read_events(
        self, agent: str | None = None, limit: int | None = None
    ) -> list[ActivityEvent]:
        """Read events oldest first.

        Args:
            agent: Only return events for this agent.
            limit: Only return the most recent ``limit`` events.

        Returns:
            Parsed events; malformed lines are skipped.
        """
        if not self.path.exists():
            return []

        events: list[ActivityEvent] = []
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = ActivityEvent.model_validate_json(line)
                except ValidationError:
                    continue
                if agent is not None and event.agent != agent:
                    continue
                events.append(event)

        if limit is not None and len(events) > limit:
            events = events[len(events) - limit :]
        return events
