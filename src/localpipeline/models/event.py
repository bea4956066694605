"""Activity event model.

Activity events are the append-only lifecycle record written by every
component and read back by observability tooling.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ActivityEventType(str, enum.Enum):
    """Kinds of lifecycle events written to the activity log."""

    DISPATCHED = "dispatched"
    WORKING = "working"
    DONE = "done"
    ERROR = "error"
    RETRY = "retry"
    MAX_RETRIES = "max-retries"
    RELEASED = "released"
    MARKED_DONE = "marked-done"
    MARK_DONE_FAILED = "mark-done-failed"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ActivityEvent(BaseModel):
    """One line of the activity log.

    Attributes:
        timestamp: ISO-8601 UTC time the event was recorded.
        agent: Name of the agent the event concerns.
        event: Event kind.
        work_item_id: Work item involved, if any.
        work_item_title: Title of the work item involved, if any.
        message: Free-form detail (error text, retry counter, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: str = Field(default_factory=utc_now_iso)
    agent: str
    event: ActivityEventType
    work_item_id: str | None = None
    work_item_title: str | None = None
    message: str | None = None

    def to_json_line(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
