"""Data models for localpipeline.

This module defines the agent pool record, the normalized work item, and
the activity event written to the append-only activity log.
"""

from localpipeline.models.agent import AgentRecord, AgentStatus
from localpipeline.models.event import ActivityEvent, ActivityEventType
from localpipeline.models.work_item import WorkItem

__all__ = [
    "AgentRecord",
    "AgentStatus",
    "ActivityEvent",
    "ActivityEventType",
    "WorkItem",
]
