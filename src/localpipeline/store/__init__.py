"""Persisted state for localpipeline.

Three files under the data directory hold all shared state: the agent pool
(agents.json), the pending queue (queue.json) and the activity log
(agent-activity.jsonl).
"""

from localpipeline.store.activity import ActivityLog
from localpipeline.store.queue import PendingQueue
from localpipeline.store.registry import (
    AgentBusyError,
    AgentRegistry,
    PersistenceReadFailure,
    UnknownAgentError,
    is_process_alive,
)

__all__ = [
    "ActivityLog",
    "AgentBusyError",
    "AgentRegistry",
    "PendingQueue",
    "PersistenceReadFailure",
    "UnknownAgentError",
    "is_process_alive",
]
