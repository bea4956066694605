"""Durable FIFO of work items that arrived while every agent was busy.

The queue is a single JSON document (``{"items": [...]}``) rewritten as a
whole on every change. Items leave the queue only through ``pop`` or
``clear``; nothing drains it automatically unless the retry supervisor is
configured with ``auto_drain_queue``.
"""

from __future__ import annotations

import threading
from pathlib import Path

from pydantic import ValidationError

from localpipeline.logging import get_logger
from localpipeline.models.work_item import WorkItem
from localpipeline.store.files import quarantine, read_json, write_json_atomic

logger = get_logger(__name__)


class PendingQueue:
    """On-disk FIFO of deferred work items.

    Attributes:
        path: Location of queue.json.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._logger = logger.bind(component="PendingQueue")

    def _load(self) -> list[WorkItem]:
        if not self.path.exists():
            return []
        try:
            raw = read_json(self.path)
            items = raw["items"] if isinstance(raw, dict) else None
            if not isinstance(items, list):
                raise ValueError("'items' must be a list")
            return [WorkItem.model_validate(entry) for entry in items]
        except (OSError, ValueError, KeyError, ValidationError) as e:
            backup = quarantine(self.path)
            self._logger.warning(
                "pending_queue_unreadable",
                path=str(self.path),
                backup=str(backup),
                error=str(e),
            )
            return []

    def _save(self, items: list[WorkItem]) -> None:
        write_json_atomic(self.path, {"items": [item.to_storage() for item in items]})

    def enqueue(self, item: WorkItem) -> int:
        """Append an item to the tail.

        Returns:
            The queue length after appending.
        """
        with self._lock:
            items = self._load()
            items.append(item)
            self._save(items)
        self._logger.info("work_item_queued", work_item_id=item.id, queue_length=len(items))
        return len(items)

    def list_items(self) -> list[WorkItem]:
        """All queued items, oldest first."""
        with self._lock:
            return self._load()

    def peek(self) -> WorkItem | None:
        with self._lock:
            items = self._load()
            return items[0] if items else None

    def pop(self) -> WorkItem | None:
        """Remove and return the oldest item, or None when empty."""
        with self._lock:
            items = self._load()
            if not items:
                return None
            head = items.pop(0)
            self._save(items)
        self._logger.info("work_item_dequeued", work_item_id=head.id, queue_length=len(items))
        return head

    def requeue_front(self, item: WorkItem) -> int:
        """Put a popped item back at the head, ahead of later arrivals.

        Returns:
            The queue length after inserting.
        """
        with self._lock:
            items = self._load()
            items.insert(0, item)
            self._save(items)
        self._logger.info("work_item_requeued", work_item_id=item.id, queue_length=len(items))
        return len(items)

    def clear(self) -> int:
        """Drop every queued item.

        Returns:
            Number of items removed.
        """
        with self._lock:
            count = len(self._load())
            self._save([])
        self._logger.info("pending_queue_cleared", removed=count)
        return count

    def __len__(self) -> int:
        return len(self.list_items())
