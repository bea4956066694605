"""Tracker collaborator capability interface.

Tracker clients (Linear, Trello, Jira, GitHub, ...) live outside this
package. The core only relies on the small surface below: every
collaborator has a ``name`` and ``fetch_assigned_items``; status moves,
comments and closing are optional and detected by the presence of the
method, not by a flag. Methods may be plain or ``async``.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from localpipeline.models.work_item import WorkItem


class CardStatus(str, enum.Enum):
    """Tracker-neutral target statuses for a work item."""

    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


class Capability(str, enum.Enum):
    """Optional collaborator operations, named after their method."""

    MOVE_TO_STATUS = "move_to_status"
    ADD_COMMENT = "add_comment"
    MARK_DONE = "mark_done"


@runtime_checkable
class TrackerCollaborator(Protocol):
    """Required surface of a tracker client.

    Optional methods, looked up with ``capability()``:
        move_to_status(item_id: str, status: CardStatus)
        add_comment(item_id: str, text: str)
        mark_done(item_id: str)
    """

    name: str

    def fetch_assigned_items(self) -> list[WorkItem] | Awaitable[list[WorkItem]]: ...


def capability(
    collaborator: Any, name: Capability
) -> Callable[..., Any] | None:
    """Return the bound method implementing ``name``, or None if absent."""
    method = getattr(collaborator, name.value, None)
    return method if callable(method) else None


async def call_maybe_async(method: Callable[..., Any], *args: Any) -> Any:
    """Call a collaborator method without blocking the event loop.

    Coroutine functions are awaited directly. Plain methods run in a worker
    thread, and their result is still awaited when it is awaitable.
    """
    if inspect.iscoroutinefunction(method):
        return await method(*args)
    result = await asyncio.to_thread(method, *args)
    if inspect.isawaitable(result):
        result = await result
    return result
