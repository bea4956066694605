"""Routing of parsed webhook events to the dispatcher, queue and trackers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from localpipeline.logging import get_logger
from localpipeline.models.work_item import WorkItem
from localpipeline.orchestrator.dispatcher import Dispatcher
from localpipeline.orchestrator.synchronizer import StatusSynchronizer, SyncOutcome
from localpipeline.store.queue import PendingQueue
from localpipeline.trackers.base import CardStatus
from localpipeline.web.parsers import PARSERS, Parser, parse_github_pr_merge

logger = get_logger(__name__)

NOT_ACTIONABLE = "Event not actionable"


class UnknownTrackerError(KeyError):
    """Raised for a webhook path naming no known tracker."""

    def __init__(self, tracker: str) -> None:
        self.tracker = tracker
        super().__init__(f"Unknown provider: {tracker}")


class IngestionAction(str, enum.Enum):
    CARD_MOVED = "card_moved"
    IGNORED = "ignored"
    DISPATCHED = "dispatched"
    QUEUED = "queued"


@dataclass
class IngestionResult:
    """What happened to one webhook delivery.

    Attributes:
        action: Routing decision.
        item_id: Work item the event referred to, if any.
        agent: Agent that received the item (dispatched only).
        status: Requested tracker status (card_moved only).
        outcome: Tracker sync outcome (card_moved only).
    """

    action: IngestionAction
    item_id: str | None = None
    agent: str | None = None
    status: CardStatus | None = None
    outcome: SyncOutcome | None = None

    def to_response(self) -> dict[str, Any]:
        if self.action is IngestionAction.CARD_MOVED:
            return {
                "cardMoved": True,
                "itemId": self.item_id,
                "status": self.status.value if self.status else None,
                "outcome": self.outcome.value if self.outcome else None,
            }
        if self.action is IngestionAction.IGNORED:
            return {"ignored": True, "reason": NOT_ACTIONABLE}
        if self.action is IngestionAction.DISPATCHED:
            return {"dispatched": True, "agent": self.agent, "item": self.item_id}
        return {"dispatched": False, "queued": True, "item": self.item_id}


class WebhookIngestion:
    """Turns tracker webhook payloads into dispatches, queue entries or status moves.

    Attributes:
        dispatcher: Dispatch controller claiming free agents.
        queue: Pending queue for items arriving while the pool is busy.
        synchronizer: Tracker status synchronizer.
        parsers: Tracker name to payload parser.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        queue: PendingQueue,
        synchronizer: StatusSynchronizer,
        parsers: dict[str, Parser] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.queue = queue
        self.synchronizer = synchronizer
        self.parsers = dict(PARSERS if parsers is None else parsers)

    def knows(self, tracker: str) -> bool:
        return tracker in self.parsers

    async def handle(self, tracker: str, payload: dict[str, Any]) -> IngestionResult:
        """Route one webhook payload.

        A merged agent pull request (GitHub) moves its item to done and never
        dispatches. Otherwise the parsed item goes to the first free agent,
        or to the pending queue when every agent is busy.

        Raises:
            UnknownTrackerError: If no parser is registered for ``tracker``.
        """
        parser = self.parsers.get(tracker)
        if parser is None:
            raise UnknownTrackerError(tracker)

        if tracker == "github":
            change = parse_github_pr_merge(payload)
            if change is not None:
                result = await self.synchronizer.move_to_status(change.item_id, change.status)
                logger.info(
                    "webhook_card_moved",
                    tracker=tracker,
                    work_item_id=change.item_id,
                    status=change.status.value,
                    outcome=result.outcome.value,
                )
                return IngestionResult(
                    action=IngestionAction.CARD_MOVED,
                    item_id=change.item_id,
                    status=change.status,
                    outcome=result.outcome,
                )

        item = parser(payload)
        if item is None:
            logger.debug("webhook_ignored", tracker=tracker)
            return IngestionResult(action=IngestionAction.IGNORED)

        return await self.route(item)

    async def route(self, item: WorkItem) -> IngestionResult:
        """Dispatch ``item`` to a free agent or queue it."""
        agent = await self.dispatcher.dispatch_next(item)
        if agent is None:
            length = self.queue.enqueue(item)
            logger.info("webhook_item_queued", work_item_id=item.id, queue_length=length)
            return IngestionResult(action=IngestionAction.QUEUED, item_id=item.id)

        await self.synchronizer.move_to_status(item.id, CardStatus.IN_PROGRESS)
        logger.info("webhook_item_dispatched", work_item_id=item.id, agent=agent)
        return IngestionResult(action=IngestionAction.DISPATCHED, item_id=item.id, agent=agent)
