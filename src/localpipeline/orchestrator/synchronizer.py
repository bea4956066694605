"""Best-effort status reconciliation into external trackers.

The StatusSynchronizer pushes outcomes (in progress, done, failure comments)
back to whichever tracker the work item came from. Trackers differ wildly in
how they implement a status change, so each collaborator exposes optional
capabilities and the synchronizer tries them in registration order:

- collaborators without the capability are skipped
- the first collaborator that succeeds ends the iteration
- a failure is logged and the next collaborator is tried

Nothing here raises. Callers learn the outcome, and the last tracker error,
from the returned SyncResult.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from localpipeline.trackers.base import CardStatus, Capability, call_maybe_async, capability

logger = structlog.get_logger(__name__)


class SyncOutcome(str, enum.Enum):
    """Result of a best-effort tracker operation.

    Values:
        SYNCED: A collaborator accepted the operation.
        FAILED: At least one collaborator tried and all attempts failed.
        UNSUPPORTED: No collaborator declares the capability.
    """

    SYNCED = "synced"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a tracker operation and the error of the last failed attempt."""

    outcome: SyncOutcome
    error: str | None = None


class StatusSynchronizer:
    """Fans tracker operations out over collaborators, first success wins.

    Attributes:
        collaborators: Tracker collaborators in registration order.
    """

    def __init__(self, collaborators: Sequence[Any] | None = None) -> None:
        self.collaborators = list(collaborators or [])
        self._logger = logger.bind(component="StatusSynchronizer")

    async def _first_success(
        self,
        cap: Capability,
        candidates: Sequence[Any],
        item_id: str,
        *args: Any,
    ) -> SyncResult:
        attempted = False
        last_error: str | None = None
        for collaborator in candidates:
            method = capability(collaborator, cap)
            if method is None:
                continue
            attempted = True
            try:
                await call_maybe_async(method, item_id, *args)
            except Exception as e:
                last_error = str(e)
                self._logger.warning(
                    "tracker_sync_failed",
                    capability=cap.value,
                    tracker=getattr(collaborator, "name", None),
                    work_item_id=item_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            self._logger.info(
                "tracker_synced",
                capability=cap.value,
                tracker=getattr(collaborator, "name", None),
                work_item_id=item_id,
            )
            return SyncResult(SyncOutcome.SYNCED)

        if not attempted:
            self._logger.debug(
                "tracker_capability_unsupported", capability=cap.value, work_item_id=item_id
            )
            return SyncResult(SyncOutcome.UNSUPPORTED)
        return SyncResult(SyncOutcome.FAILED, last_error)

    def _for_source(self, source: str | None) -> list[Any]:
        if source:
            matching = [
                c for c in self.collaborators
                if str(getattr(c, "name", "")).lower() == source.lower()
            ]
            if matching:
                return matching
        return self.collaborators

    async def move_to_status(self, item_id: str, status: CardStatus) -> SyncResult:
        """Move a work item to ``status`` in the first tracker that accepts it."""
        return await self._first_success(
            Capability.MOVE_TO_STATUS, self.collaborators, item_id, status
        )

    async def mark_done(self, item_id: str, source: str | None = None) -> SyncResult:
        """Close a work item.

        When ``source`` names a registered collaborator, only collaborators
        with that name are tried; otherwise every collaborator is.
        """
        return await self._first_success(
            Capability.MARK_DONE, self._for_source(source), item_id
        )

    async def add_comment(self, item_id: str, text: str) -> SyncResult:
        """Post a comment on a work item in the first tracker that accepts it."""
        return await self._first_success(
            Capability.ADD_COMMENT, self.collaborators, item_id, text
        )
