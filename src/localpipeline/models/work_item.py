"""Normalized work item model.

A WorkItem is what every tracker payload is reduced to before it reaches
the dispatcher, the pending queue, or the status synchronizer.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WorkItem(BaseModel):
    """A unit of work pulled from or pushed by an external tracker.

    Attributes:
        id: Human-facing identifier (e.g. ``LIN-42``, ``#17``).
        source_id: Original tracker id used for API calls, when it differs.
        title: Short title.
        description: Optional long description.
        status: Tracker-side status name.
        priority: Tracker-side priority label.
        labels: Label names.
        source: Name of the originating tracker (e.g. ``Linear``).
        team: Team, project or repository the item belongs to.
        url: Link to the item in the tracker.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    id: str = Field(min_length=1)
    source_id: str | None = None
    title: str
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    labels: list[str] = Field(default_factory=list)
    source: str = ""
    team: str | None = None
    url: str | None = None

    def to_storage(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
