"""Tracker collaborator interface and configuration-driven loading."""

from __future__ import annotations

from typing import Any

from localpipeline.logging import get_logger
from localpipeline.trackers.base import (
    CardStatus,
    Capability,
    TrackerCollaborator,
    call_maybe_async,
    capability,
)

logger = get_logger(__name__)


def build_collaborators(factories: list[Any]) -> list[Any]:
    """Instantiate configured collaborator factories in order.

    Args:
        factories: Callables (classes or functions) resolved from
            ``trackers.collaborators`` import paths.

    Returns:
        Collaborators in registration order.

    Raises:
        TypeError: If a factory produces an object without a ``name``.
    """
    collaborators = []
    for factory in factories:
        collaborator = factory()
        if not isinstance(getattr(collaborator, "name", None), str):
            raise TypeError(f"Tracker collaborator from {factory!r} has no 'name'")
        collaborators.append(collaborator)
        logger.info(
            "tracker_collaborator_registered",
            name=collaborator.name,
            capabilities=[c.value for c in Capability if capability(collaborator, c)],
        )
    return collaborators


__all__ = [
    "CardStatus",
    "Capability",
    "TrackerCollaborator",
    "build_collaborators",
    "call_maybe_async",
    "capability",
]
