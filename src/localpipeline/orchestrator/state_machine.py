"""Agent state machine for the localpipeline orchestrator.

This module defines the authoritative agent lifecycle and the validation
used by the registry before it commits any status change.

    idle -> provisioning -> working -> {done, error}
    done -> idle                       (synchronized and released)
    error -> working                   (retry)
    error -> error                     (retry failed before launch)
    error -> idle                      (retry budget exhausted, released)
    provisioning -> error              (provisioning or spawn failed)
"""

from __future__ import annotations

from localpipeline.models.agent import AgentStatus


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted.

    Attributes:
        current: The current agent status.
        target: The attempted target status.
        agent: The name of the agent that failed to transition.
    """

    def __init__(self, current: AgentStatus, target: AgentStatus, agent: str | None = None):
        self.current = current
        self.target = target
        self.agent = agent
        msg = f"Invalid transition from {current.value} to {target.value}"
        if agent:
            msg += f" for agent {agent}"
        super().__init__(msg)


VALID_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.idle: {AgentStatus.provisioning},
    AgentStatus.provisioning: {AgentStatus.working, AgentStatus.error},
    AgentStatus.working: {AgentStatus.done, AgentStatus.error},
    AgentStatus.done: {AgentStatus.idle},
    AgentStatus.error: {AgentStatus.working, AgentStatus.error, AgentStatus.idle},
}


def validate_transition(current: AgentStatus, target: AgentStatus) -> bool:
    """Validate if a state transition is allowed.

    Args:
        current: Current agent status.
        target: Target agent status.

    Returns:
        True if the transition is valid according to VALID_TRANSITIONS.
    """
    return target in VALID_TRANSITIONS.get(current, set())


def ensure_transition(current: AgentStatus, target: AgentStatus, agent: str) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed."""
    if not validate_transition(current, target):
        raise InvalidTransitionError(current, target, agent)
