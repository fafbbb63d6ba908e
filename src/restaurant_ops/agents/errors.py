"""Exceptions raised at the agent routing boundary."""

from __future__ import annotations


class AgentError(Exception):
    """Base class for agent dispatch errors."""


class RequestValidationError(AgentError, ValueError):
    """The request is missing a required field or is malformed."""


class AgentNotFoundError(AgentError, LookupError):
    """No agent is registered under the requested name."""

    def __init__(self, agent_name: str) -> None:
        self.agent_name = agent_name
        super().__init__(f"Agent '{agent_name}' not found")


class AgentNotActiveError(AgentError, RuntimeError):
    """The named agent exists but is not in the active state."""

    def __init__(self, agent_name: str, state: str) -> None:
        self.agent_name = agent_name
        self.state = state
        super().__init__(f"Agent '{agent_name}' is not active (status: {state})")


class UnknownRequestTypeError(AgentError, ValueError):
    """An agent was asked to process a request type it has no handler for."""

    def __init__(self, request_type: str | None) -> None:
        self.request_type = request_type
        super().__init__(f"Unknown request type: {request_type}")
