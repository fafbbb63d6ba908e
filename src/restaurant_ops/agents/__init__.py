"""Agent orchestration package.

Provides the request/response envelopes, the Worker protocol, the
BaseAgent implementation, the domain agents, the AgentManager router, and
the AgentService façade. Agents declare capabilities (request types) and
the manager routes each request to the first active agent that can
handle it.

Exports:
    AgentRequest: Routed request model.
    AgentResponse: Success/failure envelope.
    AgentState: Lifecycle enum (INACTIVE, ACTIVE, PROCESSING, ERROR).
    Worker: Protocol every registered agent satisfies.
    BaseAgent: Abstract base class implementing Worker.
    CostAgent, InventoryAgent, ForecastAgent: Domain agents.
    AgentManager: Registry and router.
    AgentService: Lazily initialized façade.
    get_agent_service: Singleton accessor for the global service.
"""

from __future__ import annotations

from src.restaurant_ops.agents.base import (
    AgentRequest,
    AgentResponse,
    AgentState,
    BaseAgent,
    Worker,
)
from src.restaurant_ops.agents.cost import CostAgent
from src.restaurant_ops.agents.errors import (
    AgentError,
    AgentNotActiveError,
    AgentNotFoundError,
    RequestValidationError,
    UnknownRequestTypeError,
)
from src.restaurant_ops.agents.forecast import ForecastAgent
from src.restaurant_ops.agents.inventory import InventoryAgent
from src.restaurant_ops.agents.manager import AgentManager
from src.restaurant_ops.agents.service import AgentService, get_agent_service

__all__ = [
    "AgentError",
    "AgentManager",
    "AgentNotActiveError",
    "AgentNotFoundError",
    "AgentRequest",
    "AgentResponse",
    "AgentService",
    "AgentState",
    "BaseAgent",
    "CostAgent",
    "ForecastAgent",
    "InventoryAgent",
    "RequestValidationError",
    "UnknownRequestTypeError",
    "Worker",
    "get_agent_service",
]
