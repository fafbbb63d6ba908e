"""Base agent abstractions for restaurant operations.

Defines the request/response envelope models, the Worker protocol the
AgentManager depends on, and BaseAgent, which implements the protocol and
wraps process() with the active -> processing -> active/error lifecycle.

handle_request() is the boundary that turns exceptions into failure
envelopes; it never raises.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.restaurant_ops.agents.errors import RequestValidationError

logger = structlog.get_logger(__name__)


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_request_id(prefix: str) -> str:
    """Build a ``<prefix>_<epoch_ms>_<random>`` request id."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


# ── Agent State ──────────────────────────────────────────────────────────────


class AgentState(str, Enum):
    """Lifecycle state of an agent instance."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    PROCESSING = "processing"
    ERROR = "error"


# ── Envelopes ────────────────────────────────────────────────────────────────


class AgentRequest(BaseModel):
    """A routed request.

    Accepts both ``restaurant_id`` and the wire name ``restaurantId``.
    Unknown keys are kept so callers can attach routing metadata.

    Attributes:
        type: Requested operation, matched against agent capabilities.
        restaurant_id: Tenant scope. Required for capability routing.
        data: Operation-specific payload.
        id: Request id, generated at dispatch when absent.
        timestamp: Dispatch time, generated when absent.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str | None = None
    restaurant_id: int | str | None = Field(default=None, alias="restaurantId")
    data: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None
    timestamp: str | None = None

    def with_dispatch_metadata(self, id_prefix: str) -> AgentRequest:
        """Return a copy with ``id`` and ``timestamp`` filled in if missing."""
        return self.model_copy(
            update={
                "id": self.id or generate_request_id(id_prefix),
                "timestamp": self.timestamp or utc_now(),
            }
        )


def coerce_request(request: AgentRequest | dict[str, Any] | None) -> AgentRequest:
    """Accept a model or a plain dict and return an AgentRequest."""
    if request is None:
        raise RequestValidationError("Request is required")
    if isinstance(request, AgentRequest):
        return request
    try:
        return AgentRequest.model_validate(request)
    except ValidationError as exc:
        raise RequestValidationError(f"Invalid request: {exc.errors()[0]['msg']}") from exc


class AgentResponse(BaseModel):
    """Uniform success/failure envelope.

    A success carries ``result``; a failure carries ``error``. Use to_dict()
    for the JSON wire shape.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    agent: str
    result: Any = None
    error: str | None = None
    timestamp: str = Field(default_factory=utc_now)
    request_id: str = Field(alias="requestId")

    @classmethod
    def ok(cls, agent: str, result: Any, request_id: str) -> AgentResponse:
        return cls(success=True, agent=agent, result=result, request_id=request_id)

    @classmethod
    def fail(cls, agent: str, error: str, request_id: str) -> AgentResponse:
        return cls(success=False, agent=agent, error=error, request_id=request_id)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "agent": self.agent,
            "timestamp": self.timestamp,
            "requestId": self.request_id,
        }
        if self.success:
            payload["result"] = self.result
        else:
            payload["error"] = self.error
        return payload


# ── Worker Protocol ──────────────────────────────────────────────────────────


@runtime_checkable
class Worker(Protocol):
    """Contract every agent registered with the AgentManager must satisfy."""

    name: str
    capabilities: tuple[str, ...]
    state: AgentState

    async def initialize(self) -> None: ...

    def can_handle(self, capability: str) -> bool: ...

    async def handle_request(self, request: AgentRequest | dict[str, Any]) -> AgentResponse: ...

    async def process(self, request: AgentRequest) -> Any: ...

    def get_health_score(self) -> int: ...

    def get_status(self) -> dict[str, Any]: ...

    async def shutdown(self) -> None: ...


# ── Base Agent ───────────────────────────────────────────────────────────────


class BaseAgent(ABC):
    """Abstract base class implementing the Worker protocol.

    Provides:
    - Lifecycle tracking (inactive -> active -> processing -> active/error)
    - Structured logging bound to the agent name
    - handle_request() envelope wrapper with request validation
    - Health score and processing-time metrics

    Subclasses implement process() and dispatch on ``request.type``.

    Args:
        name: Unique agent name, used as the registry key.
        capabilities: Request types this agent handles.
    """

    def __init__(self, name: str, capabilities: Iterable[str]) -> None:
        self.name = name
        # dict.fromkeys dedupes while keeping declaration order
        self.capabilities: tuple[str, ...] = tuple(dict.fromkeys(capabilities))
        self._capability_set = frozenset(self.capabilities)
        self.state: AgentState = AgentState.INACTIVE
        self.last_activity: str | None = None
        self.processed_requests = 0
        self.errors = 0
        self.metrics: dict[str, float] = {
            "requests": 0,
            "errors": 0,
            "total_processing_ms": 0.0,
            "average_processing_ms": 0.0,
        }
        self._logger = structlog.get_logger(__name__).bind(agent_name=name)

    async def initialize(self) -> None:
        """Mark the agent active. Safe to call more than once."""
        self.state = AgentState.ACTIVE
        self.last_activity = utc_now()
        self._logger.info("agent_initialized", capabilities=list(self.capabilities))

    @abstractmethod
    async def process(self, request: AgentRequest) -> Any:
        """Run the domain logic for a request.

        Raise a descriptive exception for invalid input or unknown request
        types. Status transitions are handled by handle_request().
        """
        ...

    def validate_request(self, request: AgentRequest) -> None:
        """Base validation: ``type`` and ``restaurant_id`` are required."""
        if not request.type:
            raise RequestValidationError("Request type is required")
        if not request.restaurant_id:
            raise RequestValidationError("Restaurant ID is required")

    def can_handle(self, capability: str) -> bool:
        return capability in self._capability_set

    async def handle_request(self, request: AgentRequest | dict[str, Any]) -> AgentResponse:
        """Validate, process, and wrap the outcome in an envelope.

        Never raises: any exception from validation or process() becomes a
        failure envelope carrying the exception message.
        """
        started = time.perf_counter()
        self.last_activity = utc_now()
        request_id: str | None = None

        try:
            req = coerce_request(request)
            request_id = req.id
            self.state = AgentState.PROCESSING
            self.validate_request(req)
            self._logger.info("agent_request_started", request_type=req.type, request_id=request_id)
            result = await self.process(req)
        except Exception as exc:
            self.errors += 1
            self.state = AgentState.ERROR
            self.record_metrics((time.perf_counter() - started) * 1000, success=False)
            self._logger.error(
                "agent_request_failed",
                request_id=request_id,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return AgentResponse.fail(self.name, str(exc), request_id or generate_request_id(self.name))

        self.processed_requests += 1
        self.state = AgentState.ACTIVE
        self.record_metrics((time.perf_counter() - started) * 1000, success=True)
        self._logger.info("agent_request_completed", request_type=req.type, request_id=request_id)
        return AgentResponse.ok(self.name, result, request_id or generate_request_id(self.name))

    def record_metrics(self, processing_ms: float, success: bool = True) -> None:
        """Accumulate processing-time metrics for one handled request."""
        self.metrics["requests"] += 1
        if not success:
            self.metrics["errors"] += 1
        self.metrics["total_processing_ms"] += processing_ms
        self.metrics["average_processing_ms"] = self.metrics["total_processing_ms"] / self.metrics["requests"]

    def get_health_score(self) -> int:
        """Success percentage over handled requests; 100 with no traffic."""
        total = self.processed_requests + self.errors
        if total == 0:
            return 100
        # round half up
        return int(self.processed_requests / total * 100 + 0.5)

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "capabilities": list(self.capabilities),
            "state": {
                "status": self.state.value,
                "last_activity": self.last_activity,
                "processed_requests": self.processed_requests,
                "errors": self.errors,
            },
            "health": self.get_health_score(),
            "metrics": dict(self.metrics),
        }

    async def shutdown(self) -> None:
        self.state = AgentState.INACTIVE
        self._logger.info("agent_shutdown")
