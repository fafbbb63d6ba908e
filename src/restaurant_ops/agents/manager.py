"""Agent manager: registry, request routing, fan-out, and fleet health.

The AgentManager owns every registered agent and supports:
- Registration against the Worker protocol (not a concrete base class)
- Capability routing: first active agent, in registration order, whose
  capabilities include the request type
- Direct routing to a named agent, bypassing capability matching
- Insight fan-out across every agent that can generate insights
- Aggregate request statistics and health reporting

route_request() never raises; routing and agent failures come back as
failure envelopes. route_to_specific_agent() calls the agent's process()
directly and lets its exceptions propagate.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from typing import Any

import structlog

from src.restaurant_ops.agents.base import (
    AgentRequest,
    AgentResponse,
    AgentState,
    Worker,
    coerce_request,
    generate_request_id,
    utc_now,
)
from src.restaurant_ops.agents.errors import (
    AgentNotActiveError,
    AgentNotFoundError,
    RequestValidationError,
)

logger = structlog.get_logger(__name__)

MANAGER_NAME = "AgentManager"
INSIGHTS_CAPABILITY = "generate_insights"
INSIGHT_PRIORITY: dict[str, int] = {"high": 3, "medium": 2, "low": 1}
HEALTH_THRESHOLD = 80

CompletionCallback = Callable[[AgentResponse], None]


def _state_value(agent: Worker) -> str:
    return getattr(agent.state, "value", agent.state)


def _priority_rank(insight: Any) -> int:
    priority = insight.get("priority") if isinstance(insight, dict) else None
    return INSIGHT_PRIORITY.get(priority, 0) if isinstance(priority, str) else 0


@dataclass
class ManagerStats:
    """Aggregate routing statistics. Response times are in milliseconds."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0


class AgentManager:
    """Registry and router for restaurant operation agents.

    Owns its agents exclusively; an agent instance must not be registered
    with more than one manager.

    Runs on a single asyncio event loop. Concurrent requests to the same
    agent share that agent's single state field.
    """

    def __init__(self) -> None:
        self._agents: dict[str, Worker] = {}
        self._callbacks: dict[str, CompletionCallback] = {}
        self.stats = ManagerStats()

    # ── Registration ─────────────────────────────────────────────────────────

    async def register_agent(
        self,
        agent: Worker,
        on_complete: CompletionCallback | None = None,
    ) -> Worker:
        """Initialize and register an agent.

        Re-registering a name replaces the previous agent but keeps its
        position in routing order.

        Args:
            agent: Any object satisfying the Worker protocol.
            on_complete: Optional callback receiving every envelope the
                manager obtains from this agent.

        Returns:
            The registered agent.

        Raises:
            TypeError: If ``agent`` does not satisfy the Worker protocol.
        """
        if not isinstance(agent, Worker):
            raise TypeError(f"Agent must implement the Worker protocol, got {type(agent).__name__}")

        await agent.initialize()
        self._agents[agent.name] = agent
        if on_complete is not None:
            self._callbacks[agent.name] = on_complete
        else:
            self._callbacks.pop(agent.name, None)

        logger.info(
            "agent_registered",
            agent_name=agent.name,
            capabilities=list(agent.capabilities),
        )
        return agent

    async def unregister_agent(self, name: str) -> None:
        """Shut down and remove an agent. No-op if it is not registered."""
        agent = self._agents.get(name)
        if agent is None:
            return
        await agent.shutdown()
        del self._agents[name]
        self._callbacks.pop(name, None)
        logger.info("agent_unregistered", agent_name=name)

    def get(self, name: str) -> Worker | None:
        return self._agents.get(name)

    def list_agent_names(self) -> list[str]:
        return list(self._agents.keys())

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    # ── Routing ──────────────────────────────────────────────────────────────

    def find_capable_agent(self, request_type: str) -> Worker | None:
        """First active agent, in registration order, that handles ``request_type``."""
        for agent in self._agents.values():
            if agent.can_handle(request_type) and agent.state == AgentState.ACTIVE:
                return agent
        return None

    async def route_request(self, request: AgentRequest | dict[str, Any]) -> AgentResponse:
        """Route a request to a capable agent and return its envelope.

        Never raises. Validation failures and missing agents produce a
        failure envelope from the manager itself.
        """
        started = time.perf_counter()
        request_id: str | None = None

        try:
            req = coerce_request(request)
            request_id = req.id
            self._validate_request(req)
            req = req.with_dispatch_metadata("mgr")
            request_id = req.id

            agent = self.find_capable_agent(req.type)
            if agent is None:
                return self._routing_failure(
                    f"No agent available to handle request type: {req.type}", request_id, started
                )

            response = await agent.handle_request(req)
        except Exception as exc:
            return self._routing_failure(str(exc), request_id, started)

        self._update_request_stats(response.success, (time.perf_counter() - started) * 1000)
        self._notify(agent.name, response)
        logger.info(
            "request_routed",
            request_type=req.type,
            request_id=request_id,
            agent_name=agent.name,
            success=response.success,
        )
        return response

    async def route_to_specific_agent(self, name: str, request: AgentRequest | dict[str, Any]) -> Any:
        """Send a request straight to ``name``'s process() method.

        Skips capability matching and the envelope wrapper, so the raw
        result is returned and processing errors propagate.

        Raises:
            AgentNotFoundError: No agent registered under ``name``.
            AgentNotActiveError: The agent is not in the active state.
        """
        agent = self._agents.get(name)
        if agent is None:
            raise AgentNotFoundError(name)
        if agent.state != AgentState.ACTIVE:
            raise AgentNotActiveError(name, _state_value(agent))

        started = time.perf_counter()
        req = coerce_request(request)
        enriched = req.model_copy(
            update={
                "id": req.id or generate_request_id("mgr"),
                "timestamp": utc_now(),
                "target_agent": name,
            }
        )

        try:
            result = await agent.process(enriched)
        except Exception as exc:
            self._update_request_stats(False, (time.perf_counter() - started) * 1000)
            logger.error(
                "direct_request_failed",
                agent_name=name,
                request_type=enriched.type,
                request_id=enriched.id,
                error=str(exc),
            )
            raise

        self._update_request_stats(True, (time.perf_counter() - started) * 1000)
        return result

    async def process_requests(
        self, requests: Iterable[AgentRequest | dict[str, Any]]
    ) -> list[AgentResponse | BaseException]:
        """Route many requests concurrently. One failure never cancels the others."""
        return await asyncio.gather(
            *(self.route_request(request) for request in requests),
            return_exceptions=True,
        )

    # ── Fan-out ──────────────────────────────────────────────────────────────

    async def get_restaurant_insights(self, restaurant_id: int | str) -> list[dict[str, Any]]:
        """Collect insights from every insight-capable agent, highest priority first.

        Agents run concurrently. An agent that fails is logged and skipped.
        """
        capable = [agent for agent in self._agents.values() if agent.can_handle(INSIGHTS_CAPABILITY)]
        base_request = AgentRequest(type=INSIGHTS_CAPABILITY, restaurant_id=restaurant_id)

        outcomes = await asyncio.gather(
            *(agent.handle_request(base_request.with_dispatch_metadata("mgr")) for agent in capable),
            return_exceptions=True,
        )

        insights: list[dict[str, Any]] = []
        for agent, outcome in zip(capable, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "agent_insights_failed",
                    agent_name=agent.name,
                    restaurant_id=restaurant_id,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                continue

            self._notify(agent.name, outcome)
            if not outcome.success:
                logger.warning(
                    "agent_insights_unavailable",
                    agent_name=agent.name,
                    restaurant_id=restaurant_id,
                    error=outcome.error,
                )
                continue
            insights.extend(self._collect_insights(agent.name, outcome.result, restaurant_id))

        return self.prioritize_insights(insights)

    @staticmethod
    def _collect_insights(agent_name: str, result: Any, restaurant_id: int | str) -> list[dict[str, Any]]:
        """Dict insights from one agent's result; anything malformed is logged and dropped."""
        if not isinstance(result, dict) or not result.get("insights"):
            return []
        raw = result["insights"]
        if not isinstance(raw, list):
            logger.warning(
                "agent_insights_malformed",
                agent_name=agent_name,
                restaurant_id=restaurant_id,
                insights_type=type(raw).__name__,
            )
            return []

        valid = [insight for insight in raw if isinstance(insight, dict)]
        if len(valid) < len(raw):
            logger.warning(
                "agent_insights_skipped",
                agent_name=agent_name,
                restaurant_id=restaurant_id,
                skipped=len(raw) - len(valid),
            )
        return valid

    @staticmethod
    def prioritize_insights(insights: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Stable sort by priority: high, medium, low, then anything else."""
        return sorted(
            insights,
            key=_priority_rank,
            reverse=True,
        )

    # ── Observability ────────────────────────────────────────────────────────

    async def health_check(self) -> dict[str, Any]:
        """Fleet health: healthy, warning (1-2 unhealthy agents), or critical (>2)."""
        agents: dict[str, dict[str, Any]] = {}
        issues: list[str] = []
        unhealthy = 0

        for name, agent in self._agents.items():
            health = agent.get_health_score()
            status = _state_value(agent)
            agents[name] = {"health": health, "status": status}

            flagged = False
            if health < HEALTH_THRESHOLD:
                issues.append(f"{name} agent health is low: {health}%")
                flagged = True
            if status == AgentState.ERROR.value:
                issues.append(f"{name} agent is in error state")
                flagged = True
            if flagged:
                unhealthy += 1

        if unhealthy > 2:
            overall = "critical"
        elif unhealthy > 0:
            overall = "warning"
        else:
            overall = "healthy"

        return {"overall": overall, "agents": agents, "issues": issues}

    def get_agent_statuses(self) -> dict[str, Any]:
        return {
            "agents": {name: agent.get_status() for name, agent in self._agents.items()},
            "manager": {
                "total_agents": len(self._agents),
                "active_agents": sum(
                    1 for agent in self._agents.values() if agent.state == AgentState.ACTIVE
                ),
                "stats": asdict(self.stats),
            },
        }

    # ── Shutdown ─────────────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Shut down every agent concurrently, best effort, then clear the registry."""
        logger.info("agent_manager_shutting_down", agent_count=len(self._agents))
        agents = list(self._agents.values())
        outcomes = await asyncio.gather(*(agent.shutdown() for agent in agents), return_exceptions=True)
        for agent, outcome in zip(agents, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("agent_shutdown_failed", agent_name=agent.name, error=str(outcome))
        self._agents.clear()
        self._callbacks.clear()
        logger.info("agent_manager_shut_down")

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _validate_request(request: AgentRequest) -> None:
        if not request.type:
            raise RequestValidationError("Request type is required")
        if not request.restaurant_id:
            raise RequestValidationError("Restaurant ID is required")

    def _routing_failure(self, error: str, request_id: str | None, started: float) -> AgentResponse:
        self._update_request_stats(False, (time.perf_counter() - started) * 1000)
        logger.warning("request_routing_failed", request_id=request_id, error=error)
        return AgentResponse.fail(MANAGER_NAME, error, request_id or generate_request_id("mgr"))

    def _update_request_stats(self, success: bool, response_ms: float) -> None:
        stats = self.stats
        stats.total_requests += 1
        if success:
            stats.successful_requests += 1
        else:
            stats.failed_requests += 1
        # cumulative mean
        total = stats.average_response_time * (stats.total_requests - 1) + response_ms
        stats.average_response_time = round(total / stats.total_requests, 2)

    def _notify(self, name: str, response: AgentResponse) -> None:
        callback = self._callbacks.get(name)
        if callback is None:
            return
        try:
            callback(response)
        except Exception:
            logger.exception("completion_callback_failed", agent_name=name)
