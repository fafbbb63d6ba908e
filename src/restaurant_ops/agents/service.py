"""Agent service: the single entry point route handlers talk to.

Lazily registers the cost, inventory, and forecast agents with an
AgentManager on first use and exposes one method per domain operation.
Cost and inventory operations go through capability routing; forecast
operations are sent directly to the ForecastAgent.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

import structlog

from src.restaurant_ops.agents.base import (
    AgentRequest,
    AgentResponse,
    Worker,
    generate_request_id,
    utc_now,
)
from src.restaurant_ops.agents.cost import CostAgent
from src.restaurant_ops.agents.forecast import ForecastAgent
from src.restaurant_ops.agents.inventory import InventoryAgent
from src.restaurant_ops.agents.manager import INSIGHTS_CAPABILITY, MANAGER_NAME, AgentManager
from src.restaurant_ops.core.logging import configure_structlog

logger = structlog.get_logger(__name__)

FORECAST_AGENT = "ForecastAgent"

# Ordered (keywords, request type) pairs; first keyword hit wins.
QUERY_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("recipe cost",), "calculate_recipe_cost"),
    (("margin",), "analyze_margins"),
    (("optimize cost", "reduce cost", "cost optimization"), "optimize_costs"),
    (("seasonal", "season"), "analyze_seasonal_trends"),
    (("trend",), "cost_trends"),
    (("revenue",), "predict_revenue"),
    (("capacity", "staffing"), "optimize_capacity"),
    (("ingredient need", "ingredients needed"), "forecast_ingredients"),
    (("forecast", "demand", "predict sales"), "forecast_demand"),
    (("reorder",), "predict_reorder_needs"),
    (("expir",), "monitor_expiration_dates"),
    (("waste",), "analyze_waste_patterns"),
    (("optimize stock", "par level"), "optimize_stock_levels"),
    (("inventory", "stock"), "track_inventory_levels"),
)

DEFAULT_AGENT_FACTORIES: tuple[Callable[[], Worker], ...] = (CostAgent, InventoryAgent, ForecastAgent)


def determine_request_type(query: Any, agent: Worker | None = None) -> str:
    """Map a free-text query to a request type.

    With ``agent`` given, only request types that agent can handle are
    considered. Falls back to ``generate_insights``.
    """
    text = str(query or "").lower()
    for keywords, request_type in QUERY_KEYWORDS:
        if agent is not None and not agent.can_handle(request_type):
            continue
        if any(keyword in text for keyword in keywords):
            return request_type
    return INSIGHTS_CAPABILITY


class AgentService:
    """Lazily initialized façade over the AgentManager.

    Args:
        manager: Manager to register agents with; a new one by default.
        agent_factories: Zero-argument callables building each agent.
    """

    def __init__(
        self,
        manager: AgentManager | None = None,
        agent_factories: Sequence[Callable[[], Worker]] = DEFAULT_AGENT_FACTORIES,
    ) -> None:
        self.manager = manager or AgentManager()
        self._agent_factories = tuple(agent_factories)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def ensure_initialized(self) -> None:
        """Register every agent once. A failure leaves the service uninitialized."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            try:
                for factory in self._agent_factories:
                    await self.manager.register_agent(factory())
            except Exception:
                logger.exception("agent_service_init_failed")
                raise
            self._initialized = True
            logger.info("agent_service_initialized", agents=self.manager.list_agent_names())

    async def _route(self, request_type: str, restaurant_id: int | str, data: dict[str, Any] | None) -> AgentResponse:
        await self.ensure_initialized()
        return await self.manager.route_request(
            AgentRequest(type=request_type, restaurant_id=restaurant_id, data=data or {}, timestamp=utc_now())
        )

    async def _forecast(self, request_type: str, restaurant_id: int | str, options: dict[str, Any] | None) -> Any:
        await self.ensure_initialized()
        return await self.manager.route_to_specific_agent(
            FORECAST_AGENT,
            AgentRequest(type=request_type, data={"restaurant_id": restaurant_id, **(options or {})}),
        )

    # ── Queries ──────────────────────────────────────────────────────────────

    async def process_query(self, query_data: dict[str, Any]) -> AgentResponse:
        """Answer a free-text query.

        ``query_data`` keys: ``query``, optional ``agent``, ``context``
        (merged into the request payload) and ``restaurant_id``.
        With ``agent`` the request is forced to that agent; otherwise
        capability routing picks one.
        """
        await self.ensure_initialized()

        query = query_data.get("query") or ""
        context = query_data.get("context") or {}
        restaurant_id = query_data.get("restaurant_id", query_data.get("restaurantId"))
        data = {**context, "query": query} if isinstance(context, dict) else {"query": query, "context": context}
        agent_name = query_data.get("agent")

        if not agent_name:
            return await self.manager.route_request(
                AgentRequest(type=determine_request_type(query), restaurant_id=restaurant_id, data=data)
            )

        request = AgentRequest(
            type=determine_request_type(query, self.manager.get(agent_name)),
            restaurant_id=restaurant_id,
            data=data,
            id=generate_request_id("svc"),
        )
        try:
            result = await self.manager.route_to_specific_agent(agent_name, request)
        except Exception as exc:
            return AgentResponse.fail(agent_name if agent_name in self.manager else MANAGER_NAME, str(exc), request.id)
        return AgentResponse.ok(agent_name, result, request.id)

    async def process_request(self, request: AgentRequest | dict[str, Any]) -> AgentResponse:
        await self.ensure_initialized()
        return await self.manager.route_request(request)

    async def get_restaurant_insights(self, restaurant_id: int | str) -> dict[str, Any]:
        await self.ensure_initialized()
        insights = await self.manager.get_restaurant_insights(restaurant_id)
        return {
            "restaurant_id": restaurant_id,
            "insights": insights,
            "generated_at": utc_now(),
            "total_insights": len(insights),
        }

    # ── Cost ─────────────────────────────────────────────────────────────────

    async def calculate_recipe_cost(self, restaurant_id: int | str, recipe_data: dict[str, Any]) -> AgentResponse:
        return await self._route("calculate_recipe_cost", restaurant_id, recipe_data)

    async def analyze_menu_margins(self, restaurant_id: int | str, menu_data: dict[str, Any]) -> AgentResponse:
        return await self._route("analyze_margins", restaurant_id, menu_data)

    async def get_cost_optimization(self, restaurant_id: int | str, cost_data: dict[str, Any]) -> AgentResponse:
        return await self._route("optimize_costs", restaurant_id, cost_data)

    async def analyze_cost_trends(self, restaurant_id: int | str, trend_data: dict[str, Any] | None = None) -> AgentResponse:
        return await self._route("cost_trends", restaurant_id, trend_data)

    # ── Inventory ────────────────────────────────────────────────────────────

    async def track_inventory_levels(self, restaurant_id: int | str, inventory_data: dict[str, Any]) -> AgentResponse:
        return await self._route("track_inventory_levels", restaurant_id, inventory_data)

    async def predict_reorder_needs(self, restaurant_id: int | str, inventory_data: dict[str, Any]) -> AgentResponse:
        return await self._route("predict_reorder_needs", restaurant_id, inventory_data)

    async def monitor_expiration_dates(self, restaurant_id: int | str, inventory_data: dict[str, Any]) -> AgentResponse:
        return await self._route("monitor_expiration_dates", restaurant_id, inventory_data)

    async def analyze_waste_patterns(self, restaurant_id: int | str, inventory_data: dict[str, Any]) -> AgentResponse:
        return await self._route("analyze_waste_patterns", restaurant_id, inventory_data)

    async def optimize_stock_levels(self, restaurant_id: int | str, inventory_data: dict[str, Any]) -> AgentResponse:
        return await self._route("optimize_stock_levels", restaurant_id, inventory_data)

    # ── Forecast ─────────────────────────────────────────────────────────────
    # These return the raw result and raise on failure.

    async def forecast_demand(self, restaurant_id: int | str, options: dict[str, Any] | None = None) -> Any:
        return await self._forecast("forecast_demand", restaurant_id, options)

    async def analyze_seasonal_trends(self, restaurant_id: int | str, options: dict[str, Any] | None = None) -> Any:
        return await self._forecast("analyze_seasonal_trends", restaurant_id, options)

    async def predict_revenue(self, restaurant_id: int | str, options: dict[str, Any] | None = None) -> Any:
        return await self._forecast("predict_revenue", restaurant_id, options)

    async def optimize_capacity(self, restaurant_id: int | str, options: dict[str, Any] | None = None) -> Any:
        return await self._forecast("optimize_capacity", restaurant_id, options)

    async def forecast_ingredient_needs(self, restaurant_id: int | str, options: dict[str, Any] | None = None) -> Any:
        return await self._forecast("forecast_ingredients", restaurant_id, options)

    # ── Fleet ────────────────────────────────────────────────────────────────

    async def get_system_health(self) -> dict[str, Any]:
        await self.ensure_initialized()
        return await self.manager.health_check()

    async def get_agent_statuses(self) -> dict[str, Any]:
        await self.ensure_initialized()
        return self.manager.get_agent_statuses()

    async def shutdown(self) -> None:
        await self.manager.shutdown()
        self._initialized = False


# ── Module-level singleton ───────────────────────────────────────────────────

_service: AgentService | None = None


def get_agent_service() -> AgentService:
    """Get the global AgentService singleton.

    Creates the service on first call, configuring logging first.
    Subsequent calls return the same instance.
    """
    global _service
    if _service is None:
        configure_structlog()
        _service = AgentService()
    return _service
