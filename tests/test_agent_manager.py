"""Tests for AgentManager registration, routing, fan-out, and health."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.restaurant_ops.agents.base import AgentRequest, AgentResponse, AgentState, BaseAgent
from src.restaurant_ops.agents.cost import CostAgent
from src.restaurant_ops.agents.errors import AgentNotActiveError, AgentNotFoundError
from src.restaurant_ops.agents.manager import MANAGER_NAME, AgentManager


class StubAgent(BaseAgent):
    """Configurable agent: returns ``result`` or raises ``error``."""

    def __init__(
        self,
        name: str,
        capabilities: list[str],
        result: Any = None,
        error: Exception | None = None,
    ) -> None:
        super().__init__(name, capabilities)
        self.result = result if result is not None else {"handled_by": name}
        self.error = error
        self.seen: list[AgentRequest] = []

    async def process(self, request: AgentRequest) -> Any:
        self.seen.append(request)
        if self.error is not None:
            raise self.error
        return self.result


class RaisingInsightWorker:
    """Duck-typed Worker whose handle_request breaks the envelope contract."""

    name = "Broken"
    capabilities = ("generate_insights",)
    state = AgentState.INACTIVE

    async def initialize(self) -> None:
        self.state = AgentState.ACTIVE

    def can_handle(self, capability: str) -> bool:
        return capability in self.capabilities

    async def handle_request(self, request: Any) -> AgentResponse:
        raise RuntimeError("worker exploded")

    async def process(self, request: AgentRequest) -> Any:
        raise RuntimeError("worker exploded")

    def get_health_score(self) -> int:
        return 100

    def get_status(self) -> dict[str, Any]:
        return {"name": self.name}

    async def shutdown(self) -> None:
        self.state = AgentState.INACTIVE


def _request(request_type: str = "echo", **overrides: Any) -> dict[str, Any]:
    request = {"type": request_type, "restaurant_id": 1, "data": {}}
    request.update(overrides)
    return request


@pytest.fixture
def manager() -> AgentManager:
    return AgentManager()


# ── Registration ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_register_initializes_agent(manager):
    agent = StubAgent("A", ["echo"])

    registered = await manager.register_agent(agent)

    assert registered is agent
    assert agent.state == AgentState.ACTIVE
    assert "A" in manager
    assert len(manager) == 1
    assert manager.get("A") is agent


@pytest.mark.asyncio
async def test_register_rejects_non_worker(manager):
    with pytest.raises(TypeError):
        await manager.register_agent(object())


@pytest.mark.asyncio
async def test_reregistering_name_replaces_agent_in_place(manager):
    await manager.register_agent(StubAgent("A", ["echo"]))
    await manager.register_agent(StubAgent("B", ["echo"]))
    replacement = StubAgent("A", ["echo"])

    await manager.register_agent(replacement)

    assert manager.list_agent_names() == ["A", "B"]
    assert manager.get("A") is replacement


@pytest.mark.asyncio
async def test_unregister_shuts_agent_down(manager):
    agent = StubAgent("A", ["echo"])
    await manager.register_agent(agent)

    await manager.unregister_agent("A")
    await manager.unregister_agent("missing")

    assert "A" not in manager
    assert agent.state == AgentState.INACTIVE


# ── route_request ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_routes_to_capable_agent(manager):
    await manager.register_agent(StubAgent("Cost", ["calculate_recipe_cost"]))
    await manager.register_agent(StubAgent("Inventory", ["track_inventory_levels"]))

    response = await manager.route_request(_request("track_inventory_levels"))

    assert response.success is True
    assert response.agent == "Inventory"
    assert response.request_id.startswith("mgr_")
    assert manager.stats.total_requests == 1
    assert manager.stats.successful_requests == 1


@pytest.mark.asyncio
async def test_no_capable_agent_returns_manager_failure(manager):
    await manager.register_agent(StubAgent("A", ["echo"]))

    response = await manager.route_request(_request("launch_rockets"))

    assert response.success is False
    assert response.agent == MANAGER_NAME
    assert response.error == "No agent available to handle request type: launch_rockets"
    assert manager.stats.failed_requests == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "request_data,message",
    [
        (None, "Request is required"),
        ({"restaurant_id": 1}, "Request type is required"),
        ({"type": "echo"}, "Restaurant ID is required"),
    ],
)
async def test_invalid_requests_return_failure_envelopes(manager, request_data, message):
    await manager.register_agent(StubAgent("A", ["echo"]))

    response = await manager.route_request(request_data)

    assert response.success is False
    assert response.agent == MANAGER_NAME
    assert response.error == message


@pytest.mark.asyncio
async def test_agent_failure_counts_as_failed_request(manager):
    await manager.register_agent(StubAgent("A", ["echo"], error=ValueError("bad payload")))

    response = await manager.route_request(_request())

    assert response.success is False
    assert response.agent == "A"
    assert response.error == "bad payload"
    assert manager.stats.failed_requests == 1
    assert manager.stats.successful_requests == 0


@pytest.mark.asyncio
async def test_first_registered_capable_agent_wins(manager):
    await manager.register_agent(StubAgent("First", ["echo"]))
    await manager.register_agent(StubAgent("Second", ["echo"]))

    response = await manager.route_request(_request())

    assert response.agent == "First"


@pytest.mark.asyncio
async def test_agents_in_error_state_are_skipped(manager):
    flaky = StubAgent("Flaky", ["echo"], error=RuntimeError("down"))
    await manager.register_agent(flaky)
    await manager.register_agent(StubAgent("Backup", ["echo"]))

    first = await manager.route_request(_request())
    second = await manager.route_request(_request())

    assert first.agent == "Flaky"
    assert flaky.state == AgentState.ERROR
    assert second.agent == "Backup"
    assert second.success is True


class BlockingAgent(StubAgent):
    """Stays in PROCESSING until ``release`` is set."""

    def __init__(self, name: str, capabilities: list[str]) -> None:
        super().__init__(name, capabilities)
        self.release = asyncio.Event()

    async def process(self, request: AgentRequest) -> Any:
        await self.release.wait()
        return await super().process(request)


@pytest.mark.asyncio
async def test_busy_agent_is_skipped_for_next_capable_agent(manager):
    busy = BlockingAgent("Busy", ["echo"])
    await manager.register_agent(busy)
    await manager.register_agent(StubAgent("Backup", ["echo"]))

    pending = asyncio.create_task(manager.route_request(_request()))
    while busy.state != AgentState.PROCESSING:
        await asyncio.sleep(0)

    second = await manager.route_request(_request())
    busy.release.set()
    first = await pending

    assert second.agent == "Backup"
    assert second.success is True
    assert first.agent == "Busy"
    assert busy.state == AgentState.ACTIVE


@pytest.mark.asyncio
async def test_caller_request_id_is_kept(manager):
    agent = StubAgent("A", ["echo"])
    await manager.register_agent(agent)

    response = await manager.route_request(_request(id="client-7"))

    assert response.request_id == "client-7"
    assert agent.seen[0].timestamp is not None


@pytest.mark.asyncio
async def test_on_complete_receives_envelopes(manager):
    callback = MagicMock()
    await manager.register_agent(StubAgent("A", ["echo"]), on_complete=callback)

    response = await manager.route_request(_request())

    callback.assert_called_once_with(response)


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_routing(manager):
    callback = MagicMock(side_effect=RuntimeError("listener broke"))
    await manager.register_agent(StubAgent("A", ["echo"]), on_complete=callback)

    response = await manager.route_request(_request())

    assert response.success is True


@pytest.mark.asyncio
async def test_process_requests_settles_every_request(manager):
    await manager.register_agent(StubAgent("A", ["echo"]))

    responses = await manager.process_requests([_request(), _request("unknown"), _request()])

    assert [response.success for response in responses] == [True, False, True]


@pytest.mark.asyncio
async def test_average_response_time_is_tracked(manager):
    await manager.register_agent(StubAgent("A", ["echo"]))

    await manager.route_request(_request())
    await manager.route_request(_request())

    assert manager.stats.total_requests == 2
    assert manager.stats.average_response_time >= 0


# ── route_to_specific_agent ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_specific_agent_returns_raw_result(manager):
    agent = StubAgent("A", ["echo"], result={"raw": True})
    await manager.register_agent(agent)

    result = await manager.route_to_specific_agent("A", {"type": "anything", "data": {}})

    assert result == {"raw": True}
    assert agent.seen[0].model_extra["target_agent"] == "A"
    assert agent.seen[0].id.startswith("mgr_")
    assert manager.stats.successful_requests == 1


@pytest.mark.asyncio
async def test_specific_agent_not_found(manager):
    with pytest.raises(AgentNotFoundError, match="not found"):
        await manager.route_to_specific_agent("Ghost", _request())


@pytest.mark.asyncio
async def test_specific_agent_not_active(manager):
    agent = StubAgent("A", ["echo"])
    await manager.register_agent(agent)
    agent.state = AgentState.ERROR

    with pytest.raises(AgentNotActiveError, match="is not active"):
        await manager.route_to_specific_agent("A", _request())


@pytest.mark.asyncio
async def test_specific_agent_errors_propagate(manager):
    await manager.register_agent(StubAgent("A", ["echo"], error=ValueError("no seats")))

    with pytest.raises(ValueError, match="no seats"):
        await manager.route_to_specific_agent("A", _request())

    assert manager.stats.failed_requests == 1


# ── Insights ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_insights_are_sorted_by_priority(manager):
    await manager.register_agent(
        StubAgent(
            "Stub",
            ["generate_insights"],
            result={"insights": [{"type": "a", "priority": "low"}, {"type": "b", "priority": "high"}]},
        )
    )

    insights = await manager.get_restaurant_insights(1)

    assert [insight["priority"] for insight in insights] == ["high", "low"]


@pytest.mark.asyncio
async def test_cost_agent_default_insights(manager):
    await manager.register_agent(CostAgent())

    insights = await manager.get_restaurant_insights(1)

    assert [insight["type"] for insight in insights] == ["cost_increase", "margin_warning", "waste_alert"]
    assert all(insight["agent"] == "CostAgent" for insight in insights)


@pytest.mark.asyncio
async def test_failing_agents_are_skipped_in_insights(manager):
    await manager.register_agent(RaisingInsightWorker())
    await manager.register_agent(StubAgent("Down", ["generate_insights"], error=RuntimeError("down")))
    await manager.register_agent(
        StubAgent("Up", ["generate_insights"], result={"insights": [{"type": "x", "priority": "medium"}]})
    )

    insights = await manager.get_restaurant_insights(1)

    assert insights == [{"type": "x", "priority": "medium"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "malformed",
    [
        {"insights": ["free-text insight", 7, {"type": "kept", "priority": "low"}]},
        {"insights": "see dashboard"},
        {"insights": {"priority": "high"}},
        {"insights": [{"type": "odd", "priority": ["high"]}]},
        "not a dict",
    ],
)
async def test_malformed_insights_do_not_drop_other_agents(manager, malformed):
    await manager.register_agent(
        StubAgent("Good", ["generate_insights"], result={"insights": [{"id": 1, "priority": "high"}]})
    )
    await manager.register_agent(StubAgent("Odd", ["generate_insights"], result=malformed))

    insights = await manager.get_restaurant_insights(1)

    assert insights[0] == {"id": 1, "priority": "high"}
    assert all(isinstance(insight, dict) for insight in insights)


def test_prioritize_insights_tolerates_non_dict_entries():
    ordered = AgentManager.prioritize_insights(["loose", {"id": 1, "priority": "high"}])

    assert ordered == [{"id": 1, "priority": "high"}, "loose"]


@pytest.mark.asyncio
async def test_insights_with_no_capable_agents(manager):
    await manager.register_agent(StubAgent("A", ["echo"]))
    assert await manager.get_restaurant_insights(1) == []


def test_prioritize_insights_is_stable():
    insights = [
        {"id": 1, "priority": "medium"},
        {"id": 2, "priority": "unknown"},
        {"id": 3, "priority": "medium"},
        {"id": 4, "priority": "high"},
    ]

    ordered = AgentManager.prioritize_insights(insights)

    assert [insight["id"] for insight in ordered] == [4, 1, 3, 2]


# ── Health and status ────────────────────────────────────────────────────────


async def _register_failing(manager: AgentManager, count: int) -> None:
    for index in range(count):
        agent = StubAgent(f"Bad{index}", [f"task{index}"], error=RuntimeError("x"))
        await manager.register_agent(agent)
        await manager.route_request(_request(f"task{index}"))


@pytest.mark.asyncio
async def test_health_check_healthy(manager):
    await manager.register_agent(StubAgent("A", ["echo"]))

    report = await manager.health_check()

    assert report == {"overall": "healthy", "agents": {"A": {"health": 100, "status": "active"}}, "issues": []}


@pytest.mark.asyncio
async def test_health_check_warning(manager):
    await manager.register_agent(StubAgent("A", ["echo"]))
    await _register_failing(manager, 2)

    report = await manager.health_check()

    assert report["overall"] == "warning"
    assert "Bad0 agent health is low: 0%" in report["issues"]
    assert "Bad0 agent is in error state" in report["issues"]


@pytest.mark.asyncio
async def test_health_check_critical(manager):
    await _register_failing(manager, 3)

    report = await manager.health_check()

    assert report["overall"] == "critical"


@pytest.mark.asyncio
async def test_get_agent_statuses(manager):
    await manager.register_agent(StubAgent("A", ["echo"]))
    await manager.register_agent(StubAgent("B", ["other"]))
    manager.get("B").state = AgentState.ERROR

    statuses = manager.get_agent_statuses()

    assert set(statuses["agents"]) == {"A", "B"}
    assert statuses["manager"]["total_agents"] == 2
    assert statuses["manager"]["active_agents"] == 1
    assert statuses["manager"]["stats"]["total_requests"] == 0


@pytest.mark.asyncio
async def test_shutdown_clears_registry(manager):
    first = StubAgent("A", ["echo"])
    second = StubAgent("B", ["echo"])
    await manager.register_agent(first)
    await manager.register_agent(second)

    await manager.shutdown()

    assert len(manager) == 0
    assert first.state == AgentState.INACTIVE
    assert second.state == AgentState.INACTIVE
