"""Inventory management agent.

Works on the ``items`` list in the request payload. Each item is a dict
with ``id``, ``name``, ``current_stock``, ``minimum_stock`` and optionally
``maximum_stock``, ``daily_usage``, ``lead_time_days``, ``unit_cost``,
``expiration_date`` (ISO date), ``received_quantity`` and
``waste_quantity``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from src.restaurant_ops.agents.base import AgentRequest, BaseAgent
from src.restaurant_ops.agents.errors import UnknownRequestTypeError

REORDER_PRIORITY_ORDER = {"critical": 1, "high": 2, "medium": 3, "low": 4}


@dataclass(frozen=True)
class InventoryConfig:
    safety_stock_days: int = 3
    expiration_warning_days: int = 5
    high_waste_threshold: float = 0.15
    low_stock_multiplier: float = 1.2


def _items(request: AgentRequest) -> list[dict[str, Any]]:
    items = request.data.get("items")
    if not isinstance(items, list):
        raise ValueError("Items array is required for inventory analysis")
    return items


class InventoryAgent(BaseAgent):
    """Stock levels, reorder predictions, expiration and waste tracking."""

    def __init__(self, config: InventoryConfig | None = None) -> None:
        super().__init__(
            "InventoryAgent",
            [
                "track_inventory_levels",
                "predict_reorder_needs",
                "monitor_expiration_dates",
                "analyze_waste_patterns",
                "optimize_stock_levels",
                "generate_insights",
            ],
        )
        self.config = config or InventoryConfig()

    async def process(self, request: AgentRequest) -> dict[str, Any]:
        handlers = {
            "track_inventory_levels": self.track_inventory_levels,
            "predict_reorder_needs": self.predict_reorder_needs,
            "monitor_expiration_dates": self.monitor_expiration_dates,
            "analyze_waste_patterns": self.analyze_waste_patterns,
            "optimize_stock_levels": self.optimize_stock_levels,
            "generate_insights": self.generate_insights,
        }
        handler = handlers.get(request.type)
        if handler is None:
            raise UnknownRequestTypeError(request.type)
        return await handler(request)

    def reorder_point(self, item: dict[str, Any]) -> float:
        return item["minimum_stock"] * self.config.low_stock_multiplier

    def stock_status(self, item: dict[str, Any]) -> str:
        current = item["current_stock"]
        if current <= 0:
            return "out_of_stock"
        if current <= item["minimum_stock"]:
            return "low"
        maximum = item.get("maximum_stock")
        if maximum and current > maximum:
            return "overstock"
        return "ok"

    async def track_inventory_levels(self, request: AgentRequest) -> dict[str, Any]:
        levels = []
        for item in _items(request):
            levels.append(
                {
                    "item_id": item.get("id"),
                    "item_name": item.get("name"),
                    "current_stock": item["current_stock"],
                    "minimum_stock": item["minimum_stock"],
                    "status": self.stock_status(item),
                    "value": round(item["current_stock"] * item.get("unit_cost", 0), 2),
                }
            )
        return {
            "levels": levels,
            "summary": {
                "total_items": len(levels),
                "low_stock_items": sum(1 for level in levels if level["status"] == "low"),
                "out_of_stock_items": sum(1 for level in levels if level["status"] == "out_of_stock"),
                "total_value": round(sum(level["value"] for level in levels), 2),
            },
        }

    async def predict_reorder_needs(self, request: AgentRequest) -> dict[str, Any]:
        forecast_days = request.data.get("forecast_days", 7)
        recommendations = []

        for item in _items(request):
            daily_usage = item.get("daily_usage", 0)
            projected_usage = daily_usage * forecast_days
            projected_stock = item["current_stock"] - projected_usage
            reorder_point = self.reorder_point(item)
            needs_reorder = projected_stock <= reorder_point

            if item["current_stock"] <= item["minimum_stock"]:
                priority = "high"
            elif projected_stock <= 0:
                priority = "critical"
            elif projected_stock <= item["minimum_stock"]:
                priority = "high"
            elif projected_stock <= reorder_point:
                priority = "medium"
            else:
                priority = "low"

            suggested = 0.0
            if needs_reorder:
                ceiling = item.get("maximum_stock") or item["minimum_stock"] * 3
                suggested = max(
                    ceiling - item["current_stock"],
                    daily_usage * (item.get("lead_time_days", 0) + self.config.safety_stock_days),
                )

            recommendations.append(
                {
                    "item_id": item.get("id"),
                    "item_name": item.get("name"),
                    "current_stock": item["current_stock"],
                    "projected_stock": projected_stock,
                    "reorder_point": reorder_point,
                    "suggested_quantity": round(suggested),
                    "priority": priority,
                    "needs_reorder": needs_reorder,
                    "estimated_cost": round(suggested * item.get("unit_cost", 0), 2),
                }
            )

        recommendations.sort(key=lambda rec: REORDER_PRIORITY_ORDER[rec["priority"]])
        return {
            "recommendations": recommendations,
            "summary": {
                "total_recommendations": len(recommendations),
                "items_needing_reorder": sum(1 for rec in recommendations if rec["needs_reorder"]),
                "critical_items": sum(1 for rec in recommendations if rec["priority"] == "critical"),
                "total_estimated_cost": round(sum(rec["estimated_cost"] for rec in recommendations), 2),
            },
        }

    async def monitor_expiration_dates(self, request: AgentRequest) -> dict[str, Any]:
        warning_days = request.data.get("warning_days", self.config.expiration_warning_days)
        today = date.fromisoformat(request.data["as_of"]) if request.data.get("as_of") else date.today()

        expiring = []
        for item in _items(request):
            if not item.get("expiration_date"):
                continue
            days_left = (date.fromisoformat(item["expiration_date"]) - today).days
            if days_left > warning_days:
                continue
            expiring.append(
                {
                    "item_id": item.get("id"),
                    "item_name": item.get("name"),
                    "expiration_date": item["expiration_date"],
                    "days_until_expiration": days_left,
                    "status": "expired" if days_left < 0 else "expiring_soon",
                    "value_at_risk": round(item["current_stock"] * item.get("unit_cost", 0), 2),
                }
            )

        expiring.sort(key=lambda entry: entry["days_until_expiration"])
        return {
            "expiring_items": expiring,
            "summary": {
                "expired": sum(1 for entry in expiring if entry["status"] == "expired"),
                "expiring_soon": sum(1 for entry in expiring if entry["status"] == "expiring_soon"),
                "total_value_at_risk": round(sum(entry["value_at_risk"] for entry in expiring), 2),
            },
        }

    async def analyze_waste_patterns(self, request: AgentRequest) -> dict[str, Any]:
        analysis = []
        for item in _items(request):
            received = item.get("received_quantity", 0)
            wasted = item.get("waste_quantity", 0)
            waste_pct = wasted / received * 100 if received else 0.0
            if waste_pct > self.config.high_waste_threshold * 100:
                category = "high"
            elif waste_pct > self.config.high_waste_threshold * 50:
                category = "medium"
            else:
                category = "low"
            analysis.append(
                {
                    "item_id": item.get("id"),
                    "item_name": item.get("name"),
                    "waste_percentage": round(waste_pct, 1),
                    "waste_cost": round(wasted * item.get("unit_cost", 0), 2),
                    "waste_category": category,
                }
            )

        analysis.sort(key=lambda entry: entry["waste_percentage"], reverse=True)
        return {
            "waste_analysis": analysis,
            "summary": {
                "high_waste_items": sum(1 for entry in analysis if entry["waste_category"] == "high"),
                "total_waste_cost": round(sum(entry["waste_cost"] for entry in analysis), 2),
            },
        }

    async def optimize_stock_levels(self, request: AgentRequest) -> dict[str, Any]:
        optimizations = []
        for item in _items(request):
            daily_usage = item.get("daily_usage", 0)
            safety_stock = daily_usage * self.config.safety_stock_days
            optimal_min = daily_usage * (item.get("lead_time_days", 0) + self.config.safety_stock_days)
            optimal_max = optimal_min + daily_usage * 7
            optimizations.append(
                {
                    "item_id": item.get("id"),
                    "item_name": item.get("name"),
                    "current_minimum": item["minimum_stock"],
                    "current_maximum": item.get("maximum_stock"),
                    "recommended_minimum": round(optimal_min),
                    "recommended_maximum": round(optimal_max),
                    "safety_stock": round(safety_stock),
                }
            )
        return {"optimizations": optimizations}

    async def generate_insights(self, request: AgentRequest) -> dict[str, Any]:
        items = request.data.get("items") or []
        insights = []

        low = [item.get("name") for item in items if self.stock_status(item) in ("low", "out_of_stock")]
        if low:
            insights.append(
                {
                    "type": "low_stock",
                    "priority": "high",
                    "message": f"{len(low)} items are at or below minimum stock",
                    "items": low,
                    "impact": "operations",
                    "recommendation": "Place reorders for low stock items",
                    "agent": self.name,
                }
            )

        overstock = [item.get("name") for item in items if self.stock_status(item) == "overstock"]
        if overstock:
            insights.append(
                {
                    "type": "overstock",
                    "priority": "low",
                    "message": f"{len(overstock)} items are above maximum stock",
                    "items": overstock,
                    "impact": "cost_efficiency",
                    "recommendation": "Reduce order quantities for overstocked items",
                    "agent": self.name,
                }
            )

        return {"insights": insights}
