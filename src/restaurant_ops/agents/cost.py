"""Cost analysis agent.

Handles recipe costing, menu margin analysis, cost optimization
recommendations, cost trends, and cost insights. Margins are fractions
(0.65 == 65%) internally and whole percentages in results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.restaurant_ops.agents.base import AgentRequest, BaseAgent
from src.restaurant_ops.agents.errors import UnknownRequestTypeError


@dataclass(frozen=True)
class CostConfig:
    target_margin: float = 0.65
    warning_threshold: float = 0.55
    critical_threshold: float = 0.45
    labor_rate: float = 0.20
    overhead_rate: float = 0.15


# Used for insights until per-restaurant cost history is wired in
DEFAULT_COST_SNAPSHOT: dict[str, float] = {
    "average_margin": 0.58,
    "recent_cost_increase": 0.08,
    "wastage_rate": 0.12,
}


def _money(value: float) -> float:
    return round(value, 2)


class CostAgent(BaseAgent):
    """Recipe costing and margin analysis."""

    def __init__(self, config: CostConfig | None = None) -> None:
        super().__init__(
            "CostAgent",
            [
                "calculate_recipe_cost",
                "analyze_margins",
                "optimize_costs",
                "generate_insights",
                "cost_trends",
            ],
        )
        self.config = config or CostConfig()

    async def process(self, request: AgentRequest) -> dict[str, Any]:
        handlers = {
            "calculate_recipe_cost": self.calculate_recipe_cost,
            "analyze_margins": self.analyze_margins,
            "optimize_costs": self.optimize_costs,
            "generate_insights": self.generate_insights,
            "cost_trends": self.analyze_cost_trends,
        }
        handler = handlers.get(request.type)
        if handler is None:
            raise UnknownRequestTypeError(request.type)
        return await handler(request)

    async def calculate_recipe_cost(self, request: AgentRequest) -> dict[str, Any]:
        """Ingredient cost plus estimated labor and overhead, per portion."""
        data = request.data
        ingredients = data.get("ingredients")
        if not isinstance(ingredients, list):
            raise ValueError("Ingredients array is required for recipe cost calculation")
        portions = data.get("portions") or 1

        ingredient_total = 0.0
        details = []
        for ingredient in ingredients:
            line_cost = ingredient["quantity"] * ingredient["cost_per_unit"]
            ingredient_total += line_cost
            details.append(
                {
                    "ingredient": ingredient.get("name"),
                    "quantity": ingredient["quantity"],
                    "unit": ingredient.get("unit"),
                    "cost_per_unit": ingredient["cost_per_unit"],
                    "total_cost": _money(line_cost),
                }
            )

        for item in details:
            item["percentage"] = round(item["total_cost"] / ingredient_total * 100) if ingredient_total else 0

        labor = ingredient_total * self.config.labor_rate
        overhead = (ingredient_total + labor) * self.config.overhead_rate
        total = ingredient_total + labor + overhead
        per_portion = total / portions

        return {
            "recipe_id": data.get("recipe_id"),
            "cost_analysis": {
                "total_cost": _money(total),
                "cost_per_portion": _money(per_portion),
                "portions": portions,
                "breakdown": {
                    "ingredients": _money(ingredient_total),
                    "labor": _money(labor),
                    "overhead": _money(overhead),
                },
                "ingredient_details": details,
            },
            "recommendations": self._cost_recommendations(per_portion),
        }

    async def analyze_margins(self, request: AgentRequest) -> dict[str, Any]:
        menu_items = request.data.get("menu_items")
        if not isinstance(menu_items, list):
            raise ValueError("Menu items array is required for margin analysis")

        items = []
        total_revenue = 0.0
        total_cost = 0.0
        for item in menu_items:
            price = item["selling_price"]
            cost = item["cost"]
            volume = item.get("sales_volume", 1)
            if price <= 0:
                raise ValueError(f"Selling price must be positive for {item.get('name')}")
            margin = (price - cost) / price
            revenue = price * volume
            total_revenue += revenue
            total_cost += cost * volume
            items.append(
                {
                    "name": item.get("name"),
                    "selling_price": price,
                    "cost": cost,
                    "margin": round(margin * 100),
                    "status": self.margin_status(margin),
                    "revenue": _money(revenue),
                    "profit": _money(revenue - cost * volume),
                    "sales_volume": volume,
                }
            )

        overall = (total_revenue - total_cost) / total_revenue if total_revenue else 0.0
        low_margin = [item["name"] for item in items if item["margin"] < 50]
        recommendations = []
        if low_margin:
            recommendations.append(
                {
                    "type": "margin_improvement",
                    "message": f"{len(low_margin)} items have margins below 50%",
                    "items": low_margin,
                    "priority": "high",
                }
            )

        return {
            "margin_analysis": {
                "items": items,
                "overall": {
                    "margin": round(overall * 100),
                    "status": self.margin_status(overall),
                    "total_revenue": _money(total_revenue),
                    "total_cost": _money(total_cost),
                    "total_profit": _money(total_revenue - total_cost),
                },
            },
            "recommendations": recommendations,
        }

    async def optimize_costs(self, request: AgentRequest) -> dict[str, Any]:
        data = request.data
        target = data.get("target_margin") or self.config.target_margin

        optimizations = []
        for cost in data.get("current_costs", []):
            category = cost.get("category")
            amount = cost.get("amount", 0)
            percentage = cost.get("percentage", 0)
            if category == "ingredients" and percentage > 35:
                optimizations.append(
                    {
                        "type": "ingredient_substitution",
                        "category": category,
                        "current_amount": amount,
                        "potential_savings": _money(amount * 0.15),
                        "recommendation": "Consider alternative ingredients or suppliers",
                        "priority": "high",
                    }
                )
            elif category == "labor" and percentage > 25:
                optimizations.append(
                    {
                        "type": "process_optimization",
                        "category": category,
                        "current_amount": amount,
                        "potential_savings": _money(amount * 0.10),
                        "recommendation": "Streamline preparation processes",
                        "priority": "medium",
                    }
                )

        return {
            "optimizations": optimizations,
            "target_margin": target,
            "estimated_savings": _money(sum(opt["potential_savings"] for opt in optimizations)),
        }

    async def generate_insights(self, request: AgentRequest) -> dict[str, Any]:
        snapshot = {**DEFAULT_COST_SNAPSHOT, **request.data.get("cost_snapshot", {})}
        insights = []

        margin = snapshot["average_margin"]
        if margin < self.config.target_margin:
            insights.append(
                {
                    "type": "margin_warning",
                    "priority": "high" if margin < self.config.critical_threshold else "medium",
                    "message": f"Average margin of {round(margin * 100)}% is below target",
                    "impact": "financial",
                    "recommendation": "Review pricing strategy or reduce costs",
                    "agent": self.name,
                }
            )

        increase = snapshot["recent_cost_increase"]
        if increase > 0.05:
            insights.append(
                {
                    "type": "cost_increase",
                    "priority": "high",
                    "message": f"Costs increased by {round(increase * 100)}% recently",
                    "impact": "financial",
                    "recommendation": "Investigate supplier pricing and consider alternatives",
                    "agent": self.name,
                }
            )

        wastage = snapshot["wastage_rate"]
        if wastage > 0.10:
            insights.append(
                {
                    "type": "waste_alert",
                    "priority": "medium",
                    "message": f"Food waste at {round(wastage * 100)}% is above optimal",
                    "impact": "cost_efficiency",
                    "recommendation": "Implement better inventory management",
                    "agent": self.name,
                }
            )

        return {"insights": insights}

    async def analyze_cost_trends(self, request: AgentRequest) -> dict[str, Any]:
        """Percentage change per cost category between two periods."""
        data = request.data
        previous = data.get("previous_period", {})
        current = data.get("current_period", {})

        categories = {}
        for category in sorted(set(previous) | set(current)):
            before = previous.get(category, 0)
            after = current.get(category, 0)
            change = round((after - before) / before * 100, 1) if before else 0.0
            if change > 2.5:
                trend = "increasing"
            elif change < -2.5:
                trend = "decreasing"
            else:
                trend = "stable"
            categories[category] = {"trend": trend, "change": change}

        return {"trends": {"timeframe": data.get("timeframe", "30d"), "cost_categories": categories}}

    def margin_status(self, margin: float) -> str:
        if margin >= self.config.target_margin:
            return "excellent"
        if margin >= self.config.warning_threshold:
            return "good"
        if margin >= self.config.critical_threshold:
            return "warning"
        return "critical"

    @staticmethod
    def _cost_recommendations(cost_per_portion: float) -> list[dict[str, str]]:
        if cost_per_portion > 8:
            return [
                {
                    "type": "high_cost_warning",
                    "message": "Recipe cost is high - consider ingredient substitutions",
                    "priority": "medium",
                }
            ]
        if cost_per_portion < 3:
            return [
                {
                    "type": "pricing_opportunity",
                    "message": "Low cost allows for competitive pricing or higher margins",
                    "priority": "low",
                }
            ]
        return []
