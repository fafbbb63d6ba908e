"""Demand forecasting agent.

Forecasts come from each menu item's average daily sales scaled by
weekday and seasonal factors. The payload carries ``restaurant_id``,
``menu_items`` (dicts with ``id``, ``name``, ``average_daily_sales``,
``price`` and optionally ``variance``), ``forecast_days`` and an optional
``start_date`` (ISO date, defaults to today).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from src.restaurant_ops.agents.base import AgentRequest, BaseAgent
from src.restaurant_ops.agents.errors import UnknownRequestTypeError

SEASON_BY_MONTH = {
    12: "winter", 1: "winter", 2: "winter",
    3: "spring", 4: "spring", 5: "spring",
    6: "summer", 7: "summer", 8: "summer",
    9: "fall", 10: "fall", 11: "fall",
}


def _ingredient_sort_key(entry: tuple[tuple[str, str | None], float]) -> tuple[str, str]:
    (name, unit), _ = entry
    return name, unit or ""


@dataclass(frozen=True)
class ForecastConfig:
    default_forecast_days: int = 30
    default_variance: float = 0.15
    seasonal_multipliers: dict[str, float] = field(
        default_factory=lambda: {"spring": 1.1, "summer": 1.25, "fall": 1.05, "winter": 0.9}
    )
    # Monday == 0, matching date.weekday()
    weekday_factors: tuple[float, ...] = (0.8, 0.85, 0.9, 1.0, 1.3, 1.4, 1.1)
    confidence_thresholds: dict[str, float] = field(
        default_factory=lambda: {"high": 0.85, "medium": 0.65, "low": 0.45}
    )


class ForecastAgent(BaseAgent):
    """Demand, revenue, capacity and ingredient forecasts."""

    def __init__(self, config: ForecastConfig | None = None) -> None:
        super().__init__(
            "ForecastAgent",
            [
                "forecast_demand",
                "analyze_seasonal_trends",
                "predict_revenue",
                "optimize_capacity",
                "forecast_ingredients",
            ],
        )
        self.config = config or ForecastConfig()

    async def process(self, request: AgentRequest) -> dict[str, Any]:
        handlers = {
            "forecast_demand": self.forecast_demand,
            "analyze_seasonal_trends": self.analyze_seasonal_trends,
            "predict_revenue": self.predict_revenue,
            "optimize_capacity": self.optimize_capacity,
            "forecast_ingredients": self.forecast_ingredient_needs,
        }
        handler = handlers.get(request.type)
        if handler is None:
            raise UnknownRequestTypeError(request.type)

        data = dict(request.data)
        if request.restaurant_id and not data.get("restaurant_id"):
            data["restaurant_id"] = request.restaurant_id
        return await handler(data)

    def demand_factor(self, day: date) -> float:
        season = SEASON_BY_MONTH[day.month]
        return self.config.weekday_factors[day.weekday()] * self.config.seasonal_multipliers[season]

    def confidence_level(self, confidence: float) -> str:
        thresholds = self.config.confidence_thresholds
        if confidence >= thresholds["high"]:
            return "high"
        if confidence >= thresholds["medium"]:
            return "medium"
        return "low"

    def _forecast_items(self, data: dict[str, Any]) -> tuple[list[dict[str, Any]], list[date]]:
        if not data.get("restaurant_id"):
            raise ValueError("Restaurant ID is required for demand forecasting")
        days = data.get("forecast_days", self.config.default_forecast_days)
        if days <= 0:
            raise ValueError("Forecast days must be greater than 0")

        start = date.fromisoformat(data["start_date"]) if data.get("start_date") else date.today()
        dates = [start + timedelta(days=offset) for offset in range(days)]
        factors = [self.demand_factor(day) for day in dates]

        forecasts = []
        for item in data.get("menu_items") or []:
            baseline = item["average_daily_sales"]
            variance = item.get("variance", self.config.default_variance)
            confidence = max(0.0, min(1.0, 1 - variance))
            daily = [round(baseline * factor, 1) for factor in factors]
            forecasts.append(
                {
                    "item_id": item.get("id"),
                    "item_name": item.get("name"),
                    "daily_forecasts": [
                        {"date": day.isoformat(), "quantity": quantity} for day, quantity in zip(dates, daily)
                    ],
                    "total_quantity": round(sum(daily), 1),
                    "confidence": round(confidence, 2),
                    "confidence_level": self.confidence_level(confidence),
                    "confidence_interval": {
                        "lower": round(sum(daily) * (1 - variance), 1),
                        "upper": round(sum(daily) * (1 + variance), 1),
                    },
                }
            )
        return forecasts, dates

    async def forecast_demand(self, data: dict[str, Any]) -> dict[str, Any]:
        forecasts, dates = self._forecast_items(data)
        average_confidence = (
            round(sum(forecast["confidence"] for forecast in forecasts) / len(forecasts), 2) if forecasts else 0.0
        )
        return {
            "restaurant_id": data["restaurant_id"],
            "forecast_period": {
                "start_date": dates[0].isoformat(),
                "end_date": dates[-1].isoformat(),
                "days": len(dates),
            },
            "item_forecasts": forecasts,
            "summary": {
                "total_items": len(forecasts),
                "total_quantity": round(sum(forecast["total_quantity"] for forecast in forecasts), 1),
                "average_confidence": average_confidence,
            },
        }

    async def analyze_seasonal_trends(self, data: dict[str, Any]) -> dict[str, Any]:
        """Seasonal index per month from ``monthly_sales`` ({month: total})."""
        monthly = {int(month): total for month, total in (data.get("monthly_sales") or {}).items()}
        if not monthly:
            return {
                "restaurant_id": data.get("restaurant_id"),
                "seasonal_multipliers": dict(self.config.seasonal_multipliers),
                "source": "defaults",
            }

        average = sum(monthly.values()) / len(monthly)
        indices = {month: round(total / average, 2) for month, total in sorted(monthly.items())}

        by_season: dict[str, list[float]] = defaultdict(list)
        for month, index in indices.items():
            by_season[SEASON_BY_MONTH[month]].append(index)

        return {
            "restaurant_id": data.get("restaurant_id"),
            "monthly_indices": indices,
            "seasonal_multipliers": {
                season: round(sum(values) / len(values), 2) for season, values in by_season.items()
            },
            "peak_months": [month for month, index in indices.items() if index >= 1.1],
            "slow_months": [month for month, index in indices.items() if index <= 0.9],
            "source": "history",
        }

    async def predict_revenue(self, data: dict[str, Any]) -> dict[str, Any]:
        forecasts, dates = self._forecast_items(data)
        prices = {item.get("id"): item.get("price", 0) for item in data.get("menu_items") or []}

        items = []
        daily_revenue: dict[str, float] = defaultdict(float)
        for forecast in forecasts:
            price = prices.get(forecast["item_id"], 0)
            for point in forecast["daily_forecasts"]:
                daily_revenue[point["date"]] += point["quantity"] * price
            items.append(
                {
                    "item_id": forecast["item_id"],
                    "item_name": forecast["item_name"],
                    "predicted_revenue": round(forecast["total_quantity"] * price, 2),
                }
            )

        total = sum(item["predicted_revenue"] for item in items)
        return {
            "restaurant_id": data["restaurant_id"],
            "period_days": len(dates),
            "total_revenue": round(total, 2),
            "average_daily_revenue": round(total / len(dates), 2),
            "daily_revenue": [
                {"date": day.isoformat(), "revenue": round(daily_revenue[day.isoformat()], 2)} for day in dates
            ],
            "items": sorted(items, key=lambda item: item["predicted_revenue"], reverse=True),
        }

    async def optimize_capacity(self, data: dict[str, Any]) -> dict[str, Any]:
        """Expected seat utilization per weekday from average daily covers."""
        seats = data.get("seats")
        if not seats or seats <= 0:
            raise ValueError("Seat count is required for capacity planning")
        covers = data.get("average_daily_covers", 0)
        max_turns = data.get("max_turns", 3)
        capacity = seats * max_turns

        weekdays = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
        schedule = []
        for day_name, factor in zip(weekdays, self.config.weekday_factors):
            expected = covers * factor
            utilization = expected / capacity
            if utilization > 0.9:
                recommendation = "Add staff and consider extended hours"
            elif utilization < 0.5:
                recommendation = "Reduce staffing levels"
            else:
                recommendation = "Current staffing is adequate"
            schedule.append(
                {
                    "day": day_name,
                    "expected_covers": round(expected),
                    "utilization": round(utilization * 100, 1),
                    "recommendation": recommendation,
                }
            )

        return {
            "restaurant_id": data.get("restaurant_id"),
            "capacity": capacity,
            "schedule": schedule,
            "peak_day": max(schedule, key=lambda entry: entry["utilization"])["day"],
        }

    async def forecast_ingredient_needs(self, data: dict[str, Any]) -> dict[str, Any]:
        """Total ingredient quantities implied by the demand forecast and ``recipes``."""
        forecasts, dates = self._forecast_items(data)
        recipes: dict[Any, list[dict[str, Any]]] = data.get("recipes") or {}

        needs: dict[tuple[str, str | None], float] = defaultdict(float)
        for forecast in forecasts:
            recipe = recipes.get(forecast["item_id"]) or recipes.get(str(forecast["item_id"])) or []
            for line in recipe:
                needs[(line["ingredient"], line.get("unit"))] += line["quantity"] * forecast["total_quantity"]

        return {
            "restaurant_id": data["restaurant_id"],
            "period_days": len(dates),
            "ingredients": [
                {"ingredient": name, "unit": unit, "quantity": round(quantity, 2)}
                for (name, unit), quantity in sorted(needs.items(), key=_ingredient_sort_key)
            ],
        }
