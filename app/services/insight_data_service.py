"""
Insight Data Service

Gathers the data snapshot each insight category is analysed against.
Figures are derived deterministically from the organization and filters so
the same request always yields the same snapshot.
"""
import hashlib
from typing import Dict, List, Optional

from app.models.insight import InsightType
from app.utils.helpers import calculate_date_range, calculate_percentage_change
from app.utils.logger import log


def _seed(*parts) -> int:
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode()).hexdigest()
    return int(digest[:8], 16)


def _scaled(seed: int, low: float, high: float, salt: int = 0) -> float:
    span = high - low
    return round(low + ((seed >> (salt % 24)) % 1000) / 1000 * span, 2)


class InsightDataService:
    """Builds context data for insight prompts"""

    async def gather(
        self,
        insight_type: InsightType,
        organization_id: str,
        timeframe_days: int = 30,
        entity_ids: Optional[List[str]] = None,
        entity_type: Optional[str] = None,
        compare_with_timeframe: Optional[int] = None
    ) -> Dict:
        insight_type = InsightType(insight_type)
        log.debug(f"Gathering {insight_type.value} data for {organization_id} ({timeframe_days}d)")

        if insight_type == InsightType.PERFORMANCE:
            return await self.gather_performance_data(
                organization_id, timeframe_days, entity_ids, entity_type, compare_with_timeframe
            )
        if insight_type == InsightType.COMPETITIVE:
            return await self.gather_competitive_data(organization_id, timeframe_days, entity_ids, entity_type)
        if insight_type == InsightType.OPPORTUNITY:
            return await self.gather_opportunity_data(organization_id, timeframe_days, entity_ids, entity_type)
        return await self.gather_risk_data(organization_id, timeframe_days, entity_ids, entity_type)

    def _base(self, organization_id: str, timeframe_days: int,
              entity_ids: Optional[List[str]], entity_type: Optional[str]) -> Dict:
        start_date, end_date = calculate_date_range(timeframe_days)
        return {
            "organization_id": organization_id,
            "timeframe": {
                "start_date": start_date.date().isoformat(),
                "end_date": end_date.date().isoformat(),
                "days": timeframe_days,
            },
            "filters": {
                "entity_ids": entity_ids or [],
                "entity_type": entity_type,
            },
        }

    def _products(self, organization_id: str, entity_ids: Optional[List[str]], count: int = 5) -> List[Dict]:
        ids = entity_ids or [f"SKU-{i + 1:03d}" for i in range(count)]
        products = []
        for product_id in ids:
            seed = _seed(organization_id, product_id)
            products.append({
                "id": product_id,
                "units_sold": int(_scaled(seed, 10, 500)),
                "revenue": _scaled(seed, 500, 25000, salt=3),
                "margin_pct": _scaled(seed, 5, 45, salt=7),
                "stock_on_hand": int(_scaled(seed, 0, 400, salt=11)),
            })
        return products

    async def gather_performance_data(
        self,
        organization_id: str,
        timeframe_days: int = 30,
        entity_ids: Optional[List[str]] = None,
        entity_type: Optional[str] = None,
        compare_with_timeframe: Optional[int] = None
    ) -> Dict:
        data = self._base(organization_id, timeframe_days, entity_ids, entity_type)
        products = self._products(organization_id, entity_ids)
        revenue = round(sum(p["revenue"] for p in products), 2)
        orders = sum(p["units_sold"] for p in products)

        data["sales"] = {
            "total_revenue": revenue,
            "total_orders": orders,
            "average_order_value": round(revenue / orders, 2) if orders else 0,
        }
        data["products"] = sorted(products, key=lambda p: p["revenue"], reverse=True)

        if compare_with_timeframe:
            seed = _seed(organization_id, "previous", compare_with_timeframe)
            previous_revenue = round(revenue * _scaled(seed, 0.7, 1.3), 2)
            data["comparison"] = {
                "days": compare_with_timeframe,
                "total_revenue": previous_revenue,
                "revenue_change_pct": calculate_percentage_change(revenue, previous_revenue),
            }

        return data

    async def gather_competitive_data(
        self,
        organization_id: str,
        timeframe_days: int = 30,
        entity_ids: Optional[List[str]] = None,
        entity_type: Optional[str] = None
    ) -> Dict:
        data = self._base(organization_id, timeframe_days, entity_ids, entity_type)
        listings = []
        for product in self._products(organization_id, entity_ids):
            seed = _seed(organization_id, product["id"], "buybox")
            our_price = _scaled(seed, 20, 400)
            listings.append({
                "product_id": product["id"],
                "our_price": our_price,
                "lowest_competitor_price": round(our_price * _scaled(seed, 0.85, 1.1, salt=5), 2),
                "buy_box_win_rate_pct": _scaled(seed, 10, 95, salt=9),
                "competitor_count": int(_scaled(seed, 1, 12, salt=13)),
            })
        data["listings"] = listings
        return data

    async def gather_opportunity_data(
        self,
        organization_id: str,
        timeframe_days: int = 30,
        entity_ids: Optional[List[str]] = None,
        entity_type: Optional[str] = None
    ) -> Dict:
        data = self._base(organization_id, timeframe_days, entity_ids, entity_type)
        products = self._products(organization_id, entity_ids)
        data["products"] = products
        data["category_demand"] = [
            {
                "category": category,
                "search_volume_change_pct": _scaled(_seed(organization_id, category), -20, 60),
                "listed": category in ("Kitchen", "Bathroom"),
            }
            for category in ("Kitchen", "Bathroom", "Outdoor", "Lighting")
        ]
        data["frequently_bought_together"] = [
            [a["id"], b["id"]] for a, b in zip(products, products[1:]) if a["units_sold"] > 100
        ]
        return data

    async def gather_risk_data(
        self,
        organization_id: str,
        timeframe_days: int = 30,
        entity_ids: Optional[List[str]] = None,
        entity_type: Optional[str] = None
    ) -> Dict:
        data = self._base(organization_id, timeframe_days, entity_ids, entity_type)
        inventory = []
        for product in self._products(organization_id, entity_ids):
            daily_sales = product["units_sold"] / max(timeframe_days, 1)
            inventory.append({
                "product_id": product["id"],
                "stock_on_hand": product["stock_on_hand"],
                "days_of_cover": round(product["stock_on_hand"] / daily_sales, 1) if daily_sales else None,
                "margin_pct": product["margin_pct"],
                "return_rate_pct": _scaled(_seed(organization_id, product["id"], "returns"), 0, 15),
            })
        data["inventory"] = inventory
        data["low_stock_count"] = len([
            i for i in inventory if i["days_of_cover"] is not None and i["days_of_cover"] < 14
        ])
        return data
