"""
Shared Queries
==============

Hand-authored, tenant-scoped queries that answer the canonical intents
without going through generation. Every statement binds the tenant id and
the date window as named parameters.
"""

import asyncio
from typing import Any

from query_guard.dates import DateRange
from query_guard.store.base import RelationalStore

SALES_SQL = """
SELECT COALESCE(SUM("amount"), 0) AS "totalRevenue", COUNT(*) AS "paymentCount"
FROM "Payment"
WHERE "tenantId" = :tenant_id
  AND "status" = 'COMPLETED'
  AND "createdAt" >= :start AND "createdAt" <= :end
"""

ORDER_COUNT_SQL = """
SELECT COUNT(*) AS "orderCount"
FROM "Order"
WHERE "tenantId" = :tenant_id
  AND "createdAt" >= :start AND "createdAt" <= :end
"""

TOP_PRODUCTS_SQL = """
SELECT
  p."id" AS "productId",
  p."name" AS "productName",
  c."name" AS "categoryName",
  SUM(oi."quantity") AS "quantitySold",
  SUM(oi."quantity" * oi."unitPrice") AS "revenue",
  COUNT(DISTINCT o."id") AS "orderCount"
FROM "OrderItem" oi
INNER JOIN "Product" p ON oi."productId" = p."id"
INNER JOIN "Order" o ON oi."orderId" = o."id"
LEFT JOIN "MenuCategory" c ON p."categoryId" = c."id"
WHERE o."tenantId" = :tenant_id
  AND o."createdAt" >= :start AND o."createdAt" <= :end
GROUP BY p."id", p."name", c."name"
ORDER BY "revenue" DESC
LIMIT :limit
"""

STAFF_PERFORMANCE_SQL = """
SELECT
  s."id" AS "staffId",
  s."firstName" || ' ' || s."lastName" AS "staffName",
  s."role" AS "role",
  COUNT(DISTINCT o."id") AS "totalOrders",
  COALESCE(SUM(p."amount"), 0) AS "totalRevenue",
  COALESCE(SUM(p."tipAmount"), 0) AS "totalTips"
FROM "Staff" s
LEFT JOIN "Order" o ON o."servedById" = s."id"
  AND o."createdAt" >= :start AND o."createdAt" <= :end
LEFT JOIN "Payment" p ON p."orderId" = o."id" AND p."status" = 'COMPLETED'
WHERE s."tenantId" = :tenant_id
GROUP BY s."id", s."firstName", s."lastName", s."role"
HAVING COUNT(DISTINCT o."id") > 0
ORDER BY "totalRevenue" DESC
LIMIT :limit
"""

REVIEW_STATS_SQL = """
SELECT
  COUNT(*) AS "totalReviews",
  COALESCE(AVG("overallRating"), 0) AS "averageRating",
  SUM(CASE WHEN "overallRating" >= 4 THEN 1 ELSE 0 END) AS "positiveReviews",
  SUM(CASE WHEN "overallRating" <= 2 THEN 1 ELSE 0 END) AS "negativeReviews",
  SUM(CASE WHEN "responseText" IS NOT NULL THEN 1 ELSE 0 END) AS "respondedReviews"
FROM "Review"
WHERE "tenantId" = :tenant_id
  AND "createdAt" >= :start AND "createdAt" <= :end
"""


class SharedQueries:
    """Prebuilt queries for the fast path."""

    def __init__(self, store: RelationalStore) -> None:
        self.store = store

    @staticmethod
    def _params(tenant_id: str, date_range: DateRange, **extra: Any) -> dict[str, Any]:
        start, end = date_range.sql_bounds()
        return {"tenant_id": tenant_id, "start": start, "end": end, **extra}

    async def sales_for_period(self, tenant_id: str, date_range: DateRange) -> dict[str, Any]:
        """Total revenue, order and payment counts, and average ticket."""
        params = self._params(tenant_id, date_range)
        payments, orders = await asyncio.gather(
            self.store.execute(SALES_SQL, params),
            self.store.execute(ORDER_COUNT_SQL, params),
        )
        total_revenue = float(payments[0]["totalRevenue"] or 0) if payments else 0.0
        payment_count = int(payments[0]["paymentCount"] or 0) if payments else 0
        order_count = int(orders[0]["orderCount"] or 0) if orders else 0
        return {
            "totalRevenue": total_revenue,
            "averageTicket": total_revenue / order_count if order_count else 0.0,
            "orderCount": order_count,
            "paymentCount": payment_count,
            "period": date_range.label.value,
        }

    async def average_ticket(self, tenant_id: str, date_range: DateRange) -> dict[str, Any]:
        sales = await self.sales_for_period(tenant_id, date_range)
        return {
            "averageTicket": sales["averageTicket"],
            "orderCount": sales["orderCount"],
            "period": sales["period"],
        }

    async def top_products(
        self, tenant_id: str, date_range: DateRange, limit: int = 10
    ) -> list[dict[str, Any]]:
        return await self.store.execute(
            TOP_PRODUCTS_SQL, self._params(tenant_id, date_range, limit=limit)
        )

    async def staff_performance(
        self, tenant_id: str, date_range: DateRange, limit: int = 10
    ) -> list[dict[str, Any]]:
        rows = await self.store.execute(
            STAFF_PERFORMANCE_SQL, self._params(tenant_id, date_range, limit=limit)
        )
        for row in rows:
            orders = row.get("totalOrders") or 0
            row["averageOrderValue"] = float(row["totalRevenue"]) / orders if orders else 0.0
        return rows

    async def review_stats(self, tenant_id: str, date_range: DateRange) -> dict[str, Any]:
        rows = await self.store.execute(REVIEW_STATS_SQL, self._params(tenant_id, date_range))
        stats = dict(rows[0]) if rows else {}
        stats["period"] = date_range.label.value
        return stats

    async def run(
        self, name: str, tenant_id: str, date_range: DateRange
    ) -> list[dict[str, Any]]:
        """Dispatch a shared query by name and return its result as rows."""
        method = getattr(self, name, None)
        if method is None or name.startswith("_") or name == "run":
            raise ValueError(f"Unknown shared query: {name}")
        result = await method(tenant_id, date_range)
        return result if isinstance(result, list) else [result]


# Tables each shared query reads, checked against the requester's role
SHARED_QUERY_TABLES: dict[str, tuple[str, ...]] = {
    "sales_for_period": ("Payment", "Order"),
    "average_ticket": ("Payment", "Order"),
    "top_products": ("OrderItem", "Product", "Order", "MenuCategory"),
    "staff_performance": ("Staff", "Order", "Payment"),
    "review_stats": ("Review",),
}
