"""
Schema Context Provider
=======================

Static description of the relational schema and the business vocabulary
that maps onto it. Rendered into every generation prompt and consulted by
the static schema check and the SQLite store.
"""

from typing import Optional

TENANT_COLUMN = "tenantId"

# Tenant-scoped tables. Identifiers are camelCase and must be double-quoted.
DEFAULT_SCHEMA: dict[str, dict] = {
    "Venue": {
        "description": "Physical location belonging to the tenant",
        "columns": ["id", "tenantId", "name", "timezone", "currency", "createdAt"],
        "types": {"createdAt": "TIMESTAMP"},
    },
    "Order": {
        "description": "Customer orders; total is the order amount",
        "columns": [
            "id", "tenantId", "orderNumber", "subtotal", "total", "tipAmount",
            "status", "servedById", "createdById", "customerId", "createdAt",
        ],
        "types": {
            "subtotal": "DECIMAL", "total": "DECIMAL", "tipAmount": "DECIMAL",
            "createdAt": "TIMESTAMP",
        },
    },
    "OrderItem": {
        "description": "Line items of an order",
        "columns": ["id", "tenantId", "orderId", "productId", "quantity", "unitPrice", "total", "createdAt"],
        "types": {
            "quantity": "INTEGER", "unitPrice": "DECIMAL", "total": "DECIMAL",
            "createdAt": "TIMESTAMP",
        },
    },
    "Payment": {
        "description": "Payments received; only status 'COMPLETED' counts as revenue",
        "columns": [
            "id", "tenantId", "orderId", "amount", "tipAmount", "method", "status",
            "processedById", "stripePaymentIntentId", "metadata", "createdAt",
        ],
        "types": {"amount": "DECIMAL", "tipAmount": "DECIMAL", "createdAt": "TIMESTAMP"},
    },
    "Product": {
        "description": "Menu products",
        "columns": [
            "id", "tenantId", "name", "price", "categoryId", "internalCost",
            "profitMargin", "active", "createdAt",
        ],
        "types": {
            "price": "DECIMAL", "internalCost": "DECIMAL", "profitMargin": "DECIMAL",
            "active": "BOOLEAN", "createdAt": "TIMESTAMP",
        },
    },
    "MenuCategory": {
        "description": "Product categories",
        "columns": ["id", "tenantId", "name", "createdAt"],
        "types": {"createdAt": "TIMESTAMP"},
    },
    "Menu": {
        "description": "Published menus",
        "columns": ["id", "tenantId", "name", "active"],
        "types": {"active": "BOOLEAN"},
    },
    "Review": {
        "description": "Customer reviews; ratings are 1 to 5",
        "columns": [
            "id", "tenantId", "overallRating", "foodRating", "serviceRating",
            "comment", "source", "responseText", "servedById", "createdAt",
        ],
        "types": {
            "overallRating": "INTEGER", "foodRating": "INTEGER",
            "serviceRating": "INTEGER", "createdAt": "TIMESTAMP",
        },
    },
    "Staff": {
        "description": "Employees (waiters, cashiers, managers)",
        "columns": ["id", "tenantId", "firstName", "lastName", "email", "phone", "role", "active", "createdAt"],
        "types": {"active": "BOOLEAN", "createdAt": "TIMESTAMP"},
    },
    "Shift": {
        "description": "Staff work shifts",
        "columns": ["id", "tenantId", "staffId", "startTime", "endTime", "totalSales", "totalTips"],
        "types": {
            "startTime": "TIMESTAMP", "endTime": "TIMESTAMP",
            "totalSales": "DECIMAL", "totalTips": "DECIMAL",
        },
    },
    "Customer": {
        "description": "Registered customers",
        "columns": [
            "id", "tenantId", "firstName", "lastName", "email", "phone", "address",
            "totalVisits", "totalSpent", "createdAt",
        ],
        "types": {"totalVisits": "INTEGER", "totalSpent": "DECIMAL", "createdAt": "TIMESTAMP"},
    },
    "RawMaterial": {
        "description": "Inventory raw materials",
        "columns": ["id", "tenantId", "name", "unit", "currentStock", "cost", "supplierCost"],
        "types": {"currentStock": "DECIMAL", "cost": "DECIMAL", "supplierCost": "DECIMAL"},
    },
    "StockBatch": {
        "description": "Received batches of raw material",
        "columns": ["id", "tenantId", "rawMaterialId", "quantity", "expiresAt", "createdAt"],
        "types": {"quantity": "DECIMAL", "expiresAt": "TIMESTAMP", "createdAt": "TIMESTAMP"},
    },
    "Recipe": {
        "description": "Recipes linking products to raw materials",
        "columns": ["id", "tenantId", "productId", "yield"],
        "types": {"yield": "DECIMAL"},
    },
    "RecipeLine": {
        "description": "Raw material quantities per recipe",
        "columns": ["id", "tenantId", "recipeId", "rawMaterialId", "quantity"],
        "types": {"quantity": "DECIMAL"},
    },
}

# Business vocabulary (English and Spanish) mapped to schema expressions
SEMANTIC_TERMS: dict[str, str] = {
    "sales / revenue / ventas / ingresos": 'SUM("Payment"."amount") with "Payment"."status" = \'COMPLETED\'',
    "average ticket / ticket promedio": 'AVG("Order"."total")',
    "tips / propinas": 'SUM("Payment"."tipAmount")',
    "orders / ordenes / pedidos": 'COUNT("Order"."id")',
    "waiter / mesero / staff": '"Staff" joined on "Order"."servedById"',
    "rating / calificacion / reseñas": '"Review"."overallRating" (1 to 5)',
    "best sellers / mas vendidos": 'SUM("OrderItem"."quantity") grouped by "Product"',
}


class SchemaContext:
    """
    Read-only view of the schema shared by prompts and validators.

    Table lookups are case-insensitive and resolve to the canonical
    (quoted) table name.
    """

    def __init__(
        self,
        tables: Optional[dict[str, dict]] = None,
        tenant_column: str = TENANT_COLUMN,
        semantic_terms: Optional[dict[str, str]] = None,
    ) -> None:
        self.tables = tables if tables is not None else DEFAULT_SCHEMA
        self.tenant_column = tenant_column
        self.semantic_terms = semantic_terms if semantic_terms is not None else SEMANTIC_TERMS
        self._by_lower = {name.lower(): name for name in self.tables}

    def resolve_table(self, name: str) -> Optional[str]:
        """Canonical table name, or None for tables outside the schema."""
        return self._by_lower.get(name.lower())

    def has_table(self, name: str) -> bool:
        return self.resolve_table(name) is not None

    def columns(self, table: str) -> list[str]:
        canonical = self.resolve_table(table)
        if canonical is None:
            return []
        return list(self.tables[canonical]["columns"])

    def has_column(self, table: str, column: str) -> bool:
        return column.lower() in {c.lower() for c in self.columns(table)}

    def is_tenant_scoped(self, table: str) -> bool:
        canonical = self.resolve_table(table)
        if canonical is None:
            return False
        return self.tables[canonical].get("tenant_scoped", True)

    def all_columns(self) -> set[str]:
        return {c.lower() for info in self.tables.values() for c in info["columns"]}

    def render(self, tables: Optional[list[str]] = None) -> str:
        """Render the schema as prompt text, optionally limited to some tables."""
        lines = ["Tables (identifiers are case-sensitive and must be double-quoted):"]
        for name, info in self.tables.items():
            if tables is not None and name not in tables:
                continue
            cols = ", ".join(f'"{c}"' for c in info["columns"])
            lines.append(f'- "{name}" ({cols}): {info.get("description", "")}')
        lines.append("")
        lines.append("Business vocabulary:")
        for term, expression in self.semantic_terms.items():
            lines.append(f"- {term}: {expression}")
        lines.append("")
        lines.append(
            f'Every tenant-scoped table has a "{self.tenant_column}" column; '
            "the query must filter on it exactly once."
        )
        return "\n".join(lines)
