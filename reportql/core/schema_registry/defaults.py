"""
Default demo catalog.

Mirrors the ORM models in ``reportql.db.models`` so the seeded demo
database can be reported on out of the box.
"""

from reportql.core.schema_registry.registry import (
    Column,
    ColumnType,
    ComputedColumn,
    JoinMode,
    JoinType,
    Relationship,
    SchemaCatalog,
    Table,
)


ORDERS = Table(
    name="orders",
    label="Orders",
    description="Customer orders with totals and payment status",
    category="sales",
    columns=(
        Column.make("uuid", ColumnType.STRING, label="Order ID"),
        Column.make("order_number"),
        Column.make("status"),
        Column.make("quantity", ColumnType.INTEGER),
        Column.make("total", ColumnType.CURRENCY),
        Column.make("discount_rate", ColumnType.PERCENTAGE),
        Column.make("is_paid", ColumnType.BOOLEAN),
        Column.make("order_date", ColumnType.DATE),
        Column.make("details", ColumnType.JSON, hidden=True),
        Column.make("customer_uuid"),
        Column.make("product_uuid"),
        Column.make("created_at", ColumnType.DATETIME),
        Column.make("updated_at", ColumnType.DATETIME),
    ),
    relationships=(
        Relationship(
            name="customer",
            table="customers",
            type=JoinType.LEFT,
            mode=JoinMode.AUTO,
        ),
        Relationship(
            name="product",
            table="products",
            type=JoinType.LEFT,
            mode=JoinMode.MANUAL,
        ),
    ),
    computed_columns=(
        ComputedColumn(
            name="net_total",
            expression="ROUND(total * (1 - COALESCE(discount_rate, 0)), 2)",
            type=ColumnType.CURRENCY,
        ),
    ),
    max_rows=10_000,
)

CUSTOMERS = Table(
    name="customers",
    label="Customers",
    description="Customer accounts",
    category="crm",
    columns=(
        Column.make("uuid", ColumnType.STRING, label="Customer ID"),
        Column.make("name"),
        Column.make("email"),
        Column.make("segment"),
        Column.make("country"),
        Column.make("created_at", ColumnType.DATETIME),
    ),
)

PRODUCTS = Table(
    name="products",
    label="Products",
    description="Product catalog",
    category="catalog",
    columns=(
        Column.make("uuid", ColumnType.STRING, label="Product ID"),
        Column.make("name"),
        Column.make("category"),
        Column.make("price", ColumnType.CURRENCY),
        Column.make("created_at", ColumnType.DATETIME),
    ),
)

DEFAULT_TABLES: tuple[Table, ...] = (ORDERS, CUSTOMERS, PRODUCTS)


def get_default_catalog(**kwargs) -> SchemaCatalog:
    """Get a new catalog with the demo tables registered."""
    return SchemaCatalog(DEFAULT_TABLES, **kwargs)
