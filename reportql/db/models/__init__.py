"""ORM model exports."""

from reportql.db.models.customers import Customer
from reportql.db.models.orders import Order
from reportql.db.models.products import Product

__all__ = [
    "Customer",
    "Order",
    "Product",
]
