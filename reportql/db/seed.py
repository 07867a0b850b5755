"""Fill the demo reporting schema with fake customers, products and orders."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from random import choice, randint, random

from faker import Faker
from sqlalchemy.engine import Engine

from reportql.db.base import Base, get_engine
from reportql.db.models import Customer, Order, Product
from reportql.db.session import create_session

logger = logging.getLogger(__name__)

fake = Faker()

PRODUCT_CATEGORIES = ["Hardware", "Software", "Services", "Training", "Support"]
SEGMENTS = ["SMB", "Mid-Market", "Enterprise", "Public Sector"]
ORDER_STATUSES = ["pending", "paid", "shipped", "cancelled", "refunded"]


def seed_customers(session, count: int = 50) -> list[Customer]:
    customers = []
    for _ in range(count):
        customer = Customer(
            name=fake.company(),
            email=fake.company_email(),
            segment=choice(SEGMENTS),
            country=fake.country(),
        )
        customers.append(customer)
    session.add_all(customers)
    session.flush()
    return customers


def seed_products(session, count: int = 20) -> list[Product]:
    products = []
    for _ in range(count):
        product = Product(
            name=fake.catch_phrase(),
            category=choice(PRODUCT_CATEGORIES),
            price=Decimal(f"{randint(10, 900)}.{randint(0, 99):02d}"),
        )
        products.append(product)
    session.add_all(products)
    session.flush()
    return products


def seed_orders(
    session,
    customers: list[Customer],
    products: list[Product],
    count: int = 500,
) -> list[Order]:
    orders = []
    start_date = date.today() - timedelta(days=365)
    for index in range(count):
        product = choice(products)
        quantity = randint(1, 25)
        status = choice(ORDER_STATUSES)
        order = Order(
            order_number=f"ORD-{index + 1:06d}",
            status=status,
            quantity=quantity,
            total=product.price * quantity,
            discount_rate=Decimal(str(round(random() * 0.25, 4))),
            is_paid=status in ("paid", "shipped"),
            order_date=start_date + timedelta(days=randint(0, 364)),
            details={"channel": choice(["web", "sales", "partner"]), "priority": randint(1, 3)},
            customer_uuid=choice(customers).uuid,
            product_uuid=product.uuid,
        )
        orders.append(order)
    session.add_all(orders)
    session.flush()
    return orders


def seed(engine: Engine | None = None, orders: int = 500) -> None:
    """Create the demo schema and fill it with fake data."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)

    session = create_session(engine)
    try:
        customers = seed_customers(session)
        products = seed_products(session)
        seed_orders(session, customers, products, count=orders)
        session.commit()
        logger.info("Seeded database with %d fake orders", orders)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    seed()


if __name__ == "__main__":
    main()
