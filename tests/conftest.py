"""Shared fixtures: an in-memory SQLite copy of the demo schema."""

from collections.abc import Iterator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from reportql.db.base import Base
from reportql.db.models import Customer, Order, Product
from reportql.db.session import create_session


@pytest.fixture
def engine() -> Iterator[Engine]:
    """SQLite engine holding two customers, one product and three orders."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    session = create_session(engine)
    session.add_all(
        [
            Customer(uuid="c-1", name="Acme", email="ops@acme.test", segment="SMB", country="NL"),
            Customer(uuid="c-2", name="Globex", email="it@globex.test", segment="Enterprise", country="US"),
            Product(uuid="p-1", name="Widget", category="Hardware", price=Decimal("10.00")),
        ]
    )
    session.flush()
    session.add_all(
        [
            Order(
                uuid="o-1",
                order_number="ORD-000001",
                status="paid",
                quantity=2,
                total=Decimal("20.00"),
                discount_rate=Decimal("0.1000"),
                is_paid=True,
                order_date=date(2024, 1, 15),
                customer_uuid="c-1",
                product_uuid="p-1",
            ),
            Order(
                uuid="o-2",
                order_number="ORD-000002",
                status="pending",
                quantity=1,
                total=Decimal("10.00"),
                discount_rate=Decimal("0"),
                is_paid=False,
                order_date=date(2024, 2, 1),
                customer_uuid="c-2",
                product_uuid="p-1",
            ),
            Order(
                uuid="o-3",
                order_number="ORD-000003",
                status="paid",
                quantity=5,
                total=Decimal("50.00"),
                discount_rate=Decimal("0"),
                is_paid=True,
                order_date=date(2024, 3, 10),
                customer_uuid="c-2",
                product_uuid=None,
            ),
        ]
    )
    session.commit()
    session.close()

    yield engine
    engine.dispose()
