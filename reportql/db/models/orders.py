"""Order model representing customer purchases."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reportql.db.base import Base
from reportql.db.models._ids import new_uuid


class Order(Base):
    """Represents a purchase of a product by a customer."""

    __tablename__ = "orders"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    order_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False, default=0)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    customer_uuid: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.uuid"), nullable=False
    )
    product_uuid: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("products.uuid"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    customer = relationship("Customer", back_populates="orders")
    product = relationship("Product", back_populates="orders")
