"""Order and customer tables."""

from sqlalchemy import JSON, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from orderbridge.db.base import Base, TimestampMixin


class CustomerRow(Base, TimestampMixin):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("owner_id", "email", name="uq_customers_owner_email"),)

    customer_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    total_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minor units


class OrderRow(Base, TimestampMixin):
    __tablename__ = "orders"
    __table_args__ = (UniqueConstraint("owner_id", "order_number", name="uq_orders_owner_number"),)

    order_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    order_number: Mapped[str] = mapped_column(String(128), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(50), nullable=False)
    fulfillment_status: Mapped[str] = mapped_column(String(50), nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minor units
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    customer: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    pickup: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
