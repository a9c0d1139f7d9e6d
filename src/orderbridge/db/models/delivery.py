"""Delivery table."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from orderbridge.db.base import Base, TimestampMixin


class DeliveryRow(Base, TimestampMixin):
    __tablename__ = "deliveries"
    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_deliveries_provider_external"),
    )

    delivery_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    order_id: Mapped[str | None] = mapped_column(
        String(128), ForeignKey("orders.order_id"), nullable=True, index=True
    )
    integration_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    provider: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    pickup_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    pickup_address: Mapped[str] = mapped_column(String(500), nullable=False)
    pickup_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    pickup_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    dropoff_address: Mapped[str] = mapped_column(String(500), nullable=False)
    dropoff_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dropoff_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    current_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_eta: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dropoff_eta: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    fee: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minor units
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    delivery_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
