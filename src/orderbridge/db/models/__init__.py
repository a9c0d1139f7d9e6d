"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from orderbridge.db.models.webhook import WebhookRow, WebhookLogRow
from orderbridge.db.models.order import CustomerRow, OrderRow
from orderbridge.db.models.delivery import DeliveryRow
from orderbridge.db.models.integration import IntegrationRow
from orderbridge.db.models.retry_job import RetryJobRow

__all__ = [
    "WebhookRow",
    "WebhookLogRow",
    "CustomerRow",
    "OrderRow",
    "DeliveryRow",
    "IntegrationRow",
    "RetryJobRow",
]
