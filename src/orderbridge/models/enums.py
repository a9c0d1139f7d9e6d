"""String enums for the order bridge domain."""

from enum import StrEnum


class EndpointType(StrEnum):
    ECOMMERCE = "ecommerce"
    DELIVERY = "delivery"


class IntegrationType(StrEnum):
    ECOMMERCE = "ecommerce"
    DELIVERY = "delivery"
    POS = "pos"


class EventType(StrEnum):
    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_CANCELLED = "order.cancelled"
    ORDER_FULFILLED = "order.fulfilled"
    ORDER_DELIVERED = "order.delivered"
    DELIVERY_CREATED = "delivery.created"
    DELIVERY_ASSIGNED = "delivery.assigned"
    DELIVERY_PICKUP = "delivery.pickup"
    DELIVERY_IN_TRANSIT = "delivery.in_transit"
    DELIVERY_COMPLETED = "delivery.completed"
    DELIVERY_DELIVERED = "delivery.delivered"
    DELIVERY_CANCELLED = "delivery.cancelled"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"

    @property
    def is_order_event(self) -> bool:
        return self.value.startswith("order.")

    @property
    def is_delivery_event(self) -> bool:
        return self.value.startswith("delivery.")


class DeliveryStatus(StrEnum):
    CREATED = "created"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED)


# Position of each status on the forward-only path. Terminal states share
# the last rank so neither can follow the other.
DELIVERY_STATUS_RANK: dict[DeliveryStatus, int] = {
    DeliveryStatus.CREATED: 0,
    DeliveryStatus.ASSIGNED: 1,
    DeliveryStatus.PICKED_UP: 2,
    DeliveryStatus.IN_TRANSIT: 3,
    DeliveryStatus.DELIVERED: 4,
    DeliveryStatus.CANCELLED: 4,
}

# Event type announced for each delivery status.
DELIVERY_STATUS_EVENTS: dict[DeliveryStatus, EventType] = {
    DeliveryStatus.CREATED: EventType.DELIVERY_CREATED,
    DeliveryStatus.ASSIGNED: EventType.DELIVERY_ASSIGNED,
    DeliveryStatus.PICKED_UP: EventType.DELIVERY_PICKUP,
    DeliveryStatus.IN_TRANSIT: EventType.DELIVERY_IN_TRANSIT,
    DeliveryStatus.DELIVERED: EventType.DELIVERY_DELIVERED,
    DeliveryStatus.CANCELLED: EventType.DELIVERY_CANCELLED,
}


class OrderStatus(StrEnum):
    RECEIVED = "received"
    PREPARED = "prepared"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class FulfillmentStatus(StrEnum):
    UNFULFILLED = "unfulfilled"
    DISPATCHED = "dispatched"
    DISPATCH_FAILED = "dispatch_failed"
    IN_PROGRESS = "in_progress"
    FULFILLED = "fulfilled"
    DELIVERY_CANCELLED = "delivery_cancelled"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"
    UNKNOWN = "unknown"


class WebhookLogStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RetryJobStatus(StrEnum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABANDONED = "abandoned"


# Older dashboards subscribe to "delivery.completed"; providers report "delivered".
EVENT_ALIASES: dict[EventType, frozenset[EventType]] = {
    EventType.DELIVERY_DELIVERED: frozenset({EventType.DELIVERY_COMPLETED}),
    EventType.DELIVERY_COMPLETED: frozenset({EventType.DELIVERY_DELIVERED}),
}


def subscription_matches(event_type: EventType, subscribed) -> bool:
    """True if a webhook's event_types list covers ``event_type``."""
    wanted = {event_type.value} | {alias.value for alias in EVENT_ALIASES.get(event_type, ())}
    return any(str(item) in wanted for item in subscribed or ())
