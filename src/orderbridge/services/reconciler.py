"""Applies delivery-provider status callbacks to Deliveries and their Orders."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.delivery import DeliveryRow
from orderbridge.errors.exceptions import InvalidTransitionError
from orderbridge.integrations import normalize_provider
from orderbridge.models.enums import (
    DELIVERY_STATUS_RANK,
    DeliveryStatus,
    FulfillmentStatus,
    OrderStatus,
)
from orderbridge.models.events import DeliveryStatusPayload, DomainEvent
from orderbridge.models.webhook import WebhookDefinition
from orderbridge.repositories.delivery_repo import DeliveryRepository
from orderbridge.repositories.order_repo import OrderRepository
from orderbridge.services.locks import KeyedLock
from orderbridge.services.webhook_log import WebhookLogService

logger = logging.getLogger(__name__)

# Delivery status -> (Order.status, Order.fulfillment_status); None leaves the field alone.
ORDER_STATE_FOR_DELIVERY: dict[DeliveryStatus, tuple[OrderStatus | None, FulfillmentStatus]] = {
    DeliveryStatus.CREATED: (None, FulfillmentStatus.DISPATCHED),
    DeliveryStatus.ASSIGNED: (None, FulfillmentStatus.DISPATCHED),
    DeliveryStatus.PICKED_UP: (OrderStatus.PICKED_UP, FulfillmentStatus.IN_PROGRESS),
    DeliveryStatus.IN_TRANSIT: (OrderStatus.IN_TRANSIT, FulfillmentStatus.IN_PROGRESS),
    DeliveryStatus.DELIVERED: (OrderStatus.DELIVERED, FulfillmentStatus.FULFILLED),
    DeliveryStatus.CANCELLED: (None, FulfillmentStatus.DELIVERY_CANCELLED),
}


def check_transition(current: DeliveryStatus, target: DeliveryStatus) -> None:
    """Raise InvalidTransitionError unless ``target`` is strictly forward of ``current``."""
    if current.is_terminal or DELIVERY_STATUS_RANK[target] <= DELIVERY_STATUS_RANK[current]:
        raise InvalidTransitionError(current.value, target.value)


def delivery_lock_key(provider: str, external_id: str) -> str:
    return f"delivery:{normalize_provider(provider)}:{external_id}"


@dataclass
class ReconcileOutcome:
    status: str  # applied | ignored | unknown_delivery
    log_id: str
    delivery_id: str | None = None
    delivery_status: str | None = None


class Reconciler:
    def __init__(self, session: AsyncSession, locks: KeyedLock, logs: WebhookLogService):
        self.session = session
        self.locks = locks
        self.logs = logs
        self.deliveries = DeliveryRepository(session)
        self.orders = OrderRepository(session)

    async def reconcile(self, origin: WebhookDefinition, event: DomainEvent) -> ReconcileOutcome:
        """Apply one status callback under the delivery's lock and commit.

        Stale or duplicate callbacks are logged as ignored and reported as
        success to the caller.
        """
        payload: DeliveryStatusPayload = event.payload
        owner_id = origin.owner_id
        async with self.locks.hold(delivery_lock_key(event.source_provider, payload.external_id)):
            delivery = await self.deliveries.get_by_external_id(
                owner_id, event.source_provider, payload.external_id, for_update=True
            )
            if delivery is None:
                log = await self.logs.failed(
                    owner_id, origin.webhook_id, event,
                    error_message=f"No {event.source_provider} delivery with id '{payload.external_id}'",
                    note="unknown delivery",
                )
                await self.session.commit()
                logger.warning("Callback for unknown %s delivery %s", event.source_provider, payload.external_id)
                return ReconcileOutcome("unknown_delivery", log.log_id)

            previous = delivery.status
            try:
                await self.apply_status(delivery, payload.status, payload)
            except InvalidTransitionError as exc:
                log = await self.logs.success(
                    owner_id, origin.webhook_id, event,
                    response_body={"delivery_id": delivery.delivery_id, "status": delivery.status},
                    note=f"ignored: {exc.message}",
                )
                await self.session.commit()
                logger.info(
                    "Ignored %s -> %s for delivery %s",
                    exc.current, exc.target, delivery.delivery_id,
                )
                return ReconcileOutcome("ignored", log.log_id, delivery.delivery_id, delivery.status)

            log = await self.logs.success(
                owner_id, origin.webhook_id, event,
                response_body={"delivery_id": delivery.delivery_id, "status": delivery.status},
                response_status=200,
                note=f"{previous} -> {delivery.status}",
            )
            await self.session.commit()
            return ReconcileOutcome("applied", log.log_id, delivery.delivery_id, delivery.status)

    async def apply_status(
        self,
        delivery: DeliveryRow,
        target: DeliveryStatus,
        payload: DeliveryStatusPayload | None = None,
    ) -> DeliveryRow:
        """Move ``delivery`` forward and derive its order's state.

        The caller holds the delivery's lock and commits.
        """
        check_transition(DeliveryStatus(delivery.status), target)
        delivery.status = target.value
        if payload is not None:
            delivery.provider_status = payload.provider_status
            for field in ("current_latitude", "current_longitude", "pickup_eta", "dropoff_eta", "tracking_url"):
                value = getattr(payload, field)
                if value is not None:
                    setattr(delivery, field, value)
        await self.session.flush()

        if delivery.order_id:
            order = await self.orders.get_owned(delivery.owner_id, delivery.order_id, for_update=True)
            if order is not None:
                order_status, fulfillment = ORDER_STATE_FOR_DELIVERY[target]
                order.fulfillment_status = fulfillment.value
                if order_status is not None and order.status != OrderStatus.CANCELLED.value:
                    order.status = order_status.value
                await self.session.flush()

        logger.info("Delivery %s is now %s", delivery.delivery_id, delivery.status)
        return delivery
