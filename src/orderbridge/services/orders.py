"""Order ingestion from e-commerce events, plus customer bookkeeping."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.order import CustomerRow, OrderRow
from orderbridge.errors.exceptions import IncompleteOrderDataError, NotFoundError
from orderbridge.models.enums import EventType, FulfillmentStatus, OrderStatus
from orderbridge.models.events import ContactPoint, DomainEvent, OrderPayload
from orderbridge.repositories.order_repo import CustomerRepository, OrderRepository
from orderbridge.services.id_generator import generate_id
from orderbridge.services.locks import KeyedLock

logger = logging.getLogger(__name__)


def order_reference(payload: OrderPayload) -> str:
    reference = payload.order_number or payload.external_id
    if not reference:
        raise IncompleteOrderDataError("Order event carries neither order number nor external id",
                                       ["order_number"])
    return reference


def order_lock_keys(owner_id: str, payload: OrderPayload) -> list[str]:
    """One lock per reference the payload carries, in a fixed order.

    Two events naming the same order by different references still share
    at least one key, so they cannot both miss the lookup and insert.
    """
    order_reference(payload)
    refs = {payload.order_number, payload.external_id} - {None, ""}
    return sorted(f"order:{owner_id}:{ref}" for ref in refs)


def _contact_dict(point: ContactPoint | None) -> dict | None:
    if point is None:
        return None
    return point.model_dump(exclude_none=True)


class OrderService:
    def __init__(self, session: AsyncSession, locks: KeyedLock):
        self.session = session
        self.locks = locks
        self.orders = OrderRepository(session)
        self.customers = CustomerRepository(session)

    async def ingest(self, owner_id: str, event: DomainEvent) -> OrderRow:
        """Create or update the Order an order.* event refers to, then commit.

        Safe to repeat for the same event: customer totals only move when
        the order row is first created.
        """
        payload = event.payload
        if not isinstance(payload, OrderPayload):
            raise IncompleteOrderDataError(f"{event.event_type.value} carries no order data")
        reference = order_reference(payload)

        async with self.locks.hold_all(order_lock_keys(owner_id, payload)):
            order = await self.orders.find_by_reference(
                owner_id, payload.order_number, payload.external_id, for_update=True
            )
            fields = {
                "external_id": payload.external_id,
                "customer": _contact_dict(payload.customer),
                "pickup": _contact_dict(payload.pickup),
                "items": [item.model_dump() for item in payload.items],
                "total_amount": payload.total_amount,
                "currency": payload.currency,
                "payment_status": payload.payment_status.value,
                "notes": payload.notes,
            }

            if order is None:
                customer = await self._upsert_customer(owner_id, payload)
                order = await self.orders.create(
                    order_id=generate_id("ord_"),
                    owner_id=owner_id,
                    order_number=reference,
                    source=event.source_provider,
                    status=OrderStatus.RECEIVED.value,
                    fulfillment_status=FulfillmentStatus.UNFULFILLED.value,
                    customer_id=customer.customer_id if customer else None,
                    **dict(fields, total_amount=payload.total_amount or 0),
                )
                logger.info("Order %s ingested from %s", reference, event.source_provider)
            else:
                # Only overwrite what the event actually carries.
                changes = {k: v for k, v in fields.items() if v not in (None, [])}
                if payload.payment_status.value == "unknown":
                    changes.pop("payment_status", None)
                await self.orders.update(order, **changes)

            await self._apply_lifecycle(order, event.event_type)
            await self.session.commit()
        return order

    async def _apply_lifecycle(self, order: OrderRow, event_type: EventType) -> None:
        if event_type == EventType.ORDER_CANCELLED:
            order.status = OrderStatus.CANCELLED.value
        elif event_type == EventType.ORDER_FULFILLED and order.status == OrderStatus.RECEIVED.value:
            order.status = OrderStatus.PREPARED.value
        await self.session.flush()

    async def _upsert_customer(self, owner_id: str, payload: OrderPayload) -> CustomerRow | None:
        contact = payload.customer
        if contact is None or not contact.email:
            return None
        email = contact.email.strip().lower()
        customer = await self.customers.get_by_email(owner_id, email)
        if customer is None:
            customer = await self.customers.create(
                customer_id=generate_id("cus_"),
                owner_id=owner_id,
                email=email,
                name=contact.name,
                phone=contact.phone,
                total_orders=0,
                total_spent=0,
            )
        customer.total_orders += 1
        customer.total_spent += payload.total_amount or 0
        if contact.name:
            customer.name = contact.name
        if contact.phone:
            customer.phone = contact.phone
        await self.session.flush()
        return customer

    async def get(self, owner_id: str, order_id: str) -> OrderRow:
        order = await self.orders.get_owned(owner_id, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def list_orders(self, owner_id: str, status: str | None = None,
                          fulfillment_status: str | None = None) -> list[OrderRow]:
        return await self.orders.list_owned(owner_id, status=status, fulfillment_status=fulfillment_status)
