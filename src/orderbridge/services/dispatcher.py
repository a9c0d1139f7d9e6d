"""Turns order events into provider deliveries."""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.delivery import DeliveryRow
from orderbridge.db.models.order import OrderRow
from orderbridge.errors.exceptions import (
    IncompleteOrderDataError,
    PermanentProviderError,
    TransientProviderError,
    UnsupportedProviderError,
)
from orderbridge.integrations import normalize_provider
from orderbridge.integrations.providers.registry import ProviderRegistry
from orderbridge.models.delivery import DeliveryQuote, DeliveryRequest, DeliveryResult
from orderbridge.models.enums import DeliveryStatus, FulfillmentStatus, IntegrationType, OrderStatus
from orderbridge.models.events import ContactPoint, DomainEvent, OrderItem, OrderPayload
from orderbridge.models.webhook import WebhookDefinition
from orderbridge.repositories.delivery_repo import DeliveryRepository
from orderbridge.repositories.integration_repo import IntegrationRepository
from orderbridge.repositories.order_repo import OrderRepository
from orderbridge.services.id_generator import generate_id
from orderbridge.services.locks import KeyedLock
from orderbridge.services.orders import order_lock_keys
from orderbridge.services.outcomes import JobOutcome
from orderbridge.services.reconciler import Reconciler, delivery_lock_key
from orderbridge.services.retry import RetryManager
from orderbridge.services.webhook_log import WebhookLogService

logger = logging.getLogger(__name__)


def _contact(data: dict | None) -> ContactPoint | None:
    return ContactPoint.model_validate(data) if data else None


def _delivery_summary(delivery: DeliveryRow) -> dict:
    return {
        "delivery_id": delivery.delivery_id,
        "provider": delivery.provider,
        "external_id": delivery.external_id,
        "status": delivery.status,
        "tracking_url": delivery.tracking_url,
        "fee": delivery.fee,
        "currency": delivery.currency,
    }


class Dispatcher:
    """Calls the destination provider's capability for order.created and order.cancelled.

    Every call is bounded by ``timeout``; a timeout is a transient failure
    handed to the retry manager.
    """

    def __init__(
        self,
        session: AsyncSession,
        providers: ProviderRegistry,
        locks: KeyedLock,
        logs: WebhookLogService,
        retry: RetryManager,
        reconciler: Reconciler,
        timeout: float = 10.0,
    ):
        self.session = session
        self.providers = providers
        self.locks = locks
        self.logs = logs
        self.retry = retry
        self.reconciler = reconciler
        self.timeout = timeout
        self.orders = OrderRepository(session)
        self.deliveries = DeliveryRepository(session)
        self.integrations = IntegrationRepository(session)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, definition: WebhookDefinition, event: DomainEvent, attempt: int = 1) -> JobOutcome:
        payload = event.payload
        if not isinstance(payload, OrderPayload):
            raise IncompleteOrderDataError(f"{event.event_type.value} carries no order data")
        owner_id = definition.owner_id

        async with self.locks.hold_all(order_lock_keys(owner_id, payload)):
            order = await self.orders.find_by_reference(
                owner_id, payload.order_number, payload.external_id, for_update=True
            )
            if order is None:
                return await self._permanent_failure(
                    definition, event, attempt, None,
                    IncompleteOrderDataError(f"Order '{payload.order_number or payload.external_id}' does not exist"),
                )

            if order.status == OrderStatus.CANCELLED.value:
                log = await self.logs.success(
                    owner_id, definition.webhook_id, event,
                    note="order cancelled; not dispatched",
                    attempt_count=attempt,
                )
                await self.retry.mark_succeeded(definition.webhook_id, event.idempotency_key, attempt)
                await self.session.commit()
                logger.info("Order %s was cancelled before dispatch", order.order_number)
                return JobOutcome(definition.webhook_id, "success", log.log_id, "order cancelled")

            existing = await self.deliveries.get_active_for_order(owner_id, order.order_id, for_update=True)
            if existing is not None:
                log = await self.logs.success(
                    owner_id, definition.webhook_id, event,
                    response_body=_delivery_summary(existing),
                    note="delivery already active; nothing dispatched",
                    attempt_count=attempt,
                )
                await self.retry.mark_succeeded(definition.webhook_id, event.idempotency_key, attempt)
                await self.session.commit()
                logger.info("Order %s already has active delivery %s", order.order_number, existing.delivery_id)
                return JobOutcome(definition.webhook_id, "success", log.log_id,
                                  "delivery already active", existing.delivery_id)

            try:
                provider = self.providers.get(definition.destination_provider)
                integration = await self._integration(owner_id, definition.destination_provider)
                request = self.build_request(order, integration, event)
            except (IncompleteOrderDataError, UnsupportedProviderError, PermanentProviderError) as exc:
                return await self._permanent_failure(definition, event, attempt, order, exc)

            request_body = request.model_dump(mode="json")
            logger.info(
                "Dispatching order %s to %s (attempt %d)",
                order.order_number, provider.name, attempt,
            )
            try:
                result = await self._call(provider.create_delivery(integration, request), provider.name)
            except TransientProviderError as exc:
                job = await self.retry.record_transient_failure(
                    definition, event, attempt, exc.message,
                    request_body=request_body,
                    response_status=exc.response_status,
                    response_body=exc.response_body,
                )
                exhausted = job.status == "exhausted"
                if exhausted:
                    order.fulfillment_status = FulfillmentStatus.DISPATCH_FAILED.value
                await self.session.commit()
                return JobOutcome(definition.webhook_id, "exhausted" if exhausted else "retry_scheduled",
                                  note=exc.message)
            except PermanentProviderError as exc:
                return await self._permanent_failure(definition, event, attempt, order, exc, request_body)

            delivery = await self._persist(owner_id, order, integration, definition.destination_provider,
                                           request, result, event)
            order.fulfillment_status = FulfillmentStatus.DISPATCHED.value
            log = await self.logs.success(
                owner_id, definition.webhook_id, event,
                request_body=request_body,
                response_body=_delivery_summary(delivery),
                response_status=201,
                attempt_count=attempt,
            )
            await self.retry.mark_succeeded(definition.webhook_id, event.idempotency_key, attempt)
            await self.session.commit()
            logger.info(
                "Order %s dispatched as %s delivery %s",
                order.order_number, provider.name, delivery.external_id,
            )
            return JobOutcome(definition.webhook_id, "success", log.log_id, delivery_id=delivery.delivery_id)

    async def mark_dispatch_failed(self, owner_id: str, event: DomainEvent) -> None:
        payload = event.payload
        if not isinstance(payload, OrderPayload):
            return
        async with self.locks.hold_all(order_lock_keys(owner_id, payload)):
            order = await self.orders.find_by_reference(
                owner_id, payload.order_number, payload.external_id, for_update=True
            )
            if order is not None and order.fulfillment_status != FulfillmentStatus.DISPATCHED.value:
                order.fulfillment_status = FulfillmentStatus.DISPATCH_FAILED.value
                await self.session.flush()

    def build_request(self, order: OrderRow, integration, event: DomainEvent | None = None) -> DeliveryRequest:
        """Assemble pickup and dropoff from the order, falling back to the store address."""
        dropoff = _contact(order.customer)
        pickup = _contact(order.pickup) or _contact((integration.settings or {}).get("pickup"))

        missing = []
        if pickup is None or not pickup.address:
            missing.append("pickup.address")
        if dropoff is None or not dropoff.address:
            missing.append("dropoff.address")
        if dropoff is None or not dropoff.phone:
            missing.append("dropoff.phone")
        if missing:
            raise IncompleteOrderDataError(
                f"Order '{order.order_number}' is missing {', '.join(missing)}", missing
            )
        if order.notes and not dropoff.instructions:
            dropoff = dropoff.model_copy(update={"instructions": order.notes})

        return DeliveryRequest(
            pickup=pickup,
            dropoff=dropoff,
            items=tuple(OrderItem.model_validate(item) for item in order.items or []),
            order_value=order.total_amount,
            currency=order.currency,
            external_reference=order.order_number,
            idempotency_key=event.idempotency_key if event is not None else None,
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, definition: WebhookDefinition, event: DomainEvent, attempt: int = 1) -> JobOutcome:
        """Cancel the order's active delivery with the provider, then drive it to ``cancelled``."""
        payload = event.payload
        owner_id = definition.owner_id
        order = await self.orders.find_by_reference(owner_id, payload.order_number, payload.external_id)
        active = await self.deliveries.get_active_for_order(owner_id, order.order_id) if order else None
        if active is None:
            log = await self.logs.success(owner_id, definition.webhook_id, event,
                                          note="no active delivery to cancel", attempt_count=attempt)
            await self.retry.mark_succeeded(definition.webhook_id, event.idempotency_key, attempt)
            await self.session.commit()
            return JobOutcome(definition.webhook_id, "success", log.log_id, "no active delivery to cancel")

        async with self.locks.hold(delivery_lock_key(active.provider, active.external_id)):
            delivery = await self.deliveries.get_owned(owner_id, active.delivery_id, for_update=True)
            if DeliveryStatus(delivery.status).is_terminal:
                log = await self.logs.success(owner_id, definition.webhook_id, event,
                                              note=f"delivery already {delivery.status}", attempt_count=attempt)
                await self.retry.mark_succeeded(definition.webhook_id, event.idempotency_key, attempt)
                await self.session.commit()
                return JobOutcome(definition.webhook_id, "success", log.log_id, delivery_id=delivery.delivery_id)

            try:
                provider = self.providers.get(delivery.provider)
                integration = await self._integration(owner_id, delivery.provider)
                await self._call(provider.cancel_delivery(integration, delivery.external_id), provider.name)
            except TransientProviderError as exc:
                job = await self.retry.record_transient_failure(definition, event, attempt, exc.message)
                await self.session.commit()
                return JobOutcome(definition.webhook_id,
                                  "exhausted" if job.status == "exhausted" else "retry_scheduled",
                                  note=exc.message)
            except (UnsupportedProviderError, PermanentProviderError) as exc:
                log = await self.logs.failed(owner_id, definition.webhook_id, event,
                                             error_message=exc.message, attempt_count=attempt)
                await self.retry.abandon(definition.webhook_id, event.idempotency_key, exc.message)
                await self.session.commit()
                return JobOutcome(definition.webhook_id, "failed", log.log_id, exc.message, delivery.delivery_id)

            await self.reconciler.apply_status(delivery, DeliveryStatus.CANCELLED)
            log = await self.logs.success(owner_id, definition.webhook_id, event,
                                          response_body=_delivery_summary(delivery), attempt_count=attempt)
            await self.retry.mark_succeeded(definition.webhook_id, event.idempotency_key, attempt)
            await self.session.commit()
            return JobOutcome(definition.webhook_id, "success", log.log_id, delivery_id=delivery.delivery_id)

    # ------------------------------------------------------------------
    # Dashboard-initiated calls
    # ------------------------------------------------------------------

    async def create_test_delivery(self, owner_id: str, provider_name: str, request: DeliveryRequest) -> DeliveryRow:
        """Create a delivery with no order behind it. Errors surface to the caller."""
        provider = self.providers.get(provider_name)
        integration = await self._integration(owner_id, provider_name)
        result = await self._call(provider.create_delivery(integration, request), provider.name)
        delivery = await self._persist(owner_id, None, integration, provider_name, request, result, None)
        await self.session.commit()
        logger.info("Test delivery %s created with %s", delivery.external_id, provider.name)
        return delivery

    async def quote(self, owner_id: str, provider_name: str, request: DeliveryRequest) -> DeliveryQuote:
        provider = self.providers.get(provider_name)
        integration = await self._integration(owner_id, provider_name)
        return await self._call(provider.get_quote(integration, request), provider.name)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(self, awaitable, provider_name: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransientProviderError(provider_name, f"no response within {self.timeout}s") from exc

    async def _integration(self, owner_id: str, provider_name: str):
        integration = await self.integrations.get_active_for_provider(
            owner_id, IntegrationType.DELIVERY.value, provider_name
        )
        if integration is None:
            raise PermanentProviderError(provider_name, "no active delivery integration configured")
        return integration

    async def _persist(
        self,
        owner_id: str,
        order: OrderRow | None,
        integration,
        provider_name: str,
        request: DeliveryRequest,
        result: DeliveryResult,
        event: DomainEvent | None,
    ) -> DeliveryRow:
        metadata = {"provider_response": result.raw}
        if event is not None:
            metadata["idempotency_key"] = event.idempotency_key
        return await self.deliveries.create(
            delivery_id=generate_id("dlv_"),
            owner_id=owner_id,
            order_id=order.order_id if order else None,
            integration_id=integration.integration_id,
            provider=normalize_provider(provider_name),
            external_id=result.external_id,
            status=result.status.value,
            provider_status=result.provider_status,
            tracking_url=result.tracking_url,
            pickup_name=request.pickup.name,
            pickup_address=request.pickup.address,
            pickup_phone=request.pickup.phone,
            pickup_latitude=request.pickup.latitude,
            pickup_longitude=request.pickup.longitude,
            dropoff_name=request.dropoff.name,
            dropoff_address=request.dropoff.address,
            dropoff_phone=request.dropoff.phone,
            dropoff_latitude=request.dropoff.latitude,
            dropoff_longitude=request.dropoff.longitude,
            pickup_eta=result.pickup_eta,
            dropoff_eta=result.dropoff_eta,
            fee=result.fee,
            currency=result.currency or request.currency,
            delivery_metadata=metadata,
        )

    async def _permanent_failure(
        self,
        definition: WebhookDefinition,
        event: DomainEvent,
        attempt: int,
        order: OrderRow | None,
        exc: Exception,
        request_body=None,
    ) -> JobOutcome:
        message = getattr(exc, "message", str(exc))
        log = await self.logs.failed(
            definition.owner_id, definition.webhook_id, event,
            request_body=request_body,
            response_status=getattr(exc, "response_status", None),
            response_body=getattr(exc, "response_body", None),
            error_message=message,
            note="not retried",
            attempt_count=attempt,
        )
        if order is not None:
            order.fulfillment_status = FulfillmentStatus.DISPATCH_FAILED.value
        await self.retry.abandon(definition.webhook_id, event.idempotency_key, message)
        await self.session.commit()
        logger.warning("Dispatch for webhook %s failed permanently: %s", definition.webhook_id, message)
        return JobOutcome(definition.webhook_id, "failed", log.log_id, message)
