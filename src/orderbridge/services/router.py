"""Matches DomainEvents against active webhooks and runs one job per match."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.errors.exceptions import (
    IncompleteOrderDataError,
    PermanentProviderError,
    TransientProviderError,
)
from orderbridge.logging_config import job_context
from orderbridge.models.enums import EndpointType, EventType, WebhookLogStatus, subscription_matches
from orderbridge.models.events import DeliveryStatusPayload, DomainEvent, OrderPayload
from orderbridge.models.webhook import WebhookDefinition
from orderbridge.repositories.webhook_repo import WebhookRepository
from orderbridge.services.dispatcher import Dispatcher
from orderbridge.services.forwarder import Forwarder
from orderbridge.services.orders import OrderService
from orderbridge.services.outcomes import JobOutcome, RouteResult
from orderbridge.services.reconciler import Reconciler
from orderbridge.services.retry import RetryManager
from orderbridge.services.webhook_log import WebhookLogService

logger = logging.getLogger(__name__)


class Router:
    def __init__(
        self,
        session: AsyncSession,
        orders: OrderService,
        reconciler: Reconciler,
        dispatcher: Dispatcher,
        forwarder: Forwarder,
        retry: RetryManager,
        logs: WebhookLogService,
    ):
        self.session = session
        self.orders = orders
        self.reconciler = reconciler
        self.dispatcher = dispatcher
        self.forwarder = forwarder
        self.retry = retry
        self.logs = logs
        self.webhooks = WebhookRepository(session)

    async def match(self, owner_id: str, event: DomainEvent) -> list[WebhookDefinition]:
        """Active webhooks of ``owner_id`` with the event's origin and a subscription to its type."""
        rows = await self.webhooks.list_active_for_source(
            owner_id, event.source_type.value, event.source_provider
        )
        return [
            WebhookDefinition.model_validate(row)
            for row in rows
            if subscription_matches(event.event_type, row.event_types)
        ]

    async def route(self, origin: WebhookDefinition, event: DomainEvent) -> RouteResult:
        """Apply the event's own effects, then fan out to every matching webhook."""
        result = RouteResult(event.event_type.value, event.idempotency_key)

        if isinstance(event.payload, OrderPayload):
            try:
                order = await self.orders.ingest(origin.owner_id, event)
            except IncompleteOrderDataError as exc:
                await self.session.rollback()
                log = await self.logs.failed(origin.owner_id, origin.webhook_id, event,
                                             error_message=exc.message, note="order not ingested")
                await self.session.commit()
                result.jobs.append(JobOutcome(origin.webhook_id, "failed", log.log_id, exc.message))
                return result
            result.order_id = order.order_id
        elif isinstance(event.payload, DeliveryStatusPayload):
            outcome = await self.reconciler.reconcile(origin, event)
            result.reconciliation = outcome.status
            if outcome.status != "applied":
                # Stale and unknown callbacks are not announced downstream.
                return result

        matches = await self.match(origin.owner_id, event)
        if not matches:
            if result.reconciliation is None:
                log = await self.logs.success(
                    origin.owner_id, origin.webhook_id, event,
                    note=f"no active webhook subscribed to {event.event_type.value}",
                )
                await self.session.commit()
                result.jobs.append(JobOutcome(origin.webhook_id, "success", log.log_id, "no subscriber"))
            return result

        for definition in matches:
            result.jobs.append(await self.run_isolated(definition, event))
        return result

    async def run_isolated(self, definition: WebhookDefinition, event: DomainEvent,
                           attempt: int = 1, is_retry: bool = False) -> JobOutcome:
        """Run one job so an unexpected error never reaches other jobs.

        A crash counts as a transient failure: it is logged and retried
        with backoff like a provider timeout.
        """
        with job_context(definition.webhook_id, event.idempotency_key, attempt):
            try:
                return await self.run_job(definition, event, attempt=attempt, is_retry=is_retry)
            except Exception as exc:
                return await self._contain_crash(definition, event, attempt, exc)

    async def _contain_crash(self, definition: WebhookDefinition, event: DomainEvent,
                             attempt: int, exc: Exception) -> JobOutcome:
        logger.error("Job for webhook %s crashed on %s", definition.webhook_id, event.event_type.value,
                     exc_info=exc)
        await self.session.rollback()
        job = await self.retry.record_transient_failure(
            definition, event, attempt, f"internal error: {type(exc).__name__}: {exc}",
        )
        exhausted = job.status == "exhausted"
        if exhausted and (definition.destination_type == EndpointType.DELIVERY
                          and event.event_type == EventType.ORDER_CREATED):
            await self.dispatcher.mark_dispatch_failed(definition.owner_id, event)
        await self.session.commit()
        return JobOutcome(definition.webhook_id, "exhausted" if exhausted else "retry_scheduled",
                          note="internal error")

    async def run_job(self, definition: WebhookDefinition, event: DomainEvent,
                      attempt: int = 1, is_retry: bool = False) -> JobOutcome:
        if not is_retry and await self.retry.is_pending(definition.webhook_id, event.idempotency_key):
            log = await self.logs.record(
                definition.owner_id, definition.webhook_id, WebhookLogStatus.PENDING, event,
                note="retry already scheduled; redelivery not dispatched",
            )
            await self.session.commit()
            return JobOutcome(definition.webhook_id, "pending", log.log_id, "retry already scheduled")

        if definition.destination_type == EndpointType.DELIVERY:
            if event.event_type == EventType.ORDER_CREATED:
                return await self.dispatcher.dispatch(definition, event, attempt)
            if event.event_type == EventType.ORDER_CANCELLED:
                return await self.dispatcher.cancel(definition, event, attempt)
            log = await self.logs.success(
                definition.owner_id, definition.webhook_id, event,
                note=f"no delivery action for {event.event_type.value}",
                attempt_count=attempt,
            )
            await self.session.commit()
            return JobOutcome(definition.webhook_id, "success", log.log_id, "no delivery action")

        return await self.forward(definition, event, attempt)

    async def forward(self, definition: WebhookDefinition, event: DomainEvent, attempt: int = 1) -> JobOutcome:
        envelope = self.forwarder.envelope(event)
        try:
            sent = await self.forwarder.send(definition, event)
        except TransientProviderError as exc:
            job = await self.retry.record_transient_failure(
                definition, event, attempt, exc.message,
                request_body=envelope,
                response_status=exc.response_status,
                response_body=exc.response_body,
            )
            await self.session.commit()
            return JobOutcome(definition.webhook_id,
                              "exhausted" if job.status == "exhausted" else "retry_scheduled",
                              note=exc.message)
        except PermanentProviderError as exc:
            log = await self.logs.failed(
                definition.owner_id, definition.webhook_id, event,
                request_body=envelope,
                response_status=exc.response_status,
                response_body=exc.response_body,
                error_message=exc.message,
                note="not retried",
                attempt_count=attempt,
            )
            await self.retry.abandon(definition.webhook_id, event.idempotency_key, exc.message)
            await self.session.commit()
            return JobOutcome(definition.webhook_id, "failed", log.log_id, exc.message)

        log = await self.logs.success(
            definition.owner_id, definition.webhook_id, event,
            request_body=envelope,
            response_body=sent.body,
            response_status=sent.status_code,
            attempt_count=attempt,
        )
        await self.retry.mark_succeeded(definition.webhook_id, event.idempotency_key, attempt)
        await self.session.commit()
        return JobOutcome(definition.webhook_id, "success", log.log_id)
