"""Inbound webhook receiver: authenticate by secret, decode, dedupe, route."""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.errors.exceptions import (
    AuthenticationError,
    PayloadDecodeError,
    UnknownWebhookError,
    UnsupportedProviderError,
)
from orderbridge.integrations.decoders.registry import DecoderRegistry
from orderbridge.logging_config import bind_request_context
from orderbridge.models.events import DomainEvent
from orderbridge.models.webhook import WebhookDefinition
from orderbridge.repositories.webhook_repo import WebhookRepository
from orderbridge.services.router import Router
from orderbridge.services.webhook_log import WebhookLogService

logger = logging.getLogger(__name__)


@dataclass
class ReceiveResult:
    status: str  # accepted | replayed
    webhook_id: str
    event_type: str
    idempotency_key: str
    previous_log_id: str | None = None
    order_id: str | None = None
    reconciliation: str | None = None
    jobs: list[dict] = field(default_factory=list)


def _loggable_body(body: bytes):
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return body.decode("utf-8", errors="replace")


class Receiver:
    def __init__(
        self,
        session: AsyncSession,
        decoders: DecoderRegistry,
        router: Router,
        logs: WebhookLogService,
    ):
        self.session = session
        self.decoders = decoders
        self.router = router
        self.logs = logs
        self.webhooks = WebhookRepository(session)

    async def receive(self, secret_key: str, body: bytes, headers: Mapping[str, str],
                      trace_id: str | None = None) -> ReceiveResult:
        """Handle one inbound delivery to ``/api/webhook/{secret_key}``.

        Raises UnknownWebhookError for an unknown or inactive secret,
        UnsupportedProviderError when no decoder exists, and
        PayloadDecodeError or AuthenticationError when the body is
        rejected. Rejections are logged before raising so the provider's
        own redelivery is visible in the audit trail.
        """
        row = await self.webhooks.get_active_by_secret(secret_key)
        if row is None:
            raise UnknownWebhookError()
        origin = WebhookDefinition.model_validate(row)
        if trace_id:
            bind_request_context(trace_id, owner_id=origin.owner_id, webhook_id=origin.webhook_id)

        event = await self._decode(origin, body, headers)

        previous = await self.logs.find_success(origin.owner_id, event.idempotency_key)
        if previous is not None:
            log = await self.logs.replay(origin.webhook_id, event, previous)
            await self.session.commit()
            logger.info(
                "Replay of %s from %s answered from log %s",
                event.event_type.value, event.source_provider, previous.log_id,
            )
            return ReceiveResult(
                status="replayed",
                webhook_id=origin.webhook_id,
                event_type=event.event_type.value,
                idempotency_key=event.idempotency_key,
                previous_log_id=previous.log_id,
                jobs=[{"webhook_id": origin.webhook_id, "status": "replayed", "log_id": log.log_id}],
            )

        routed = await self.router.route(origin, event)
        return ReceiveResult(
            status="accepted",
            webhook_id=origin.webhook_id,
            event_type=event.event_type.value,
            idempotency_key=event.idempotency_key,
            order_id=routed.order_id,
            reconciliation=routed.reconciliation,
            jobs=[job.as_dict() for job in routed.jobs],
        )

    async def _decode(self, origin: WebhookDefinition, body: bytes, headers: Mapping[str, str]) -> DomainEvent:
        try:
            decoder = self.decoders.get(origin.source_type.value, origin.source_provider)
            decoder.verify(body, headers, origin.secret_key)
            return decoder.parse(body, headers, origin.source_provider)
        except (UnsupportedProviderError, PayloadDecodeError, AuthenticationError) as exc:
            await self.logs.failed(
                origin.owner_id, origin.webhook_id, None,
                request_body=_loggable_body(body),
                response_status=exc.status_code,
                error_message=exc.message,
                note=exc.code.lower(),
            )
            await self.session.commit()
            logger.warning("Rejected inbound payload for webhook %s: %s", origin.webhook_id, exc.message)
            raise
