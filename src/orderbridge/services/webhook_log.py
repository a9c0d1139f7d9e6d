"""Append-only webhook log writer."""

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.webhook import WebhookLogRow
from orderbridge.models.enums import WebhookLogStatus
from orderbridge.models.events import DomainEvent
from orderbridge.repositories.webhook_repo import WebhookLogRepository
from orderbridge.services.id_generator import generate_id


class WebhookLogService:
    """Writes one new row per attempt. Existing rows are never modified."""

    def __init__(self, session: AsyncSession):
        self.repo = WebhookLogRepository(session)

    async def record(
        self,
        owner_id: str,
        webhook_id: str,
        status: WebhookLogStatus,
        event: DomainEvent | None = None,
        request_body=None,
        response_body=None,
        response_status: int | None = None,
        error_message: str | None = None,
        note: str | None = None,
        attempt_count: int = 1,
        retry_job_id: str | None = None,
        is_replay: bool = False,
    ) -> WebhookLogRow:
        if request_body is None and event is not None:
            request_body = event.summary()
        return await self.repo.create(
            log_id=generate_id("wlog_"),
            owner_id=owner_id,
            webhook_id=webhook_id,
            status=status.value,
            event_type=event.event_type.value if event is not None else None,
            idempotency_key=event.idempotency_key if event is not None else None,
            request_body=request_body,
            response_body=response_body,
            response_status=response_status,
            error_message=error_message[:4000] if error_message else None,
            note=note[:500] if note else None,
            attempt_count=attempt_count,
            retry_job_id=retry_job_id,
            is_replay=is_replay,
        )

    async def success(self, owner_id: str, webhook_id: str, event: DomainEvent | None, **kwargs) -> WebhookLogRow:
        return await self.record(owner_id, webhook_id, WebhookLogStatus.SUCCESS, event, **kwargs)

    async def failed(self, owner_id: str, webhook_id: str, event: DomainEvent | None, **kwargs) -> WebhookLogRow:
        return await self.record(owner_id, webhook_id, WebhookLogStatus.FAILED, event, **kwargs)

    async def replay(self, webhook_id: str, event: DomainEvent, previous: WebhookLogRow) -> WebhookLogRow:
        """Record a redelivery that was answered from an earlier success."""
        return await self.record(
            previous.owner_id,
            webhook_id,
            WebhookLogStatus.SUCCESS,
            event,
            response_body=previous.response_body,
            response_status=previous.response_status,
            note=f"idempotent replay of {previous.log_id}",
            is_replay=True,
        )

    async def find_success(self, owner_id: str, idempotency_key: str) -> WebhookLogRow | None:
        return await self.repo.find_success(owner_id, idempotency_key)

    async def list_for_webhook(self, owner_id: str, webhook_id: str, limit: int = 100) -> list[WebhookLogRow]:
        return await self.repo.list_by_webhook(owner_id, webhook_id, limit=limit)
