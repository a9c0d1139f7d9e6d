"""Repositories for webhook definitions and webhook logs."""

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.webhook import WebhookLogRow, WebhookRow
from orderbridge.integrations import normalize_provider
from orderbridge.repositories.base import BaseRepository


class WebhookRepository(BaseRepository):
    pk_field = "webhook_id"

    def __init__(self, session: AsyncSession):
        super().__init__(session, WebhookRow)

    async def get_active_by_secret(self, secret_key: str) -> WebhookRow | None:
        """Resolve an inbound secret. Inactive webhooks never match."""
        stmt = select(WebhookRow).where(
            and_(WebhookRow.secret_key == secret_key, WebhookRow.is_active.is_(True))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def secret_exists(self, secret_key: str) -> bool:
        stmt = select(WebhookRow.webhook_id).where(WebhookRow.secret_key == secret_key)
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def list_active_for_source(
        self, owner_id: str, source_type: str, source_provider: str
    ) -> list[WebhookRow]:
        """Active webhooks of one owner listening to a given origin."""
        stmt = (
            self._owned(owner_id)
            .where(
                WebhookRow.is_active.is_(True),
                WebhookRow.source_type == source_type,
            )
            .order_by(WebhookRow.created_at)
        )
        result = await self.session.execute(stmt)
        provider = normalize_provider(source_provider)
        return [
            row for row in result.scalars().all()
            if normalize_provider(row.source_provider) == provider
        ]


class WebhookLogRepository(BaseRepository):
    pk_field = "log_id"

    def __init__(self, session: AsyncSession):
        super().__init__(session, WebhookLogRow)

    async def list_by_webhook(
        self, owner_id: str, webhook_id: str, limit: int = 100
    ) -> list[WebhookLogRow]:
        """List recent logs for a webhook, newest first."""
        stmt = (
            self._owned(owner_id)
            .where(WebhookLogRow.webhook_id == webhook_id)
            .order_by(WebhookLogRow.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_by_key(self, owner_id: str, idempotency_key: str) -> list[WebhookLogRow]:
        stmt = (
            self._owned(owner_id)
            .where(WebhookLogRow.idempotency_key == idempotency_key)
            .order_by(WebhookLogRow.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_success(
        self, owner_id: str, idempotency_key: str, webhook_id: str | None = None
    ) -> WebhookLogRow | None:
        """First successful, non-replay outcome recorded for a key."""
        stmt = self._owned(owner_id).where(
            WebhookLogRow.idempotency_key == idempotency_key,
            WebhookLogRow.status == "success",
            WebhookLogRow.is_replay.is_(False),
        )
        if webhook_id is not None:
            stmt = stmt.where(WebhookLogRow.webhook_id == webhook_id)
        stmt = stmt.order_by(WebhookLogRow.created_at).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
