"""Retry job repository."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.retry_job import RetryJobRow
from orderbridge.repositories.base import BaseRepository


class RetryJobRepository(BaseRepository):
    pk_field = "job_id"

    def __init__(self, session: AsyncSession):
        super().__init__(session, RetryJobRow)

    async def get_for_key(self, webhook_id: str, idempotency_key: str) -> RetryJobRow | None:
        stmt = select(RetryJobRow).where(
            RetryJobRow.webhook_id == webhook_id,
            RetryJobRow.idempotency_key == idempotency_key,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_due(self, now: datetime, limit: int) -> list[RetryJobRow]:
        """Pending jobs whose backoff has elapsed, plus retrying jobs whose lease expired.

        Oldest first. Cross-tenant.
        """
        stmt = (
            select(RetryJobRow)
            .where(
                RetryJobRow.status.in_(("pending", "retrying")),
                RetryJobRow.next_attempt_at <= now,
            )
            .order_by(RetryJobRow.next_attempt_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
