"""Delivery repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.delivery import DeliveryRow
from orderbridge.integrations import normalize_provider
from orderbridge.models.enums import DeliveryStatus
from orderbridge.repositories.base import BaseRepository

_TERMINAL = [s.value for s in DeliveryStatus if s.is_terminal]


class DeliveryRepository(BaseRepository):
    pk_field = "delivery_id"

    def __init__(self, session: AsyncSession):
        super().__init__(session, DeliveryRow)

    async def get_active_for_order(
        self, owner_id: str, order_id: str, for_update: bool = False
    ) -> DeliveryRow | None:
        """The single non-terminal delivery of an order, if any."""
        stmt = (
            self._owned(owner_id)
            .where(
                DeliveryRow.order_id == order_id,
                DeliveryRow.status.not_in(_TERMINAL),
            )
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(
        self, owner_id: str, provider: str, external_id: str, for_update: bool = False
    ) -> DeliveryRow | None:
        stmt = self._owned(owner_id).where(
            DeliveryRow.provider == normalize_provider(provider),
            DeliveryRow.external_id == external_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_order(self, owner_id: str, order_id: str) -> list[DeliveryRow]:
        stmt = (
            select(DeliveryRow)
            .where(DeliveryRow.owner_id == owner_id, DeliveryRow.order_id == order_id)
            .order_by(DeliveryRow.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
