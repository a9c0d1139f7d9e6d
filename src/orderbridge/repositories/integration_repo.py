"""Integration (provider account) repository."""

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.integration import IntegrationRow
from orderbridge.integrations import normalize_provider
from orderbridge.repositories.base import BaseRepository


class IntegrationRepository(BaseRepository):
    pk_field = "integration_id"

    def __init__(self, session: AsyncSession):
        super().__init__(session, IntegrationRow)

    async def get_active_for_provider(
        self, owner_id: str, integration_type: str, provider: str
    ) -> IntegrationRow | None:
        """Most recently created active account for a provider."""
        rows = await self.list_owned(owner_id, integration_type=integration_type, is_active=True)
        wanted = normalize_provider(provider)
        for row in rows:
            if normalize_provider(row.provider) == wanted:
                return row
        return None
