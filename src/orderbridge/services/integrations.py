"""Owner-scoped CRUD for provider accounts."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.integration import IntegrationRow
from orderbridge.errors.exceptions import NotFoundError
from orderbridge.models.integration import IntegrationCreate, IntegrationUpdate, IntegrationView
from orderbridge.repositories.integration_repo import IntegrationRepository
from orderbridge.services.id_generator import generate_id

logger = logging.getLogger(__name__)


def to_view(row: IntegrationRow) -> IntegrationView:
    view = IntegrationView.model_validate(row)
    view.has_api_key = bool(row.api_key)
    return view


class IntegrationService:
    def __init__(self, session: AsyncSession):
        self.repo = IntegrationRepository(session)

    async def create(self, owner_id: str, data: IntegrationCreate) -> IntegrationRow:
        row = await self.repo.create(
            integration_id=generate_id("int_"),
            owner_id=owner_id,
            **data.model_dump(mode="json"),
        )
        logger.info("Integration %s (%s/%s) created", row.integration_id, row.integration_type, row.provider)
        return row

    async def get(self, owner_id: str, integration_id: str) -> IntegrationRow:
        row = await self.repo.get_owned(owner_id, integration_id)
        if row is None:
            raise NotFoundError("Integration", integration_id)
        return row

    async def update(self, owner_id: str, integration_id: str, changes: IntegrationUpdate) -> IntegrationRow:
        row = await self.get(owner_id, integration_id)
        return await self.repo.update(row, **changes.model_dump(exclude_unset=True))

    async def delete(self, owner_id: str, integration_id: str) -> None:
        row = await self.get(owner_id, integration_id)
        await self.repo.delete(row)

    async def list_integrations(self, owner_id: str, integration_type: str | None = None) -> list[IntegrationRow]:
        return await self.repo.list_owned(owner_id, integration_type=integration_type)
