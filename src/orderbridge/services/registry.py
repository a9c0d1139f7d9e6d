"""Webhook Registry: owner-scoped CRUD over webhook definitions."""

import logging
import secrets

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.webhook import WebhookRow
from orderbridge.errors.exceptions import NotFoundError, ValidationError
from orderbridge.models.webhook import WebhookCreate, WebhookDefinition, WebhookUpdate
from orderbridge.repositories.webhook_repo import WebhookRepository
from orderbridge.services.id_generator import generate_id

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"id", "webhook_id", "owner_id", "secret_key"})


def _validation_error(exc: PydanticValidationError) -> ValidationError:
    details = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return ValidationError("Invalid webhook definition", details=details)


class WebhookRegistry:
    def __init__(self, session: AsyncSession, public_base_url: str = ""):
        self.session = session
        self.repo = WebhookRepository(session)
        self.public_base_url = public_base_url.rstrip("/")

    def to_definition(self, row: WebhookRow) -> WebhookDefinition:
        definition = WebhookDefinition.model_validate(row)
        definition.inbound_url = f"{self.public_base_url}/api/webhook/{row.secret_key}"
        return definition

    async def _new_secret(self) -> str:
        while True:
            candidate = secrets.token_urlsafe(32)
            if not await self.repo.secret_exists(candidate):
                return candidate

    async def create(self, owner_id: str, data: dict) -> WebhookRow:
        try:
            values = WebhookCreate.model_validate(data)
        except PydanticValidationError as exc:
            raise _validation_error(exc) from exc

        row = await self.repo.create(
            webhook_id=generate_id("whk_"),
            owner_id=owner_id,
            secret_key=await self._new_secret(),
            **values.model_dump(mode="json"),
        )
        logger.info(
            "Webhook %s created: %s/%s -> %s/%s",
            row.webhook_id, values.source_type, values.source_provider,
            values.destination_type, values.destination_provider,
        )
        return row

    async def update(self, owner_id: str, webhook_id: str, data: dict) -> WebhookRow:
        forbidden = sorted(IMMUTABLE_FIELDS & set(data))
        if forbidden:
            raise ValidationError(
                f"Fields cannot be changed: {', '.join(forbidden)}",
                details={"fields": forbidden},
            )
        try:
            changes = WebhookUpdate.model_validate(data)
        except PydanticValidationError as exc:
            raise _validation_error(exc) from exc

        values = {
            key: value
            for key, value in changes.model_dump(mode="json", exclude_unset=True).items()
            if value is not None or key == "description"
        }
        row = await self.get(owner_id, webhook_id)
        return await self.repo.update(row, **values)

    async def delete(self, owner_id: str, webhook_id: str) -> None:
        """Hard delete. Log rows for the webhook are kept."""
        row = await self.get(owner_id, webhook_id)
        await self.repo.delete(row)
        logger.info("Webhook %s deleted by owner %s", webhook_id, owner_id)

    async def get(self, owner_id: str, webhook_id: str) -> WebhookRow:
        row = await self.repo.get_owned(owner_id, webhook_id)
        if row is None:
            raise NotFoundError("Webhook", webhook_id)
        return row

    async def list_webhooks(
        self,
        owner_id: str,
        source_type: str | None = None,
        destination_type: str | None = None,
        is_active: bool | None = None,
    ) -> list[WebhookRow]:
        return await self.repo.list_owned(
            owner_id,
            source_type=source_type,
            destination_type=destination_type,
            is_active=is_active,
        )
