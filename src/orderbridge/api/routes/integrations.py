"""Provider account (integration) management routes."""

from fastapi import APIRouter
from pydantic import ValidationError as PydanticValidationError

from orderbridge.dependencies import CurrentOwner, Services
from orderbridge.errors.exceptions import ValidationError
from orderbridge.models.enums import IntegrationType
from orderbridge.models.integration import IntegrationCreate, IntegrationUpdate
from orderbridge.services.integrations import to_view

router = APIRouter(tags=["Integrations"])


def _parse(model, body: dict):
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError("Invalid integration", details=exc.errors(include_url=False)) from exc


@router.get("/integrations")
async def list_integrations(
    owner_id: CurrentOwner,
    services: Services,
    integration_type: IntegrationType | None = None,
) -> list[dict]:
    rows = await services.integrations.list_integrations(
        owner_id, integration_type.value if integration_type else None
    )
    return [to_view(row).model_dump(mode="json") for row in rows]


@router.post("/integrations", status_code=201)
async def create_integration(body: dict, owner_id: CurrentOwner, services: Services) -> dict:
    row = await services.integrations.create(owner_id, _parse(IntegrationCreate, body))
    await services.session.commit()
    return to_view(row).model_dump(mode="json")


@router.patch("/integrations/{integration_id}")
async def update_integration(integration_id: str, body: dict, owner_id: CurrentOwner, services: Services) -> dict:
    row = await services.integrations.update(owner_id, integration_id, _parse(IntegrationUpdate, body))
    await services.session.commit()
    return to_view(row).model_dump(mode="json")


@router.delete("/integrations/{integration_id}", status_code=204)
async def delete_integration(integration_id: str, owner_id: CurrentOwner, services: Services) -> None:
    await services.integrations.delete(owner_id, integration_id)
    await services.session.commit()
