"""Dashboard CRUD over webhook definitions and their logs."""

from fastapi import APIRouter, Query

from orderbridge.dependencies import CurrentOwner, Services
from orderbridge.models.enums import EndpointType
from orderbridge.models.webhook import WebhookLogEntry

router = APIRouter(tags=["Webhooks"])


@router.get("/webhooks")
async def list_webhooks(
    owner_id: CurrentOwner,
    services: Services,
    source_type: EndpointType | None = None,
    destination_type: EndpointType | None = None,
    is_active: bool | None = None,
) -> list[dict]:
    rows = await services.registry.list_webhooks(
        owner_id,
        source_type=source_type.value if source_type else None,
        destination_type=destination_type.value if destination_type else None,
        is_active=is_active,
    )
    return [services.registry.to_definition(row).model_dump(mode="json") for row in rows]


@router.post("/webhooks", status_code=201)
async def create_webhook(body: dict, owner_id: CurrentOwner, services: Services) -> dict:
    row = await services.registry.create(owner_id, body)
    await services.session.commit()
    return services.registry.to_definition(row).model_dump(mode="json")


@router.get("/webhooks/{webhook_id}")
async def get_webhook(webhook_id: str, owner_id: CurrentOwner, services: Services) -> dict:
    row = await services.registry.get(owner_id, webhook_id)
    return services.registry.to_definition(row).model_dump(mode="json")


@router.patch("/webhooks/{webhook_id}")
async def update_webhook(webhook_id: str, body: dict, owner_id: CurrentOwner, services: Services) -> dict:
    row = await services.registry.update(owner_id, webhook_id, body)
    await services.session.commit()
    return services.registry.to_definition(row).model_dump(mode="json")


@router.delete("/webhooks/{webhook_id}", status_code=204)
async def delete_webhook(webhook_id: str, owner_id: CurrentOwner, services: Services) -> None:
    await services.registry.delete(owner_id, webhook_id)
    await services.session.commit()


@router.get("/webhooks/{webhook_id}/logs")
async def list_webhook_logs(
    webhook_id: str,
    owner_id: CurrentOwner,
    services: Services,
    limit: int = Query(100, ge=1, le=1000),
) -> list[dict]:
    # Logs outlive their webhook, so a deleted webhook's history stays readable.
    rows = await services.logs.list_for_webhook(owner_id, webhook_id, limit=limit)
    return [WebhookLogEntry.model_validate(row).model_dump(mode="json") for row in rows]
