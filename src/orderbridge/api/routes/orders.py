"""Read APIs for orders and deliveries, plus test deliveries and quotes."""

from fastapi import APIRouter

from orderbridge.dependencies import CurrentOwner, Services
from orderbridge.errors.exceptions import NotFoundError, ValidationError
from orderbridge.models.delivery import DeliveryRequest
from orderbridge.models.enums import DeliveryStatus
from orderbridge.models.integration import DeliveryTestRequest, DeliveryView, OrderView
from orderbridge.repositories.delivery_repo import DeliveryRepository

router = APIRouter(tags=["Orders"])


def _parse_test_request(body: dict) -> DeliveryTestRequest:
    from pydantic import ValidationError as PydanticValidationError

    try:
        return DeliveryTestRequest.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError("Invalid delivery request", details=exc.errors(include_url=False)) from exc


def _delivery_request(payload: DeliveryTestRequest) -> DeliveryRequest:
    if not payload.pickup.address or not payload.dropoff.address:
        raise ValidationError("pickup.address and dropoff.address are required")
    return DeliveryRequest(
        pickup=payload.pickup,
        dropoff=payload.dropoff,
        items=tuple(payload.items),
        order_value=payload.order_value,
        currency=payload.currency.upper(),
        external_reference=payload.reference,
    )


@router.get("/orders")
async def list_orders(
    owner_id: CurrentOwner,
    services: Services,
    status: str | None = None,
    fulfillment_status: str | None = None,
) -> list[dict]:
    rows = await services.orders.list_orders(owner_id, status=status, fulfillment_status=fulfillment_status)
    return [OrderView.model_validate(row).model_dump(mode="json") for row in rows]


@router.get("/orders/{order_id}")
async def get_order(order_id: str, owner_id: CurrentOwner, services: Services) -> dict:
    order = await services.orders.get(owner_id, order_id)
    deliveries = await DeliveryRepository(services.session).list_for_order(owner_id, order_id)
    return {
        **OrderView.model_validate(order).model_dump(mode="json"),
        "deliveries": [DeliveryView.model_validate(d).model_dump(mode="json") for d in deliveries],
    }


@router.get("/deliveries")
async def list_deliveries(
    owner_id: CurrentOwner,
    services: Services,
    status: DeliveryStatus | None = None,
    order_id: str | None = None,
) -> list[dict]:
    rows = await DeliveryRepository(services.session).list_owned(
        owner_id, status=status.value if status else None, order_id=order_id
    )
    return [DeliveryView.model_validate(row).model_dump(mode="json") for row in rows]


@router.get("/deliveries/{delivery_id}")
async def get_delivery(delivery_id: str, owner_id: CurrentOwner, services: Services) -> dict:
    row = await DeliveryRepository(services.session).get_owned(owner_id, delivery_id)
    if row is None:
        raise NotFoundError("Delivery", delivery_id)
    return DeliveryView.model_validate(row).model_dump(mode="json")


@router.post("/deliveries/test", status_code=201)
async def create_test_delivery(body: dict, owner_id: CurrentOwner, services: Services) -> dict:
    payload = _parse_test_request(body)
    delivery = await services.dispatcher.create_test_delivery(owner_id, payload.provider, _delivery_request(payload))
    return DeliveryView.model_validate(delivery).model_dump(mode="json")


@router.post("/deliveries/quote")
async def quote_delivery(body: dict, owner_id: CurrentOwner, services: Services) -> dict:
    payload = _parse_test_request(body)
    quote = await services.dispatcher.quote(owner_id, payload.provider, _delivery_request(payload))
    return quote.model_dump(mode="json")
