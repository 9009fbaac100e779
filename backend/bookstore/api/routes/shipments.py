"""
Shipment API Routes

Bulk endpoints (create, track, cancel) always answer 200 with a
success / skipped / failed breakdown. Single-resource endpoints raise, and
the app-level handler turns ShippingError into an error response.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse

from bookstore.api.deps import get_current_owner_id, get_shipping_services
from bookstore.models.carrier_profile import CarrierCode
from bookstore.services.shipment_orchestrator import ShipmentOptions
from bookstore.services.shipping_service import ShippingServices
from bookstore.schemas.shipping import (
    AssignAwbRequest,
    BatchResponse,
    DocumentRequest,
    DocumentResponse,
    LabelResponse,
    PickupRequestIn,
    PickupResponse,
    ServiceabilityResponse,
    ShipmentBatchRequest,
    ShipmentCreateRequest,
    TrackingResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipments", tags=["shipments"])


# ==================== Bulk Endpoints ====================


@router.post("/create", response_model=BatchResponse)
async def create_shipments(
    data: ShipmentCreateRequest,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    """
    Book shipments for the given orders.

    Orders that already have an AWB/shipment id for the provider are
    reported under skipped and are never re-booked.
    """
    package = data.package
    options = ShipmentOptions(
        profile_id=data.profile_id,
        weight=package.weight if package else None,
        length=package.length if package else None,
        breadth=package.breadth if package else None,
        height=package.height if package else None,
        pickup_date=data.pickup_date,
        assign_awb=data.assign_awb,
        courier_id=data.courier_id,
    )
    result = await services.batch.create_shipments(data.order_ids, data.provider, options, owner_id)
    return result.to_dict()


@router.post("/track", response_model=BatchResponse)
async def track_shipments(
    data: ShipmentBatchRequest,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    result = await services.batch.track_shipments(data.order_ids, data.provider, owner_id)
    return result.to_dict()


@router.post("/cancel", response_model=BatchResponse)
async def cancel_shipments(
    data: ShipmentBatchRequest,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    result = await services.batch.cancel_shipments(data.order_ids, data.provider, owner_id)
    return result.to_dict()


@router.post("/pickup", response_model=PickupResponse)
async def schedule_pickup(
    data: PickupRequestIn,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    """Register one carrier pickup for all booked orders in the request."""
    return await services.batch.schedule_pickup(
        data.order_ids, data.pickup_date, data.provider, owner_id, data.profile_id
    )


# ==================== Single Shipment Endpoints ====================


@router.get("/track/{provider}/{awb}", response_model=TrackingResponse)
async def track_shipment(
    provider: CarrierCode,
    awb: str,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    result = await services.orchestrator.track_shipment(provider, awb, owner_id)
    return result.to_dict()


@router.post("/{order_id}/assign-awb")
async def assign_awb(
    order_id: int,
    data: AssignAwbRequest,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    """Assign a Shiprocket AWB to an already created order."""
    outcome = await services.orchestrator.assign_awb(order_id, data.courier_id, owner_id)
    return outcome.to_dict()


@router.get("/serviceability", response_model=ServiceabilityResponse)
async def check_serviceability(
    provider: CarrierCode,
    delivery_pincode: str = Query(..., pattern=r"^\d{6}$"),
    pickup_pincode: Optional[str] = Query(None, pattern=r"^\d{6}$"),
    weight: Optional[float] = Query(None, gt=0),
    cod: bool = False,
    profile_id: Optional[int] = None,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    return await services.orchestrator.check_serviceability(
        provider,
        delivery_pincode,
        pickup_pincode=pickup_pincode,
        weight=weight,
        cod=cod,
        owner_id=owner_id,
        profile_id=profile_id,
    )


@router.get("/{order_id}/label", response_model=LabelResponse)
async def get_label(
    order_id: int,
    provider: CarrierCode,
    generate: bool = Query(True, description="Generate the label if none exists yet"),
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    """
    Label for a booked order.

    404 SHIPMENT_NOT_BOOKED when the order has no shipment yet;
    404 LABEL_NOT_FOUND when generate=false and no label was made.
    """
    if generate:
        label = await services.labels.get_or_generate_label(order_id, provider, owner_id)
    else:
        label = await services.labels.get_label(order_id, provider)

    if label.get("url"):
        return LabelResponse(url=label["url"], file_name=label.get("file_name"))
    return FileResponse(label["path"], media_type="application/pdf", filename=label["file_name"])


@router.post("/documents/{kind}", response_model=DocumentResponse)
async def generate_documents(
    kind: str,
    data: DocumentRequest,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    """Carrier-hosted label, invoice or manifest covering several orders."""
    return await services.orchestrator.generate_documents(kind, data.order_ids, data.provider, owner_id)


@router.get("/{order_id}/logs")
async def get_shipment_logs(
    order_id: int,
    provider: Optional[CarrierCode] = None,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
) -> List[dict]:
    """Audit trail of carrier calls for an order."""
    await services.order_store.find_by_id(order_id)
    logs = await services.order_store.get_logs(order_id, provider.value if provider else None)
    return [
        {
            "id": log.id,
            "provider": log.provider,
            "type": log.type,
            "request": log.request,
            "response": log.response,
            "error": log.error,
            "created_at": log.created_at,
        }
        for log in logs
    ]
