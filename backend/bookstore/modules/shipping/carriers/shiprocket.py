"""
Shiprocket carrier adapter

Bookings are two-step on Shiprocket: an adhoc order is created (returning
order_id and shipment_id) and an AWB is assigned to the shipment afterwards.
The shipment_id is therefore the booking reference for idempotency, and the
AWB is filled in once assigned.

Auth is an email/password login returning a token valid for 240 hours. The
token is persisted on the carrier profile by the token manager.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx

from bookstore.core.config import settings
from bookstore.core.exceptions import CarrierAuthError, CarrierBusinessError, ShipmentValidationError
from bookstore.models.carrier_profile import CarrierCode, CarrierProfile
from bookstore.modules.shipping.carriers import register_carrier
from bookstore.modules.shipping.carriers.base import (
    BaseCarrier,
    CancelResult,
    DocumentResult,
    GENERIC_FAILURE,
    NormalizedResponse,
    PickupRequest,
    PickupResult,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingResult,
    pick,
    pick_deep,
    profile_secret,
)
from bookstore.modules.shipping.carriers.http import CarrierHTTPClient, RetryConfig, parse_body
from bookstore.modules.shipping.carriers.validation import collect_errors, phone_digits
from bookstore.services.encryption import mask_email
from bookstore.services.token_manager import AuthToken, CarrierAuthenticator, TokenManager

logger = logging.getLogger(__name__)

DELIVERED_STATUSES = {"DELIVERED", "RTO DELIVERED"}


def normalize_shiprocket_response(body: Any, status_code: int = 200) -> NormalizedResponse:
    """
    Canonical envelope for a Shiprocket response.

    A failure takes its message from the first entry of the errors mapping,
    then error, then message, then data.message. With none of those the
    generic failure text is used and the raw body is kept for the log.
    """
    if not isinstance(body, dict):
        return NormalizedResponse(
            success=200 <= status_code < 300,
            message=None if status_code < 300 else GENERIC_FAILURE,
            payload=body,
            raw=body,
        )

    message = pick(body, "message", "data.message")
    errors = body.get("errors")
    if isinstance(errors, dict) and errors:
        first = next(iter(errors.values()))
        error_text = first[0] if isinstance(first, list) and first else str(first)
    elif isinstance(errors, list) and errors:
        error_text = str(errors[0])
    elif isinstance(body.get("error"), dict):
        error_text = pick(body, "error.message")
    elif isinstance(body.get("error"), str):
        error_text = body["error"]
    else:
        error_text = None

    status_flag = body.get("status_code") or body.get("status")
    failed = (
        status_code >= 400
        or bool(error_text)
        or (isinstance(status_flag, int) and status_flag >= 400)
    )

    if failed:
        return NormalizedResponse(
            success=False,
            code=str(status_flag or status_code),
            message=error_text or message or GENERIC_FAILURE,
            payload=None,
            raw=body,
        )
    return NormalizedResponse(success=True, code=str(status_code), message=message, payload=body, raw=body)


def extract_shipment_ids(body: Any) -> Dict[str, Optional[str]]:
    """order_id / shipment_id from the create response, whatever its nesting."""
    order_id = pick(body, "order_id", "orderId", "response.order_id", "data.order_id")
    shipment_id = pick(body, "shipment_id", "shipmentId", "response.shipment_id", "data.shipment_id")
    if shipment_id is None:
        shipment_id = pick_deep(body, "shipment_id")
    if order_id is None:
        order_id = pick_deep(body, "order_id")
    awb = pick(body, "awb_code", "response.data.awb_code", "data.awb_code")
    return {
        "order_id": str(order_id) if order_id is not None else None,
        "shipment_id": str(shipment_id) if shipment_id is not None else None,
        "awb_code": str(awb) if awb else None,
        "courier_name": pick(body, "courier_name", "response.data.courier_name", "data.courier_name"),
    }


class ShiprocketAuthenticator(CarrierAuthenticator):
    carrier = CarrierCode.SHIPROCKET
    persistent = True

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.SHIPROCKET_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.CARRIER_TIMEOUT_SECONDS
        self.transport = transport
        self.buffer = timedelta(minutes=settings.SHIPROCKET_TOKEN_BUFFER_MINUTES)
        self.ttl = timedelta(hours=settings.SHIPROCKET_TOKEN_TTL_HOURS)

    async def login(self, profile: CarrierProfile) -> AuthToken:
        password = profile_secret(profile, "password_encrypted")
        if not profile.login_id or not password:
            raise CarrierAuthError(
                "Email and password required for Shiprocket login",
                details={"profile_id": profile.id},
            )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/auth/login",
                    json={"email": profile.login_id, "password": password},
                )
        except httpx.TransportError as e:
            raise CarrierAuthError(
                f"Shiprocket auth endpoint unreachable: {type(e).__name__}",
                details={"profile_id": profile.id},
            )

        body = parse_body(response)
        token = body.get("token") if isinstance(body, dict) else None
        if response.status_code >= 400 or not token:
            message = normalize_shiprocket_response(body, response.status_code).message
            if response.status_code in (400, 401, 403):
                message = f"Invalid Shiprocket credentials: {message}"
            raise CarrierAuthError(
                message or "No token received from Shiprocket",
                details={"profile_id": profile.id, "status_code": response.status_code},
            )

        logger.info(f"Shiprocket login succeeded for {mask_email(profile.login_id)} (profile {profile.id})")
        return AuthToken(
            token=token,
            expires_at=datetime.now(timezone.utc) + self.ttl,
            carrier=self.carrier,
        )


@register_carrier(CarrierCode.SHIPROCKET)
class ShiprocketCarrier(BaseCarrier):
    carrier_code = CarrierCode.SHIPROCKET
    carrier_name = "Shiprocket"

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=None,
    ):
        kwargs = {"sleep": sleep} if sleep else {}
        self.http = CarrierHTTPClient(
            carrier=self.carrier_code,
            base_url=base_url or settings.SHIPROCKET_BASE_URL,
            token_manager=token_manager,
            normalizer=normalize_shiprocket_response,
            auth_headers=lambda token: {"Authorization": f"Bearer {token}"},
            retry_config=retry_config or RetryConfig(
                max_retries=settings.CARRIER_MAX_RETRIES,
                base_delay=settings.CARRIER_RETRY_BASE_DELAY,
            ),
            timeout=settings.CARRIER_TIMEOUT_SECONDS,
            transport=transport,
            **kwargs,
        )

    def normalize(self, body: Any, status_code: int = 200) -> NormalizedResponse:
        return normalize_shiprocket_response(body, status_code)

    async def close(self):
        await self.http.close()

    def reference_for(self, shipment, operation: str) -> Optional[str]:
        # Orders are cancelled and invoiced by Shiprocket order id, tracked by
        # AWB, and everything else goes by shipment id
        if operation in ("cancel", "invoice"):
            return shipment.carrier_order_id or shipment.shipment_id
        if operation == "track":
            return shipment.awb_number
        return shipment.shipment_id

    async def _call(
        self,
        method: str,
        path: str,
        profile: CarrierProfile,
        operation: str,
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        response = await self.http.request(method, path, profile, operation, json_body=json_body, params=params)
        body = parse_body(response)
        normalized = self.normalize(body, response.status_code)
        if not normalized.success:
            raise CarrierBusinessError(
                normalized.message or GENERIC_FAILURE,
                carrier_code=normalized.code,
                raw=body,
                details={"operation": operation},
            )
        return body

    # ==================== Booking ====================

    def validate(self, request: ShipmentRequest) -> None:
        errors = collect_errors(request)
        if not request.pickup_location:
            errors.append("Pickup location is required")
        if errors:
            raise ShipmentValidationError(errors, details={"reference": request.reference})

    def build_order_payload(self, request: ShipmentRequest) -> Dict[str, Any]:
        consignee = request.consignee
        order_items = [
            {
                "name": item.title or "Item",
                "sku": item.sku,
                "units": int(item.qty or 1),
                "selling_price": float(item.unit_price or 0),
                "discount": 0,
                "tax": float(item.tax or 0),
            }
            for item in request.items
        ]
        sub_total = round(sum(i["selling_price"] * i["units"] for i in order_items), 2) or request.declared_value
        order_date = request.order_date or datetime.now(timezone.utc)

        payload = {
            "order_id": request.reference,
            "order_date": order_date.strftime("%Y-%m-%d %H:%M"),
            "pickup_location": request.pickup_location,
            "billing_customer_name": consignee.name,
            "billing_last_name": "",
            "billing_address": consignee.address,
            "billing_address_2": consignee.address2 or "",
            "billing_city": consignee.city,
            "billing_pincode": consignee.pincode,
            "billing_state": consignee.state,
            "billing_country": consignee.country or "India",
            "billing_email": consignee.email or "",
            "billing_phone": phone_digits(consignee.phone)[-10:],
            "shipping_is_billing": True,
            "order_items": order_items,
            "payment_method": "COD" if request.is_cod else "Prepaid",
            "sub_total": sub_total,
            "length": request.package.length,
            "breadth": request.package.breadth,
            "height": request.package.height,
            "weight": request.package.chargeable_weight,
        }
        if request.is_cod and request.cod_amount < sub_total:
            # Shiprocket collects sub_total minus total_discount; the prepaid part goes in as a discount
            payload["total_discount"] = round(sub_total - request.cod_amount, 2)
        return payload

    async def create_shipment(self, profile: CarrierProfile, request: ShipmentRequest) -> ShipmentResult:
        self.validate(request)
        payload = self.build_order_payload(request)
        body = await self._call("POST", "/orders/create/adhoc", profile, "orders.create.adhoc", json_body=payload)

        ids = extract_shipment_ids(body)
        if not ids["shipment_id"]:
            raise CarrierBusinessError(
                "Shiprocket did not return a shipment id",
                raw=body,
                details={"operation": "orders.create.adhoc"},
            )
        logger.info(f"Shiprocket order {ids['order_id']} created, shipment {ids['shipment_id']}")
        return ShipmentResult(
            awb_number=ids["awb_code"],
            shipment_id=ids["shipment_id"],
            carrier_order_id=ids["order_id"],
            courier_name=ids["courier_name"],
            raw_response=body,
        )

    async def assign_awb(
        self,
        profile: CarrierProfile,
        shipment_id: str,
        courier_id: Optional[int] = None,
    ) -> ShipmentResult:
        payload: Dict[str, Any] = {"shipment_id": shipment_id}
        if courier_id:
            payload["courier_id"] = courier_id
        body = await self._call("POST", "/courier/assign/awb", profile, "courier.assign.awb", json_body=payload)

        ids = extract_shipment_ids(body)
        if not ids["awb_code"]:
            message = pick(body, "response.data.awb_assign_error", "message") or GENERIC_FAILURE
            raise CarrierBusinessError(str(message), raw=body, details={"operation": "courier.assign.awb"})
        return ShipmentResult(
            awb_number=ids["awb_code"],
            shipment_id=shipment_id,
            courier_name=ids["courier_name"],
            raw_response=body,
        )

    # ==================== Tracking ====================

    async def track_shipment(self, profile: CarrierProfile, reference: str) -> TrackingResult:
        body = await self._call("GET", f"/courier/track/awb/{reference}", profile, "courier.track")

        status = pick(
            body,
            "tracking_data.shipment_status_current",
            "tracking_data.shipment_track.0.current_status",
            "tracking_data.shipment_status",
            "current_status",
        )
        activities = pick(body, "tracking_data.shipment_track_activities") or []
        events = [
            TrackingEvent(
                status=str(a.get("activity") or a.get("sr-status-label") or ""),
                location=a.get("location"),
                timestamp=a.get("date"),
            )
            for a in activities
            if isinstance(a, dict)
        ]
        latest = events[0] if events else None
        status_text = str(status) if status is not None else None

        return TrackingResult(
            reference=reference,
            status=status_text,
            location=latest.location if latest else None,
            last_update=latest.timestamp if latest else None,
            delivered=bool(status_text) and status_text.upper() in DELIVERED_STATUSES,
            events=events,
            raw_response=body,
        )

    # ==================== Pickup / Cancel ====================

    async def schedule_pickup(self, profile: CarrierProfile, request: PickupRequest) -> PickupResult:
        payload = {
            "shipment_id": list(request.references),
            "pickup_date": [request.pickup_date.isoformat()],
        }
        body = await self._call("POST", "/courier/generate/pickup", profile, "courier.generate.pickup", json_body=payload)
        confirmation = pick(body, "response.pickup_token_number", "pickup_token_number", "response.data")
        return PickupResult(
            confirmation_id=str(confirmation) if confirmation is not None else None,
            scheduled_date=request.pickup_date,
            raw_response=body,
        )

    async def cancel_shipment(self, profile: CarrierProfile, reference: str) -> CancelResult:
        body = await self._call(
            "POST", "/orders/cancel", profile, "orders.cancel",
            json_body={"ids": [reference]},
        )
        return CancelResult(cancelled=True, message=pick(body, "message"), raw_response=body)

    # ==================== Documents ====================

    async def generate_label(self, profile: CarrierProfile, references: Sequence[str]) -> DocumentResult:
        body = await self._call(
            "POST", "/courier/generate/label", profile, "courier.generate.label",
            json_body={"shipment_id": list(references)},
        )
        return self._document(body, "label_url", "response.label_url")

    async def generate_invoice(self, profile: CarrierProfile, references: Sequence[str]) -> DocumentResult:
        body = await self._call(
            "POST", "/orders/print/invoice", profile, "orders.print.invoice",
            json_body={"ids": list(references)},
        )
        return self._document(body, "invoice_url")

    async def generate_manifest(self, profile: CarrierProfile, references: Sequence[str]) -> DocumentResult:
        payload = {"shipment_id": list(references)}
        await self._call("POST", "/manifests/generate", profile, "manifests.generate", json_body=payload)
        body = await self._call("POST", "/manifests/print", profile, "manifests.print", json_body=payload)
        return self._document(body, "manifest_url", "manifest_url_pdf")

    def _document(self, body: Any, *paths: str) -> DocumentResult:
        url = pick(body, *paths)
        if not url:
            raise CarrierBusinessError(
                normalize_shiprocket_response(body).message or "Shiprocket returned no document URL",
                raw=body,
            )
        return DocumentResult(url=str(url), raw_response=body)

    # ==================== Serviceability ====================

    async def check_serviceability(
        self,
        profile: CarrierProfile,
        pickup_pincode: str,
        delivery_pincode: str,
        weight: float,
        cod: bool = False,
    ) -> List[Dict[str, Any]]:
        params = {
            "pickup_postcode": pickup_pincode,
            "delivery_postcode": delivery_pincode,
            "weight": weight,
            "cod": 1 if cod else 0,
        }
        body = await self._call("GET", "/courier/serviceability/", profile, "courier.serviceability", params=params)
        couriers = pick(body, "data.available_courier_companies") or []
        return [
            {
                "courier_id": c.get("courier_company_id"),
                "courier_name": c.get("courier_name"),
                "rate": c.get("rate"),
                "etd": c.get("etd"),
                "cod": bool(c.get("cod")),
            }
            for c in couriers
            if isinstance(c, dict)
        ]
