"""
Blue Dart carrier adapter (APIGEE gateway)

Auth is a client id/secret exchange for a JWT valid 24 hours, sent on every
call in the JWTToken header. Every request body also carries a Profile block
with the account login id and licence key.

Blue Dart answers business failures either as HTTP 4xx with an
"error-response" list or as HTTP 200 with IsError set, so every response is
passed through normalize_bluedart_response before it is trusted.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Sequence

import httpx

from bookstore.core.config import settings
from bookstore.core.exceptions import (
    CarrierAuthError,
    CarrierBusinessError,
    ShipmentValidationError,
    TransientCarrierError,
)
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
    profile_secret,
)
from bookstore.modules.shipping.carriers.http import CarrierHTTPClient, RetryConfig, parse_body
from bookstore.modules.shipping.carriers.validation import (
    ADDRESS_LINE_MAX_LENGTH,
    collect_errors,
    phone_digits,
    sanitize_text,
)
from bookstore.services.token_manager import AuthToken, CarrierAuthenticator, TokenManager

logger = logging.getLogger(__name__)

TOKEN_PATH = "/in/transportation/token/v1/login"
WAYBILL_PATH = "/in/transportation/waybill/v1/GenerateWayBill"
CANCEL_WAYBILL_PATH = "/in/transportation/waybill/v1/CancelWayBill"
TRACKING_PATH = "/in/tracking/shipment/v1/Track"
PICKUP_PATH = "/in/transportation/pickup/v1/RegisterPickup"
CANCEL_PICKUP_PATH = "/in/transportation/pickup/v1/CancelPickup"
TRANSIT_TIME_PATH = "/in/transportation/transittime/v1"
LOCATION_FINDER_PATH = "/in/transportation/locationfinder/v1"
PRINT_LABEL_PATH = "/in/transportation/waybills/v1/printlabel"

VALID_PRODUCT_CODES = ("A", "D", "I")

# Blue Dart status codes with an operator-facing explanation
ERROR_CODES = {
    "UserDoesNotExists": ("Invalid API credentials", "Check the profile's API client id and secret"),
    "InvalidPinCode": ("Pincode must be 6 digits", "Provide a valid 6-digit pincode"),
    "InvalidProductCode": ("Invalid product code", "Use A or D for product code"),
    "InvalidSubProduct": ("Invalid sub-product code", "Use P (Prepaid) or C (COD)"),
    "UnAuthorizedUser": ("Customer code not authorized", "Check the customer code exists in Blue Dart"),
    "InvalidClientName": ("Customer name invalid (max 30 chars, no < >)", "Shorten the name and remove < >"),
    "InvalidAddress1": ("Address invalid (max 30 chars, no special chars)", "Shorten the address and remove < >"),
    "AwbGenerationFailure": ("Waybill generation failed", "Check declared value > 0"),
    "InvalidPickupDate": ("Pickup date cannot be in past", "Use current or future date"),
    "InvalidCollectableAmount": ("COD amount must be > 0 and <= declared value", "Adjust COD amount"),
    "OutBoundServiceNotAvailable": ("Service not available for this pincode", "Check pincode with the location finder"),
    "Communication failure": ("Blue Dart service unavailable", "Retry later"),
}

TRANSIENT_CODES = {"Communication failure"}

# Result wrappers Blue Dart puts around the payload, per operation
_RESULT_WRAPPERS = (
    "GenerateWayBillResult",
    "RegisterPickupResult",
    "CancelWaybillResult",
    "CancelWayBillOutput",
    "PickupCancellationOutput",
    "TransitTimeOutput",
    "GetServicesforPinCodeResult",
)


def bluedart_date(value: date) -> str:
    """WCF-style /Date(ms)/ timestamp for midnight UTC of value."""
    moment = datetime.combine(value, time.min, tzinfo=timezone.utc)
    return f"/Date({int(moment.timestamp() * 1000)})/"


def describe_error(code: Optional[str], fallback: Optional[str] = None) -> str:
    if code in ERROR_CODES:
        message, solution = ERROR_CODES[code]
        return f"{message} - {solution}"
    return fallback or GENERIC_FAILURE


def _is_true(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.lower() == "true")


def normalize_bluedart_response(body: Any, status_code: int = 200) -> NormalizedResponse:
    """
    Canonical envelope for a Blue Dart response.

    Error detection order: an "error-response" list, then IsError on the
    unwrapped result, then the HTTP status. The error code comes from
    Status[0].StatusCode, then ErrorCode; the message from the known error
    code table, then Status[0].StatusInformation, then a plain Status
    string, then message/title, then the generic failure text.
    """
    if not isinstance(body, dict):
        ok = 200 <= status_code < 300
        return NormalizedResponse(
            success=ok,
            message=None if ok else GENERIC_FAILURE,
            payload=body,
            raw=body,
        )

    error_list = body.get("error-response")
    if isinstance(error_list, list) and error_list:
        result = error_list[0] if isinstance(error_list[0], dict) else {}
        failed = True
    else:
        result = body
        for key in _RESULT_WRAPPERS:
            if isinstance(body.get(key), dict):
                result = body[key]
                break
        failed = _is_true(result.get("IsError")) or status_code >= 400

    status = result.get("Status")
    code = pick(result, "Status.0.StatusCode", "ErrorCode")
    info = pick(result, "Status.0.StatusInformation")
    status_text = status if isinstance(status, str) else None

    if not failed:
        return NormalizedResponse(
            success=True,
            code=str(code) if code else None,
            message=info or status_text,
            payload=result,
            raw=body,
        )

    fallback = info or status_text or pick(result, "message", "title") or pick(body, "message", "title")
    return NormalizedResponse(
        success=False,
        code=str(code) if code else None,
        message=describe_error(code, fallback),
        payload=None,
        raw=body,
    )


def bluedart_transient_status(response: httpx.Response) -> Optional[str]:
    """Outage code when a 2xx body reports a Blue Dart side failure, else None."""
    normalized = normalize_bluedart_response(parse_body(response), response.status_code)
    if not normalized.success and normalized.code in TRANSIENT_CODES:
        return normalized.code
    return None


class BlueDartAuthenticator(CarrierAuthenticator):
    carrier = CarrierCode.BLUEDART
    persistent = False

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.BLUEDART_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.CARRIER_TIMEOUT_SECONDS
        self.transport = transport
        self.buffer = timedelta(minutes=settings.BLUEDART_TOKEN_BUFFER_MINUTES)
        self.ttl = timedelta(hours=settings.BLUEDART_TOKEN_TTL_HOURS)

    def _credentials(self, profile: CarrierProfile):
        client_id = profile.api_client_id or settings.BLUEDART_CLIENT_ID
        secret = profile_secret(profile, "api_secret_encrypted") or settings.BLUEDART_CLIENT_SECRET
        return client_id, secret

    async def login(self, profile: CarrierProfile) -> AuthToken:
        client_id, secret = self._credentials(profile)
        if not client_id or not secret:
            raise CarrierAuthError(
                "Blue Dart API client id and secret are not configured",
                details={"profile_id": profile.id},
            )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    f"{self.base_url}{TOKEN_PATH}",
                    headers={"ClientID": client_id, "clientSecret": secret},
                )
        except httpx.TransportError as e:
            raise CarrierAuthError(
                f"Blue Dart auth endpoint unreachable: {type(e).__name__}",
                details={"profile_id": profile.id},
            )

        body = parse_body(response)
        token = body.get("JWTToken") if isinstance(body, dict) else None
        if response.status_code >= 400 or not token:
            normalized = normalize_bluedart_response(body, max(response.status_code, 400))
            raise CarrierAuthError(
                f"Failed to authenticate with Blue Dart: {normalized.message}",
                details={"profile_id": profile.id, "status_code": response.status_code},
            )

        logger.info(f"Blue Dart JWT issued for profile {profile.id}")
        return AuthToken(
            token=token,
            expires_at=datetime.now(timezone.utc) + self.ttl,
            carrier=self.carrier,
        )


@register_carrier(CarrierCode.BLUEDART)
class BlueDartCarrier(BaseCarrier):
    carrier_code = CarrierCode.BLUEDART
    carrier_name = "Blue Dart"

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=None,
        customer_code_map: Optional[Dict[str, str]] = None,
    ):
        kwargs = {"sleep": sleep} if sleep else {}
        self.http = CarrierHTTPClient(
            carrier=self.carrier_code,
            base_url=base_url or settings.BLUEDART_BASE_URL,
            token_manager=token_manager,
            normalizer=normalize_bluedart_response,
            auth_headers=lambda token: {"JWTToken": token},
            retry_config=retry_config or RetryConfig(
                max_retries=settings.CARRIER_MAX_RETRIES,
                base_delay=settings.CARRIER_RETRY_BASE_DELAY,
            ),
            timeout=settings.CARRIER_TIMEOUT_SECONDS,
            transport=transport,
            transient_check=bluedart_transient_status,
            **kwargs,
        )
        self.customer_code_map = (
            customer_code_map if customer_code_map is not None else settings.BLUEDART_CUSTOMER_CODE_MAP
        )

    def normalize(self, body: Any, status_code: int = 200) -> NormalizedResponse:
        return normalize_bluedart_response(body, status_code)

    async def close(self):
        await self.http.close()

    # ==================== Account helpers ====================

    def customer_code(self, profile: CarrierProfile) -> str:
        """Shipper customer code, after any child-account remap."""
        login_id = (profile.login_id or "").strip()
        if login_id in self.customer_code_map:
            return self.customer_code_map[login_id]
        return profile.customer_code or login_id

    @staticmethod
    def area_code(profile: CarrierProfile) -> str:
        if profile.area_code:
            return profile.area_code
        # Blue Dart login ids start with the three-letter origin area
        return (profile.login_id or "")[:3].upper()

    @staticmethod
    def profile_block(profile: CarrierProfile, tracking: bool = False) -> Dict[str, str]:
        license_key = profile_secret(profile, "license_key_encrypted")
        if tracking:
            license_key = profile_secret(profile, "tracking_key_encrypted") or license_key
        return {
            "Api_type": "S",
            "LicenceKey": license_key,
            "LoginID": profile.login_id,
        }

    async def _call(
        self,
        method: str,
        path: str,
        profile: CarrierProfile,
        operation: str,
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = await self.http.request(method, path, profile, operation, json_body=json_body, params=params)
        body = parse_body(response)
        normalized = self.normalize(body, response.status_code)
        if not normalized.success:
            if normalized.code in TRANSIENT_CODES:
                raise TransientCarrierError(normalized.message, details={"operation": operation, "raw": body})
            raise CarrierBusinessError(
                normalized.message or GENERIC_FAILURE,
                carrier_code=normalized.code,
                raw=body,
                details={"operation": operation},
            )
        return normalized.payload if isinstance(normalized.payload, dict) else {}

    # ==================== Booking ====================

    def validate(self, request: ShipmentRequest) -> None:
        errors = collect_errors(request, address_limit=ADDRESS_LINE_MAX_LENGTH)
        if request.product_code not in VALID_PRODUCT_CODES:
            errors.append("Product code must be A (Prepaid), D (COD), or I (International)")
        elif request.product_code == settings.BLUEDART_COD_PRODUCT_CODE and not request.is_cod:
            errors.append("COD amount must be > 0 for COD shipments")
        if errors:
            raise ShipmentValidationError(errors, details={"reference": request.reference})

    def build_waybill_payload(self, profile: CarrierProfile, request: ShipmentRequest) -> Dict[str, Any]:
        consignee = request.consignee
        consignor = request.consignor
        package = request.package
        collectable = request.cod_amount if request.product_code == settings.BLUEDART_COD_PRODUCT_CODE else 0
        pickup_date = request.pickup_date or date.today()
        commodity = ", ".join(item.title for item in request.items[:3]) or "Books"

        return {
            "Request": {
                "Consignee": {
                    "ConsigneeName": sanitize_text(consignee.name),
                    "ConsigneeAddress1": sanitize_text(consignee.address),
                    "ConsigneeAddress2": sanitize_text(consignee.address2),
                    "ConsigneeAddress3": sanitize_text(f"{consignee.city} {consignee.state}"),
                    "ConsigneePincode": consignee.pincode,
                    "ConsigneeMobile": phone_digits(consignee.phone),
                    "ConsigneeTelephone": phone_digits(consignee.phone),
                    "ConsigneeEmailID": consignee.email or "",
                },
                "Services": {
                    "ProductCode": request.product_code,
                    "SubProductCode": request.sub_product_code or "",
                    "ProductType": 2,
                    "ActualWeight": package.weight,
                    "VolumetricWeight": round(package.volumetric_weight, 3),
                    "CollectableAmount": collectable,
                    "DeclaredValue": request.declared_value,
                    "Commodity": {"CommodityDetail1": sanitize_text(commodity)},
                    "CreditReferenceNo": request.reference,
                    "InvoiceNo": request.reference,
                    "PickupDate": bluedart_date(pickup_date),
                    "PickupTime": "1600",
                    "PieceCount": package.count,
                    "Dimensions": [{
                        "Length": package.length,
                        "Breadth": package.breadth,
                        "Height": package.height,
                        "Count": package.count,
                    }],
                },
                "Shipper": {
                    "CustomerCode": self.customer_code(profile),
                    "OriginArea": self.area_code(profile),
                    "CustomerName": sanitize_text(consignor.name),
                    "Sender": sanitize_text(consignor.name),
                    "CustomerAddress1": sanitize_text(consignor.address),
                    "CustomerAddress2": sanitize_text(consignor.address2),
                    "CustomerAddress3": sanitize_text(f"{consignor.city} {consignor.state}"),
                    "CustomerPincode": consignor.pincode,
                    "CustomerMobile": phone_digits(consignor.phone),
                    "CustomerTelephone": phone_digits(consignor.phone),
                    "CustomerEmailID": consignor.email or "",
                },
            },
            "Profile": self.profile_block(profile),
        }

    async def create_shipment(self, profile: CarrierProfile, request: ShipmentRequest) -> ShipmentResult:
        self.validate(request)
        payload = self.build_waybill_payload(profile, request)
        result = await self._call("POST", WAYBILL_PATH, profile, "waybill.create", json_body=payload)

        awb = result.get("AWBNo")
        if not awb:
            raise CarrierBusinessError(
                "Blue Dart did not return an AWB number",
                raw=result,
                details={"operation": "waybill.create"},
            )
        logger.info(f"Blue Dart waybill {awb} generated for {request.reference}")
        return ShipmentResult(
            awb_number=str(awb),
            token_number=result.get("TokenNumber"),
            courier_name="Blue Dart",
            raw_response=result,
        )

    # ==================== Tracking ====================

    async def track_shipment(self, profile: CarrierProfile, reference: str) -> TrackingResult:
        payload = {
            "Request": {"AWBNo": reference},
            "Profile": self.profile_block(profile, tracking=True),
        }
        body = await self._call("POST", TRACKING_PATH, profile, "tracking", json_body=payload)

        shipment = pick(body, "ShipmentData.Shipment.0", "Shipment.0") or body
        scans = pick(shipment, "Scans.ScanDetail") or []
        if isinstance(scans, dict):
            scans = [scans]
        events = [
            TrackingEvent(
                status=str(s.get("Scan") or ""),
                location=s.get("ScannedLocation"),
                timestamp=" ".join(filter(None, [s.get("ScanDate"), s.get("ScanTime")])) or None,
            )
            for s in scans
            if isinstance(s, dict)
        ]
        status = shipment.get("Status") if isinstance(shipment, dict) else None
        status_type = shipment.get("StatusType") if isinstance(shipment, dict) else None
        last_update = " ".join(filter(None, [shipment.get("StatusDate"), shipment.get("StatusTime")])) \
            if isinstance(shipment, dict) else ""

        return TrackingResult(
            reference=reference,
            status=str(status) if status else None,
            location=events[0].location if events else None,
            last_update=last_update or (events[0].timestamp if events else None),
            delivered=status_type == "DL" or "DELIVERED" in str(status or "").upper(),
            events=events,
            raw_response=body,
        )

    # ==================== Pickup / Cancel ====================

    async def schedule_pickup(self, profile: CarrierProfile, request: PickupRequest) -> PickupResult:
        consignor = request.consignor
        weight = request.weight or settings.DEFAULT_PACKAGE_WEIGHT_KG
        payload = {
            "Request": {
                "AreaCode": self.area_code(profile),
                "AWBNo": list(request.references),
                "CISDDN": False,
                "ContactPersonName": sanitize_text(consignor.name if consignor else ""),
                "CustomerAddress1": sanitize_text(consignor.address if consignor else ""),
                "CustomerAddress2": sanitize_text(consignor.address2 if consignor else ""),
                "CustomerAddress3": sanitize_text(f"{consignor.city} {consignor.state}" if consignor else ""),
                "CustomerCode": self.customer_code(profile),
                "CustomerName": sanitize_text(consignor.name if consignor else ""),
                "CustomerPincode": consignor.pincode if consignor else "",
                "CustomerTelephone": phone_digits(consignor.phone) if consignor else "",
                "MobileTelNo": phone_digits(consignor.phone) if consignor else "",
                "CustomerEmailID": (consignor.email or "") if consignor else "",
                "DoxNDox": "1",
                "IsForcePickup": False,
                "IsReversePickup": False,
                "NumberofPieces": request.piece_count or len(request.references) or 1,
                "OfficeCloseTime": request.office_close_time,
                "ProductCode": request.product_code or settings.BLUEDART_PREPAID_PRODUCT_CODE,
                "ShipmentPickupDate": bluedart_date(request.pickup_date),
                "ShipmentPickupTime": request.pickup_time,
                "SubProducts": ["E-Tailing"],
                "VolumeWeight": round(request.volumetric_weight, 3) or weight,
                "WeightofShipment": weight,
                "isToPayShipper": False,
            },
            "Profile": self.profile_block(profile),
        }
        result = await self._call("POST", PICKUP_PATH, profile, "pickup.register", json_body=payload)
        token = result.get("TokenNumber")
        return PickupResult(
            confirmation_id=str(token) if token else None,
            scheduled_date=request.pickup_date,
            raw_response=result,
        )

    async def cancel_pickup(self, profile: CarrierProfile, token_number: str, reason: str = "Order cancelled") -> CancelResult:
        payload = {
            "Request": {"CancellationToken": token_number, "CancellationReason": reason},
            "Profile": self.profile_block(profile),
        }
        result = await self._call("POST", CANCEL_PICKUP_PATH, profile, "pickup.cancel", json_body=payload)
        return CancelResult(cancelled=True, message=pick(result, "Status.0.StatusInformation"), raw_response=result)

    async def cancel_shipment(self, profile: CarrierProfile, reference: str) -> CancelResult:
        payload = {
            "Request": {"AWBNo": reference, "CancellationReason": "User Requested"},
            "Profile": self.profile_block(profile),
        }
        result = await self._call("POST", CANCEL_WAYBILL_PATH, profile, "waybill.cancel", json_body=payload)
        message = pick(result, "Status.0.StatusInformation") or (
            result.get("Status") if isinstance(result.get("Status"), str) else None
        )
        return CancelResult(cancelled=True, message=message, raw_response=result)

    # ==================== Documents ====================

    async def generate_label(self, profile: CarrierProfile, references: Sequence[str]) -> DocumentResult:
        if len(references) != 1:
            raise CarrierBusinessError("Blue Dart prints one label per AWB", code="UNSUPPORTED_OPERATION")
        awb = references[0]
        response = await self.http.request(
            "GET",
            PRINT_LABEL_PATH,
            profile,
            "label.print",
            params={"AirwayBillNumber": awb},
            headers={"Accept": "application/pdf"},
        )
        content_type = response.headers.get("content-type", "")
        if "pdf" not in content_type and not response.content.startswith(b"%PDF"):
            body = parse_body(response)
            normalized = self.normalize(body, response.status_code)
            raise CarrierBusinessError(
                normalized.message if not normalized.success else "Blue Dart returned no label document",
                carrier_code=normalized.code,
                raw=body,
                details={"operation": "label.print"},
            )
        return DocumentResult(content=response.content, content_type="application/pdf")

    # ==================== Serviceability ====================

    async def check_pincode(self, profile: CarrierProfile, pincode: str) -> Dict[str, Any]:
        try:
            result = await self._call(
                "GET", LOCATION_FINDER_PATH, profile, "location.finder", params={"Pincode": pincode},
            )
        except CarrierBusinessError as e:
            return {"pincode": pincode, "serviceable": False, "error": e.message}

        return {
            "pincode": pincode,
            "serviceable": True,
            "area": result.get("AreaCode") or result.get("Area") or "",
            "city": result.get("City") or "",
            "state": result.get("State") or "",
            "services": {
                "express": result.get("ExpressAvailable") == "Y",
                "surface": result.get("SurfaceAvailable") == "Y",
                "cod": result.get("CODAvailable") == "Y",
                "pickup": result.get("PickupAvailable") == "Y",
            },
        }

    async def get_transit_time(
        self,
        profile: CarrierProfile,
        from_pincode: str,
        to_pincode: str,
        product_code: Optional[str] = None,
        pickup_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        payload = {
            "Request": {
                "OriginPinCode": from_pincode,
                "DestinationPinCode": to_pincode,
                "ProductCode": product_code or settings.BLUEDART_PREPAID_PRODUCT_CODE,
                "PickupDate": (pickup_date or date.today()).strftime("%d-%b-%Y").upper(),
            },
            "Profile": self.profile_block(profile),
        }
        result = await self._call("POST", TRANSIT_TIME_PATH, profile, "transit.time", json_body=payload)
        return {
            "estimated_days": result.get("EstimatedDays"),
            "delivery_date": result.get("EstimatedDeliveryDate") or result.get("ExpectedDateDelivery"),
        }
