"""
Shipment orchestrator

The single authority for booking, tracking, pickup, cancellation and
carrier documents for an order. It builds the carrier-agnostic
ShipmentRequest from an order, calls the carrier adapter and moves the
order's shipment row through its state machine.

Idempotency: operations on the same (order, provider) are serialized by an
in-process lock, and the booking write itself is a conditional update that
only succeeds while the row has no AWB/shipment id. A second create for a
booked order is reported as skipped, never re-sent to the carrier.
"""
import asyncio
import dataclasses
import json
import logging
import weakref
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bookstore.core.exceptions import (
    OrderNotFoundError,
    ProfileNotFoundError,
    ShipmentNotBookedError,
    ShipmentValidationError,
    ShippingError,
)
from bookstore.models.carrier_profile import CarrierCode, CarrierProfile
from bookstore.models.order import Order
from bookstore.models.shipment import OrderShipment, ShipmentState
from bookstore.modules.shipping.carriers.base import (
    BaseCarrier,
    DocumentResult,
    LineItem,
    Package,
    Party,
    PickupRequest,
    ShipmentRequest,
    TrackingResult,
)
from bookstore.modules.shipping.carriers.bluedart import BlueDartCarrier
from bookstore.modules.shipping.carriers.shiprocket import ShiprocketCarrier
from bookstore.services.credential_store import CredentialStore
from bookstore.services.encryption import sanitize_for_logging
from bookstore.services.order_store import OrderStore
from bookstore.services.shipment_rules import (
    PackageOverride,
    compute_cod_amount,
    resolve_package,
    select_product_code,
)
from bookstore.core.config import settings

logger = logging.getLogger(__name__)

ALREADY_CREATED = "already_created"
ALREADY_CANCELLED = "already_cancelled"


@dataclass
class ShipmentOptions:
    """Per-call booking options."""
    profile_id: Optional[int] = None
    weight: Optional[float] = None
    length: Optional[float] = None
    breadth: Optional[float] = None
    height: Optional[float] = None
    pickup_date: Optional[date] = None
    # Shiprocket: assign an AWB right after the order is created
    assign_awb: bool = False
    courier_id: Optional[int] = None

    @property
    def package_override(self) -> PackageOverride:
        return PackageOverride(self.weight, self.length, self.breadth, self.height)


@dataclass
class ShipmentOutcome:
    order_id: int
    provider: str
    skipped: bool = False
    reason: Optional[str] = None
    awb_number: Optional[str] = None
    shipment_id: Optional[str] = None
    status: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "order_id": self.order_id,
            "provider": self.provider,
            "awb_number": self.awb_number,
            "shipment_id": self.shipment_id,
            "status": self.status,
        }
        if self.skipped:
            result["skipped"] = True
            result["reason"] = self.reason
        result.update(self.data)
        return result


@dataclass
class PickupOutcome:
    confirmation_id: Optional[str]
    scheduled_date: date
    order_ids: List[int]
    skipped: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confirmation_id": self.confirmation_id,
            "scheduled_date": self.scheduled_date.isoformat(),
            "order_ids": self.order_ids,
            "skipped": self.skipped,
        }


def _jsonable(value: Any) -> Any:
    """Round-trip through JSON so dates/Decimals fit a JSON column."""
    if value is None:
        return None
    if dataclasses.is_dataclass(value):
        value = dataclasses.asdict(value)
    return json.loads(json.dumps(value, default=str))


def request_summary(request: Optional[ShipmentRequest]) -> Optional[Dict[str, Any]]:
    """What gets written to the shipment log: no addresses, phones or credentials."""
    if request is None:
        return None
    package = request.package
    return {
        "reference": request.reference,
        "origin_pincode": request.consignor.pincode,
        "destination_pincode": request.consignee.pincode,
        "weight": package.weight,
        "dimensions": [package.length, package.breadth, package.height],
        "chargeable_weight": package.chargeable_weight,
        "declared_value": request.declared_value,
        "cod_amount": request.cod_amount,
        "product_code": request.product_code,
        "items": len(request.items),
    }


def pickup_summary(request: PickupRequest) -> Dict[str, Any]:
    return {
        "references": list(request.references),
        "pickup_date": request.pickup_date.isoformat(),
        "weight": request.weight,
        "piece_count": request.piece_count,
        "product_code": request.product_code,
    }


def consignor_from_profile(profile: CarrierProfile) -> Party:
    return Party(
        name=profile.consignor_name or profile.label,
        phone=profile.consignor_phone or "",
        address=profile.consignor_address or "",
        address2=profile.consignor_address2,
        city=profile.consignor_city or "",
        state=profile.consignor_state or "",
        pincode=profile.consignor_pincode or "",
        email=profile.consignor_email,
        customer_code=profile.customer_code,
        area_code=profile.area_code,
    )


def consignee_from_order(order: Order) -> Party:
    return Party(
        name=(order.shipping_name or "").strip(),
        phone=order.shipping_phone or "",
        address=order.shipping_address or "",
        address2=order.shipping_address2,
        city=order.shipping_city or "",
        state=order.shipping_state or "",
        pincode=(order.shipping_pincode or "").strip(),
        email=order.shipping_email,
        country=order.shipping_country or "India",
    )


def booked_package(
    shipment: Optional[OrderShipment],
    order: Order,
    profile: Optional[CarrierProfile] = None,
) -> Package:
    """The package recorded at booking time, else what the order resolves to now."""
    if shipment is not None and shipment.package:
        return Package(**shipment.package)
    return resolve_package(order, profile)


def line_items_from_order(order: Order) -> List[LineItem]:
    items = []
    for raw in order.items or []:
        sku = raw.get("sku") or str(raw.get("book_id") or "SKU")
        items.append(LineItem(
            sku=str(sku),
            title=str(raw.get("title") or raw.get("name") or "Item"),
            qty=int(raw.get("qty") or 1),
            unit_price=float(raw.get("unit_price") or raw.get("price") or 0),
            tax=float(raw.get("tax") or 0),
        ))
    return items


class ShipmentOrchestrator:
    def __init__(
        self,
        order_store: OrderStore,
        credential_store: CredentialStore,
        carriers: Dict[CarrierCode, BaseCarrier],
    ):
        self.orders = order_store
        self.credentials = credential_store
        self.carriers = carriers
        # Entries disappear once no caller holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[Tuple[int, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock(self, order_id: int, provider: CarrierCode) -> asyncio.Lock:
        key = (order_id, provider.value)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def carrier(self, provider: CarrierCode) -> BaseCarrier:
        carrier = self.carriers.get(provider)
        if carrier is None:
            raise ShippingError(f"Carrier {provider.value} is not available", code="CARRIER_NOT_FOUND")
        return carrier

    async def close(self):
        for carrier in self.carriers.values():
            await carrier.close()

    # ==================== Request building ====================

    def build_request(
        self,
        order: Order,
        profile: CarrierProfile,
        options: Optional[ShipmentOptions] = None,
    ) -> ShipmentRequest:
        options = options or ShipmentOptions()
        cod_amount = compute_cod_amount(order)
        declared_value = round(float(order.amount or 0), 2)

        return ShipmentRequest(
            reference=order.reference,
            consignor=consignor_from_profile(profile),
            consignee=consignee_from_order(order),
            package=resolve_package(order, profile, options.package_override),
            declared_value=declared_value,
            cod_amount=cod_amount,
            product_code=select_product_code(cod_amount),
            sub_product_code=settings.BLUEDART_SUB_PRODUCT_CODE,
            items=line_items_from_order(order),
            order_date=order.created_at,
            pickup_date=options.pickup_date,
            pickup_location=profile.pickup_location,
        )

    async def profile_for(
        self,
        provider: CarrierCode,
        owner_id: Optional[int],
        shipment: Optional[OrderShipment] = None,
    ) -> CarrierProfile:
        """Profile that booked the shipment if it still exists, else the active one."""
        if shipment is not None and shipment.profile_id:
            try:
                return await self.credentials.get_profile(shipment.profile_id)
            except ProfileNotFoundError:
                logger.warning(
                    f"Profile {shipment.profile_id} of order {shipment.order_id} is gone, "
                    f"using the active {provider.value} profile"
                )
        return await self.credentials.get_active_profile(owner_id, provider)

    async def _booked_shipment(self, order_id: int, provider: CarrierCode) -> OrderShipment:
        shipment = await self.orders.get_shipment(order_id, provider.value)
        if shipment is None or not shipment.is_booked:
            await self.orders.find_by_id(order_id)
            raise ShipmentNotBookedError(
                f"Order {order_id} has no {provider.value} shipment booked yet",
                details={"order_id": order_id, "provider": provider.value},
            )
        return shipment

    # ==================== Create ====================

    async def create_shipment(
        self,
        order_id: int,
        provider: CarrierCode,
        options: Optional[ShipmentOptions] = None,
        owner_id: Optional[int] = None,
    ) -> ShipmentOutcome:
        options = options or ShipmentOptions()
        carrier = self.carrier(provider)

        async with self.lock(order_id, provider):
            order = await self.orders.find_by_id(order_id)
            shipment = await self.orders.ensure_shipment(order_id, provider.value)

            if shipment.booking_reference:
                logger.info(f"Order {order_id} already booked with {provider.value}, skipping")
                return ShipmentOutcome(
                    order_id=order_id,
                    provider=provider.value,
                    skipped=True,
                    reason=ALREADY_CREATED,
                    awb_number=shipment.awb_number,
                    shipment_id=shipment.shipment_id,
                    status=shipment.status,
                )

            request = None
            try:
                profile = await self.credentials.get_active_profile(owner_id, provider, options.profile_id)
                request = self.build_request(order, profile, options)
                carrier.validate(request)
                result = await carrier.create_shipment(profile, request)
            except ShippingError as e:
                await self._record_failure(shipment, e, request)
                raise

            changes = shipment.mark_booked(
                result.awb_number,
                result.shipment_id,
                raw_response=_jsonable(result.raw_response),
                carrier_order_id=result.carrier_order_id,
                token_number=result.token_number,
                courier_name=result.courier_name,
                profile_id=profile.id,
                profile_snapshot=profile.snapshot(),
                package=dataclasses.asdict(request.package),
            )
            claimed = await self.orders.claim_booking(shipment.id, changes)
            await self.orders.append_log(
                order_id, provider.value, "waybill.create",
                request=request_summary(request), response=_jsonable(result.raw_response),
            )
            if not claimed:
                logger.warning(
                    f"Order {order_id} was booked with {provider.value} by a concurrent request; "
                    f"discarding reference {result.awb_number or result.shipment_id}"
                )
                current = await self.orders.get_shipment(order_id, provider.value)
                return ShipmentOutcome(
                    order_id=order_id,
                    provider=provider.value,
                    skipped=True,
                    reason=ALREADY_CREATED,
                    awb_number=current.awb_number if current else None,
                    shipment_id=current.shipment_id if current else None,
                )

            await self.orders.set_provider(order_id, provider.value)
            logger.info(
                f"Booked order {order_id} with {provider.value}: "
                f"awb={result.awb_number} shipment={result.shipment_id}"
            )

            outcome = ShipmentOutcome(
                order_id=order_id,
                provider=provider.value,
                awb_number=result.awb_number,
                shipment_id=result.shipment_id,
                status=shipment.status,
            )

            if options.assign_awb and provider == CarrierCode.SHIPROCKET and not result.awb_number:
                try:
                    outcome.awb_number = await self._assign_awb(shipment, profile, options.courier_id)
                except ShippingError as e:
                    # The booking stands; the AWB can be assigned later
                    outcome.data["awb_error"] = e.message

            return outcome

    async def _record_failure(
        self,
        shipment: OrderShipment,
        error: ShippingError,
        request: Optional[ShipmentRequest],
    ) -> None:
        changes = shipment.mark_failed(_jsonable(error.to_dict()))
        await self.orders.update_shipment(shipment.id, changes, only_if_unbooked=True)
        await self.orders.append_log(
            shipment.order_id, shipment.provider, "waybill.create",
            request=request_summary(request),
            response=_jsonable(error.details.get("raw")),
            error=_jsonable(error.to_dict()),
        )
        logger.error(
            f"Booking order {shipment.order_id} with {shipment.provider} failed: "
            f"{sanitize_for_logging(error.message)}"
        )

    # ==================== AWB assignment (Shiprocket) ====================

    async def assign_awb(
        self,
        order_id: int,
        courier_id: Optional[int] = None,
        owner_id: Optional[int] = None,
    ) -> ShipmentOutcome:
        provider = CarrierCode.SHIPROCKET
        async with self.lock(order_id, provider):
            shipment = await self._booked_shipment(order_id, provider)
            if shipment.awb_number:
                return ShipmentOutcome(
                    order_id=order_id, provider=provider.value, skipped=True,
                    reason="awb_already_assigned", awb_number=shipment.awb_number,
                    shipment_id=shipment.shipment_id, status=shipment.status,
                )
            profile = await self.profile_for(provider, owner_id, shipment)
            awb = await self._assign_awb(shipment, profile, courier_id)
            return ShipmentOutcome(
                order_id=order_id, provider=provider.value, awb_number=awb,
                shipment_id=shipment.shipment_id, status=shipment.status,
            )

    async def _assign_awb(
        self,
        shipment: OrderShipment,
        profile: CarrierProfile,
        courier_id: Optional[int],
    ) -> str:
        carrier = self.carrier(CarrierCode.SHIPROCKET)
        if not isinstance(carrier, ShiprocketCarrier):
            raise ShippingError("AWB assignment needs the Shiprocket adapter", code="UNSUPPORTED_OPERATION")
        try:
            result = await carrier.assign_awb(profile, shipment.shipment_id, courier_id)
        except ShippingError as e:
            await self.orders.append_log(
                shipment.order_id, shipment.provider, "courier.assign.awb",
                request={"shipment_id": shipment.shipment_id, "courier_id": courier_id},
                error=_jsonable(e.to_dict()),
            )
            raise

        await self.orders.update_shipment(
            shipment.id, {"awb_number": result.awb_number, "courier_name": result.courier_name},
        )
        shipment.awb_number = result.awb_number
        shipment.courier_name = result.courier_name
        await self.orders.append_log(
            shipment.order_id, shipment.provider, "courier.assign.awb",
            request={"shipment_id": shipment.shipment_id, "courier_id": courier_id},
            response=_jsonable(result.raw_response),
        )
        return result.awb_number

    # ==================== Tracking ====================

    async def track_shipment(
        self,
        provider: CarrierCode,
        reference: str,
        owner_id: Optional[int] = None,
    ) -> TrackingResult:
        """Track by AWB/shipment id and persist the result onto the matching order."""
        carrier = self.carrier(provider)
        shipment = await self.orders.find_shipment_by_reference(provider.value, reference)
        profile = await self.profile_for(provider, owner_id, shipment)

        result = await carrier.track_shipment(profile, reference)

        if shipment is not None:
            async with self.lock(shipment.order_id, provider):
                # A cancel may have landed while the carrier call was in flight
                current = await self.orders.get_shipment(shipment.order_id, provider.value)
                if current is not None and current.is_booked:
                    changes = current.record_tracking(result.status, _jsonable(result.to_dict()))
                    await self.orders.update_shipment(current.id, changes)
                    await self.orders.append_log(
                        current.order_id, provider.value, "tracking",
                        request={"reference": reference}, response=_jsonable(result.raw_response),
                    )
        return result

    async def track_order(
        self,
        order_id: int,
        provider: CarrierCode,
        owner_id: Optional[int] = None,
    ) -> ShipmentOutcome:
        shipment = await self._booked_shipment(order_id, provider)
        reference = self.carrier(provider).reference_for(shipment, "track")
        if not reference:
            raise ShipmentNotBookedError(
                f"Order {order_id} has no AWB assigned yet",
                details={"order_id": order_id, "provider": provider.value},
            )
        result = await self.track_shipment(provider, reference, owner_id)
        return ShipmentOutcome(
            order_id=order_id,
            provider=provider.value,
            awb_number=shipment.awb_number,
            shipment_id=shipment.shipment_id,
            status=result.status,
            data={"tracking": result.to_dict()},
        )

    # ==================== Pickup ====================

    async def schedule_pickup(
        self,
        order_ids: Sequence[int],
        pickup_date: date,
        provider: CarrierCode,
        owner_id: Optional[int] = None,
        profile_id: Optional[int] = None,
    ) -> PickupOutcome:
        """Register one carrier pickup covering every booked order in order_ids."""
        if pickup_date < date.today():
            raise ShipmentValidationError(["Pickup date must be today or in future"])

        carrier = self.carrier(provider)
        shipments = {s.order_id: s for s in await self.orders.list_shipments(order_ids, provider.value)}
        orders = {o.id: o for o in await self.orders.find(order_ids=order_ids)}
        profile = await self.credentials.get_active_profile(owner_id, provider, profile_id)

        included: List[OrderShipment] = []
        skipped: List[Dict[str, Any]] = []
        weight = volumetric = 0.0
        cod = False
        for order_id in dict.fromkeys(order_ids):
            shipment = shipments.get(order_id)
            reference = carrier.reference_for(shipment, "pickup") if shipment and shipment.is_booked else None
            if not reference:
                skipped.append({"order_id": order_id, "reason": "not_booked"})
                continue
            included.append(shipment)
            order = orders.get(order_id)
            if order is not None:
                package = booked_package(shipment, order, profile)
                weight += package.chargeable_weight
                volumetric += package.volumetric_weight
                cod = cod or compute_cod_amount(order) > 0

        if not included:
            raise ShipmentNotBookedError(
                "None of the selected orders has a booked shipment",
                details={"order_ids": list(order_ids)},
            )

        request = PickupRequest(
            references=[carrier.reference_for(s, "pickup") for s in included],
            pickup_date=pickup_date,
            consignor=consignor_from_profile(profile),
            weight=round(weight, 3),
            volumetric_weight=round(volumetric, 3),
            piece_count=len(included),
            product_code=select_product_code(1 if cod else 0),
            is_cod=cod,
        )
        try:
            result = await carrier.schedule_pickup(profile, request)
        except ShippingError as e:
            for shipment in included:
                await self.orders.append_log(
                    shipment.order_id, provider.value, "pickup.register",
                    request=pickup_summary(request), error=_jsonable(e.to_dict()),
                )
            raise

        scheduled_at = datetime.combine(result.scheduled_date, time.min, tzinfo=timezone.utc)
        for shipment in included:
            async with self.lock(shipment.order_id, provider):
                changes = shipment.record_pickup(scheduled_at, result.confirmation_id)
                await self.orders.update_shipment(shipment.id, changes)
                await self.orders.append_log(
                    shipment.order_id, provider.value, "pickup.register",
                    request=pickup_summary(request), response=_jsonable(result.raw_response),
                )

        logger.info(
            f"Pickup {result.confirmation_id} with {provider.value} on {pickup_date} "
            f"for {len(included)} orders"
        )
        return PickupOutcome(
            confirmation_id=result.confirmation_id,
            scheduled_date=result.scheduled_date,
            order_ids=[s.order_id for s in included],
            skipped=skipped,
        )

    # ==================== Cancel ====================

    async def cancel_shipment(
        self,
        order_id: int,
        provider: CarrierCode,
        owner_id: Optional[int] = None,
    ) -> ShipmentOutcome:
        carrier = self.carrier(provider)
        async with self.lock(order_id, provider):
            shipment = await self.orders.get_shipment(order_id, provider.value)
            if shipment is not None and shipment.state == ShipmentState.CANCELLED.value:
                return ShipmentOutcome(
                    order_id=order_id, provider=provider.value, skipped=True,
                    reason=ALREADY_CANCELLED, awb_number=shipment.awb_number,
                    shipment_id=shipment.shipment_id, status=shipment.status,
                )
            shipment = await self._booked_shipment(order_id, provider)
            profile = await self.profile_for(provider, owner_id, shipment)
            reference = carrier.reference_for(shipment, "cancel")

            try:
                result = await carrier.cancel_shipment(profile, reference)
            except ShippingError as e:
                await self.orders.append_log(
                    order_id, provider.value, "waybill.cancel",
                    request={"reference": reference}, error=_jsonable(e.to_dict()),
                )
                raise

            changes = shipment.mark_cancelled(_jsonable(result.raw_response))
            await self.orders.update_shipment(shipment.id, changes)
            await self.orders.append_log(
                order_id, provider.value, "waybill.cancel",
                request={"reference": reference}, response=_jsonable(result.raw_response),
            )
            if shipment.pickup_confirmation and hasattr(carrier, "cancel_pickup"):
                await self._cancel_pickup(carrier, profile, shipment)
            logger.info(f"Cancelled {provider.value} shipment {reference} for order {order_id}")
            return ShipmentOutcome(
                order_id=order_id,
                provider=provider.value,
                awb_number=shipment.awb_number,
                shipment_id=shipment.shipment_id,
                status=shipment.status,
            )

    async def _cancel_pickup(self, carrier: BaseCarrier, profile: CarrierProfile, shipment: OrderShipment):
        # The waybill is already cancelled at this point; a failed pickup
        # cancellation is logged against the order instead of undoing that.
        token = shipment.pickup_confirmation
        try:
            result = await carrier.cancel_pickup(profile, token)
        except ShippingError as e:
            logger.warning(f"Pickup {token} for order {shipment.order_id} could not be cancelled: {e.message}")
            await self.orders.append_log(
                shipment.order_id, carrier.carrier_code.value, "pickup.cancel",
                request={"token": token}, error=_jsonable(e.to_dict()),
            )
            return
        await self.orders.append_log(
            shipment.order_id, carrier.carrier_code.value, "pickup.cancel",
            request={"token": token}, response=_jsonable(result.raw_response),
        )

    # ==================== Documents ====================

    async def fetch_carrier_label(
        self,
        shipment: OrderShipment,
        provider: CarrierCode,
        owner_id: Optional[int] = None,
    ) -> DocumentResult:
        carrier = self.carrier(provider)
        profile = await self.profile_for(provider, owner_id, shipment)
        reference = carrier.reference_for(shipment, "label")
        return await carrier.generate_label(profile, [reference])

    async def generate_documents(
        self,
        kind: str,
        order_ids: Sequence[int],
        provider: CarrierCode,
        owner_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Carrier-hosted label, invoice or manifest covering several orders."""
        if kind not in ("label", "invoice", "manifest"):
            raise ShipmentValidationError([f"Unknown document type '{kind}'"])

        carrier = self.carrier(provider)
        shipments = [s for s in await self.orders.list_shipments(order_ids, provider.value) if s.is_booked]
        if not shipments:
            raise ShipmentNotBookedError(
                "None of the selected orders has a booked shipment",
                details={"order_ids": list(order_ids)},
            )
        profile = await self.profile_for(provider, owner_id, shipments[0])
        references = [carrier.reference_for(s, kind) for s in shipments]

        generator = {
            "label": carrier.generate_label,
            "invoice": carrier.generate_invoice,
            "manifest": carrier.generate_manifest,
        }[kind]
        document = await generator(profile, references)
        if not document.url:
            raise ShippingError(
                f"{carrier.carrier_name} returned the {kind} as a file; use the per-order label endpoint",
                code="UNSUPPORTED_OPERATION",
            )

        for shipment in shipments:
            if kind == "label":
                changes = shipment.record_label(document.url)
            else:
                changes = {f"{kind}_url": document.url}
            await self.orders.update_shipment(shipment.id, changes)
            await self.orders.append_log(
                shipment.order_id, provider.value, f"{kind}.generate",
                request={"references": references}, response=_jsonable(document.raw_response),
            )

        return {"url": document.url, "order_ids": [s.order_id for s in shipments]}

    # ==================== Serviceability ====================

    async def check_serviceability(
        self,
        provider: CarrierCode,
        delivery_pincode: str,
        pickup_pincode: Optional[str] = None,
        weight: Optional[float] = None,
        cod: bool = False,
        owner_id: Optional[int] = None,
        profile_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        carrier = self.carrier(provider)
        profile = await self.credentials.get_active_profile(owner_id, provider, profile_id)
        pickup_pincode = pickup_pincode or profile.consignor_pincode
        result: Dict[str, Any] = {
            "provider": provider,
            "pickup_pincode": pickup_pincode,
            "delivery_pincode": delivery_pincode,
            "serviceable": False,
            "couriers": [],
            "details": {},
        }

        if isinstance(carrier, ShiprocketCarrier):
            if not pickup_pincode:
                raise ShipmentValidationError(["Pickup pincode is required"])
            couriers = await carrier.check_serviceability(
                profile,
                pickup_pincode,
                delivery_pincode,
                weight or settings.DEFAULT_PACKAGE_WEIGHT_KG,
                cod,
            )
            result["couriers"] = couriers
            result["serviceable"] = bool(couriers)
            return result

        if isinstance(carrier, BlueDartCarrier):
            location = await carrier.check_pincode(profile, delivery_pincode)
            result["serviceable"] = bool(location.get("serviceable")) and (
                not cod or location.get("services", {}).get("cod", False)
            )
            result["details"] = location
            if result["serviceable"] and pickup_pincode:
                result["details"]["transit"] = await carrier.get_transit_time(
                    profile,
                    pickup_pincode,
                    delivery_pincode,
                    product_code=select_product_code(1 if cod else 0),
                )
            return result

        raise ShippingError(
            f"{carrier.carrier_name} has no serviceability check",
            code="UNSUPPORTED_OPERATION",
        )
