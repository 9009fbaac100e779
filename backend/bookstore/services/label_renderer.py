"""
Shipping label service

Returns the label for a booked shipment, generating it once:

1. A label already recorded on the shipment is returned as-is.
2. Otherwise the carrier's own label is fetched. A hosted URL is stored
   directly; PDF bytes are uploaded to object storage.
3. If the carrier has no label, a 4x6 label is rendered locally with Pillow
   and a Code128 barcode of the AWB.

Uploads fall back to LABEL_LOCAL_DIR when S3 is not configured or fails.
"""
import io
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from barcode import Code128
from barcode.writer import ImageWriter
from PIL import Image, ImageDraw, ImageFont

from bookstore.core.config import settings
from bookstore.core.exceptions import (
    LabelNotFoundError,
    ProfileNotFoundError,
    ShipmentNotBookedError,
    ShippingError,
)
from bookstore.models.carrier_profile import CarrierCode
from bookstore.models.order import Order
from bookstore.models.shipment import OrderShipment
from bookstore.modules.shipping.carriers.base import Package, Party
from bookstore.services.order_store import OrderStore
from bookstore.services.shipment_orchestrator import (
    ShipmentOrchestrator,
    booked_package,
    consignee_from_order,
    consignor_from_profile,
    line_items_from_order,
)
from bookstore.services.shipment_rules import compute_cod_amount, resolve_package
from bookstore.services.storage import StorageService

logger = logging.getLogger(__name__)

# 4x6 inch at 150 dpi
LABEL_DPI = 150
LABEL_WIDTH = 4 * LABEL_DPI
LABEL_HEIGHT = 6 * LABEL_DPI
MARGIN = 20
MAX_ITEMS = 2
TITLE_MAX_LENGTH = 28

BarcodeFactory = Callable[[str], Image.Image]


def code128_image(value: str) -> Image.Image:
    """Code128 barcode of value as a PIL image, without the human-readable line."""
    return Code128(value, writer=ImageWriter()).render(
        writer_options={"module_height": 18.0, "quiet_zone": 2.0, "write_text": False}
    )


def _font(size: int):
    return ImageFont.load_default(size=size)


def _truncate(text: str, length: int) -> str:
    text = (text or "").strip()
    return text if len(text) <= length else text[: length - 3] + "..."


@dataclass
class RenderedLabel:
    pdf: bytes
    lines: List[str] = field(default_factory=list)
    barcode_ok: bool = True


def _party_lines(party: Party) -> List[str]:
    lines = [party.name, party.address]
    if party.address2:
        lines.append(party.address2)
    lines.append(f"{party.city}, {party.state} - {party.pincode}")
    if party.phone:
        lines.append(f"Ph: {party.phone}")
    return [line for line in lines if line]


def render_label(
    awb: str,
    sender: Party,
    recipient: Party,
    order: Order,
    provider: str,
    barcode_factory: Optional[BarcodeFactory] = None,
    package: Optional[Package] = None,
) -> RenderedLabel:
    """Draw a 4x6 label and return it as a single-page PDF."""
    barcode_factory = barcode_factory or code128_image
    image = Image.new("RGB", (LABEL_WIDTH, LABEL_HEIGHT), "white")
    draw = ImageDraw.Draw(image)
    lines: List[str] = []
    small, regular, large = _font(16), _font(20), _font(34)

    def text(position, value, font=regular):
        draw.text(position, value, fill="black", font=font)
        lines.append(value)

    y = MARGIN
    text((MARGIN, y), f"{provider.upper()}  |  Order {order.reference}", regular)
    y += 34
    draw.line((MARGIN, y, LABEL_WIDTH - MARGIN, y), fill="black", width=2)
    y += 10

    # Barcode
    barcode_ok = True
    try:
        barcode = barcode_factory(awb)
        barcode.thumbnail((LABEL_WIDTH - 2 * MARGIN, 150))
        image.paste(barcode, ((LABEL_WIDTH - barcode.width) // 2, y))
        y += barcode.height + 6
        text(((LABEL_WIDTH - draw.textlength(awb, font=regular)) // 2, y), awb, regular)
        y += 30
    except Exception as e:
        barcode_ok = False
        logger.warning(f"Barcode generation failed for AWB {awb}, printing text instead: {e}")
        text((MARGIN, y + 20), f"AWB: {awb}", large)
        y += 90

    draw.line((MARGIN, y, LABEL_WIDTH - MARGIN, y), fill="black", width=2)
    y += 10

    # Recipient
    text((MARGIN, y), "SHIP TO:", small)
    y += 22
    for line in _party_lines(recipient):
        text((MARGIN, y), _truncate(line, 44), regular)
        y += 26

    # COD / prepaid callout
    cod_amount = compute_cod_amount(order)
    box_top = y + 6
    draw.rectangle((MARGIN, box_top, LABEL_WIDTH - MARGIN, box_top + 56), outline="black", width=3)
    callout = f"COD: INR {cod_amount:.2f}" if cod_amount > 0 else "PREPAID"
    text((MARGIN + 14, box_top + 10), callout, large)
    y = box_top + 70

    # Sender
    text((MARGIN, y), "FROM:", small)
    y += 22
    for line in _party_lines(sender):
        text((MARGIN, y), _truncate(line, 52), small)
        y += 20

    y += 8
    draw.line((MARGIN, y, LABEL_WIDTH - MARGIN, y), fill="black", width=1)
    y += 8

    # Contents
    items = line_items_from_order(order)
    text((MARGIN, y), "CONTENTS:", small)
    y += 22
    for item in items[:MAX_ITEMS]:
        text((MARGIN, y), f"{item.sku}  {_truncate(item.title, TITLE_MAX_LENGTH)}  x{item.qty}", small)
        y += 20
    if len(items) > MAX_ITEMS:
        text((MARGIN, y), f"+{len(items) - MAX_ITEMS} more item(s)", small)

    # Footer
    package = package or resolve_package(order)
    footer_y = LABEL_HEIGHT - MARGIN - 44
    draw.line((MARGIN, footer_y - 8, LABEL_WIDTH - MARGIN, footer_y - 8), fill="black", width=1)
    text((MARGIN, footer_y), f"Weight: {package.chargeable_weight:.2f} kg   Value: INR {float(order.amount or 0):.2f}", small)
    text(
        (MARGIN, footer_y + 22),
        f"Dims: {package.length:g} x {package.breadth:g} x {package.height:g} cm",
        small,
    )

    buffer = io.BytesIO()
    image.save(buffer, format="PDF", resolution=float(LABEL_DPI))
    return RenderedLabel(pdf=buffer.getvalue(), lines=lines, barcode_ok=barcode_ok)


class LabelRenderer:
    def __init__(
        self,
        order_store: OrderStore,
        orchestrator: ShipmentOrchestrator,
        storage: Optional[StorageService] = None,
        local_dir: Optional[str] = None,
        barcode_factory: Optional[BarcodeFactory] = None,
    ):
        self.orders = order_store
        self.orchestrator = orchestrator
        self.storage = storage or StorageService()
        self.local_dir = local_dir or settings.LABEL_LOCAL_DIR
        self.barcode_factory = barcode_factory

    def _local_path(self, file_name: str) -> str:
        return os.path.join(self.local_dir, file_name)

    async def _shipment(self, order_id: int, provider: CarrierCode) -> OrderShipment:
        shipment = await self.orders.get_shipment(order_id, provider.value)
        if shipment is None or not shipment.booking_reference:
            await self.orders.find_by_id(order_id)
            raise ShipmentNotBookedError(
                f"Order {order_id} has no {provider.value} shipment booked yet",
                details={"order_id": order_id, "provider": provider.value},
            )
        return shipment

    def _existing(self, shipment: OrderShipment) -> Optional[Dict[str, Any]]:
        if shipment.label_url:
            return {"url": shipment.label_url, "path": None, "file_name": shipment.label_file_name}
        if shipment.label_file_name:
            path = self._local_path(shipment.label_file_name)
            if os.path.exists(path):
                return {"url": None, "path": path, "file_name": shipment.label_file_name}
        return None

    async def get_label(self, order_id: int, provider: CarrierCode) -> Dict[str, Any]:
        """Previously generated label. Never generates."""
        shipment = await self._shipment(order_id, provider)
        existing = self._existing(shipment)
        if existing is None:
            raise LabelNotFoundError(
                f"No label has been generated for order {order_id}",
                details={"order_id": order_id, "provider": provider.value},
            )
        return existing

    async def get_or_generate_label(
        self,
        order_id: int,
        provider: CarrierCode,
        owner_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        async with self.orchestrator.lock(order_id, provider):
            shipment = await self._shipment(order_id, provider)
            existing = self._existing(shipment)
            if existing is not None:
                return existing

            order = await self.orders.find_by_id(order_id)
            file_name = f"label_{order.reference}_{provider.value}.pdf"
            source = "carrier"
            url = path = None

            document = None
            try:
                document = await self.orchestrator.fetch_carrier_label(shipment, provider, owner_id)
            except ShippingError as e:
                logger.warning(f"Carrier label unavailable for order {order_id}: {e.message}")

            if document is not None and document.url:
                url, file_name = document.url, None
            else:
                if document is not None and document.content:
                    content = document.content
                else:
                    source = "generated"
                    rendered = await self._render(order, shipment, provider, owner_id)
                    content = rendered.pdf
                url, path = await self._store(content, file_name)

            changes = shipment.record_label(url, file_name)
            await self.orders.update_shipment(shipment.id, changes)
            await self.orders.append_log(
                order_id, provider.value, "label.generate",
                request={"reference": shipment.booking_reference},
                response={"source": source, "url": url, "file_name": file_name},
            )
            logger.info(f"Label for order {order_id} ({provider.value}) from {source}")
            return {"url": url, "path": path, "file_name": file_name}

    async def _render(
        self,
        order: Order,
        shipment: OrderShipment,
        provider: CarrierCode,
        owner_id: Optional[int],
    ):
        profile = None
        try:
            profile = await self.orchestrator.profile_for(provider, owner_id, shipment)
            sender = consignor_from_profile(profile)
        except ProfileNotFoundError:
            snapshot = shipment.profile_snapshot or {}
            sender = Party(
                name=snapshot.get("consignor_name") or snapshot.get("label") or "",
                phone="",
                address="",
                city=snapshot.get("consignor_city") or "",
                state="",
                pincode=snapshot.get("consignor_pincode") or "",
            )
        return render_label(
            shipment.booking_reference,
            sender,
            consignee_from_order(order),
            order,
            provider.value,
            barcode_factory=self.barcode_factory,
            package=booked_package(shipment, order, profile),
        )

    async def _store(self, content: bytes, file_name: str):
        """Upload to object storage, else write under the local label dir."""
        upload = await self.storage.upload_buffer(content, file_name, settings.LABEL_STORAGE_FOLDER)
        if upload.success:
            return upload.url, None

        logger.info(f"Storing label {file_name} locally: {upload.error}")
        os.makedirs(self.local_dir, exist_ok=True)
        path = self._local_path(file_name)
        with open(path, "wb") as f:
            f.write(content)
        return None, path
