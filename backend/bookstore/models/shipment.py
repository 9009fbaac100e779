"""
Order shipment models

OrderShipment is the per-(order, provider) shipment state. It is only ever
changed through its transition methods, each of which checks the current
state, applies the change and returns the columns it touched so the store can
persist exactly those fields.

    NONE ──create──> BOOKED ──cancel──> CANCELLED
      │                 │
      └──> FAILED ──────┘ (retry allowed)
    BOOKED ──track/pickup──> BOOKED
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from sqlalchemy import (
    Column, Integer, String, DateTime,
    Text, JSON, ForeignKey, Index, UniqueConstraint
)
import enum

from bookstore.core.database import Base
from bookstore.core.exceptions import InvalidTransitionError


class ShipmentState(str, enum.Enum):
    NONE = "none"
    BOOKED = "booked"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LabelStatus(str, enum.Enum):
    NONE = "none"
    GENERATED = "generated"
    FAILED = "failed"


class OrderShipment(Base):
    __tablename__ = "order_shipments"
    __table_args__ = (
        UniqueConstraint("order_id", "provider", name="uq_order_shipments_order_provider"),
        Index("ix_order_shipments_awb", "provider", "awb_number"),
        Index("ix_order_shipments_shipment_id", "provider", "shipment_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    provider = Column(String(20), nullable=False)
    profile_id = Column(Integer, nullable=True)
    profile_snapshot = Column(JSON, nullable=True)

    state = Column(String(20), nullable=False, default=ShipmentState.NONE.value)

    # Carrier identifiers
    awb_number = Column(String(50), nullable=True)
    shipment_id = Column(String(50), nullable=True)
    carrier_order_id = Column(String(50), nullable=True)
    token_number = Column(String(50), nullable=True)
    courier_name = Column(String(100), nullable=True)
    # Weight and dimensions sent with the booking
    package = Column(JSON, nullable=True)

    # Carrier-reported status text ("Booked", "In Transit", ...)
    status = Column(String(100), nullable=True)
    create_status = Column(String(20), nullable=True)
    create_error = Column(JSON, nullable=True)
    raw_response = Column(JSON, nullable=True)
    booked_at = Column(DateTime(timezone=True), nullable=True)

    # Documents
    label_url = Column(Text, nullable=True)
    label_file_name = Column(String(255), nullable=True)
    label_status = Column(String(20), nullable=False, default=LabelStatus.NONE.value)
    label_generated_at = Column(DateTime(timezone=True), nullable=True)
    invoice_url = Column(Text, nullable=True)
    manifest_url = Column(Text, nullable=True)

    # Tracking / pickup / cancel
    last_tracking = Column(JSON, nullable=True)
    tracking_updated_at = Column(DateTime(timezone=True), nullable=True)
    pickup_scheduled_at = Column(DateTime(timezone=True), nullable=True)
    pickup_confirmation = Column(String(100), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_response = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def booking_reference(self) -> Optional[str]:
        """AWB if the carrier issued one, else the carrier shipment id."""
        return self.awb_number or self.shipment_id or None

    @property
    def is_booked(self) -> bool:
        return self.state == ShipmentState.BOOKED.value

    def _require(self, action: str, *allowed: ShipmentState) -> None:
        if self.state not in {s.value for s in allowed}:
            raise InvalidTransitionError(
                f"Cannot {action} shipment for order {self.order_id} in state '{self.state}'",
                details={"order_id": self.order_id, "provider": self.provider, "state": self.state},
            )

    def _apply(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in changes.items():
            setattr(self, key, value)
        return changes

    # ==================== Transitions ====================

    def mark_booked(
        self,
        awb_number: Optional[str],
        shipment_id: Optional[str] = None,
        raw_response: Any = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        self._require("book", ShipmentState.NONE, ShipmentState.FAILED)
        if not (awb_number or shipment_id):
            raise InvalidTransitionError(
                "A booked shipment needs an AWB number or shipment id",
                details={"order_id": self.order_id, "provider": self.provider},
            )
        changes = {
            "state": ShipmentState.BOOKED.value,
            "awb_number": awb_number,
            "shipment_id": shipment_id,
            "status": "Booked",
            "create_status": "created",
            "create_error": None,
            "raw_response": raw_response,
            "booked_at": datetime.now(timezone.utc),
        }
        changes.update(extra)
        return self._apply(changes)

    def mark_failed(self, error: Any) -> Dict[str, Any]:
        self._require("fail", ShipmentState.NONE, ShipmentState.FAILED)
        return self._apply({
            "state": ShipmentState.FAILED.value,
            "create_status": "failed",
            "create_error": error,
        })

    def mark_cancelled(self, response: Any = None) -> Dict[str, Any]:
        self._require("cancel", ShipmentState.BOOKED)
        return self._apply({
            "state": ShipmentState.CANCELLED.value,
            "status": "Cancelled",
            "canceled_at": datetime.now(timezone.utc),
            "cancel_response": response,
        })

    def record_tracking(self, status: Optional[str], tracking: Dict[str, Any]) -> Dict[str, Any]:
        self._require("track", ShipmentState.BOOKED)
        changes = {
            "last_tracking": tracking,
            "tracking_updated_at": datetime.now(timezone.utc),
        }
        if status:
            changes["status"] = status
        return self._apply(changes)

    def record_pickup(self, scheduled_at: datetime, confirmation: Optional[str]) -> Dict[str, Any]:
        self._require("schedule pickup for", ShipmentState.BOOKED)
        return self._apply({
            "pickup_scheduled_at": scheduled_at,
            "pickup_confirmation": confirmation,
        })

    def record_label(self, url: str, file_name: Optional[str] = None) -> Dict[str, Any]:
        return self._apply({
            "label_url": url,
            "label_file_name": file_name,
            "label_status": LabelStatus.GENERATED.value,
            "label_generated_at": datetime.now(timezone.utc),
        })

    def __repr__(self):
        return f"<OrderShipment order={self.order_id} {self.provider} state={self.state}>"


class ShipmentLog(Base):
    """Append-only audit trail of every carrier request/response/error."""
    __tablename__ = "shipment_logs"
    __table_args__ = (
        Index("ix_shipment_logs_order_provider", "order_id", "provider"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    provider = Column(String(20), nullable=False)
    type = Column(String(50), nullable=False)  # waybill.create, pickup.register, ...
    request = Column(JSON, nullable=True)
    response = Column(JSON, nullable=True)
    error = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
