"""
Carrier profile model

One row per carrier account an admin has configured. Secret material is
encrypted at rest with bookstore.services.encryption; the Shiprocket session
token is persisted here so it survives restarts.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime,
    Float, Text, Index, Enum as SQLEnum
)
import enum

from bookstore.core.database import Base


class CarrierCode(str, enum.Enum):
    """Supported shipping carriers."""
    SHIPROCKET = "shiprocket"
    BLUEDART = "bluedart"


class CarrierProfile(Base):
    __tablename__ = "carrier_profiles"
    __table_args__ = (
        Index("ix_carrier_profiles_owner_carrier", "owner_id", "carrier"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True, index=True)
    carrier = Column(SQLEnum(CarrierCode), nullable=False)
    label = Column(String(100), nullable=False)

    # Identifiers: Blue Dart client name / Shiprocket login email
    login_id = Column(String(255), nullable=False)
    api_client_id = Column(String(255), nullable=True)
    customer_code = Column(String(50), nullable=True)
    area_code = Column(String(10), nullable=True)
    pickup_location = Column(String(100), nullable=True)

    # Secrets (encrypted)
    password_encrypted = Column(Text, nullable=True)
    license_key_encrypted = Column(Text, nullable=True)
    tracking_key_encrypted = Column(Text, nullable=True)
    api_secret_encrypted = Column(Text, nullable=True)

    # Persisted session token (Shiprocket)
    auth_token_encrypted = Column(Text, nullable=True)
    auth_token_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Default consignor
    consignor_name = Column(String(100), nullable=True)
    consignor_phone = Column(String(20), nullable=True)
    consignor_email = Column(String(255), nullable=True)
    consignor_address = Column(String(255), nullable=True)
    consignor_address2 = Column(String(255), nullable=True)
    consignor_city = Column(String(100), nullable=True)
    consignor_state = Column(String(100), nullable=True)
    consignor_pincode = Column(String(10), nullable=True)

    # Default package
    default_weight = Column(Float, nullable=True)
    default_length = Column(Float, nullable=True)
    default_breadth = Column(Float, nullable=True)
    default_height = Column(Float, nullable=True)

    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def snapshot(self) -> dict:
        """Non-secret copy stored on shipments so history survives deletion."""
        return {
            "id": self.id,
            "carrier": self.carrier.value if self.carrier else None,
            "label": self.label,
            "login_id": self.login_id,
            "customer_code": self.customer_code,
            "area_code": self.area_code,
            "pickup_location": self.pickup_location,
            "consignor_name": self.consignor_name,
            "consignor_city": self.consignor_city,
            "consignor_pincode": self.consignor_pincode,
        }

    def __repr__(self):
        return f"<CarrierProfile {self.id} {self.carrier} {self.label!r}>"
