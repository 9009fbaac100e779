"""
Order model

Only the columns the shipment layer reads or writes are modelled here; the
catalog, cart and payment subsystems own the rest of the order lifecycle.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Float, JSON
import enum

from bookstore.core.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    FAILED = "failed"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    order_number = Column(String(50), unique=True, nullable=True)

    # Commercial data: items is a list of
    # {book_id, sku, title, qty, unit_price, tax}
    amount = Column(Float, nullable=False, default=0.0)
    items = Column(JSON, nullable=False, default=list)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    paid_amount = Column(Float, nullable=False, default=0.0)
    due_on_delivery_amount = Column(Float, nullable=False, default=0.0)

    # Shipping address
    shipping_name = Column(String(100), nullable=True)
    shipping_phone = Column(String(20), nullable=True)
    shipping_email = Column(String(255), nullable=True)
    shipping_address = Column(String(255), nullable=True)
    shipping_address2 = Column(String(255), nullable=True)
    shipping_city = Column(String(100), nullable=True)
    shipping_state = Column(String(100), nullable=True)
    shipping_pincode = Column(String(10), nullable=True)
    shipping_country = Column(String(50), nullable=True, default="India")

    # Package (kg / cm); empty means "fall back to profile defaults"
    shipping_weight = Column(Float, nullable=True)
    shipping_length = Column(Float, nullable=True)
    shipping_breadth = Column(Float, nullable=True)
    shipping_height = Column(Float, nullable=True)

    shipping_provider = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def reference(self) -> str:
        """Merchant-side reference sent to carriers."""
        return self.order_number or str(self.id)

    def __repr__(self):
        return f"<Order {self.id} amount={self.amount} payment={self.payment_status}>"
