"""
Order store

Reads orders and reads/writes their per-provider shipment rows. Every method
runs in its own short session; the booking write is a conditional UPDATE so
two concurrent creates for the same order can never both persist an AWB.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookstore.core.exceptions import OrderNotFoundError
from bookstore.models.order import Order
from bookstore.models.shipment import OrderShipment, ShipmentLog, ShipmentState

logger = logging.getLogger(__name__)


def _unbooked():
    return (
        or_(OrderShipment.awb_number.is_(None), OrderShipment.awb_number == ""),
        or_(OrderShipment.shipment_id.is_(None), OrderShipment.shipment_id == ""),
    )


class OrderStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ==================== Orders ====================

    async def find_by_id(self, order_id: int) -> Order:
        async with self._session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
            session.expunge(order)
            return order

    async def find(
        self,
        order_ids: Optional[Sequence[int]] = None,
        provider: Optional[str] = None,
    ) -> List[Order]:
        async with self._session_factory() as session:
            query = select(Order)
            if order_ids is not None:
                query = query.where(Order.id.in_(list(order_ids)))
            if provider is not None:
                query = query.where(Order.shipping_provider == provider)
            result = await session.execute(query.order_by(Order.id))
            orders = list(result.scalars().all())
            for order in orders:
                session.expunge(order)
            return orders

    async def set_provider(self, order_id: int, provider: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Order).where(Order.id == order_id).values(shipping_provider=provider)
            )
            await session.commit()

    # ==================== Shipments ====================

    async def get_shipment(self, order_id: int, provider: str) -> Optional[OrderShipment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderShipment).where(
                    OrderShipment.order_id == order_id,
                    OrderShipment.provider == provider,
                )
            )
            shipment = result.scalar_one_or_none()
            if shipment is not None:
                session.expunge(shipment)
            return shipment

    async def ensure_shipment(self, order_id: int, provider: str) -> OrderShipment:
        """Fetch the (order, provider) row, creating an empty one on first use."""
        shipment = await self.get_shipment(order_id, provider)
        if shipment is not None:
            return shipment

        async with self._session_factory() as session:
            shipment = OrderShipment(
                order_id=order_id,
                provider=provider,
                state=ShipmentState.NONE.value,
            )
            session.add(shipment)
            try:
                await session.commit()
            except IntegrityError:
                # Created concurrently by another request
                await session.rollback()
                return await self.get_shipment(order_id, provider)
            await session.refresh(shipment)
            session.expunge(shipment)
            return shipment

    async def find_shipment_by_reference(self, provider: str, reference: str) -> Optional[OrderShipment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderShipment).where(
                    OrderShipment.provider == provider,
                    or_(
                        OrderShipment.awb_number == reference,
                        OrderShipment.shipment_id == reference,
                    ),
                )
            )
            shipment = result.scalars().first()
            if shipment is not None:
                session.expunge(shipment)
            return shipment

    async def list_shipments(self, order_ids: Sequence[int], provider: str) -> List[OrderShipment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderShipment).where(
                    OrderShipment.order_id.in_(list(order_ids)),
                    OrderShipment.provider == provider,
                ).order_by(OrderShipment.order_id)
            )
            shipments = list(result.scalars().all())
            for shipment in shipments:
                session.expunge(shipment)
            return shipments

    async def claim_booking(self, shipment_pk: int, changes: Dict[str, Any]) -> bool:
        """
        Persist a booking only if the row still has no AWB or shipment id.

        Returns False when another request booked the order first.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(OrderShipment)
                .where(OrderShipment.id == shipment_pk, *_unbooked())
                .values(**changes)
            )
            await session.commit()
            return result.rowcount == 1

    async def update_shipment(
        self,
        shipment_pk: int,
        changes: Dict[str, Any],
        only_if_unbooked: bool = False,
    ) -> bool:
        async with self._session_factory() as session:
            stmt = update(OrderShipment).where(OrderShipment.id == shipment_pk)
            if only_if_unbooked:
                stmt = stmt.where(*_unbooked())
            result = await session.execute(stmt.values(**changes))
            await session.commit()
            return result.rowcount == 1

    async def append_log(
        self,
        order_id: int,
        provider: str,
        log_type: str,
        request: Any = None,
        response: Any = None,
        error: Any = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(ShipmentLog(
                order_id=order_id,
                provider=provider,
                type=log_type,
                request=request,
                response=response,
                error=error,
            ))
            await session.commit()

    async def get_logs(self, order_id: int, provider: Optional[str] = None) -> List[ShipmentLog]:
        async with self._session_factory() as session:
            query = select(ShipmentLog).where(ShipmentLog.order_id == order_id)
            if provider is not None:
                query = query.where(ShipmentLog.provider == provider)
            result = await session.execute(query.order_by(ShipmentLog.id))
            logs = list(result.scalars().all())
            for log in logs:
                session.expunge(log)
            return logs
