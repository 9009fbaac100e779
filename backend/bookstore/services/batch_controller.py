"""
Bulk shipment operations

Runs one orchestrator operation per order id and sorts the outcomes into
success / skipped / failed. A failing order never aborts its siblings.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from bookstore.core.config import settings
from bookstore.core.exceptions import ShippingError
from bookstore.models.carrier_profile import CarrierCode
from bookstore.services.shipment_orchestrator import (
    ShipmentOptions,
    ShipmentOrchestrator,
    ShipmentOutcome,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    success: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "failed": self.failed,
            "summary": {
                "success": len(self.success),
                "skipped": len(self.skipped),
                "failed": len(self.failed),
            },
        }


class BatchController:
    def __init__(self, orchestrator: ShipmentOrchestrator, concurrency: Optional[int] = None):
        self.orchestrator = orchestrator
        self.concurrency = max(1, concurrency or settings.SHIPMENT_BATCH_CONCURRENCY)

    async def _run(
        self,
        operation: str,
        order_ids: Sequence[int],
        call: Callable[[int], Awaitable[ShipmentOutcome]],
    ) -> BatchResult:
        semaphore = asyncio.Semaphore(self.concurrency)
        unique_ids = list(dict.fromkeys(order_ids))

        async def run_one(order_id: int):
            async with semaphore:
                try:
                    return await call(order_id)
                except ShippingError as e:
                    logger.warning(f"{operation} failed for order {order_id}: {e.message}")
                    return {"order_id": order_id, "error": e.message, "code": e.code}
                except Exception as e:
                    logger.exception(f"Unexpected error during {operation} for order {order_id}")
                    return {"order_id": order_id, "error": str(e) or e.__class__.__name__, "code": "INTERNAL_ERROR"}

        outcomes = await asyncio.gather(*(run_one(order_id) for order_id in unique_ids))

        result = BatchResult()
        for outcome in outcomes:
            if isinstance(outcome, dict):
                result.failed.append(outcome)
            elif outcome.skipped:
                result.skipped.append(outcome.to_dict())
            else:
                result.success.append(outcome.to_dict())

        logger.info(
            f"Batch {operation}: {len(result.success)} ok, "
            f"{len(result.skipped)} skipped, {len(result.failed)} failed"
        )
        return result

    async def create_shipments(
        self,
        order_ids: Sequence[int],
        provider: CarrierCode,
        options: Optional[ShipmentOptions] = None,
        owner_id: Optional[int] = None,
    ) -> BatchResult:
        return await self._run(
            "create",
            order_ids,
            lambda order_id: self.orchestrator.create_shipment(order_id, provider, options, owner_id),
        )

    async def track_shipments(
        self,
        order_ids: Sequence[int],
        provider: CarrierCode,
        owner_id: Optional[int] = None,
    ) -> BatchResult:
        return await self._run(
            "track",
            order_ids,
            lambda order_id: self.orchestrator.track_order(order_id, provider, owner_id),
        )

    async def cancel_shipments(
        self,
        order_ids: Sequence[int],
        provider: CarrierCode,
        owner_id: Optional[int] = None,
    ) -> BatchResult:
        return await self._run(
            "cancel",
            order_ids,
            lambda order_id: self.orchestrator.cancel_shipment(order_id, provider, owner_id),
        )

    async def schedule_pickup(
        self,
        order_ids: Sequence[int],
        pickup_date: date,
        provider: CarrierCode,
        owner_id: Optional[int] = None,
        profile_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """One pickup for all booked orders; unbooked ones come back under skipped."""
        outcome = await self.orchestrator.schedule_pickup(
            list(dict.fromkeys(order_ids)), pickup_date, provider, owner_id, profile_id
        )
        return outcome.to_dict()
