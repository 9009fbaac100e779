"""
Shipping service wiring

Builds the long-lived shipping objects once per process: one TokenManager
(the process-wide token cache), one adapter per carrier sharing it, and the
orchestrator / label / batch services on top.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookstore.core.database import AsyncSessionLocal
from bookstore.models.carrier_profile import CarrierCode
from bookstore.modules.shipping import CarrierFactory, default_authenticators
from bookstore.modules.shipping.carriers.base import BaseCarrier
from bookstore.services.batch_controller import BatchController
from bookstore.services.credential_store import CredentialStore
from bookstore.services.label_renderer import LabelRenderer
from bookstore.services.order_store import OrderStore
from bookstore.services.shipment_orchestrator import ShipmentOrchestrator
from bookstore.services.storage import StorageService
from bookstore.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class ShippingServices:
    credential_store: CredentialStore
    order_store: OrderStore
    token_manager: TokenManager
    carriers: Dict[CarrierCode, BaseCarrier]
    orchestrator: ShipmentOrchestrator
    labels: LabelRenderer
    batch: BatchController

    async def close(self):
        await self.orchestrator.close()
        logger.info("Carrier HTTP clients closed")


def build_shipping_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    storage: Optional[StorageService] = None,
    sleep=None,
    label_dir: Optional[str] = None,
    batch_concurrency: Optional[int] = None,
) -> ShippingServices:
    session_factory = session_factory or AsyncSessionLocal
    credential_store = CredentialStore(session_factory)
    order_store = OrderStore(session_factory)
    token_manager = TokenManager(credential_store, default_authenticators(transport=transport))

    carrier_kwargs = {"transport": transport}
    if sleep is not None:
        carrier_kwargs["sleep"] = sleep
    carriers = CarrierFactory.build_all(token_manager, **carrier_kwargs)

    orchestrator = ShipmentOrchestrator(order_store, credential_store, carriers)
    return ShippingServices(
        credential_store=credential_store,
        order_store=order_store,
        token_manager=token_manager,
        carriers=carriers,
        orchestrator=orchestrator,
        labels=LabelRenderer(order_store, orchestrator, storage or StorageService(), label_dir),
        batch=BatchController(orchestrator, batch_concurrency),
    )
