"""
API dependencies
"""
from fastapi import HTTPException, Request, status

from bookstore.services.shipping_service import ShippingServices


async def get_current_owner_id(request: Request) -> int:
    """Caller identity, set on request.state by the upstream auth middleware."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user_id


def get_shipping_services(request: Request) -> ShippingServices:
    services = getattr(request.app.state, "shipping", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Shipping services are not initialized"
        )
    return services
