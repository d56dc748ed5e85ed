from fastapi import Request

from apps.pointcard.services.errors import UpstreamUnavailable
from apps.pointcard.services.loyalty.loyalty_service import LoyaltyService


def get_service(request: Request) -> LoyaltyService:
    service = getattr(request.app.state, "loyalty", None)
    if service is None:
        raise UpstreamUnavailable("Document store is not configured")
    return service
