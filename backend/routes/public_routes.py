"""
Public Page Routes
Read-only, unauthenticated view of a creator page.
"""
from fastapi import APIRouter, Depends, Query, Request

from core.dependencies import get_public_service
from middleware.client_info import get_client_ip, get_user_agent
from services.public_profile_service import PublicProfileService

router = APIRouter(prefix="/api/public", tags=["public"])


@router.get("/{slug}")
async def get_public_profile(
    slug: str,
    request: Request,
    track: bool = Query(True, description="Count this request as a page view"),
    service: PublicProfileService = Depends(get_public_service),
):
    """
    Public profile + products with derived drop status.

    Response:
        {"ok": true, "profile": {...}, "products": [{..., "status": {state, label, remainingMs, showBuy}}]}
    """
    return service.get_public_view(
        slug,
        track=track,
        user_agent=get_user_agent(request),
        ip=get_client_ip(request),
        ref=request.headers.get("referer", ""),
    )
