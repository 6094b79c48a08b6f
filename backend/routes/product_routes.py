"""
Product Routes
Owner product management plus the public buy redirect.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from core.dependencies import get_event_sink, get_profile_service, get_public_service, get_supervisor
from core.detached import DetachedTaskSupervisor
from core.errors import ValidationFailure
from core.sanitize import clean_id
from middleware.auth import get_edit_token
from middleware.client_info import get_client_ip, get_user_agent
from services.event_sink import EventSink
from services.profile_service import ProfileService
from services.public_profile_service import UTM_KEYS, PublicProfileService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/products", tags=["products"])

NO_STORE = {"Cache-Control": "no-store, no-cache, must-revalidate"}


class ProductBatchRequest(BaseModel):
    products: Any = Field(..., description="Complete product list; replaces the stored one")


class RestoreInventoryRequest(BaseModel):
    token: Optional[str] = None
    editToken: Optional[str] = None
    productId: str
    unitsLeft: Any = Field(..., description="Non-negative integer")


@router.get("")
def list_products(token: str = Depends(get_edit_token), service: ProfileService = Depends(get_profile_service)):
    return {"ok": True, "products": service.list_products(token)}


@router.post("/batch")
def save_products(
    request: ProductBatchRequest,
    token: str = Depends(get_edit_token),
    service: ProfileService = Depends(get_profile_service),
):
    return service.save_products(token, request.products)


@router.post("/restore-inventory")
def restore_inventory(request: RestoreInventoryRequest, service: ProfileService = Depends(get_profile_service)):
    """Owner correction of one product's unitsLeft (e.g. after a refund)"""
    token = clean_id(request.token or request.editToken, 180)
    if not token:
        raise ValidationFailure("Missing editToken", code="missing_edit_token")
    return service.restore_inventory(token, request.productId, request.unitsLeft)


@router.get("/buy")
async def buy(
    request: Request,
    id: Optional[str] = Query(None),
    productId: Optional[str] = Query(None),
    slug: Optional[str] = Query(None),
    publicSlug: Optional[str] = Query(None),
    editToken: Optional[str] = Query(None),
    service: PublicProfileService = Depends(get_public_service),
    sink: EventSink = Depends(get_event_sink),
    supervisor: DetachedTaskSupervisor = Depends(get_supervisor),
):
    """
    Redirect a visitor to checkout, or back to the page with ?reason=.

    Reasons: missing_slug, unpublished, noprice, bad_checkout_host,
    not_started, soldout, expired.
    """
    utm = {key: request.query_params.get(key, "") for key in UTM_KEYS}
    decision = service.checkout_redirect(
        id or productId,
        slug or publicSlug,
        editToken,
        params=utm,
        user_agent=get_user_agent(request),
        ip=get_client_ip(request),
        ref=request.headers.get("referer", ""),
    )
    if decision.event is not None:
        supervisor.spawn(sink.record, decision.event, name="begin_checkout")
    return RedirectResponse(decision.location, status_code=302, headers=NO_STORE)
