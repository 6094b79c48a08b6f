"""
Email Capture Routes
POST /api/subscribe from the public page's signup form.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from core.dependencies import get_limiter, get_subscription_service
from core.errors import RateLimitedError
from core.rate_limit import SUBSCRIBE_HOUR, SUBSCRIBE_MINUTE, RateLimiter
from middleware.client_info import get_client_ip, get_user_agent
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["subscribe"])


class SubscribeRequest(BaseModel):
    email: str = Field(..., description="Visitor email")
    editToken: Optional[str] = None
    publicSlug: Optional[str] = None
    ref: Optional[str] = Field(default=None, description="Page URL the form was submitted from")
    name: Optional[str] = None


@router.post("/subscribe")
def subscribe(
    body: SubscribeRequest,
    request: Request,
    limiter: RateLimiter = Depends(get_limiter),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Capture one email for a creator and push it to their list.

    Errors: 400 invalid_email, 404 profile_not_found,
    403 email_collection_disabled, 429 rate_limited,
    502 klaviyo_not_configured | klaviyo_failed
    """
    ip = get_client_ip(request)
    decision = limiter.check(ip, (SUBSCRIBE_MINUTE, SUBSCRIBE_HOUR))
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after)

    return service.subscribe(
        body.email,
        edit_token=body.editToken or "",
        public_slug=body.publicSlug or "",
        ref=body.ref or "",
        name=body.name or "",
        ua=get_user_agent(request),
        ip=ip,
    )
