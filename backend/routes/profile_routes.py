"""
Profile Routes
Owner-side profile management, authorized by editToken.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from core.dependencies import get_profile_service
from middleware.auth import get_edit_token
from services.profile_service import ProfileService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/profile", tags=["profile"])


class CreateProfileRequest(BaseModel):
    name: str = Field(..., description="Display name")
    slug: str = Field(..., description="Public page address, ^[a-z0-9-]{3,40}$")
    bio: Optional[str] = None
    description: Optional[str] = Field(default=None, description="Older clients send bio as description")
    avatarUrl: Optional[str] = ""


class LinksSocialRequest(BaseModel):
    links: Optional[Any] = None
    social: Optional[Any] = None
    theme: Optional[Any] = None


class EmailSettingsRequest(BaseModel):
    collectEmail: Optional[bool] = None
    enableForm: Optional[bool] = Field(default=None, description="Onboarding form alias of collectEmail")
    klaviyoListId: Optional[str] = ""


@router.post("", status_code=201)
def create_profile(request: CreateProfileRequest, service: ProfileService = Depends(get_profile_service)):
    """Create a page; the returned editToken is the only owner credential"""
    result = service.create_profile(
        request.name,
        request.slug,
        request.bio if request.bio is not None else (request.description or ""),
        request.avatarUrl,
    )
    return {"ok": True, **result}


@router.get("")
def get_profile(token: str = Depends(get_edit_token), service: ProfileService = Depends(get_profile_service)):
    return {"ok": True, "profile": service.get_for_owner(token)}


@router.post("/update")
def update_profile(
    payload: Dict[str, Any] = Body(...),
    token: str = Depends(get_edit_token),
    service: ProfileService = Depends(get_profile_service),
):
    return service.update_profile(token, payload)


@router.post("/links-social")
def update_links_social(
    request: LinksSocialRequest,
    token: str = Depends(get_edit_token),
    service: ProfileService = Depends(get_profile_service),
):
    return service.update_links_social(token, request.links, request.social, request.theme)


@router.post("/email-settings")
def update_email_settings(
    request: EmailSettingsRequest,
    token: str = Depends(get_edit_token),
    service: ProfileService = Depends(get_profile_service),
):
    collect = request.collectEmail if request.collectEmail is not None else bool(request.enableForm)
    return service.update_email_settings(token, collect, request.klaviyoListId)
