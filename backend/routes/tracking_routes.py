"""
Event Tracking Routes

POST /api/track              visitor events from the public page (always quiet)
GET  /api/analytics/summary  per-product funnel counts for the page owner

Ingestion never tells a caller why an event was dropped: junk, foreign
origins and unknown pages all get the same 204. Only flooding gets a 429.
"""
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Query, Request, Response

from config.settings import Settings
from core.dependencies import get_app_settings, get_event_sink, get_limiter, get_store, get_supervisor
from core.detached import DetachedTaskSupervisor
from core.errors import NotFoundError, RateLimitedError
from core.rate_limit import TRACK_BURST, TRACK_PER_IDENTITY, TRACK_SUSTAINED, RateLimiter
from core.sanitize import clean_id, clean_slug
from db.profile_store import ProfileStore
from middleware.auth import get_edit_token
from middleware.client_info import get_client_ip, get_user_agent
from services.event_sink import ALLOWED_TYPES, EventSink

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["tracking"])


def is_same_origin(request: Request) -> bool:
    """Browsers send Origin; when present it must match Host"""
    origin = request.headers.get("origin", "").strip()
    if not origin:
        return True
    try:
        origin_host = urlsplit(origin).netloc.lower()
    except ValueError:
        return False
    return origin_host == request.headers.get("host", "").strip().lower()


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/track", status_code=204, response_class=Response)
async def track(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: ProfileStore = Depends(get_store),
    sink: EventSink = Depends(get_event_sink),
    limiter: RateLimiter = Depends(get_limiter),
    supervisor: DetachedTaskSupervisor = Depends(get_supervisor),
):
    """
    Record one visitor event.

    Body: {type, productId?, slug?, editToken?, ts?, ref?, ua?}
    """
    if not settings.track_enabled:
        raise NotFoundError("Not found")

    quiet = Response(status_code=204, headers={"Cache-Control": "no-store"})
    if not is_same_origin(request):
        return quiet

    ip = get_client_ip(request)
    decision = limiter.check(ip, (TRACK_BURST, TRACK_SUSTAINED))
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after)

    body = await _read_json(request)
    event_type = str(body.get("type") or "")[:48]
    if event_type not in ALLOWED_TYPES:
        return quiet

    slug = clean_slug(body.get("slug"), 120)
    product_id = clean_id(body.get("productId"), 160)
    edit_token = clean_id(body.get("editToken"), 180)
    if slug:
        # Attribute to the page's owner, never to a token the client claims
        doc = store.find_by_slug(slug)
        if not doc:
            return quiet
        edit_token = doc.get("editToken", "")

    identity = f"{ip}:{event_type}:{slug or product_id or edit_token[:8]}"
    decision = limiter.check(identity, (TRACK_PER_IDENTITY,))
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after)

    ref = body["ref"] if isinstance(body.get("ref"), str) else request.headers.get("referer", "")
    ua = body["ua"] if isinstance(body.get("ua"), str) else get_user_agent(request)

    event = sink.build_event(
        event_type,
        product_id=product_id,
        edit_token=edit_token,
        slug=slug,
        ts=body.get("ts"),
        ref=ref,
        ua=ua,
        ip=ip,
        source="client",
    )
    if event is not None:
        supervisor.spawn(sink.record, event, name=f"track_{event_type}")
    return quiet


@router.get("/analytics/summary")
def analytics_summary(
    days: Optional[str] = Query(None),
    types: Optional[str] = Query(None, description="Comma-separated event types (default: all)"),
    token: str = Depends(get_edit_token),
    settings: Settings = Depends(get_app_settings),
    store: ProfileStore = Depends(get_store),
    sink: EventSink = Depends(get_event_sink),
):
    """Owner-only counts per (productId, type), most active first"""
    if not settings.analytics_summary_enabled:
        raise NotFoundError("Not found")
    if not store.find_by_token(token):
        raise NotFoundError("Profile not found", code="profile_not_found")

    wanted = [t.strip() for t in types.split(",")] if types else None
    summary = sink.summarize(token, days, wanted)
    return {"ok": True, **summary}
