"""
Subscription Service
Email capture on a public creator page.

Flow:
1. Validate the address, resolve the creator (token, slug, or the page URL)
2. Refuse when capture is off or the plan does not include it
3. Upsert the local Subscriber row (kept even if the provider fails)
4. Record email_submit (best-effort)
5. Push to the list provider; its failure is the caller's failure
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from pymongo.database import Database

from config.plans import allows_email_capture
from core.errors import ForbiddenFeature, NotFoundError, UpstreamError, ValidationFailure
from core.profile_codec import decode_profile
from core.sanitize import clean_id, clean_slug, is_valid_email
from db.mongo import SUBSCRIBERS
from db.profile_store import ProfileStore
from db.schemas.events import EventType
from db.schemas.subscribers import Subscriber
from integrations.klaviyo_api import KlaviyoClient, ListSubscriptionError
from services.event_sink import EventSink
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def slug_from_ref(ref: Any) -> str:
    """Last path segment of the page URL the form was submitted from"""
    if not isinstance(ref, str) or not ref:
        return ""
    try:
        parts = urlsplit(ref)
    except ValueError:
        return ""
    if not parts.scheme or not parts.netloc:
        return ""
    segments = [s for s in parts.path.split("/") if s]
    return segments[-1] if segments else ""


def split_name(name: Any):
    words = str(name or "").split()
    return (words[0] if words else ""), " ".join(words[1:])


class SubscriptionService:
    def __init__(self, store: ProfileStore, db: Database, event_sink: EventSink, klaviyo: Optional[KlaviyoClient]):
        self.store = store
        self.subscribers = db[SUBSCRIBERS]
        self.event_sink = event_sink
        self.klaviyo = klaviyo

    def _resolve(self, edit_token: str, public_slug: str, ref: str):
        if edit_token:
            return self.store.find_by_token(edit_token)
        slug = public_slug or clean_slug(slug_from_ref(ref))
        if slug:
            return self.store.find_by_slug(slug)
        return None

    def subscribe(
        self,
        email: Any,
        edit_token: Any = "",
        public_slug: Any = "",
        ref: Any = "",
        name: Any = "",
        ua: str = "",
        ip: str = "",
    ) -> Dict[str, Any]:
        address = str(email or "").strip().lower()
        if not is_valid_email(address):
            raise ValidationFailure("Please enter a valid email address", code="invalid_email")

        ref = ref if isinstance(ref, str) else ""
        doc = self._resolve(clean_id(edit_token, 180), clean_slug(public_slug), ref)
        if not doc:
            raise NotFoundError("Profile not found", code="profile_not_found")

        profile = decode_profile(doc)
        if not profile.collectEmail or not allows_email_capture(profile.plan):
            raise ForbiddenFeature("Email collection is disabled for this page", code="email_collection_disabled")

        now = now_utc()
        row = Subscriber(
            editToken=profile.editToken,
            email=address,
            publicSlug=profile.publicSlug,
            listId=profile.klaviyoListId,
            lastRef=ref[:900],
            createdAt=now,
            updatedAt=now,
        ).model_dump()
        changing = {key: row.pop(key) for key in ("updatedAt", "lastRef", "listId")}
        self.subscribers.update_one(
            {"editToken": profile.editToken, "email": address},
            {"$setOnInsert": row, "$set": changing},
            upsert=True,
        )

        self.event_sink.record(self.event_sink.build_event(
            EventType.EMAIL_SUBMIT.value,
            edit_token=profile.editToken,
            slug=profile.publicSlug,
            ref=ref,
            ua=ua,
            ip=ip,
            source="server",
        ))

        if not profile.klaviyoListId or self.klaviyo is None or not self.klaviyo.configured:
            logger.error(f"Email captured for {profile.publicSlug} but list provider is not configured")
            raise UpstreamError("Email list is not configured", code="klaviyo_not_configured")

        first_name, last_name = split_name(name)
        try:
            status = self.klaviyo.subscribe(address, profile.klaviyoListId, first_name, last_name)
        except ListSubscriptionError as e:
            logger.error(f"Klaviyo subscribe failed for {profile.publicSlug}: {e}", exc_info=True)
            raise UpstreamError("Could not add you to the list, please try again", code="klaviyo_failed")

        logger.info(f"Subscriber added to list for {profile.publicSlug}")
        return {"ok": True, "klaviyo": {"attempted": True, "ok": True, "status": status}}
