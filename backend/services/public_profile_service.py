"""
Public Profile Service
Visitor-facing view of a creator page, addressed by slug.

CRITICAL RULES:
1. Output is built from an allow-list; internal fields (editToken, _id,
   plan expiry, provider ids) can never leak through a new stored field
2. Every rendered value passes through the sanitization layer
3. Tracking is detached: the response never waits on or fails because of it
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from config.plans import allows_email_capture, get_plan_limits, requires_branding
from core.detached import DetachedTaskSupervisor
from core.errors import NotFoundError, ValidationFailure
from core.inventory import CheckoutBlock, checkout_block_reason, checkout_reference, product_status
from core.profile_codec import decode_profile
from core.rate_limit import PAGE_VIEW_DEDUPE_SECONDS, RateLimiter
from core.sanitize import (
    MAX_BIO,
    MAX_BUTTON_TEXT,
    MAX_DESCRIPTION,
    MAX_HEADLINE,
    MAX_SUBTEXT,
    MAX_TITLE,
    clamp_text,
    clean_id,
    clean_slug,
    normalize_theme_value,
    sanitize_href_price,
    sanitize_image_src,
    sanitize_links,
    sanitize_social_object,
)
from db.profile_store import ProductEntries, ProfileStore
from db.schemas.events import EventType, TrackedEvent
from db.schemas.profiles import Product, Profile
from middleware.client_info import is_bot_user_agent
from services.event_sink import EventSink
from services.profile_service import apply_plan_expiry

logger = logging.getLogger(__name__)

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


@dataclass(frozen=True)
class CheckoutDecision:
    """Where the buy redirect sends the visitor"""
    location: str
    blocked: Optional[str] = None
    event: Optional[TrackedEvent] = None


# ============================================================================
# VIEW ASSEMBLY
# ============================================================================

def public_product(product: Product, now: Optional[datetime] = None) -> Dict[str, Any]:
    raw = product.model_dump()
    status = product_status(raw, now)
    return {
        "id": product.id,
        "title": clamp_text(product.title, MAX_TITLE),
        "description": clamp_text(product.description, MAX_DESCRIPTION),
        "imageUrl": sanitize_image_src(product.imageUrl),
        "buttonText": clamp_text(product.buttonText, MAX_BUTTON_TEXT),
        "priceUrl": sanitize_href_price(product.priceUrl) if status.show_buy else None,
        "unitsLeft": status.units_left,
        "unitsTotal": status.units_total,
        "dropStartsAt": product.dropStartsAt,
        "dropEndsAt": product.dropEndsAt,
        "status": status.to_public(),
    }


def build_public_view(profile: Profile, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Allow-listed, sanitized, quota-capped view of one profile"""
    limits = get_plan_limits(profile.plan)
    email_active = bool(
        allows_email_capture(profile.plan) and profile.collectEmail and profile.klaviyoListId
    )

    view: Dict[str, Any] = {
        "displayName": clamp_text(profile.displayName, MAX_TITLE),
        "bio": clamp_text(profile.bio, MAX_BIO),
        "avatarUrl": sanitize_image_src(profile.avatarUrl),
        "publicSlug": profile.publicSlug,
        "headline": clamp_text(profile.headline, MAX_HEADLINE),
        "subtext": clamp_text(profile.subtext, MAX_SUBTEXT),
        "theme": normalize_theme_value(profile.theme),
        "links": sanitize_links([link.model_dump() for link in profile.links], limits["max_links"]),
        "social": sanitize_social_object(profile.social),
        "plan": profile.plan,
        "showBranding": requires_branding(profile.plan),
        "collectEmail": email_active,
    }
    if email_active:
        view["klaviyoListId"] = profile.klaviyoListId

    # published=False hides a product; legacy products without the flag show
    visible = [p for p in profile.products if p.published is not False]
    products = [public_product(p, now) for p in visible[:limits["max_products"]]]
    return {"profile": view, "products": products}


def tag_checkout_url(url: str, product_id: str, slug: str, params: Mapping[str, str]) -> str:
    """Attach product/slug tags and passthrough UTM params without overriding existing ones"""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    present = {k for k, _ in query}

    def add(key: str, value: str) -> None:
        if value and key not in present:
            query.append((key, value))
            present.add(key)

    add("client_reference_id", checkout_reference(slug, product_id))
    add("l6_slug", slug)
    for key in UTM_KEYS:
        add(key, str(params.get(key) or ""))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def reason_location(slug: str, reason: str, edit_token: str = "") -> str:
    params = {}
    if edit_token:
        params["editToken"] = edit_token
    params["reason"] = reason
    base = f"/{quote(slug)}" if slug else "/"
    return f"{base}?{urlencode(params)}"


# ============================================================================
# SERVICE
# ============================================================================

class PublicProfileService:
    def __init__(
        self,
        store: ProfileStore,
        event_sink: EventSink,
        supervisor: Optional[DetachedTaskSupervisor] = None,
        limiter: Optional[RateLimiter] = None,
        allowed_checkout_hosts: Iterable[str] = ("buy.stripe.com", "checkout.stripe.com"),
    ):
        self.store = store
        self.event_sink = event_sink
        self.supervisor = supervisor
        self.limiter = limiter or RateLimiter()
        self.allowed_checkout_hosts = tuple(allowed_checkout_hosts)

    def get_public_view(
        self,
        slug: Any,
        now: Optional[datetime] = None,
        track: bool = False,
        user_agent: str = "",
        ip: str = "",
        ref: str = "",
    ) -> Dict[str, Any]:
        key = clean_slug(slug)
        if not key:
            raise ValidationFailure("Missing slug", code="missing_slug")

        doc = self.store.find_by_slug(key)
        if not doc:
            raise NotFoundError("Profile not found", code="profile_not_found")
        doc = apply_plan_expiry(self.store, doc, now)
        profile = decode_profile(doc)

        if track and self.supervisor is not None and not is_bot_user_agent(user_agent):
            self.supervisor.spawn(
                self.record_view, profile.publicSlug, profile.editToken, ip, user_agent, ref,
                name="record_view",
            )

        view = build_public_view(profile, now)
        view["ok"] = True
        return view

    def record_view(self, slug: str, edit_token: str, ip: str, user_agent: str, ref: str = "") -> None:
        """View counter always; page_view event once per visitor per page per window"""
        self.store.increment_views(slug)
        if not self.limiter.dedupe_once(f"pv:{ip}:{slug}", PAGE_VIEW_DEDUPE_SECONDS):
            return
        self.event_sink.record(self.event_sink.build_event(
            EventType.PAGE_VIEW.value,
            edit_token=edit_token,
            slug=slug,
            ref=ref,
            ua=user_agent,
            ip=ip,
            source="server",
        ))

    # ------------------------------------------------------------------------
    # Buy redirect
    # ------------------------------------------------------------------------

    def _find_bound_product(self, product_id: str, slug: str, edit_token: str):
        # Without an owner token the product must belong to the page it was clicked on
        if edit_token:
            doc = self.store.find_by_token(edit_token)
        else:
            doc = self.store.find_by_product(product_id, slug)
        return doc, ProductEntries.find(doc, product_id)

    def checkout_redirect(
        self,
        product_id: Any,
        slug: Any = "",
        edit_token: Any = "",
        params: Optional[Mapping[str, str]] = None,
        user_agent: str = "",
        ip: str = "",
        ref: str = "",
        now: Optional[datetime] = None,
    ) -> CheckoutDecision:
        pid = clean_id(product_id)
        page = clean_slug(slug)
        token = clean_id(edit_token)
        if not pid:
            raise ValidationFailure("Missing product id")
        if not token and not page:
            return CheckoutDecision(reason_location("", "missing_slug"), "missing_slug")

        doc, product = self._find_bound_product(pid, page, token)
        if product is None:
            return CheckoutDecision(reason_location(page, CheckoutBlock.UNPUBLISHED.value, token), CheckoutBlock.UNPUBLISHED.value)

        page = page or clean_slug(doc.get("publicSlug") or doc.get("slug"))
        block = checkout_block_reason(product, self.allowed_checkout_hosts, now)
        if block is not None:
            logger.info(f"Buy blocked for {page}/{pid}: {block.value}")
            return CheckoutDecision(reason_location(page, block.value, token), block.value)

        location = tag_checkout_url(sanitize_href_price(product.get("priceUrl")), pid, page, params or {})
        event = self.event_sink.build_event(
            EventType.BEGIN_CHECKOUT.value,
            product_id=pid,
            edit_token=doc.get("editToken", ""),
            slug=page,
            ref=ref,
            ua=user_agent,
            ip=ip,
            source="server",
            now=now,
        )
        return CheckoutDecision(location, None, event)

