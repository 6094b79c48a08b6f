"""
Profile Service
Owner-side read/write of a creator profile, addressed by editToken.

Rules:
1. Quotas come from the plan STORED on the profile, never from the payload
2. plan / planExpiresAt / editToken / _id can never be written by the owner
3. An expired promotional plan steps down one tier on read
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from config.plans import DEFAULT_PLAN, allows_email_capture, get_plan_limits, next_lower_plan
from core.errors import ConflictError, NotFoundError, ValidationFailure
from core.inventory import normalize_product_input
from core.profile_codec import datetime_or_none, decode_profile
from core.sanitize import (
    BASELINE_THEME,
    MAX_BIO,
    MAX_HEADLINE,
    MAX_SUBTEXT,
    MAX_TITLE,
    clamp_text,
    clean_id,
    is_allowed_image_url,
    is_valid_slug,
    normalize_theme_value,
    sanitize_image_src,
    sanitize_links,
    sanitize_social_object,
)
from db.profile_store import ProfileStore, ReservationResult
from db.schemas.profiles import Profile
from utils.timezone import now_utc, to_utc

logger = logging.getLogger(__name__)

# Never writable through the owner API
PROTECTED_FIELDS = ("_id", "editToken", "plan", "planExpiresAt", "stripe", "stripeCustomerId", "views", "createdAt")


# ============================================================================
# QUOTA VALIDATION
# ============================================================================

def validate_profile_payload(payload: Any, plan: Optional[str]) -> Optional[str]:
    """
    Check a profile write against the plan's quotas.

    Returns the first human-readable reason the payload is rejected, or None.
    Only fields present in the payload are checked.
    """
    if not isinstance(payload, Mapping):
        return "Empty payload"

    if "slug" in payload and not is_valid_slug(payload.get("slug")):
        return "Invalid slug"

    limits = get_plan_limits(plan)

    links = payload.get("links")
    if isinstance(links, list) and len(links) > limits["max_links"]:
        return f"Too many links (max {limits['max_links']})."

    products = payload.get("products")
    products = products if isinstance(products, list) else []
    if len(products) > limits["max_products"]:
        return f"Too many products (max {limits['max_products']})."

    for i, product in enumerate(products, start=1):
        images = product.get("images") if isinstance(product, Mapping) else None
        images = images if isinstance(images, list) else []
        if len(images) > limits["max_images"]:
            return f"Product #{i} has too many images (max {limits['max_images']})."
        for j, image in enumerate(images, start=1):
            src = image.get("src") if isinstance(image, Mapping) else None
            if not src:
                return f"Product #{i} image #{j} is missing a URL."
            if not is_allowed_image_url(src):
                return f"Product #{i} image #{j} must be JPG/PNG/WebP."

    klaviyo = payload.get("klaviyo")
    wants_capture = bool(payload.get("collectEmail")) or (
        isinstance(klaviyo, Mapping) and bool(klaviyo.get("isActive"))
    )
    if wants_capture and not limits["email_capture"]:
        return "Email capture is not available on your current plan."

    return None


# ============================================================================
# PLAN EXPIRY
# ============================================================================

def apply_plan_expiry(store: ProfileStore, doc: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Step an expired plan down one tier (starter_plus -> starter -> free).

    The write is conditional on the plan/expiry we read, so concurrent
    readers step down once; the returned document reflects the store.
    """
    expires_raw = doc.get("planExpiresAt")
    expires = datetime_or_none(expires_raw)
    if expires is None:
        return doc
    lower = next_lower_plan(doc.get("plan"))
    if lower is None:
        return doc
    now = now or now_utc()
    if to_utc(now) < expires:
        return doc

    if store.step_down_plan(doc["_id"], doc.get("plan"), lower, expires_raw):
        logger.info(f"Plan expired for profile {str(doc['_id'])[:8]}: {doc.get('plan')} -> {lower}")
    return store.profiles.find_one({"_id": doc["_id"]}) or doc


# ============================================================================
# SERVICE
# ============================================================================

class ProfileService:
    def __init__(self, store: ProfileStore):
        self.store = store

    def _load(self, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        doc = self.store.find_by_token(token)
        if not doc:
            raise NotFoundError("Profile not found", code="profile_not_found")
        return apply_plan_expiry(self.store, doc, now)

    def load_profile(self, token: str, now: Optional[datetime] = None) -> Profile:
        return decode_profile(self._load(token, now))

    # ------------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------------

    def create_profile(self, name: Any, slug: Any, bio: Any = "", avatar_url: Any = "") -> Dict[str, Any]:
        display_name = clamp_text(name, MAX_TITLE)
        slug = slug.strip().lower() if isinstance(slug, str) else ""
        if not display_name or not is_valid_slug(slug):
            raise ValidationFailure("Missing name or invalid slug")
        if self.store.slug_taken(slug):
            raise ConflictError("Slug already in use", code="slug_taken")

        record = self.store.create({
            "displayName": display_name,
            "slug": slug,
            "publicSlug": slug,
            "bio": clamp_text(bio, MAX_BIO),
            "avatarUrl": sanitize_image_src(avatar_url),
            "plan": DEFAULT_PLAN,
            "planExpiresAt": None,
            "status": "active",
            "theme": BASELINE_THEME,
            "links": [],
            "social": {},
            "products": [],
            "collectEmail": False,
            "klaviyoListId": "",
            "views": 0,
        })
        logger.info(f"Profile created for slug '{slug}'")
        return {"editToken": record["editToken"], "slug": slug}

    def get_for_owner(self, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.load_profile(token, now).owner_view()

    # ------------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------------

    def update_profile(self, token: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        if not isinstance(payload, Mapping):
            raise ValidationFailure("Empty payload")
        body = {k: v for k, v in payload.items() if k not in PROTECTED_FIELDS}

        profile = self.load_profile(token)
        reason = validate_profile_payload(body, profile.plan)
        if reason:
            raise ValidationFailure(reason)

        fields: Dict[str, Any] = {}
        if "displayName" in body or "name" in body:
            fields["displayName"] = clamp_text(body.get("displayName", body.get("name")), MAX_TITLE)
        if "bio" in body or "description" in body:
            fields["bio"] = clamp_text(body.get("bio", body.get("description")), MAX_BIO)
        if "avatarUrl" in body:
            fields["avatarUrl"] = sanitize_image_src(body.get("avatarUrl"))
        if "headline" in body:
            fields["headline"] = clamp_text(body.get("headline"), MAX_HEADLINE)
        if "subtext" in body:
            fields["subtext"] = clamp_text(body.get("subtext"), MAX_SUBTEXT)
        if "theme" in body:
            fields["theme"] = normalize_theme_value(body.get("theme"))
        if "links" in body:
            fields["links"] = sanitize_links(body.get("links"))
        if "social" in body:
            fields["social"] = sanitize_social_object(body.get("social"))
        if "products" in body:
            fields["products"] = self._normalize_products(body.get("products"), profile.plan)
        if "collectEmail" in body:
            fields["collectEmail"] = bool(body.get("collectEmail"))
        if "klaviyoListId" in body:
            fields["klaviyoListId"] = clean_id(body.get("klaviyoListId"), 64)
        if "slug" in body:
            slug = body["slug"]
            if self.store.slug_taken(slug, exclude_token=token):
                raise ConflictError("Slug already in use", code="slug_taken")
            fields["slug"] = slug
            fields["publicSlug"] = slug

        if fields and not self.store.update_fields(token, fields):
            raise NotFoundError("Profile not found", code="profile_not_found")
        return {"ok": True, "updated": sorted(fields)}

    def update_links_social(self, token: str, links: Any, social: Any, theme: Any = None) -> Dict[str, Any]:
        profile = self.load_profile(token)
        limits = get_plan_limits(profile.plan)

        safe_links = sanitize_links(links)
        if len(safe_links) > limits["max_links"]:
            raise ValidationFailure(
                f"Too many links (max {limits['max_links']}).",
                extra={"limit": limits["max_links"], "plan": profile.plan},
            )

        fields: Dict[str, Any] = {"links": safe_links, "social": sanitize_social_object(social)}
        if theme is not None:
            fields["theme"] = normalize_theme_value(theme)

        if not self.store.update_fields(token, fields):
            raise NotFoundError("Profile not found", code="profile_not_found")
        return {"ok": True, "links": safe_links, "social": fields["social"], "theme": fields.get("theme", profile.theme)}

    def update_email_settings(self, token: str, collect_email: Any, list_id: Any) -> Dict[str, Any]:
        profile = self.load_profile(token)
        if allows_email_capture(profile.plan):
            collect = bool(collect_email)
            klaviyo_list_id = clean_id(list_id, 64)
        else:
            collect = False
            klaviyo_list_id = ""

        self.store.update_fields(token, {"collectEmail": collect, "klaviyoListId": klaviyo_list_id})
        return {"ok": True, "plan": profile.plan, "collectEmail": collect, "klaviyoListId": klaviyo_list_id}

    # ------------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------------

    def _normalize_products(self, raw_products: Any, plan: str) -> List[Dict[str, Any]]:
        if not isinstance(raw_products, list):
            raise ValidationFailure("Body must include products array")

        limits = get_plan_limits(plan)
        reason = validate_profile_payload({"products": raw_products}, plan)
        if reason:
            raise ValidationFailure(
                reason,
                extra={"limit": limits["max_products"], "maxImages": limits["max_images"], "plan": plan},
            )

        products: List[Dict[str, Any]] = []
        seen = set()
        for i, raw in enumerate(raw_products, start=1):
            product = normalize_product_input(raw)
            if not product["id"]:
                continue
            if product["id"] in seen:
                raise ValidationFailure(f"Product #{i} has a duplicate id.")
            seen.add(product["id"])
            products.append(product)
        return products

    def list_products(self, token: str) -> List[Dict[str, Any]]:
        profile = self.load_profile(token)
        return [p.model_dump(mode="json") for p in profile.products]

    def save_products(self, token: str, raw_products: Any) -> Dict[str, Any]:
        profile = self.load_profile(token)
        products = self._normalize_products(raw_products, profile.plan)
        if self.store.replace_products(token, products) is None:
            raise NotFoundError("Profile not found", code="profile_not_found")
        logger.info(f"Saved {len(products)} product(s) for profile {token[:8]}")
        return {"ok": True, "count": len(products), "products": products}

    def restore_inventory(self, token: str, product_id: Any, units_left: Any) -> Dict[str, Any]:
        pid = clean_id(product_id)
        if not token or not pid:
            raise ValidationFailure("Bad input")
        result: ReservationResult = self.store.restore_unit(token, pid, units_left)
        logger.info(f"Inventory restored for {token[:8]}/{pid}: matched={result.matched}")
        return {
            "ok": True,
            "matched": result.matched,
            "modified": result.modified,
            "productId": pid,
            "unitsLeft": result.units_left,
        }
