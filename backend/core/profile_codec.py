"""
Profile Codec
Decodes stored profile documents into the canonical Profile model.

Stored documents come in two known shapes:
- CURRENT: displayName / bio / collectEmail / klaviyoListId / theme string
- LEGACY:  name / description, a nested klaviyo {isActive, listId} object,
           theme objects ({key|preset|theme}), product "label" instead of
           "title" and the first image standing in for imageUrl

Shape detection happens once here; nothing downstream branches on field
presence.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from config.plans import normalize_plan
from core.inventory import to_count_or_none
from core.sanitize import clean_id, clean_slug, normalize_theme_value
from db.schemas.profiles import LinkItem, Product, ProductImage, Profile
from utils.timezone import from_epoch_ms, parse_iso_to_utc, to_utc

logger = logging.getLogger(__name__)


class ProfileShape(str, Enum):
    CURRENT = "current"
    LEGACY = "legacy"


_LEGACY_MARKERS = ("name", "description", "klaviyo")


def detect_shape(doc: Mapping[str, Any]) -> ProfileShape:
    if any(key in doc for key in _LEGACY_MARKERS) and "displayName" not in doc:
        return ProfileShape.LEGACY
    if isinstance(doc.get("klaviyo"), Mapping) or isinstance(doc.get("theme"), Mapping):
        return ProfileShape.LEGACY
    return ProfileShape.CURRENT


# ============================================================================
# FIELD HELPERS
# ============================================================================

def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def datetime_or_none(value: Any) -> Optional[datetime]:
    """Stored timestamp as aware UTC: datetime, ISO string or epoch ms"""
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, str):
        return parse_iso_to_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        try:
            return from_epoch_ms(value)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def _iso_or_none(value: Any):
    if isinstance(value, datetime):
        return to_utc(value).isoformat().replace("+00:00", "Z")
    text = _text(value)
    return text or None


def _published(value: Any):
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return bool(value)


def _decode_images(raw: Any) -> List[ProductImage]:
    if not isinstance(raw, list):
        return []
    images = []
    for item in raw:
        if isinstance(item, Mapping):
            images.append(ProductImage(src=_text(item.get("src") or item.get("url"))))
        elif isinstance(item, str):
            images.append(ProductImage(src=item.strip()))
    return images


def _decode_product(raw: Mapping[str, Any]) -> Product:
    images = _decode_images(raw.get("images"))
    image_url = _text(raw.get("imageUrl")) or (images[0].src if images else "")
    return Product(
        id=clean_id(raw.get("id")),
        title=_text(raw.get("title")) or _text(raw.get("label")),
        description=_text(raw.get("description")),
        buttonText=_text(raw.get("buttonText")),
        priceUrl=_text(raw.get("priceUrl")),
        imageUrl=image_url,
        images=images,
        dropStartsAt=_iso_or_none(raw.get("dropStartsAt")),
        dropEndsAt=_iso_or_none(raw.get("dropEndsAt")),
        unitsTotal=to_count_or_none(raw.get("unitsTotal")),
        unitsLeft=to_count_or_none(raw.get("unitsLeft")),
        published=_published(raw.get("published")),
        showTimer=bool(raw.get("showTimer", False)),
        showInventory=bool(raw.get("showInventory", True)),
    )


def _decode_products(raw: Any) -> List[Product]:
    if not isinstance(raw, list):
        return []
    products = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        product = _decode_product(item)
        if product.id:
            products.append(product)
    return products


def _decode_links(raw: Any) -> List[LinkItem]:
    if not isinstance(raw, list):
        return []
    links = []
    for item in raw:
        if isinstance(item, Mapping) and _text(item.get("url")):
            links.append(LinkItem(label=_text(item.get("label")), url=_text(item.get("url"))))
    return links


def _decode_social(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(k): v.strip() for k, v in raw.items() if isinstance(v, str) and v.strip()}


# ============================================================================
# DECODE
# ============================================================================

def decode_profile(doc: Mapping[str, Any]) -> Profile:
    """Stored document (either shape) -> canonical Profile"""
    shape = detect_shape(doc)

    if shape is ProfileShape.LEGACY:
        klaviyo = doc.get("klaviyo") if isinstance(doc.get("klaviyo"), Mapping) else {}
        display_name = _text(doc.get("displayName")) or _text(doc.get("name"))
        bio = _text(doc.get("bio")) or _text(doc.get("description"))
        collect_email = doc.get("collectEmail")
        if collect_email is None:
            collect_email = klaviyo.get("isActive", False)
        list_id = _text(doc.get("klaviyoListId")) or _text(klaviyo.get("listId"))
    else:
        display_name = _text(doc.get("displayName"))
        bio = _text(doc.get("bio"))
        collect_email = doc.get("collectEmail", False)
        list_id = _text(doc.get("klaviyoListId"))

    slug = clean_slug(doc.get("slug"))
    public_slug = clean_slug(doc.get("publicSlug")) or slug
    views = to_count_or_none(doc.get("views"))

    return Profile(
        id=str(doc["_id"]) if doc.get("_id") is not None else None,
        editToken=_text(doc.get("editToken")),
        slug=slug,
        publicSlug=public_slug,
        plan=normalize_plan(doc.get("plan")),
        planExpiresAt=datetime_or_none(doc.get("planExpiresAt")),
        status=_text(doc.get("status")) or "active",
        displayName=display_name,
        bio=bio,
        avatarUrl=_text(doc.get("avatarUrl")) or _text(doc.get("image")),
        theme=normalize_theme_value(doc.get("theme")),
        headline=_text(doc.get("headline")),
        subtext=_text(doc.get("subtext")),
        links=_decode_links(doc.get("links")),
        social=_decode_social(doc.get("social")),
        products=_decode_products(doc.get("products")),
        collectEmail=bool(collect_email),
        klaviyoListId=list_id,
        views=views if views and views > 0 else 0,
        createdAt=datetime_or_none(doc.get("createdAt")),
        updatedAt=datetime_or_none(doc.get("updatedAt")),
    )
