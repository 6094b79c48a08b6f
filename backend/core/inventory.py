"""
Inventory & Drop Engine
Derived, visitor-facing availability of a product. Never stored, recomputed on every read.

Precedence (first match wins):
1. unitsLeft known and <= 0          -> SOLD_OUT  (no buy link)
2. dropEndsAt known and in the past  -> ENDED     (no buy link)
3. otherwise                         -> ACTIVE    (buy link iff checkout URL present)

The atomic decrement that commits a sale lives in db/profile_store.py
(ProfileStore.reserve_unit); this module only reads.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from core.sanitize import (
    clamp_text,
    clean_id,
    sanitize_href_price,
    sanitize_image_src,
    MAX_BUTTON_TEXT,
    MAX_DESCRIPTION,
    MAX_TITLE,
    MAX_URL,
)
from utils.timezone import epoch_ms, parse_iso_to_utc


class ProductState(str, Enum):
    ACTIVE = "ACTIVE"
    SOLD_OUT = "SOLD_OUT"
    ENDED = "ENDED"


class CheckoutBlock(str, Enum):
    """Reasons the buy redirect refuses to send a visitor to checkout"""
    UNPUBLISHED = "unpublished"
    NO_PRICE = "noprice"
    BAD_CHECKOUT_HOST = "bad_checkout_host"
    NOT_STARTED = "not_started"
    SOLD_OUT = "soldout"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ProductStatus:
    state: ProductState
    label: str
    remaining_ms: Optional[int]
    units_left: Optional[int]
    units_total: Optional[int]
    show_buy: bool

    def to_public(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "label": self.label,
            "remainingMs": self.remaining_ms,
            "showBuy": self.show_buy,
        }


# ============================================================================
# PARSING HELPERS
# ============================================================================

def to_count_or_none(value: Any) -> Optional[int]:
    """Stored unit counts: ints, floats and numeric strings; anything else -> None"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text, 10)
        except ValueError:
            return None
    return None


def to_epoch_ms(value: Any) -> Optional[int]:
    """ISO timestamp (or datetime) -> epoch ms; malformed -> None"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    else:
        dt = parse_iso_to_utc(str(value))
        if dt is None:
            return None
    return int(dt.timestamp() * 1000)


def is_published(product: Mapping[str, Any]) -> bool:
    """Missing flag means published (legacy documents)"""
    flag = product.get("published")
    return True if flag is None else bool(flag)


# ============================================================================
# STATUS
# ============================================================================

def format_remaining(ms: Optional[int]) -> str:
    """Format ms as "Xd Yh Zm Ws" (largest non-zero unit first, seconds always shown)"""
    if ms is None or ms <= 0:
        return "ended"
    total_seconds = int(ms // 1000)
    days = total_seconds // 86400
    hours = (total_seconds % 86400) // 3600
    mins = (total_seconds % 3600) // 60
    secs = total_seconds % 60

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours or days:
        parts.append(f"{hours}h")
    if mins or hours or days:
        parts.append(f"{mins}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def product_status(product: Mapping[str, Any], now: Optional[datetime] = None) -> ProductStatus:
    """
    Compute the visitor-facing state of one product.

    Pure: the same (product, now) always yields the same status. A product
    whose timestamps cannot be parsed is ACTIVE with no countdown.
    """
    left = to_count_or_none(product.get("unitsLeft"))
    total = to_count_or_none(product.get("unitsTotal"))
    ends_ms = to_epoch_ms(product.get("dropEndsAt"))
    remaining = max(0, ends_ms - epoch_ms(now)) if ends_ms is not None else None

    has_checkout = bool(sanitize_href_price(product.get("priceUrl")))
    stock = f"{left}/{total} left" if (left is not None and total is not None) else ""

    if left is not None and left <= 0:
        return ProductStatus(ProductState.SOLD_OUT, "Sold out", remaining, left, total, False)

    if remaining == 0:
        return ProductStatus(ProductState.ENDED, "Drop ended", 0, left, total, False)

    if remaining is None:
        label = stock
    else:
        countdown = f"Ends in {format_remaining(remaining)}"
        label = f"{stock} — {countdown}" if stock else countdown

    return ProductStatus(ProductState.ACTIVE, label, remaining, left, total, has_checkout)


def checkout_block_reason(
    product: Mapping[str, Any],
    allowed_hosts: Iterable[str],
    now: Optional[datetime] = None,
) -> Optional[CheckoutBlock]:
    """First reason a buy redirect must not proceed, or None when it may"""
    now_ms = epoch_ms(now)
    price_url = sanitize_href_price(product.get("priceUrl"))
    host = ""
    if price_url.lower().startswith(("http://", "https://")):
        host = (urlsplit(price_url).hostname or "").lower()

    left = to_count_or_none(product.get("unitsLeft"))
    starts_ms = to_epoch_ms(product.get("dropStartsAt"))
    ends_ms = to_epoch_ms(product.get("dropEndsAt"))

    if not is_published(product):
        return CheckoutBlock.UNPUBLISHED
    if not host:
        return CheckoutBlock.NO_PRICE
    if not any(host == h or host.endswith(f".{h}") for h in allowed_hosts):
        return CheckoutBlock.BAD_CHECKOUT_HOST
    if starts_ms is not None and starts_ms > now_ms:
        return CheckoutBlock.NOT_STARTED
    if left is not None and left <= 0:
        return CheckoutBlock.SOLD_OUT
    if ends_ms is not None and ends_ms <= now_ms:
        return CheckoutBlock.EXPIRED
    return None


# Slugs never contain "_", so the first "__" always splits slug from product id
REFERENCE_SEP = "__"


def checkout_reference(slug: str, product_id: str) -> str:
    """Tenant-scoped client_reference_id for a hosted checkout"""
    return f"{slug}{REFERENCE_SEP}{product_id}" if slug else product_id


def split_checkout_reference(reference: str) -> Tuple[str, str]:
    """(slug, product_id) from a checkout reference; slug is "" for bare ids"""
    slug, sep, product_id = reference.partition(REFERENCE_SEP)
    if not sep or not slug or not product_id:
        return "", reference
    return slug, product_id


# ============================================================================
# WRITE-SIDE NORMALIZATION
# ============================================================================

def _to_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s in ("true", "1"):
            return True
        if s in ("false", "0", ""):
            return False
    if isinstance(value, (int, float)):
        return value == 1
    return default


def _to_iso_or_none(value: Any) -> Optional[str]:
    ms = to_epoch_ms(value)
    if ms is None:
        return None
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def normalize_product_input(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Reshape one product from a batch write.

    unitsLeft is never negative and never above unitsTotal; when only a
    total is given the stock starts full so the drop can deplete.
    """
    if not isinstance(raw, Mapping):
        raw = {}

    total = to_count_or_none(raw.get("unitsTotal"))
    left = to_count_or_none(raw.get("unitsLeft"))
    if total is not None and total < 0:
        total = None
    if left is not None and left < 0:
        left = None
    if total is not None:
        left = total if left is None else min(left, total)

    images = raw.get("images")
    price_url = sanitize_href_price(raw.get("priceUrl"))
    product = {
        "id": clean_id(raw.get("id"), 120),
        "title": clamp_text(raw.get("title"), MAX_TITLE),
        "description": clamp_text(raw.get("description"), MAX_DESCRIPTION),
        "buttonText": clamp_text(raw.get("buttonText"), MAX_BUTTON_TEXT),
        "priceUrl": price_url if len(price_url) <= MAX_URL else "",
        "imageUrl": sanitize_image_src(raw.get("imageUrl")),
        "dropStartsAt": _to_iso_or_none(raw.get("dropStartsAt")),
        "dropEndsAt": _to_iso_or_none(raw.get("dropEndsAt")),
        "unitsTotal": total,
        "unitsLeft": left,
        "published": _to_bool(raw.get("published"), default=False),
        "showTimer": _to_bool(raw.get("showTimer"), default=False),
        "showInventory": _to_bool(raw.get("showInventory"), default=True),
    }
    if isinstance(images, list):
        product["images"] = [
            {"src": sanitize_image_src(img.get("src")) if isinstance(img, Mapping) else ""}
            for img in images
        ]
    return product
