"""
Sanitization Layer
Cleans every value that crosses the public boundary.

CORE RULES:
1. Pure + synchronous: no I/O, no logging, never raises on bad input
2. Rejection means empty string (or an empty container), never an exception
3. Accepted values come back trimmed and otherwise untouched, so every
   sanitizer is idempotent
"""
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

# ============================================================================
# CONSTANTS
# ============================================================================

ALLOWED_IMAGE_EXT = (".jpg", ".jpeg", ".png", ".webp")

THEMES = ("launch6", "pastel", "modern")
BASELINE_THEME = "launch6"
# Values written by older editors
LEGACY_THEME_ALIASES = {
    "dark": BASELINE_THEME,
    "default": BASELINE_THEME,
}

SOCIAL_KEYS = ("instagram", "facebook", "tiktok", "youtube", "x", "website")

# Public text limits
MAX_TITLE = 140
MAX_BIO = 600
MAX_DESCRIPTION = 2000
MAX_BUTTON_TEXT = 60
MAX_HEADLINE = 120
MAX_SUBTEXT = 240
MAX_LABEL = 120
MAX_URL = 2000

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_ANGLE_BRACKETS_RE = re.compile(r"[<>]")
_WHITESPACE_RE = re.compile(r"\s")
_UNSAFE_URL_CHARS_RE = re.compile(r"[\s\x00-\x1f\x7f<>\"'`\\]")
_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_HTTP_RE = re.compile(r"^https?://", re.IGNORECASE)
_DATA_IMAGE_RE = re.compile(
    r"^data:image/(?:jpeg|jpg|png|webp|gif);base64,[A-Za-z0-9+/]+={0,2}$",
    re.IGNORECASE,
)
_SLUG_RE = re.compile(r"^[a-z0-9-]{3,40}$")


# ============================================================================
# TEXT
# ============================================================================

def clamp_text(value: Any, max_len: int) -> str:
    """
    Coerce to str, drop control chars and angle brackets, trim, truncate.

    Applied to every free-text field rendered publicly (title, bio,
    description, button text, headline, subtext).
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    text = _CONTROL_CHARS_RE.sub("", text)
    text = _ANGLE_BRACKETS_RE.sub("", text)
    text = text.strip()
    return text[:max(0, max_len)]


# ============================================================================
# URLS
# ============================================================================

def _has_host(url: str) -> bool:
    try:
        return bool(urlsplit(url).netloc)
    except ValueError:
        return False


def sanitize_image_src(value: Any) -> str:
    """
    Accept only:
      - absolute http(s):// URL
      - root-relative path ("/img.png", never "//host")
      - data:image/{jpeg|jpg|png|webp|gif};base64,... URI
    Anything else returns "".
    """
    if not isinstance(value, str):
        return ""
    src = value.strip()
    if not src:
        return ""

    if src[:5].lower() == "data:":
        return src if _DATA_IMAGE_RE.match(src) else ""

    if _UNSAFE_URL_CHARS_RE.search(src):
        return ""

    if _HTTP_RE.match(src):
        return src if _has_host(src) else ""

    if src.startswith("/") and not src.startswith("//"):
        return src

    return ""


def _normalize_href(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    href = value.strip()
    if not href or _UNSAFE_URL_CHARS_RE.search(href):
        return ""

    lowered = href.lower()
    if lowered.startswith("mailto:") or lowered.startswith("tel:"):
        return href

    if _HTTP_RE.match(href):
        return href if _has_host(href) else ""

    scheme = _SCHEME_RE.match(href)
    if scheme:
        # "example.com:8080/shop" is a host with a port, not a scheme
        if "." in scheme.group(1):
            return f"https://{href}"
        return ""

    if href.startswith("/"):
        return ""

    # Bare domain heuristic
    if "." in href:
        return f"https://{href}"

    return ""


def sanitize_href_link(value: Any) -> str:
    """Normalize a link target ("example.com" becomes "https://example.com")"""
    return _normalize_href(value)


def sanitize_href_price(value: Any) -> str:
    """Normalize a hosted-checkout URL (host allowlist is checked at buy time)"""
    return _normalize_href(value)


def is_allowed_image_url(url: Any) -> bool:
    """Absolute http(s) URL whose path ends in an allowed image extension"""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return False
    return parts.path.lower().endswith(ALLOWED_IMAGE_EXT)


# ============================================================================
# ENUMS / OBJECTS
# ============================================================================

def normalize_theme_value(value: Any) -> str:
    """
    Closed theme set, case-insensitive.

    Legacy shapes: {"key"|"preset"|"theme": "..."} objects and the literal
    "dark" resolve to the baseline (or the modern theme they name).
    """
    if isinstance(value, dict):
        candidates = [value.get(name) for name in ("key", "preset", "theme")]
        named = [c.strip().lower() for c in candidates if isinstance(c, str) and c.strip()]
        known = [c for c in named if c in THEMES or c in LEGACY_THEME_ALIASES]
        value = known[0] if known else None

    if not isinstance(value, str):
        return BASELINE_THEME

    key = value.strip().lower()
    if key in THEMES:
        return key
    return LEGACY_THEME_ALIASES.get(key, BASELINE_THEME)


def _social_value(raw: str) -> str:
    """Handles (@jane) stay text; anything URL-shaped goes through the href gate"""
    cleaned = clamp_text(raw, MAX_URL)
    if ":" in cleaned or "/" in cleaned:
        return _normalize_href(cleaned)
    return cleaned


def sanitize_social_object(value: Any) -> Dict[str, str]:
    """Keep only allow-listed platform keys with non-empty string values"""
    if not isinstance(value, dict):
        return {}
    social: Dict[str, str] = {}
    for key in SOCIAL_KEYS:
        raw = value.get(key)
        if not isinstance(raw, str):
            continue
        cleaned = _social_value(raw)
        if cleaned:
            social[key] = cleaned
    return social


def sanitize_links(value: Any, max_items: Optional[int] = None) -> List[Dict[str, str]]:
    """Ordered {label, url} list; entries without a usable URL are dropped"""
    if not isinstance(value, list):
        return []
    links: List[Dict[str, str]] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        url = sanitize_href_link(item.get("url"))
        if not url:
            continue
        links.append({"label": clamp_text(item.get("label"), MAX_LABEL), "url": url})
        if max_items is not None and len(links) >= max_items:
            break
    return links


# ============================================================================
# IDENTIFIERS
# ============================================================================

def is_valid_slug(slug: Any) -> bool:
    return isinstance(slug, str) and bool(_SLUG_RE.match(slug))


def clean_id(value: Any, max_len: int = 120) -> str:
    """Identifier from a query/body: control chars removed, trimmed, truncated"""
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    return _CONTROL_CHARS_RE.sub("", text).strip()[:max_len]


def clean_slug(value: Any, max_len: int = 80) -> str:
    return clean_id(value, max_len).lower()


def is_valid_email(email: Any) -> bool:
    """Small structural check: local@domain.tld, no spaces"""
    if not isinstance(email, str):
        return False
    s = email.strip()
    if not s or _WHITESPACE_RE.search(s):
        return False
    at = s.find("@")
    if at <= 0:
        return False
    dot = s.find(".", at + 2)
    if dot <= at + 1:
        return False
    if dot >= len(s) - 1:
        return False
    return True
