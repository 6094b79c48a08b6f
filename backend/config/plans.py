"""
Launch6 Plan Configuration
5-TIER SYSTEM: FREE, STARTER, PRO, BUSINESS + hidden STARTER_PLUS (course/referral promo)
Quotas (products, images per product, links) + capability flags per tier
"""

from typing import Dict, Any, Optional

DEFAULT_PLAN = "free"

# Tier Configuration
PLAN_CONFIG: Dict[str, Dict[str, Any]] = {
    "free": {
        "name": "Free",
        "max_products": 1,
        "max_images": 3,
        "max_links": 5,
        "email_capture": False,   # No Klaviyo on Free
        "branding": "required",   # "Built with Launch6" badge
        "analytics": False,
        "custom_domain": False,
        "themes": 0,
        "hidden": False,
    },
    "starter": {
        "name": "Starter",
        "max_products": 3,
        "max_images": 3,
        "max_links": 15,
        "email_capture": True,
        "branding": "small",
        "analytics": False,
        "custom_domain": False,
        "themes": 0,
        "hidden": False,
    },
    "pro": {
        "name": "Pro",
        "max_products": 8,
        "max_images": 5,
        "max_links": 999,         # effectively unlimited
        "email_capture": True,
        "branding": "optional",
        "analytics": False,
        "custom_domain": False,
        "themes": 5,
        "hidden": False,
    },
    "business": {
        "name": "Business",
        "max_products": 20,
        "max_images": 10,
        "max_links": 999,
        "email_capture": True,
        "branding": "removable",
        "analytics": True,
        "custom_domain": True,
        "themes": 8,
        "hidden": False,
    },
    # Hidden promo tier (not on Pricing). Auto-downgrades to starter at planExpiresAt.
    "starter_plus": {
        "name": "Starter+",
        "max_products": 5,
        "max_images": 3,
        "max_links": 20,
        "email_capture": True,
        "branding": "small",
        "analytics": False,
        "custom_domain": False,
        "themes": 2,
        "hidden": True,
    },
}

# One step per expiry: hidden promo -> mid tier -> free
PLAN_DOWNGRADE: Dict[str, str] = {
    "starter_plus": "starter",
    "starter": "free",
}

# Historical spellings found on stored profiles
PLAN_ALIASES: Dict[str, str] = {
    "starter+": "starter_plus",
    "starterplus": "starter_plus",
}


def normalize_plan(plan: Optional[str]) -> str:
    """Map a stored plan value to a known tier key (unknown -> free)"""
    key = str(plan or DEFAULT_PLAN).strip().lower()
    key = PLAN_ALIASES.get(key, key)
    return key if key in PLAN_CONFIG else DEFAULT_PLAN


def get_plan_limits(plan: Optional[str]) -> Dict[str, Any]:
    """Get tier configuration (copy, safe to mutate)"""
    return PLAN_CONFIG[normalize_plan(plan)].copy()


def allows_email_capture(plan: Optional[str]) -> bool:
    return bool(get_plan_limits(plan)["email_capture"])


def requires_branding(plan: Optional[str]) -> bool:
    """Branding badge must be shown unless the plan makes it optional/removable"""
    return get_plan_limits(plan)["branding"] in ("required", "small")


def next_lower_plan(plan: Optional[str]) -> Optional[str]:
    """Tier a plan steps down to when it expires (None = no step)"""
    return PLAN_DOWNGRADE.get(normalize_plan(plan))


def public_plans() -> Dict[str, Dict[str, Any]]:
    """Tiers shown on the pricing page"""
    return {k: v.copy() for k, v in PLAN_CONFIG.items() if not v["hidden"]}
