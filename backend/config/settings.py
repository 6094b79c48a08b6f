"""
Launch6 Runtime Settings
Environment-driven configuration (values from .env are loaded once at import)
"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """Process-wide settings. Secrets are held here and never echoed in responses."""
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "linkinbio"
    redis_url: str = ""

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    klaviyo_api_key: str = ""
    klaviyo_revision: str = "2024-10-15"
    klaviyo_timeout_seconds: int = 7

    allowed_checkout_hosts: List[str] = field(
        default_factory=lambda: ["buy.stripe.com", "checkout.stripe.com"]
    )
    cors_allow_origins: str = "*"
    log_level: str = "INFO"

    track_enabled: bool = True
    analytics_summary_enabled: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mongodb_uri=os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
            mongodb_db=os.getenv("MONGODB_DB", "linkinbio"),
            redis_url=os.getenv("REDIS_URL", "").strip(),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            # Accept either env var name
            klaviyo_api_key=(
                os.getenv("KLAVIYO_API_KEY") or os.getenv("KLAVIYO_PRIVATE_API_KEY") or ""
            ).strip(),
            klaviyo_revision=os.getenv("KLAVIYO_REVISION", "2024-10-15"),
            klaviyo_timeout_seconds=_env_int("KLAVIYO_TIMEOUT_SECONDS", 7),
            allowed_checkout_hosts=_env_list(
                "ALLOWED_CHECKOUT_HOSTS", "buy.stripe.com,checkout.stripe.com"
            ),
            cors_allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            track_enabled=_env_bool("TRACK_ENABLED", True),
            analytics_summary_enabled=_env_bool("ANALYTICS_SUMMARY_ENABLED", True),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings for this process"""
    return Settings.from_env()
