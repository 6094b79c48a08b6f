"""
Analytics Event Schema
Append-only visitor interaction records (page views, buy clicks, email submits)
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class EventType(str, Enum):
    PAGE_VIEW = "page_view"
    BUY_CLICK = "buy_click"
    BEGIN_CHECKOUT = "begin_checkout"
    EMAIL_SUBMIT = "email_submit"


class TrackedEvent(BaseModel):
    """
    Stored shape of one analytics event
    Purpose: per-product funnel counts for the owner dashboard
    """
    type: EventType
    editToken: str = Field(default="", description="Owner the event is attributed to")
    slug: str = ""
    productId: str = ""
    ts: int = Field(..., description="Client timestamp in epoch ms (validated against server clock)")
    ref: str = ""
    ua: str = ""
    ip: str = Field(default="", description="Anonymised client address")
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: Optional[str] = Field(default=None, description="Emitter: client, server, webhook")

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "type": "buy_click",
                "editToken": "3f1c6e0a-...",
                "slug": "jane",
                "productId": "hoodie-01",
                "ts": 1760000000000,
                "ref": "https://instagram.com/",
                "ua": "Mozilla/5.0...",
                "ip": "203.0.113.0",
            }
        }
