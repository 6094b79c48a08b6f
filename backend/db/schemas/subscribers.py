"""
Subscriber Schema
Email addresses captured on a creator page, unique per (editToken, email)
"""
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field


class Subscriber(BaseModel):
    """
    One captured email for one creator
    Purpose: local record kept even when the list provider call fails
    """
    editToken: str = Field(..., description="Owning profile")
    email: str = Field(..., description="Lowercased email address")
    publicSlug: str = ""
    listId: str = Field(default="", description="Provider list the address was pushed to")
    lastRef: str = Field(default="", description="Page URL of the most recent submit")
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updatedAt: Optional[datetime] = None

    class Config:
        json_schema_extra = {
            "example": {
                "editToken": "3f1c6e0a-...",
                "email": "fan@example.com",
                "publicSlug": "jane",
                "listId": "XyZ123",
                "lastRef": "https://launch6.app/jane",
            }
        }
