"""
Profile Schema
Canonical shape of a creator profile after decoding (see core/profile_codec.py)
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ProductImage(BaseModel):
    src: str = ""


class Product(BaseModel):
    """
    One entry of the keyed product collection.
    Purpose: drop window + inventory for a single checkout link
    """
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Stable product id, unique within its profile")
    title: str = ""
    description: str = ""
    buttonText: str = ""
    priceUrl: str = Field(default="", description="Hosted checkout URL")
    imageUrl: str = ""
    images: List[ProductImage] = Field(default_factory=list)
    dropStartsAt: Optional[str] = None
    dropEndsAt: Optional[str] = None
    unitsTotal: Optional[int] = Field(default=None, description="None = untracked inventory")
    unitsLeft: Optional[int] = None
    published: Optional[bool] = Field(default=None, description="None on legacy documents = published")
    showTimer: bool = False
    showInventory: bool = True


class LinkItem(BaseModel):
    label: str = ""
    url: str


class Profile(BaseModel):
    """
    Creator profile addressed by editToken (owner) or publicSlug (visitors).
    Purpose: single document holding page content, plan and products
    """
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(default=None, description="Stringified MongoDB _id")
    editToken: str
    slug: str = ""
    publicSlug: str = ""
    plan: str = "free"
    planExpiresAt: Optional[datetime] = None
    status: str = "active"
    displayName: str = ""
    bio: str = ""
    avatarUrl: str = ""
    theme: str = "launch6"
    headline: str = ""
    subtext: str = ""
    links: List[LinkItem] = Field(default_factory=list)
    social: Dict[str, str] = Field(default_factory=dict)
    products: List[Product] = Field(default_factory=list)
    collectEmail: bool = False
    klaviyoListId: str = ""
    views: int = 0
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    def owner_view(self) -> Dict[str, Any]:
        """Everything except the internal id"""
        return self.model_dump(mode="json", exclude={"id"})
