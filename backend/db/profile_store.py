"""
Profile Store
Persistence for creator profiles and their embedded product collection.

CRITICAL RULES:
1. A profile is addressed by editToken (owner) or publicSlug/slug (visitors);
   the internal _id is never exposed and never accepted from callers
2. Products are a keyed collection inside the profile document. Single-entry
   reads and writes go through ProductEntries, never through array indexes
3. reserve_unit is ONE conditional update (no pre-read). The stock check and
   the decrement happen in the same document operation, so N units can be
   reserved at most N times no matter how many callers race
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from core.errors import ConflictError, ValidationFailure
from db.mongo import PROFILES
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class ProductEntries:
    """
    Addresses the embedded `products` array as a map of id -> record.

    entry_filter("p1", unitsLeft={"$gte": 1})
        -> {"products": {"$elemMatch": {"id": "p1", "unitsLeft": {"$gte": 1}}}}
    entry_field("unitsLeft")
        -> "products.$.unitsLeft"  (positional: the entry matched by the filter)
    """
    FIELD = "products"

    @classmethod
    def entry_filter(cls, product_id: str, **conditions: Any) -> Dict[str, Any]:
        return {cls.FIELD: {"$elemMatch": {"id": product_id, **conditions}}}

    @classmethod
    def entry_field(cls, name: str) -> str:
        return f"{cls.FIELD}.$.{name}"

    @classmethod
    def find(cls, doc: Optional[Mapping[str, Any]], product_id: str) -> Optional[Dict[str, Any]]:
        if not doc:
            return None
        for entry in doc.get(cls.FIELD) or []:
            if isinstance(entry, dict) and entry.get("id") == product_id:
                return entry
        return None


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of one atomic reserve: matched=0 means sold out or unknown"""
    matched: int
    modified: int
    units_left: Optional[int] = None

    @property
    def reserved(self) -> bool:
        return self.modified == 1


class ProfileStore:
    def __init__(self, db: Database):
        self.db = db
        self.profiles = db[PROFILES]

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    def find_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        return self.profiles.find_one({"editToken": token})

    def find_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        if not slug:
            return None
        slug = slug.lower()
        return self.profiles.find_one({"$or": [{"publicSlug": slug}, {"slug": slug}]})

    def find_by_product(self, product_id: str, slug: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Profile owning product_id, narrowed to slug when one is given"""
        if not product_id:
            return None
        query: Dict[str, Any] = {"products.id": product_id}
        if slug:
            slug = slug.lower()
            query["$or"] = [{"publicSlug": slug}, {"slug": slug}]
        return self.profiles.find_one(query)

    def find_sole_owner(self, product_id: str) -> Optional[Dict[str, Any]]:
        """The one profile owning product_id; None when zero or several do"""
        if not product_id:
            return None
        owners = list(self.profiles.find({"products.id": product_id}).limit(2))
        return owners[0] if len(owners) == 1 else None

    def slug_taken(self, slug: str, exclude_token: Optional[str] = None) -> bool:
        query: Dict[str, Any] = {"$or": [{"publicSlug": slug}, {"slug": slug}]}
        if exclude_token:
            query["editToken"] = {"$ne": exclude_token}
        return self.profiles.count_documents(query, limit=1) > 0

    # ========================================================================
    # WRITES
    # ========================================================================

    def create(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(doc)
        record.pop("_id", None)
        record.setdefault("editToken", str(uuid.uuid4()))
        now = now_utc()
        record.setdefault("createdAt", now)
        record.setdefault("updatedAt", now)
        try:
            self.profiles.insert_one(record)
        except DuplicateKeyError:
            raise ConflictError("That page address is already taken", code="slug_taken")
        return record

    def update_fields(self, token: str, fields: Dict[str, Any]) -> int:
        """$set fields on one profile; returns matched count"""
        update = dict(fields)
        update["updatedAt"] = now_utc()
        try:
            result = self.profiles.update_one({"editToken": token}, {"$set": update})
        except DuplicateKeyError:
            raise ConflictError("That page address is already taken", code="slug_taken")
        return result.matched_count

    def replace_products(self, token: str, products: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Batch replace of the whole product collection"""
        return self.profiles.find_one_and_update(
            {"editToken": token},
            {"$set": {ProductEntries.FIELD: products, "updatedAt": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )

    def step_down_plan(
        self,
        profile_id: Any,
        from_plan: Any,
        to_plan: str,
        expected_expiry: Any,
    ) -> bool:
        """
        Move an expired plan one tier down.

        Guarded on the plan and expiry the caller read, so two concurrent
        readers of the same expired profile step it down once.
        """
        result = self.profiles.update_one(
            {"_id": profile_id, "plan": from_plan, "planExpiresAt": expected_expiry},
            {"$set": {"plan": to_plan, "planExpiresAt": None, "updatedAt": now_utc()}},
        )
        return result.modified_count == 1

    def increment_views(self, slug: str) -> None:
        slug = slug.lower()
        self.profiles.update_one(
            {"$or": [{"publicSlug": slug}, {"slug": slug}]},
            {"$inc": {"views": 1}},
        )

    # ========================================================================
    # INVENTORY
    # ========================================================================

    def reserve_unit(self, token: str, product_id: str) -> ReservationResult:
        """
        Atomically take one unit of product_id.

        The filter only matches while the entry's unitsLeft is a number >= 1,
        and the update decrements that same entry. matched=0 is a normal
        outcome (sold out, untracked stock, unknown token or product).
        """
        query = {"editToken": token}
        query.update(ProductEntries.entry_filter(product_id, unitsLeft={"$type": "number", "$gte": 1}))
        result = self.profiles.update_one(
            query,
            {"$inc": {ProductEntries.entry_field("unitsLeft"): -1}},
        )
        return ReservationResult(result.matched_count, result.modified_count)

    def restore_unit(self, token: str, product_id: str, units_left: Any) -> ReservationResult:
        """Owner correction: set unitsLeft on one entry (never above unitsTotal)"""
        if isinstance(units_left, bool) or not isinstance(units_left, int) or units_left < 0:
            raise ValidationFailure("unitsLeft must be a non-negative integer")

        doc = self.profiles.find_one(
            {"editToken": token, "products.id": product_id},
            {"products": 1},
        )
        entry = ProductEntries.find(doc, product_id)
        if entry is None:
            return ReservationResult(0, 0)

        total = entry.get("unitsTotal")
        if isinstance(total, int) and not isinstance(total, bool) and 0 <= total < units_left:
            units_left = total

        query = {"editToken": token}
        query.update(ProductEntries.entry_filter(product_id))
        result = self.profiles.update_one(
            query,
            {"$set": {ProductEntries.entry_field("unitsLeft"): units_left, "updatedAt": now_utc()}},
        )
        return ReservationResult(result.matched_count, result.modified_count, units_left)
