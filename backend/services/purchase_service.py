"""
Purchase Service
Turns a settled checkout from the payment provider into one inventory unit.

CRITICAL RULES:
1. Only checkout.session.completed with a settled payment reserves stock
2. The provider event id is claimed BEFORE reserving, so a redelivered
   event never takes a second unit
3. reserve_unit is called at most once per event and never retried
4. Every outcome is answered 200: the payment already happened, so any
   inventory problem is logged CRITICAL for an operator to reconcile
"""
import logging
from enum import Enum
from typing import Any, Dict, Mapping, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.inventory import split_checkout_reference
from core.sanitize import clean_id, clean_slug
from db.mongo import WEBHOOK_EVENTS
from db.profile_store import ProductEntries, ProfileStore
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

COMPLETED = "checkout.session.completed"
SETTLED_STATUSES = ("paid", "no_payment_required")


class PurchaseOutcome(str, Enum):
    IGNORED = "ignored"
    UNPAID = "unpaid"
    MISSING_PRODUCT = "missing_product"
    DUPLICATE = "duplicate"
    NO_MATCH = "no_match"
    UNTRACKED = "untracked"
    SOLD_OUT = "sold_out"
    RESERVED = "reserved"
    RESERVATION_FAILED = "reservation_failed"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _token_prefix(token: str) -> str:
    return f"{token[:8]}..." if token else "-"


def extract_purchase(session: Mapping[str, Any]) -> Tuple[str, str, str]:
    """(product_id, edit_token, slug) from session metadata, with fallbacks"""
    metadata = session.get("metadata") or {}
    ref_slug, ref_product = split_checkout_reference(clean_id(session.get("client_reference_id"), 200))
    product_id = clean_id(metadata.get("productId")) or ref_product
    edit_token = clean_id(metadata.get("editToken"), 180)
    slug = clean_slug(metadata.get("l6_slug") or metadata.get("slug") or ref_slug)
    return product_id, edit_token, slug


class PurchaseService:
    def __init__(self, store: ProfileStore, db: Database):
        self.store = store
        self.webhook_events = db[WEBHOOK_EVENTS]

    def _claim(self, event_id: str, event_type: str) -> bool:
        """False when this provider event was already processed"""
        try:
            self.webhook_events.insert_one({
                "event_id": event_id,
                "type": event_type,
                "receivedAt": now_utc(),
            })
            return True
        except DuplicateKeyError:
            return False

    def _finish(self, event_id: str, outcome: PurchaseOutcome, **details: Any) -> Dict[str, Any]:
        try:
            self.webhook_events.update_one(
                {"event_id": event_id},
                {"$set": {"outcome": outcome.value, "processedAt": now_utc(), **details}},
            )
        except PyMongoError as e:
            logger.warning(f"Could not record webhook outcome for {event_id}: {e}")
        return {"outcome": outcome.value, **details}

    def _resolve_token(self, event_id: str, product_id: str, edit_token: str, slug: str) -> str:
        """Owner token for the sale; "" when the owner cannot be told apart"""
        if edit_token:
            return edit_token
        if slug:
            doc = self.store.find_by_product(product_id, slug)
        else:
            doc = self.store.find_sole_owner(product_id)
            if doc is None:
                logger.critical(
                    f"RECONCILE: unscoped checkout event_id={event_id} productId={product_id} "
                    f"has no single owning profile"
                )
        return doc.get("editToken", "") if doc else ""

    def handle_event(self, event: Mapping[str, Any]) -> Dict[str, Any]:
        event_type = event.get("type", "")
        event_id = event.get("id", "")

        if event_type != COMPLETED:
            return {"outcome": PurchaseOutcome.IGNORED.value}

        session = (event.get("data") or {}).get("object") or {}
        if session.get("payment_status") not in SETTLED_STATUSES:
            logger.info(f"Checkout {event_id} not settled ({session.get('payment_status')}), skipping")
            return {"outcome": PurchaseOutcome.UNPAID.value}

        product_id, edit_token, slug = extract_purchase(session)
        if not product_id:
            logger.warning(f"Checkout {event_id} carries no product id")
            return {"outcome": PurchaseOutcome.MISSING_PRODUCT.value}

        if not self._claim(event_id, event_type):
            logger.info(f"Duplicate delivery of {event_id}, already processed")
            return {"outcome": PurchaseOutcome.DUPLICATE.value}

        try:
            token = self._resolve_token(event_id, product_id, edit_token, slug)
            result = self.store.reserve_unit(token, product_id) if token else None
        except PyMongoError as e:
            logger.critical(
                f"RECONCILE: reservation error event_id={event_id} editToken={_token_prefix(edit_token)} "
                f"productId={product_id}: {e}"
            )
            return self._finish(event_id, PurchaseOutcome.RESERVATION_FAILED, productId=product_id)

        if result is not None and result.reserved:
            logger.info(f"Reserved 1 unit of {product_id} for {_token_prefix(token)} ({event_id})")
            return self._finish(event_id, PurchaseOutcome.RESERVED, productId=product_id)

        return self._explain_miss(event_id, token, product_id)

    def _explain_miss(self, event_id: str, token: str, product_id: str) -> Dict[str, Any]:
        """A settled payment reserved nothing: classify it for reconciliation"""
        entry = ProductEntries.find(self.store.find_by_token(token), product_id) if token else None
        if entry is None:
            outcome = PurchaseOutcome.NO_MATCH
            logger.critical(
                f"RECONCILE: no matching product event_id={event_id} "
                f"editToken={_token_prefix(token)} productId={product_id}"
            )
        elif not _is_number(entry.get("unitsLeft")):
            outcome = PurchaseOutcome.UNTRACKED
            logger.critical(
                f"RECONCILE: untracked inventory event_id={event_id} "
                f"editToken={_token_prefix(token)} productId={product_id}"
            )
        else:
            outcome = PurchaseOutcome.SOLD_OUT
            logger.critical(
                f"RECONCILE: paid after sell-out event_id={event_id} "
                f"editToken={_token_prefix(token)} productId={product_id}"
            )
        return self._finish(event_id, outcome, productId=product_id)

