"""
Event Sink
Best-effort analytics: visitor events in, per-product funnel counts out.

Writes never fail the request that produced them. A lost event is logged
and forgotten.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from core.sanitize import clean_id
from db.mongo import EVENTS
from db.schemas.events import EventType, TrackedEvent
from middleware.client_info import anonymize_ip
from utils.timezone import epoch_ms, from_epoch_ms

logger = logging.getLogger(__name__)

ALLOWED_TYPES = {t.value for t in EventType}
FUTURE_SKEW_MS = 5 * 60 * 1000
DEFAULT_SUMMARY_DAYS = 7
MAX_SUMMARY_DAYS = 90


def _slice(value: Any, n: int) -> str:
    if value is None:
        return ""
    return str(value)[:n]


def accept_ts(raw: Any, now_ms: int) -> int:
    """Client timestamp when it is positive and not ahead of the clock, else now"""
    if isinstance(raw, bool):
        return now_ms
    try:
        ts = float(raw)
    except (TypeError, ValueError):
        return now_ms
    if ts != ts or ts <= 0 or ts >= now_ms + FUTURE_SKEW_MS:
        return now_ms
    return int(ts)


def clamp_days(raw: Any) -> int:
    try:
        days = int(str(raw if raw is not None else DEFAULT_SUMMARY_DAYS).strip())
    except ValueError:
        days = DEFAULT_SUMMARY_DAYS
    if days == 0:
        days = DEFAULT_SUMMARY_DAYS
    return max(1, min(MAX_SUMMARY_DAYS, days))


class EventSink:
    def __init__(self, db: Database):
        self.collection = db[EVENTS]

    def build_event(
        self,
        event_type: Any,
        product_id: Any = "",
        edit_token: Any = "",
        slug: Any = "",
        ts: Any = None,
        ref: Any = "",
        ua: Any = "",
        ip: Any = "",
        source: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[TrackedEvent]:
        """
        Shape and clamp one event.

        Returns None for unknown types or when no identifier (product,
        token or slug) is present, so junk never reaches the collection.
        """
        kind = _slice(event_type, 48)
        if kind not in ALLOWED_TYPES:
            return None

        product = clean_id(product_id, 160)
        token = clean_id(edit_token, 180)
        page = clean_id(slug, 120).lower()
        if not (product or token or page):
            return None

        return TrackedEvent(
            type=EventType(kind),
            productId=product,
            editToken=token,
            slug=page,
            ts=accept_ts(ts, epoch_ms(now)),
            ref=_slice(ref, 900),
            ua=_slice(ua, 260),
            ip=anonymize_ip(str(ip or "")),
            source=source,
        )

    def record(self, event: Optional[TrackedEvent]) -> bool:
        if event is None:
            return False
        try:
            self.collection.insert_one(event.model_dump(mode="python"))
            return True
        except PyMongoError as e:
            logger.warning(f"Event insert failed ({event.type}): {e}")
            return False

    def summarize(
        self,
        edit_token: str,
        days: Any = DEFAULT_SUMMARY_DAYS,
        types: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Per (productId, type) counts over the last `days` days.

        Sorted by count desc, then most recent activity desc.
        """
        window = clamp_days(days)
        to_ms = epoch_ms(now)
        from_ms = to_ms - window * 24 * 60 * 60 * 1000

        wanted: List[str] = sorted({t for t in (types or ALLOWED_TYPES) if t in ALLOWED_TYPES}) or sorted(ALLOWED_TYPES)
        pipeline = [
            {"$match": {
                "editToken": edit_token,
                "ts": {"$gte": from_ms, "$lte": to_ms},
                "type": {"$in": wanted},
            }},
            {"$group": {
                "_id": {"productId": "$productId", "type": "$type"},
                "count": {"$sum": 1},
                "lastTs": {"$max": "$ts"},
            }},
            {"$project": {
                "_id": 0,
                "productId": "$_id.productId",
                "type": "$_id.type",
                "count": 1,
                "lastTs": 1,
            }},
            {"$sort": {"count": -1, "lastTs": -1}},
        ]
        totals = list(self.collection.aggregate(pipeline))

        return {
            "range": {
                "from": from_ms,
                "to": to_ms,
                "days": window,
                "fromIso": from_epoch_ms(from_ms).isoformat(),
                "toIso": from_epoch_ms(to_ms).isoformat(),
            },
            "totals": totals,
        }
