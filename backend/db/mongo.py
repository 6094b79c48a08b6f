"""
MongoDB Connection
One MongoConnection per process, created at startup and held on app.state.
The client is created lazily on first use; concurrent first callers share
a single client.
"""
import logging
import threading
from typing import Callable, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

PROFILES = "profiles"
SUBSCRIBERS = "subscribers"
EVENTS = "events"
WEBHOOK_EVENTS = "webhook_events"


class MongoConnection:
    def __init__(self, uri: str, db_name: str, client_factory: Callable[..., MongoClient] = MongoClient):
        self.uri = uri
        self.db_name = db_name
        self._client_factory = client_factory
        self._client: Optional[MongoClient] = None
        self._lock = threading.Lock()

    @property
    def client(self) -> MongoClient:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = self._client_factory(self.uri, serverSelectionTimeoutMS=5000)
                    logger.info(f"MongoDB client created for database '{self.db_name}'")
        return self._client

    @property
    def database(self) -> Database:
        return self.client[self.db_name]

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None


def ensure_indexes(db: Database) -> None:
    """Create indexes for every collection the service touches."""
    # Profiles: one owner token, one public address
    db[PROFILES].create_index("editToken", unique=True)
    db[PROFILES].create_index("slug", unique=True, sparse=True)
    db[PROFILES].create_index("publicSlug", unique=True, sparse=True)
    db[PROFILES].create_index([("products.id", ASCENDING)])

    # Subscribers: one row per creator + email
    db[SUBSCRIBERS].create_index([("editToken", ASCENDING), ("email", ASCENDING)], unique=True)

    # Analytics events
    db[EVENTS].create_index([("editToken", ASCENDING), ("ts", DESCENDING)])
    db[EVENTS].create_index([("type", ASCENDING), ("ts", DESCENDING)])

    # Payment provider redelivery guard
    db[WEBHOOK_EVENTS].create_index("event_id", unique=True)

    logger.info("MongoDB indexes ensured")
