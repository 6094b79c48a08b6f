"""
Shared fixtures: an in-process MongoDB (mongomock), a memory rate limiter
and an app wired to both.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import mongomock
import pytest
import requests
from fastapi.testclient import TestClient

from config.settings import Settings
from core.rate_limit import MemoryRateLimitStore, RateLimiter
from db.mongo import MongoConnection, ensure_indexes
from db.profile_store import ProfileStore
from integrations.klaviyo_api import KlaviyoClient
from main import create_app
from services.event_sink import EventSink

WEBHOOK_SECRET = "whsec_test_secret"


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


@pytest.fixture
def mongo():
    connection = MongoConnection("mongodb://localhost:27017", "linkinbio_test", client_factory=mongomock.MongoClient)
    ensure_indexes(connection.database)
    yield connection
    connection.close()


@pytest.fixture
def db(mongo):
    return mongo.database


@pytest.fixture
def store(db):
    return ProfileStore(db)


@pytest.fixture
def sink(db):
    return EventSink(db)


@pytest.fixture
def limiter():
    return RateLimiter(MemoryRateLimitStore())


@pytest.fixture
def klaviyo_session():
    session = MagicMock(spec=requests.Session)
    session.post.return_value = MagicMock(status_code=202, text="")
    return session


@pytest.fixture
def klaviyo(klaviyo_session):
    return KlaviyoClient("pk_test", session=klaviyo_session)


@pytest.fixture
def make_profile(store):
    """Insert a current-shape profile; keyword overrides win"""
    def _make(slug="jane", plan="free", **fields):
        doc = {
            "slug": slug,
            "publicSlug": slug,
            "displayName": "Jane",
            "bio": "Prints and zines",
            "plan": plan,
            "planExpiresAt": None,
            "theme": "launch6",
            "links": [],
            "social": {},
            "products": [],
            "collectEmail": False,
            "klaviyoListId": "",
            "views": 0,
        }
        doc.update(fields)
        return store.create(doc)
    return _make


@pytest.fixture
def settings():
    return Settings(stripe_webhook_secret=WEBHOOK_SECRET, klaviyo_api_key="pk_test")


@pytest.fixture
def app(settings, mongo, limiter, klaviyo):
    return create_app(settings=settings, mongo=mongo, limiter=limiter, klaviyo=klaviyo)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def future():
    return iso(datetime.now(timezone.utc) + timedelta(days=2))


@pytest.fixture
def past():
    return iso(datetime.now(timezone.utc) - timedelta(days=2))
