"""
Request-scoped wiring
Builds services from the long-lived objects main.py puts on app.state.
Tests swap any of these with app.dependency_overrides.
"""
from fastapi import Depends, Request
from pymongo.database import Database

from config.settings import Settings
from core.detached import DetachedTaskSupervisor
from core.rate_limit import RateLimiter
from db.profile_store import ProfileStore
from services.event_sink import EventSink
from services.profile_service import ProfileService
from services.public_profile_service import PublicProfileService
from services.purchase_service import PurchaseService
from services.subscription_service import SubscriptionService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.mongo.database


def get_limiter(request: Request) -> RateLimiter:
    return request.app.state.limiter


def get_supervisor(request: Request) -> DetachedTaskSupervisor:
    return request.app.state.supervisor


def get_store(db: Database = Depends(get_db)) -> ProfileStore:
    return ProfileStore(db)


def get_event_sink(db: Database = Depends(get_db)) -> EventSink:
    return EventSink(db)


def get_profile_service(store: ProfileStore = Depends(get_store)) -> ProfileService:
    return ProfileService(store)


def get_public_service(
    store: ProfileStore = Depends(get_store),
    sink: EventSink = Depends(get_event_sink),
    supervisor: DetachedTaskSupervisor = Depends(get_supervisor),
    limiter: RateLimiter = Depends(get_limiter),
    settings: Settings = Depends(get_app_settings),
) -> PublicProfileService:
    return PublicProfileService(store, sink, supervisor, limiter, settings.allowed_checkout_hosts)


def get_subscription_service(
    request: Request,
    store: ProfileStore = Depends(get_store),
    db: Database = Depends(get_db),
    sink: EventSink = Depends(get_event_sink),
) -> SubscriptionService:
    return SubscriptionService(store, db, sink, request.app.state.klaviyo)


def get_purchase_service(
    store: ProfileStore = Depends(get_store),
    db: Database = Depends(get_db),
) -> PurchaseService:
    return PurchaseService(store, db)
