from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import ConnectionFailure
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import os

import stripe

from config.settings import Settings, get_settings
from core.detached import DetachedTaskSupervisor
from core.error_handlers import (
    app_error_handler,
    generic_exception_handler,
    http_exception_handler,
    store_unavailable_handler,
    validation_exception_handler,
)
from core.errors import AppError
from core.rate_limit import RateLimiter, build_rate_limiter
from db.mongo import MongoConnection, ensure_indexes
from integrations.klaviyo_api import KlaviyoClient

logger = logging.getLogger(__name__)


def _cors_options(raw: str):
    if raw.strip() == "*":
        allow_origins = ["*"]
    else:
        allow_origins = [o.strip() for o in raw.split(",") if o.strip()]

    # Only allow credentials when explicit origins are configured
    allow_credentials = False
    if allow_origins != ["*"]:
        allow_credentials = os.getenv("CORS_ALLOW_CREDENTIALS", "false").lower() in ("1", "true", "yes")
    return allow_origins, allow_credentials


def create_app(
    settings: Settings = None,
    mongo: MongoConnection = None,
    limiter: RateLimiter = None,
    klaviyo: KlaviyoClient = None,
) -> FastAPI:
    """
    Build the API. Long-lived collaborators live on app.state; tests pass
    their own (mongomock client, fakeredis limiter, stubbed Klaviyo session).
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key

    app = FastAPI(
        title="Launch6 Link-in-Bio API",
        description="Creator pages with product drops, email capture and funnel analytics",
        version="1.0.0",
    )

    allow_origins, allow_credentials = _cors_options(settings.cors_allow_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.mongo = mongo or MongoConnection(settings.mongodb_uri, settings.mongodb_db)
    app.state.limiter = limiter or build_rate_limiter(settings.redis_url)
    app.state.supervisor = DetachedTaskSupervisor()
    app.state.klaviyo = klaviyo or KlaviyoClient(
        settings.klaviyo_api_key,
        revision=settings.klaviyo_revision,
        timeout=settings.klaviyo_timeout_seconds,
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ConnectionFailure, store_unavailable_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Import routers
    from routes.profile_routes import router as profile_router
    from routes.product_routes import router as product_router
    from routes.public_routes import router as public_router
    from routes.tracking_routes import router as tracking_router
    from routes.subscribe_routes import router as subscribe_router
    from routes.stripe_webhook_routes import router as stripe_webhook_router
    from routes.plans_routes import router as plans_router

    app.include_router(profile_router)
    app.include_router(product_router)
    app.include_router(public_router)
    app.include_router(tracking_router)
    app.include_router(subscribe_router)
    app.include_router(stripe_webhook_router)
    app.include_router(plans_router)

    @app.on_event("startup")
    async def startup_event():
        """Initialize database indexes on startup"""
        try:
            ensure_indexes(app.state.mongo.database)
            logger.info("✓ Database indexes initialized")
        except ConnectionFailure as e:
            # Requests will answer 503 until the store is reachable
            logger.error(f"Index setup skipped, MongoDB unreachable: {e}")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Let detached event writes finish, then release the client"""
        await app.state.supervisor.drain()
        app.state.mongo.close()

    return app


app = create_app()
