"""
Exception handlers
Every failure leaves the API as {"ok": false, "error": <code>, ...}.
Dependency failures are logged server-side and answered generically.
"""
import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import ConnectionFailure
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.errors import AppError, RateLimitedError, StoreUnavailable

logger = logging.getLogger(__name__)


async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.debug(f"Request validation failed on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"ok": False, "error": "invalid_request"})


async def store_unavailable_handler(request: Request, exc: ConnectionFailure):
    logger.error(f"Document store unavailable on {request.url.path}: {exc}")
    unavailable = StoreUnavailable("Service temporarily unavailable")
    return JSONResponse(status_code=unavailable.status_code, content=unavailable.to_payload())


async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"ok": False, "error": "server_error"})
