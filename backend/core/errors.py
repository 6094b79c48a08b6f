"""
Error Taxonomy
Typed failures raised by services and mapped to HTTP responses in main.py

- ValidationFailure: caller must fix input (specific human-readable reason)
- NotFoundError: unknown token/slug/product (never "exists but forbidden")
- RateLimitedError: caller must back off (distinct status + Retry-After)
- UpstreamError / StoreUnavailable: dependency failure, generic message only
"""
from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for errors with a stable error code and HTTP status"""
    status_code = 500
    code = "server_error"

    def __init__(self, message: str = "", code: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code
        self.extra = extra or {}

    def to_payload(self) -> Dict[str, Any]:
        payload = {"ok": False, "error": self.code, "message": self.message}
        payload.update(self.extra)
        return payload


class ValidationFailure(AppError):
    status_code = 400
    code = "invalid_input"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ForbiddenFeature(AppError):
    """Feature disabled on a resolved public resource (e.g. email capture off)"""
    status_code = 403
    code = "feature_disabled"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class RateLimitedError(AppError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int, message: str = "Too many requests"):
        super().__init__(message, extra={"retryAfter": retry_after})
        self.retry_after = retry_after


class UpstreamError(AppError):
    status_code = 502
    code = "upstream_failed"


class StoreUnavailable(AppError):
    status_code = 503
    code = "store_unavailable"
