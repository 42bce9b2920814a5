"""Per-request rate limiting at the API edge."""

import logging
import math

from fastapi import Request
from fastapi.responses import JSONResponse

from services.api.src.safesnap.core import rate_limit
from services.api.src.safesnap.core.rate_limit import RateLimitPolicy
from services.api.src.safesnap.routes.deps import USER_HEADER

logger = logging.getLogger(__name__)

_SKIPPED_PREFIXES = ("/docs", "/redoc", "/openapi.json", "/api/health", "/api/metrics", "/blobs")


def select_policy(path: str, method: str) -> RateLimitPolicy | None:
    """Policy guarding a request, or None for unguarded paths."""
    if path == "/" or path.startswith(_SKIPPED_PREFIXES):
        return None
    if path.startswith("/api/auth/login"):
        return rate_limit.LOGIN_ATTEMPTS
    if path.startswith("/api/auth/register"):
        return rate_limit.REGISTRATION
    if path.startswith("/api/uploads/presign"):
        return rate_limit.FILE_UPLOADS
    if method == "POST" and path.rstrip("/") == "/api/incidents":
        return rate_limit.INCIDENT_CREATION
    if path.startswith("/api/image-analysis"):
        return rate_limit.VISION_API
    if path.startswith("/api/"):
        return rate_limit.GENERAL_API
    return None


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def client_key(request: Request) -> str:
    email = request.headers.get(USER_HEADER, "").strip().lower()
    if email:
        return rate_limit.user_key(email, "api")
    return rate_limit.ip_key(client_ip(request), "api")


async def rate_limit_middleware(request: Request, call_next):
    container = request.app.state.container
    policy = select_policy(request.url.path, request.method)
    if policy is None or not container.settings.rate_limiting_enabled:
        return await call_next(request)

    limiter = container.rate_limiter
    key = client_key(request)
    if not limiter.is_allowed(key, policy):
        retry_after = limiter.time_until_refill(key, policy) or policy.refill_period_s
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate limit exceeded",
                "message": f"Too many requests. Limit: {policy.capacity} per "
                f"{int(policy.refill_period_s)}s.",
                "type": policy.name,
                "retry_after_s": math.ceil(retry_after),
            },
            headers={
                "X-RateLimit-Limit": str(policy.capacity),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Type": policy.name,
                "Retry-After": str(math.ceil(retry_after)),
            },
        )

    response = await call_next(request)
    response.headers["X-RateLimit-Limit"] = str(policy.capacity)
    response.headers["X-RateLimit-Remaining"] = str(limiter.remaining(key, policy))
    return response
