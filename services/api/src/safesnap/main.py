import logging
import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.api.src.safesnap.config import settings
from services.api.src.safesnap.container import Container, build_container
from services.api.src.safesnap.core.errors import (
    AccessDeniedError,
    AiServiceError,
    AuthenticationError,
    BlobStoreError,
    ConflictError,
    NotFoundError,
    RateLimitExceededError,
    SafeSnapError,
    ValidationError,
)
from services.api.src.safesnap.db.models import metadata
from services.api.src.safesnap.middleware import rate_limit_middleware
from services.api.src.safesnap.routes import api_router

logger = logging.getLogger(__name__)

_STATUS_CODES = [
    (NotFoundError, 404),
    (AccessDeniedError, 403),
    (AuthenticationError, 401),
    (ValidationError, 400),
    (ConflictError, 409),
    (AiServiceError, 502),
    (BlobStoreError, 502),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services, create tables and start the worker pool."""
    if getattr(app.state, "container", None) is None:
        app.state.container = build_container()
    container: Container = app.state.container

    if container.settings.run_migrations:
        metadata.create_all(container.engine)
    container.dispatcher.start()
    logger.info("safesnap_started", extra={"llm_mode": container.llm.mode})

    yield

    container.dispatcher.shutdown()


async def safesnap_error_handler(request: Request, exc: SafeSnapError) -> JSONResponse:
    if isinstance(exc, RateLimitExceededError):
        headers = {}
        if exc.retry_after_s is not None:
            headers["Retry-After"] = str(math.ceil(exc.retry_after_s))
        return JSONResponse(
            status_code=429,
            content={"detail": str(exc), "quota": exc.quota, "remaining": exc.remaining},
            headers=headers,
        )

    for cls, status in _STATUS_CODES:
        if isinstance(exc, cls):
            if status >= 500:
                logger.error("backend_error", extra={"path": request.url.path, "error": str(exc)})
            return JSONResponse(status_code=status, content={"detail": str(exc)})

    logger.error("unmapped_error", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(container: Container | None = None) -> FastAPI:
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="SafeSnap API", lifespan=lifespan)
    app.state.container = container

    app.middleware("http")(rate_limit_middleware)

    # CORS for frontend
    cors_origins = [
        "http://localhost:3000",
        "http://localhost:3001",
        "https://localhost:3000",
    ]
    if settings.cors_origin:
        cors_origins.append(settings.cors_origin)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_origin_regex=r"http://192\.168\.\d+\.\d+:\d+",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SafeSnapError, safesnap_error_handler)

    app.include_router(api_router)

    @app.get("/")
    def root() -> dict[str, str]:
        return {"service": "safesnap-api", "docs": "/docs"}

    return app


app = create_app()
