"""Pytest configuration and shared fixtures.

Unit tests use an in-memory SQLite database and mock adapters (fast).
Integration tests use real PostgreSQL via testcontainers (slow, marked).
"""

import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from services.api.src.safesnap.adapters.blob_store import BlobStore, PresignedUpload
from services.api.src.safesnap.adapters.openai_llm import GenerativeRcaClient
from services.api.src.safesnap.adapters.vision import VisionAnalysisClient
from services.api.src.safesnap.config import Settings
from services.api.src.safesnap.container import build_container
from services.api.src.safesnap.core.dispatch import InlineDispatcher
from services.api.src.safesnap.core.metrics import MetricsSink
from services.api.src.safesnap.core.rate_limit import RateLimiter
from services.api.src.safesnap.db.engine import _enable_sqlite_fks
from services.api.src.safesnap.db.models import metadata
from services.api.src.safesnap.db.repository import UserRepository
from services.api.src.safesnap.domains.safety.schemas import Caller
from services.api.src.safesnap.main import create_app
from services.api.src.safesnap.schemas.enums import Role


def pytest_configure(config):
    """Configure test environment before collection."""
    os.environ.setdefault("RUN_MIGRATIONS", "false")
    os.environ.setdefault("OPENAI_MOCK_MODE", "true")
    os.environ.setdefault("VISION_MOCK_MODE", "true")

    # Register integration marker
    config.addinivalue_line(
        "markers", "integration: tests that require real PostgreSQL (slow)"
    )


# =============================================================================
# UNIT TEST FIXTURES (fast, in-memory SQLite)
# =============================================================================

class FakeClock:
    """Manually advanced monotonic clock for rate-limit tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBlobStore(BlobStore):
    """In-memory blob store keyed by URL."""

    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects = dict(objects or {})
        self.downloads: list[str] = []

    def exists(self, url: str) -> bool:
        return url in self.objects

    def download_bytes(self, url: str) -> bytes:
        self.downloads.append(url)
        return self.objects.get(url, b"")

    def presigned_upload_url(self, kind, extension, owner_id) -> PresignedUpload:
        name = f"user_{owner_id}_1.{extension}"
        return PresignedUpload(
            upload_url=f"memory://upload/{name}",
            final_url=f"memory://{name}",
            file_name=name,
            content_type="image/jpeg",
            expires_in_s=900,
        )

    def presigned_download_url(self, url: str) -> str:
        return f"{url}?signed=1"


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(eng, "connect", _enable_sqlite_fks)
    metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MetricsSink()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(clock=clock)


@pytest.fixture
def blob_store():
    return FakeBlobStore({
        "memory://site/hardhat.jpg": b"\xff\xd8jpeg-bytes",
        "memory://site/forklift.jpg": b"\xff\xd8more-jpeg-bytes",
    })


@pytest.fixture
def vision(metrics):
    return VisionAnalysisClient(mock_mode=True, metrics=metrics)


@pytest.fixture
def llm(rate_limiter, metrics):
    return GenerativeRcaClient(rate_limiter=rate_limiter, metrics=metrics, mock_mode=True)


@pytest.fixture
def user_repo(engine):
    return UserRepository(engine)


@pytest.fixture
def worker_user(user_repo):
    return user_repo.create("worker@example.com", "Wendy Worker", "WORKER")


@pytest.fixture
def other_worker_user(user_repo):
    return user_repo.create("other@example.com", "Oscar Other", "WORKER")


@pytest.fixture
def manager_user(user_repo):
    return user_repo.create("manager@example.com", "Morgan Manager", "MANAGER")


def _caller(user: dict) -> Caller:
    return Caller(
        user_id=user["id"],
        email=user["email"],
        role=Role(user["role"]),
        full_name=user["full_name"],
    )


@pytest.fixture
def worker(worker_user):
    return _caller(worker_user)


@pytest.fixture
def other_worker(other_worker_user):
    return _caller(other_worker_user)


@pytest.fixture
def manager(manager_user):
    return _caller(manager_user)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        run_migrations=False,
        worker_pool_size=0,
        openai_mock_mode=True,
        vision_mock_mode=True,
        rate_limiting_enabled=True,
    )


@pytest.fixture
def container(test_settings, engine, blob_store, vision, llm, rate_limiter, metrics):
    """Service graph with a synchronous dispatcher: background jobs finish before submit returns."""
    c = build_container(
        test_settings,
        engine,
        dispatcher=InlineDispatcher(),
        blob_store=blob_store,
        vision=vision,
        llm=llm,
        rate_limiter=rate_limiter,
        metrics=metrics,
    )
    return c


@pytest.fixture
def client(container):
    """TestClient over an app wired to the test container."""
    with TestClient(create_app(container)) as c:
        yield c


# =============================================================================
# INTEGRATION TEST FIXTURES (slow, real PostgreSQL)
# =============================================================================

@pytest.fixture(scope="session")
def postgres_container():
    """Create a PostgreSQL container for integration tests.

    Only created if integration tests are being run.
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:15-alpine") as postgres:
        yield postgres


@pytest.fixture
def pg_engine(postgres_container):
    """Create a fresh PostgreSQL engine for each integration test."""
    url = postgres_container.get_connection_url()
    eng = create_engine(url)

    # Create all tables
    metadata.create_all(eng)

    yield eng

    # Clean up
    metadata.drop_all(eng)
    eng.dispose()
