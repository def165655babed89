"""Shared pytest fixtures for unit and integration tests."""

import os
import uuid
from datetime import date

import pytest

# Must be set before app modules read settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass
from httpx import ASGITransport, AsyncClient

from app.api import deps
from app.config import settings
from app.main import app
from app.schemas.billing import BillingPeriod, FeeDefaults, SchoolRef
from app.services.billing_service import BillingService
from tests.fakes import FakeSchoolDirectory, InMemoryBillingStore

# Database-backed tests only run when a database is configured explicitly
requires_db = pytest.mark.skipif(
    not os.getenv("DATABASE_URL"),
    reason="DATABASE_URL must be set",
)


def make_school(students: int = 100, active: bool = True, name: str = "") -> SchoolRef:
    school_id = uuid.uuid4()
    return SchoolRef(
        id=school_id,
        name=name or f"School {str(school_id)[:8]}",
        active_student_count=students,
        is_active=active,
    )


@pytest.fixture
def api_base() -> str:
    return f"http://test{settings.API_V1_PREFIX}"


@pytest.fixture
def store() -> InMemoryBillingStore:
    return InMemoryBillingStore()


@pytest.fixture
def schools() -> list:
    return [make_school(students=n) for n in (10, 25, 120, 40, 7)]


@pytest.fixture
def directory(schools) -> FakeSchoolDirectory:
    return FakeSchoolDirectory(schools)


@pytest.fixture
def fee_defaults() -> FeeDefaults:
    return FeeDefaults(currency="KES", setup_fee_amount="5000", per_student_rate="150")


@pytest.fixture
def billing_service(store, directory, fee_defaults) -> BillingService:
    return BillingService(store, directory, fee_defaults, concurrency=3)


@pytest.fixture
def october_2026() -> BillingPeriod:
    return BillingPeriod(start=date(2026, 10, 1), end=date(2026, 10, 31))


@pytest.fixture
async def async_client(api_base: str, billing_service: BillingService):
    """API client wired to the in-memory billing service."""
    app.dependency_overrides[deps.get_billing_service] = lambda: billing_service
    transport = ASGITransport(app=app)
    client = AsyncClient(transport=transport, base_url=api_base, timeout=30.0)
    yield client
    await client.aclose()
    app.dependency_overrides.clear()
