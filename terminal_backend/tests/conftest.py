"""
Centralized Test Configuration.
"""

import json
from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from terminal_backend.app.main import app
from terminal_backend.app.db.session import get_db, Base
from terminal_backend.app.core.reliability import event_circuit_breaker
from terminal_backend.app.models.tariff import Tariff
from terminal_backend.app.models.tariff_enums import PricingModel, TariffStatus, TariffType, UnitOfMeasure
from terminal_backend.app.schemas.tariff import TariffCreate
import terminal_backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ACTOR = "ops.tester"


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.published = []
        self._closed = False

    async def ping(self):
        return not self._closed

    async def publish(self, channel, message):
        if self._closed:
            raise ConnectionError("Connection closed by server.")
        self.published.append((channel, json.loads(message)))
        return 1

    def events(self, name=None):
        return [message for _, message in self.published if name is None or message["event"] == name]

    async def aclose(self):
        self._closed = True


@pytest.fixture(autouse=True)
def redis_mock():
    """Swap the module-level Redis client used by the event publisher."""
    mock = MockRedis()
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock
    event_circuit_breaker.reset_state()
    yield mock
    redis_client_module.redis_client = original_client
    event_circuit_breaker.reset_state()


@pytest.fixture
async def session_factory():
    """Fresh in-memory database per test, wired into the app's get_db."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield factory

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def actor_headers():
    return {"X-Actor-Id": ACTOR}


@pytest.fixture
def tariff_create():
    """Build a TariffCreate for a general storage tariff, with overrides."""
    def build(**overrides) -> TariffCreate:
        data = {
            "tariff_name": "Container storage",
            "description": "Daily storage per container",
            "tariff_type": TariffType.STORAGE,
            "pricing_model": PricingModel.VARIABLE,
            "unit_of_measure": UnitOfMeasure.DAY,
            "effective_date": date(2020, 1, 1),
            "base_price": Decimal("100.00"),
        }
        data.update(overrides)
        return TariffCreate(**data)
    return build


@pytest.fixture
def make_tariff():
    """Build an in-memory (unsaved) active Tariff for pricing tests."""
    def build(**overrides) -> Tariff:
        values = {
            "id": "tariff-1",
            "tariff_code": "TR-ST-2024-001",
            "tariff_name": "Container storage",
            "description": "",
            "tariff_type": TariffType.STORAGE,
            "status": TariffStatus.ACTIVE,
            "pricing_model": PricingModel.VARIABLE,
            "unit_of_measure": UnitOfMeasure.CONTAINER,
            "client_id": None,
            "effective_date": date(2020, 1, 1),
            "expiry_date": None,
            "base_price": Decimal("100.00"),
            "currency": "USD",
            "minimum_charge": None,
            "maximum_charge": None,
            "pricing_structure": {"model": "flat"},
            "applicable_conditions": None,
            "discount_policy": None,
            "tax_information": None,
            "version_history": [],
        }
        values.update(overrides)
        return Tariff(**values)
    return build
