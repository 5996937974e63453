"""Pytest configuration and fixtures for async testing."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ASAAS_WEBHOOK_TOKEN", "test-webhook-token")
os.environ.setdefault("APP_ENV", "test")

from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.database import Base
from roombook.integrations.side_effects import SideEffectRunner
from roombook.main import app
from roombook.models import Booking, Credit, Product, Room, User
from tests.utils.factories import (
    BookingFactory,
    CreditFactory,
    ProductFactory,
    RoomFactory,
    UserFactory,
)
from tests.utils.helpers import RecordingEmailClient, TestAsyncSessionLocal, test_engine


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestAsyncSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
def email_client() -> RecordingEmailClient:
    """Email client capturing outgoing messages."""
    return RecordingEmailClient()


@pytest.fixture(scope="function")
def side_effect_runner(email_client: RecordingEmailClient) -> SideEffectRunner:
    """Side-effect runner bound to the test database."""
    return SideEffectRunner(
        session_factory=TestAsyncSessionLocal,
        timeout_seconds=2,
        email_client=email_client,
    )


@pytest_asyncio.fixture(scope="function")
async def async_client(
    db_session: AsyncSession,
    side_effect_runner: SideEffectRunner,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client with database and side-effect overrides.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    from roombook.api.deps import get_db, get_side_effect_runner

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        """Use the test session."""
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_side_effect_runner] = lambda: side_effect_runner

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_user(db_session: AsyncSession) -> User:
    """Unverified customer."""
    user = User(**UserFactory.create())
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture(scope="function")
async def test_room(db_session: AsyncSession) -> Room:
    """Room with an hourly rate of R$50,00."""
    room = Room(**RoomFactory.create({"hourly_rate": 5000}))
    db_session.add(room)
    await db_session.commit()
    return room


@pytest_asyncio.fixture(scope="function")
async def make_booking(db_session: AsyncSession, test_user: User, test_room: Room):
    """
    Factory fixture creating bookings for the test user and room.

    Returns:
        Async callable accepting Booking field overrides
    """

    async def _make(product: Optional[Product] = None, **overrides) -> Booking:
        data = BookingFactory.create(
            {
                "user_id": test_user.id,
                "room_id": test_room.id,
                "product_id": product.id if product else None,
                **overrides,
            }
        )
        booking = Booking(**data)
        db_session.add(booking)
        await db_session.commit()
        return booking

    return _make


@pytest_asyncio.fixture(scope="function")
async def make_credit(db_session: AsyncSession, test_user: User):
    """
    Factory fixture creating credits for the test user.

    Returns:
        Async callable accepting Credit field overrides
    """

    async def _make(**overrides) -> Credit:
        credit = Credit(**CreditFactory.create({"user_id": test_user.id, **overrides}))
        db_session.add(credit)
        await db_session.commit()
        return credit

    return _make


@pytest_asyncio.fixture(scope="function")
async def make_product(db_session: AsyncSession):
    """
    Factory fixture creating products.

    Returns:
        Async callable accepting Product field overrides
    """

    async def _make(**overrides) -> Product:
        product = Product(**ProductFactory.create(overrides))
        db_session.add(product)
        await db_session.commit()
        return product

    return _make
