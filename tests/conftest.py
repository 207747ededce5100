"""
Pytest fixtures for the allocation engine, stores, and HTTP client.

Every test gets a fresh in-memory arena and a recording notifier, so no
database or Redis server is needed. The SQL store tests build their own
SQLite engine (see test_sql_store.py).
"""

import os

# Must be set before the application settings are first read
os.environ["REDIS_ENABLED"] = "false"
os.environ["STORE_BACKEND"] = "memory"

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from stall_booking.api.deps import get_notification_dispatcher
from stall_booking.core.security import create_access_token
from stall_booking.domain.models import Genre, IdentityContext, Role, Stall, StallSize
from stall_booking.infrastructure.memory_store import MemoryRepository
from stall_booking.main import app
from stall_booking.services.allocation_engine import AllocationEngine
from stall_booking.services.genre_service import GenreService
from stall_booking.services.interfaces.notifier import ConfirmationMessage, Notifier
from stall_booking.services.notification_service import NotificationDispatcher
from stall_booking.services.stall_service import StallService
from stall_booking.services.store_factory import get_repository


class RecordingNotifier(Notifier):
    """Collects delivered confirmations; can be told to fail."""

    def __init__(self, fail_times: int = 0) -> None:
        self.fail_times = fail_times
        self.attempts = 0
        self.sent: list[ConfirmationMessage] = []

    async def send_confirmation(self, message: ConfirmationMessage) -> None:
        self.attempts += 1
        if self.fail_times < 0 or self.attempts <= self.fail_times:
            raise ConnectionError("mail relay unreachable")
        self.sent.append(message)


VENDOR = IdentityContext(
    user_id="vendor-1",
    email="vendor1@example.com",
    name="Vendor One",
    business_name="Vendor One Books",
)
OTHER_VENDOR = IdentityContext(user_id="vendor-2", email="vendor2@example.com", name="Vendor Two")
ADMIN = IdentityContext(user_id="admin-1", role=Role.ADMIN, email="admin@example.com", name="Organizer")


@pytest.fixture
def vendor() -> IdentityContext:
    return VENDOR


@pytest.fixture
def other_vendor() -> IdentityContext:
    return OTHER_VENDOR


@pytest.fixture
def admin() -> IdentityContext:
    return ADMIN


@pytest.fixture
def repository() -> MemoryRepository:
    return MemoryRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def dispatcher(notifier: RecordingNotifier) -> AsyncGenerator[NotificationDispatcher, None]:
    dispatcher = NotificationDispatcher(notifier, max_attempts=3, retry_base_delay=0)
    yield dispatcher
    await dispatcher.drain()


@pytest.fixture
def engine(repository: MemoryRepository, dispatcher: NotificationDispatcher) -> AllocationEngine:
    return AllocationEngine(repository, dispatcher, quota=3)


@pytest.fixture
def stall_service(repository: MemoryRepository) -> StallService:
    return StallService(repository)


@pytest.fixture
def make_stall(stall_service: StallService):
    """Factory that creates an AVAILABLE stall through the admin path."""

    async def _make(code: str, size: StallSize = StallSize.MEDIUM, price: str = "20000") -> Stall:
        return await stall_service.create_stall(
            ADMIN, code=code, size=size, price=Decimal(price), location=f"Hall 1 / {code}"
        )

    return _make


@pytest_asyncio.fixture
async def stall_a1(make_stall) -> Stall:
    return await make_stall("A1", StallSize.SMALL, "10000")


@pytest.fixture
def genre_service(repository: MemoryRepository) -> GenreService:
    return GenreService(repository)


@pytest_asyncio.fixture
async def fiction(genre_service: GenreService) -> Genre:
    return await genre_service.create_genre(ADMIN, "Fiction", "Novels and short stories")


@pytest_asyncio.fixture
async def children(genre_service: GenreService) -> Genre:
    return await genre_service.create_genre(ADMIN, "Children")


@pytest_asyncio.fixture(scope="function")
async def client(
    repository: MemoryRepository, dispatcher: NotificationDispatcher
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the fixture arena and recording notifier."""
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def _headers(identity: IdentityContext) -> dict:
    token = create_access_token(
        data={
            "sub": identity.user_id,
            "role": identity.role.value,
            "email": identity.email,
            "name": identity.name,
            "business_name": identity.business_name,
        }
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers() -> dict:
    """Authorization headers for VENDOR."""
    return _headers(VENDOR)


@pytest.fixture
def other_headers() -> dict:
    return _headers(OTHER_VENDOR)


@pytest.fixture
def admin_headers() -> dict:
    return _headers(ADMIN)


@pytest.fixture
def headers_for():
    """Headers for an arbitrary vendor id, for race tests."""

    def _for(user_id: str) -> dict:
        return _headers(IdentityContext(user_id=user_id, email=f"{user_id}@example.com"))

    return _for
