"""Shared fixtures: a file-backed SQLite database per test and a recording mailer."""
from __future__ import annotations

import re
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import NullPool

from mystore.core.config import Settings
from mystore.core.dependencies import get_db, get_mailer
from mystore.db.base import Base
from mystore.db.session import build_engine, build_session_factory
from mystore.main import app
from mystore.models.customer import Customer
from mystore.models.user import UserRole
from mystore.schemas.user import UserCreate
from mystore.services.mailer import DeliveryReceipt, MailMessage
from mystore.services.users import create_user

TOKEN_PATTERN = re.compile(r"token=([A-Za-z0-9_\-]+)")


class RecordingMailer:
    """Mailer double that keeps sent messages or raises a configured error."""

    def __init__(self) -> None:
        self.sent: list[MailMessage] = []
        self.error: Exception | None = None

    async def send(self, message: MailMessage) -> DeliveryReceipt:
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        return DeliveryReceipt(message_id=f"<{len(self.sent)}@test>", accepted=[message.to], response="250 OK")

    def last_token(self) -> str:
        match = TOKEN_PATTERN.search(self.sent[-1].text)
        assert match, "recovery link missing from message"
        return match.group(1)


@pytest_asyncio.fixture
async def engine(tmp_path):
    settings = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    engine = build_engine(settings, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def make_user(session_factory):
    async def _make(
        email: str = "user@example.com",
        password: str = "Secret123!",
        role: UserRole = UserRole.CUSTOMER,
        name: str | None = None,
    ):
        async with session_factory() as session:
            user = await create_user(session, UserCreate(email=email, password=password, role=role))
            if name:
                session.add(Customer(name=name, user_id=user.id))
            await session.commit()
            return user

    return _make


@pytest_asyncio.fixture
async def client(session_factory, mailer) -> AsyncIterator[AsyncClient]:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
