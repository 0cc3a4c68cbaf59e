import os

# Must be set before esg_auth.config is imported
os.environ.setdefault("ESG_AUTH_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ESG_AUTH_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ESG_AUTH_ENABLE_BACKGROUND_TASKS", "false")
os.environ.setdefault("ESG_AUTH_RECOVERY_CODE_BCRYPT_ROUNDS", "4")
os.environ.setdefault("ESG_AUTH_PASSWORD_BCRYPT_ROUNDS", "4")
os.environ.setdefault("ESG_AUTH_DATABASE_URL", "sqlite:///./.pytest-esg-auth.db")

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from esg_auth import models  # noqa: F401
from esg_auth.client.authenticator import SoftwareAuthenticator
from esg_auth.config import settings
from esg_auth.database import Base, get_db
from esg_auth.main import app as fastapi_app
from esg_auth.services.email import LoggingProvider, get_email_provider


@pytest.fixture
async def engine(tmp_path):
    """A fresh SQLite file per test; a file (not :memory:) so sessions can race."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mail_outbox() -> LoggingProvider:
    return LoggingProvider()


@pytest.fixture
def app(session_factory, mail_outbox):
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_email_provider] = lambda: mail_outbox
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    # https so Secure cookies are sent back
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="https://testserver") as ac:
        yield ac


@pytest.fixture
def authenticator() -> SoftwareAuthenticator:
    return SoftwareAuthenticator(origin=settings.origin)
