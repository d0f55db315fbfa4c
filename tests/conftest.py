# tests/conftest.py
import json
import os

# Set up test environment variables BEFORE any other imports
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("OPENROUTER_API_KEY", "")
os.environ.setdefault("GEMINI_API_KEY", "")
os.environ.setdefault("LOG_FORMAT", "simple")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.config import Settings
from app.core.security import TokenAuthenticator
from app.database import build_engine, build_session_factory
from app.main import create_app
from app.services.llm import ProviderRegistry
from models import Base

from tests.factories import FakeProvider, create_user

TEST_SECRET_KEY = "test-secret-key-for-signing-bearer-tokens"


@pytest.fixture
def database_url(tmp_path):
    """One SQLite file per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def test_settings(database_url):
    """Settings for the application under test."""
    return Settings(
        environment="testing",
        secret_key=TEST_SECRET_KEY,
        database_url=database_url,
        test_database_url=database_url,
        openrouter_api_key="test-openrouter-key",
        gemini_api_key=None,
        default_model="openai/gpt-4o-mini",
        available_models="openai/gpt-4o-mini,anthropic/claude-3.5-haiku",
        default_system_prompt="You are a helpful assistant.",
        summarization_prompt="Summarize the conversation.",
        generation_stats_max_attempts=3,
        generation_stats_min_wait=0,
        generation_stats_max_wait=0,
        log_format="simple",
    )


@pytest_asyncio.fixture
async def engine(database_url):
    """Create the test database schema."""
    engine = build_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def test_db(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# User fixtures
@pytest_asyncio.fixture
async def test_user(test_db):
    """Create a test user."""
    return await create_user(test_db, username="testuser", email="test@example.com")


@pytest_asyncio.fixture
async def test_user_2(test_db):
    """Create a second test user."""
    return await create_user(test_db, username="testuser2", email="test2@example.com")


# Provider fixtures
@pytest.fixture
def fake_provider():
    """Scripted provider answering "Hello, world!" in four chunks."""
    return FakeProvider()


@pytest.fixture
def provider_registry(test_settings, fake_provider):
    return ProviderRegistry(test_settings, builders={"openrouter": lambda config: fake_provider})


# Application fixtures
@pytest_asyncio.fixture
async def app(test_settings, engine, session_factory, provider_registry):
    """Application wired to the test database and the scripted provider."""
    application = create_app(test_settings)
    await application.state.engine.dispose()
    application.state.engine = engine
    application.state.session_factory = session_factory
    application.state.provider_registry = provider_registry
    yield application


@pytest.fixture
def authenticator():
    return TokenAuthenticator(TEST_SECRET_KEY)


@pytest_asyncio.fixture
async def client(app):
    """Create an unauthenticated test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def authenticated_client(app, authenticator, test_user):
    """Create a test client sending a bearer token for ``test_user``."""
    token = authenticator.create_token(test_user.username, email=test_user.email)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def other_client(app, authenticator, test_user_2):
    """Create a test client sending a bearer token for ``test_user_2``."""
    token = authenticator.create_token(test_user_2.username, email=test_user_2.email)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as ac:
        yield ac


# Utility fixtures
@pytest.fixture
def parse_sse():
    """Decode a text/event-stream body into the list of JSON frames."""

    def _parse(body: str) -> list[dict]:
        return [
            json.loads(line[len("data: "):])
            for line in body.splitlines()
            if line.startswith("data: ")
        ]

    return _parse
