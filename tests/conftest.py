"""Shared fixtures for Prompt Library tests."""

from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from promptlib.app import create_app
from promptlib.config import ServerSettings
from promptlib.db import create_user, open_database

TEST_SECRET = "test-secret-key"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path: Path):
    """Keep a developer's PROMPTLIB_* variables and .env out of the tests."""
    for name in (
        "PROMPTLIB_DATABASE_URL",
        "PROMPTLIB_SECRET_KEY",
        "PROMPTLIB_API_URL",
        "PROMPTLIB_SESSION_FILE",
        "PROMPTLIB_PORT",
        "PROMPTLIB_HOST",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def server_settings(tmp_path: Path) -> ServerSettings:
    """Settings with a temporary database."""
    return ServerSettings(
        database_url=f"sqlite:///{tmp_path / 'test_prompts.db'}",
        secret_key=TEST_SECRET,
        pool_size=2,
    )


@pytest_asyncio.fixture
async def db(server_settings: ServerSettings):
    """Initialized database pool."""
    database = await open_database(server_settings.db_path, pool_size=server_settings.pool_size)
    yield database
    await database.close()


@pytest_asyncio.fixture
async def owners(db) -> tuple[str, str]:
    """Two user ids, without going through password hashing."""
    alice = await create_user(db, "alice@example.com", "hash-a")
    bob = await create_user(db, "bob@example.com", "hash-b")
    return alice["id"], bob["id"]


@pytest.fixture
def app(server_settings: ServerSettings):
    return create_app(server_settings)


@pytest_asyncio.fixture
async def http(app, server_settings: ServerSettings):
    """In-process HTTP client with an initialized database."""
    app.state.db = await open_database(server_settings.db_path, pool_size=server_settings.pool_size)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await app.state.db.close()


@pytest.fixture
def sign_up(http: AsyncClient):
    """Register, log in and return Authorization headers."""

    async def _sign_up(email: str, password: str = "secret1") -> dict:
        resp = await http.post("/api/auth/register", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        resp = await http.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    return _sign_up
