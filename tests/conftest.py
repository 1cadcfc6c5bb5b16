"""
Test configuration and fixtures.

Provides:
- A throwaway SQLite database, recreated for every test
- A fresh application (own cache and broadcaster) per test
- HTTPX AsyncClient over ASGITransport
- Helpers to register users and build auth headers
"""
import os
import tempfile

# Must be set before anything imports app.core.config / app.database
_TEST_DIR = tempfile.mkdtemp(prefix="team-task-manager-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["JWT_SECRET"] = "test-secret-do-not-use-in-production"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlmodel.ext.asyncio.session import AsyncSession

from app.cache.layer import MembershipCache
from app.database import async_session, create_db_and_tables, drop_db_and_tables
from app.main import create_app

DEFAULT_PASSWORD = "password123"


# =============================================================================
# Helpers
# =============================================================================

def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def database() -> AsyncGenerator[None, None]:
    await drop_db_and_tables()
    await create_db_and_tables()
    yield


@pytest.fixture
async def session(database) -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as db:
        yield db


@pytest.fixture
def cache() -> MembershipCache:
    return MembershipCache(default_ttl=60)


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def application(database) -> FastAPI:
    return create_app()


@pytest.fixture
async def client(application: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=application), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def register(client: AsyncClient):
    """Register a user through the API; returns (token, user_id)."""

    async def _register(
        email: str, name: str = "Test User", password: str = DEFAULT_PASSWORD
    ) -> tuple[str, int]:
        response = await client.post(
            "/auth/register", json={"email": email, "password": password, "name": name}
        )
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        return data["token"], data["user"]["id"]

    return _register


@pytest.fixture
def create_team(client: AsyncClient):
    async def _create_team(token: str, name: str = "Team") -> int:
        response = await client.post("/teams", json={"name": name}, headers=auth(token))
        assert response.status_code == 201, response.text
        return response.json()["data"]["id"]

    return _create_team
