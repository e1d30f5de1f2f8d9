import os

# Must be set before the application modules read their settings
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")

import asyncio
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
import uuid

from pollboard.main import app
from pollboard.core.db import Base, enable_sqlite_foreign_keys
from pollboard.core.security import create_access_token
from pollboard.repositories.poll import PollRepository
from pollboard.schemas.poll import PollInput
from pollboard.store import get_store
import pollboard.store as store_package
from pollboard.store.memory import InMemoryPollStore
from pollboard.store.sqlalchemy_store import SQLAlchemyPollStore
import pollboard.models  # noqa: F401


@pytest_asyncio.fixture(params=["memory", "sqlalchemy"])
async def store(request):
    """Each repository test runs against both store backends."""
    if request.param == "memory":
        yield InMemoryPollStore()
        return

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield SQLAlchemyPollStore(session)

    await engine.dispose()


@pytest.fixture
def repository(store) -> PollRepository:
    return PollRepository(store)


@pytest.fixture
def memory_store() -> InMemoryPollStore:
    return InMemoryPollStore()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Sessions on a SQLite file, each with its own connection."""
    engine = sqlite_file_engine(tmp_path)
    await create_schema(engine)
    yield async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    await engine.dispose()


def use_memory_store(memory_store: InMemoryPollStore) -> None:
    async def override_get_store():
        yield memory_store

    app.dependency_overrides[get_store] = override_get_store


@pytest.fixture(scope="function")
def memory_client(memory_store):
    """Create test client backed by a fresh in-memory store."""
    use_memory_store(memory_store)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(scope="function", params=["memory", "sqlalchemy"])
def client(request, memory_store, tmp_path, monkeypatch):
    """
    Create test client for each store backend.

    The sqlalchemy variant is served by the real get_store dependency,
    which opens one session per request on a throwaway SQLite file.
    """
    engine = None
    if request.param == "memory":
        use_memory_store(memory_store)
    else:
        engine = sqlite_file_engine(tmp_path)
        asyncio.run(create_schema(engine))
        monkeypatch.setattr(store_package, "uses_memory_store", lambda: False)
        monkeypatch.setattr(
            store_package,
            "AsyncSessionLocal",
            async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
        )

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

    if engine is not None:
        asyncio.run(engine.dispose())


@pytest.fixture
def owner_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def other_user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def owner_headers(owner_id) -> Dict[str, str]:
    return auth_headers(owner_id)


@pytest.fixture
def other_headers(other_user_id) -> Dict[str, str]:
    return auth_headers(other_user_id)


@pytest.fixture
def test_poll(client, owner_headers) -> dict:
    """Create a public poll through the API."""
    response = client.post("/polls", json=poll_payload(), headers=owner_headers)
    assert response.status_code == 200
    return response.json()["data"]


# Helper functions for tests
def auth_headers(user_id: str) -> Dict[str, str]:
    """Bearer token header acting as the given user."""
    token = create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}"}


def poll_payload(
    title: str = "Which language do you use most?",
    options: Optional[List[str]] = None,
    **extra
) -> dict:
    """Raw request body for creating or updating a poll."""
    payload = {
        "title": title,
        "options": options if options is not None else ["Python", "Go", "Rust"],
    }
    payload.update(extra)
    return payload


def poll_input(
    title: str = "Which language do you use most?",
    options: Optional[List[str]] = None,
    **extra
) -> PollInput:
    return PollInput(**poll_payload(title, options, **extra))


def past_date() -> str:
    return (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()


def future_date() -> str:
    return (datetime.now(timezone.utc) + timedelta(days=7)).isoformat()


def sqlite_file_engine(tmp_path):
    """Async engine on a SQLite file; NullPool gives every session a fresh connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pollboard.db'}",
        poolclass=NullPool,
        # concurrent writers wait on the file lock instead of failing
        connect_args={"timeout": 30}
    )
    enable_sqlite_foreign_keys(engine)
    return engine


async def create_schema(engine) -> None:
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
