# tests/conftest.py
"""
Shared fixtures: a file-backed SQLite database per test, seeded users and
an HTTP client bound to the app.

Each session opens its own connection, so concurrent transactions in a test
contend on the database the way separate requests would.
"""
import os
from typing import AsyncGenerator

os.environ.setdefault("APP_ENV", "test")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from carebook.db.base import Base
from tests._factories import (
    RecordingObserver,
    at,
    create_doctor,
    create_patient,
    create_slot,
)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'carebook.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A plain session for reads and assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def doctor_id(session_factory) -> int:
    return await create_doctor(session_factory, "house@example.com")


@pytest_asyncio.fixture
async def other_doctor_id(session_factory) -> int:
    return await create_doctor(
        session_factory,
        "wilson@example.com",
        first_name="James",
        last_name="Wilson",
        specialty="Oncology",
    )


@pytest_asyncio.fixture
async def patient_id(session_factory) -> int:
    return await create_patient(session_factory, "alice@example.com")


@pytest_asyncio.fixture
async def other_patient_id(session_factory) -> int:
    return await create_patient(
        session_factory, "bob@example.com", first_name="Bob", last_name="Builder"
    )


@pytest_asyncio.fixture
async def slot_id(session_factory, doctor_id) -> int:
    """Tomorrow 10:00-10:30 with the default doctor."""
    return await create_slot(session_factory, doctor_id, at(1, 10))


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    from carebook.main import app

    app.state.session_factory = session_factory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.session_factory = None


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()
