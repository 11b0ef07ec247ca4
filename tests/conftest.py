"""
Configurazione pytest e fixture comuni.
"""
import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from core import diagnostics_state
from core.database import Base, DocumentCollection
from tests.mocks import create_fake_redis


@pytest.fixture(autouse=True)
def reset_diagnostics():
    """Contatori diagnostici puliti per ogni test."""
    diagnostics_state.reset()
    yield
    diagnostics_state.reset()


@pytest.fixture
def fake_redis():
    """Fixture per Redis in-memory."""
    return create_fake_redis()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """SQLite su file (aiosqlite): ogni sessione ha la sua connessione."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'documents.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def collection(session_factory):
    """Collezione con nome casuale, come nei test originali sugli utenti."""
    collection = DocumentCollection(f"test-users-{uuid.uuid4().hex[:10]}", session_factory=session_factory)
    yield collection
    await collection.drop()
