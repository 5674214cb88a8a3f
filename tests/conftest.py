import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from database import Base, build_engine
from services.csv_reader import parse_delimited
from services.field_mapper import ColumnMapping, parse_mapping_target
from services.storage import StorageService

ORG = "acme"


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """A fresh SQLite database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'imports.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
def store(sessionmaker):
    return StorageService(sessionmaker)


@pytest_asyncio.fixture()
async def client(store):
    from main import app
    from routers.imports import get_storage

    app.dependency_overrides[get_storage] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


def mappings(pairs):
    """[("Email", "email"), ("Extra", "meta:extra")] -> ColumnMappings"""
    return [ColumnMapping(column, parse_mapping_target(target)) for column, target in pairs]


def rows_of(text):
    return parse_delimited(text).rows
