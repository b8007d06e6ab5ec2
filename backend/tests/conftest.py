import os
import tempfile

# Settings are read at import time; point them at throwaway resources first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["FILE_STORAGE_PATH"] = tempfile.mkdtemp(prefix="nimbus-blobs-")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from nimbus.database import get_db
from nimbus.main import app
from nimbus.models import Base
from nimbus.services.file_repository import FileRepository
from nimbus.services.file_storage import FileStorageService, get_file_storage

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
async def engine():
    """In-memory SQLite shared across connections for one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return FileStorageService(tmp_path / "blobs")


@pytest.fixture
def repo(db_session):
    return FileRepository(db_session, USER_ID)


@pytest.fixture
async def client(db_session, storage):
    """HTTP client against the app with the test session and blob root."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_file_storage] = lambda: storage

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-User-Id": USER_ID},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def create_file(repo, storage):
    """Factory fixture: write a blob and its record in one call."""
    async def _create_file(name, content=b"data", parent_id=None, mime_type="text/plain", tags=None):
        filename = await storage.write(content, name)
        return await repo.create_file(
            name=name,
            filename=filename,
            mime_type=mime_type,
            size=len(content),
            parent_id=parent_id,
            tags=tags,
        )

    return _create_file
