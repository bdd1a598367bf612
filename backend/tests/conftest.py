# tests/conftest.py — Shared test fixtures
import os
import tempfile
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.setdefault("FILE_STORAGE_ROOT", tempfile.mkdtemp(prefix="taskflow-uploads-"))

import auth as auth_module
import storage
from models import Base, User, Workspace, WorkspaceMember, Task, UserRole, TaskStatus
from auth import AuthService
from database import get_db_session
from main import app

LLM_ENV_VARS = ("OPENAI_API_KEY", "GROQ_API_KEY", "LOCAL_LLM_URL", "BRAIN_PROVIDER", "BRAIN_MODEL")


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Fresh upload dir, no language-model keys, no login lockouts"""
    monkeypatch.setattr(storage, "STORAGE_ROOT", str(tmp_path / "uploads"))
    for var in LLM_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_user(db_session, email, role=UserRole.WORKER, first_name=None, last_name=None,
                    password="Password123"):
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        password_hash=AuthService.hash_password(password),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


async def make_workspace(db_session, creator, name="Engineering", members=(), is_archived=False):
    """Workspace with its creator plus ``members`` as members"""
    workspace = Workspace(name=name, created_by=creator.id, is_archived=is_archived)
    db_session.add(workspace)
    await db_session.flush()
    for member in (creator, *members):
        db_session.add(WorkspaceMember(workspace_id=workspace.id, user_id=member.id))
    await db_session.commit()
    await db_session.refresh(workspace)
    return workspace


async def make_task(db_session, workspace, creator, title="Task", status=TaskStatus.TODO, **fields):
    task = Task(title=title, workspace_id=workspace.id, created_by=creator.id, **fields)
    task.set_status(status, now=fields.get("completed_at"))
    db_session.add(task)
    await db_session.commit()
    await db_session.refresh(task)
    return task


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Create an admin user"""
    return await make_user(db_session, "admin@taskflow.dev", UserRole.ADMIN, "Ada", "Admin")


@pytest_asyncio.fixture
async def worker_user(db_session):
    """Create a worker"""
    return await make_user(db_session, "worker@taskflow.dev", UserRole.WORKER, "Wes", "Worker")


@pytest_asyncio.fixture
async def other_worker(db_session):
    """A second worker, outside the default workspaces"""
    return await make_user(db_session, "other@taskflow.dev", UserRole.WORKER, "Olive", "Other")


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token({"sub": user.id, "email": user.email})
    return {"Authorization": f"Bearer {token}"}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
