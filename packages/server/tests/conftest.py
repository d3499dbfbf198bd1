"""
Shared fixtures: in-memory SQLite (aiosqlite) store, a fake Redis counter
and an httpx client bound to a fresh application.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import tenantgate.models  # noqa: F401  populate metadata
from tenantgate.core.auth import RequestContext
from tenantgate.core.config import Settings
from tenantgate.core.database import get_session
from tenantgate.core.hooks import HookPipeline
from tenantgate.main import create_app
from tenantgate.models.org_member import OrgMember
from tenantgate.models.organization import Organization
from tenantgate.models.user import User


class FakePipeline:
    """Queues commands and runs them against FakeRedis on execute()."""

    def __init__(self, redis: "FakeRedis", transaction: bool):
        self.redis = redis
        self.transaction = transaction
        self.commands: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def incr(self, key: str):
        self.commands.append(("incr", (key,), {}))
        return self

    def pexpire(self, key: str, ms: int, nx: bool = False):
        self.commands.append(("pexpire", (key, ms), {"nx": nx}))
        return self

    async def execute(self) -> list:
        results = [await getattr(self.redis, name)(*args, **kwargs) for name, args, kwargs in self.commands]
        self.commands = []
        return results


class FakeRedis:
    """The slice of redis.asyncio.Redis used by the rate limiter."""

    def __init__(self):
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.pipelines: list[FakePipeline] = []

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        pipe = FakePipeline(self, transaction)
        self.pipelines.append(pipe)
        return pipe

    async def incr(self, key: str) -> int:
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def pexpire(self, key: str, ms: int, nx: bool = False) -> bool:
        if nx and key in self.ttls:
            return False
        self.ttls[key] = ms
        return True


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        secret_key="test-secret",
        log_format="text",
        log_level="warning",
    )


def _sqlite_engine(foreign_keys: bool = False):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        if foreign_keys:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture
async def db_engine():
    engine = _sqlite_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def fk_session():
    """A session on a store that enforces foreign keys, as Postgres does."""
    engine = _sqlite_engine(foreign_keys=True)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    async with AsyncSession(engine, expire_on_commit=False) as s:
        yield s
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def app(test_settings, session_factory, fake_redis):
    async def _redis():
        return fake_redis

    application = create_app(settings=test_settings, redis_client=_redis, pipeline=HookPipeline())

    async def _session_override():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    application.dependency_overrides[get_session] = _session_override
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


def auth(user_id: uuid.UUID) -> dict[str, str]:
    """Bearer UUID auth (development mode)."""
    return {"Authorization": f"Bearer {user_id}"}


async def make_user(session: AsyncSession, name: Optional[str] = None) -> User:
    uid = uuid.uuid4()
    user = User(id=uid, email=f"{uid.hex[:12]}@example.com", name=name or f"user-{uid.hex[:6]}")
    session.add(user)
    await session.flush()
    return user


async def make_org(session: AsyncSession, owner: User, slug: Optional[str] = None) -> Organization:
    org = Organization(
        name="Acme",
        slug=slug or f"org-{uuid.uuid4().hex[:10]}",
        owner_user_id=owner.id,
    )
    session.add(org)
    await session.flush()
    return org


async def add_member(
    session: AsyncSession, org: Organization, user: User, is_admin: bool = False
) -> OrgMember:
    member = OrgMember(org_id=org.id, user_id=user.id, is_admin=is_admin)
    session.add(member)
    await session.flush()
    return member


def ctx_for(session: AsyncSession, user: User) -> RequestContext:
    return RequestContext(session=session, user_id=user.id)


@pytest.fixture
def committed(session_factory):
    """A short-lived session that commits on exit.

    Used by HTTP tests so that no test-side transaction stays open on the
    shared in-memory connection while a request runs.
    """

    @asynccontextmanager
    async def _scope():
        async with session_factory() as s:
            yield s
            await s.commit()

    return _scope
