import os

os.environ.setdefault("TESTING", "1")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-for-familyhub")
os.environ.setdefault("APP_TIMEZONE", "Europe/Copenhagen")

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
import respx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import familyhub.models  # noqa: F401
from familyhub.core.db import Base
from familyhub.core.settings import PushConfig
from familyhub.services.push_dispatcher import DispatchSummary, PushDispatcher


@pytest.fixture(autouse=True)
def _reset_respx_global_router():
    # Routes added via respx.post() inside a non-global respx.mock(...) router
    # land on the global router and would leak into later tests.
    yield
    respx.mock.clear()


def make_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; take it over
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def stub_dispatcher(sent: int = 1, total: int = 1, failures=None) -> MagicMock:
    dispatcher = MagicMock(spec=PushDispatcher)
    dispatcher.is_configured = True

    async def _send(session, owner_id, payload):
        return DispatchSummary(owner_id=owner_id, sent=sent, total=total, failures=list(failures or []))

    dispatcher.send_to_owner = AsyncMock(side_effect=_send)
    return dispatcher


@pytest_asyncio.fixture
async def engine():
    engine = make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    # 10:00 in Copenhagen
    return FakeClock(datetime(2026, 3, 10, 9, 0, 0))


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture(scope="session")
def apns_private_key() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def push_config(apns_private_key) -> PushConfig:
    return PushConfig(
        key_id="KEY1234567",
        team_id="TEAM123456",
        auth_key=apns_private_key,
        bundle_id="app.familyhub.test",
        use_sandbox=True,
    )


@pytest.fixture
def dispatcher():
    return stub_dispatcher()
