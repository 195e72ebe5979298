import logging
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from familyhub.core.settings import get_settings

logger = logging.getLogger("uvicorn")

# libpq sslmode -> asyncpg "ssl" argument
_SSL_MODES: dict[str, Any] = {"require": "require", "verify-ca": "require", "verify-full": "require", "disable": False}


class Base(DeclarativeBase):
    pass


_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def asyncpg_url(raw_url: str) -> tuple[URL, dict[str, Any]]:
    """Rewrites a Postgres URL for the asyncpg driver.

    Hosted providers hand out ``postgres://`` URLs with libpq query options
    that asyncpg does not accept; those move into ``connect_args``.
    """
    url = make_url(raw_url)
    if url.drivername in ("postgres", "postgresql"):
        url = url.set(drivername="postgresql+asyncpg")
    if url.drivername != "postgresql+asyncpg":
        return url, {}

    query = dict(url.query)
    connect_args: dict[str, Any] = {}
    mode = query.pop("sslmode", None)
    if mode in _SSL_MODES:
        connect_args["ssl"] = _SSL_MODES[mode]
    query.pop("channel_binding", None)
    return url.set(query=query), connect_args


def init_db() -> None:
    global _async_engine, _async_session_factory

    raw_url = get_settings().database.url
    if not raw_url:
        logger.warning("DATABASE_URL not set. Notification triggers will report 'not configured'.")
        return

    url, connect_args = asyncpg_url(raw_url)
    logger.info(f"Connecting to database: {url.render_as_string(hide_password=True)}")
    _async_engine = create_async_engine(url, connect_args=connect_args, pool_pre_ping=True)
    _async_session_factory = async_sessionmaker(_async_engine, expire_on_commit=False)


def get_session_factory() -> Optional[async_sessionmaker[AsyncSession]]:
    return _async_session_factory


async def check_db_health() -> dict:
    if _async_engine is None:
        return {"ok": False, "mode": "unconfigured", "message": "DATABASE_URL not set"}
    try:
        async with _async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        return {"ok": False, "error": str(exc)}
    return {"ok": True, "driver": _async_engine.driver}


async def create_tables() -> None:
    if _async_engine is not None:
        async with _async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


async def get_db_session() -> AsyncGenerator[Optional[AsyncSession], None]:
    """Yields None when no database is configured; routers answer 503."""
    if _async_session_factory is None:
        yield None
        return
    async with _async_session_factory() as session:
        yield session
