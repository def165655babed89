"""Database Connection and Session Management"""

import re
import ssl
from typing import Any, AsyncGenerator, Dict, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.config import settings

Base = declarative_base()

_SSLMODE = re.compile(r"[?&]sslmode=([^&]+)", re.I)


def asyncpg_url(url: str) -> Tuple[str, Dict[str, Any]]:
    """
    Rewrite a ``postgresql://`` URL for the asyncpg driver.

    asyncpg has no ``sslmode`` query parameter; a required sslmode becomes an
    ``ssl`` connect argument (encrypting, not verifying) and is removed from
    the URL.
    """
    url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    connect_args: Dict[str, Any] = {}
    match = _SSLMODE.search(url)
    if match:
        if match.group(1).lower() in ("require", "required", "verify-full"):
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            connect_args["ssl"] = context
        url = _SSLMODE.sub("", url)
        url = url.replace("?&", "?").rstrip("?")
        if "?" not in url and "&" in url:
            url = url.replace("&", "?", 1)
    return url, connect_args


def create_engine(url: str = settings.DATABASE_URL, **options: Any) -> AsyncEngine:
    async_url, connect_args = asyncpg_url(url)
    options.setdefault("echo", settings.DEBUG)
    return create_async_engine(async_url, connect_args=connect_args, **options)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = create_engine(
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
)

# Billing stores open one short-lived session per operation from this factory
AsyncSessionLocal = create_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency yielding a request-scoped session.

    Commits on success and rolls back if the endpoint raised.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create tables directly (development and tests; Alembic owns the schema elsewhere)"""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
