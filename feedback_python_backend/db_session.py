"""
Async engine and session factory for the feedback pipeline database.
"""

import os

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

ASYNC_DRIVER_PREFIXES = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}


def normalize_database_url(url: str) -> str:
    """Point plain postgres URLs (as hosted providers hand them out) at the asyncpg driver."""
    for prefix, async_prefix in ASYNC_DRIVER_PREFIXES.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix):]
    return url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    options = {"echo": echo}
    if url.startswith("postgresql+asyncpg://"):
        # Drop connections the server closed while idle
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL", "postgresql+asyncpg://localhost/feedback"))

async_engine = build_engine(DATABASE_URL, echo=os.getenv("SQL_ECHO", "false").lower() == "true")

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session():
    """
    FastAPI dependency yielding one session per request.

    Commits after the endpoint returns and rolls back if it raised. Pipeline
    services commit their own writes; this commit covers anything left pending.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
