import pytest

from feedback_python_backend.db_session import build_engine, normalize_database_url


@pytest.mark.parametrize("url, expected", [
    ("postgres://u:p@db/feedback", "postgresql+asyncpg://u:p@db/feedback"),
    ("postgresql://u:p@db/feedback", "postgresql+asyncpg://u:p@db/feedback"),
    ("postgresql+asyncpg://u:p@db/feedback", "postgresql+asyncpg://u:p@db/feedback"),
    ("sqlite+aiosqlite:///feedback.db", "sqlite+aiosqlite:///feedback.db"),
])
def test_normalize_database_url(url, expected):
    assert normalize_database_url(url) == expected


@pytest.mark.asyncio
async def test_build_engine_for_sqlite():
    engine = build_engine("sqlite+aiosqlite://")

    assert engine.dialect.name == "sqlite"
    assert engine.echo is False
    await engine.dispose()
