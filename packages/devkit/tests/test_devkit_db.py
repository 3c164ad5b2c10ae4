import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from devkit.db import AsyncDatabaseManager, is_transient_db_error, normalize_postgres_dsn


def test_normalize_postgres_dsn() -> None:
    assert normalize_postgres_dsn("postgresql://u:p@h:5432/db") == "postgresql+psycopg://u:p@h:5432/db"
    assert normalize_postgres_dsn("postgresql+psycopg://u:p@h:5432/db") == "postgresql+psycopg://u:p@h:5432/db"
    assert normalize_postgres_dsn("sqlite+aiosqlite:///tmp/x.db") == "sqlite+aiosqlite:///tmp/x.db"


def test_transient_error_detection() -> None:
    assert is_transient_db_error(OperationalError("stmt", {}, Exception("down")))
    assert not is_transient_db_error(ValueError("nope"))


@pytest.mark.asyncio
async def test_run_with_session_executes_against_sqlite(tmp_path) -> None:
    manager = AsyncDatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'devkit.db'}")

    async def _select(session) -> int:
        return int(await session.scalar(text("SELECT 41 + 1")))

    try:
        assert await manager.run_with_session(_select) == 42
    finally:
        await manager.disconnect()


@pytest.mark.asyncio
async def test_run_with_session_does_not_retry_non_transient_errors(tmp_path) -> None:
    manager = AsyncDatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'devkit.db'}", base_delay_seconds=0)
    attempts: list[int] = []

    async def _boom(_session) -> None:
        attempts.append(1)
        raise ValueError("bad input")

    try:
        with pytest.raises(ValueError):
            await manager.run_with_session(_boom)
    finally:
        await manager.disconnect()
    assert len(attempts) == 1


def test_engine_requires_connect() -> None:
    manager = AsyncDatabaseManager("sqlite+aiosqlite:///:memory:")
    with pytest.raises(RuntimeError):
        _ = manager.engine
