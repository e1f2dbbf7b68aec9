"""Async database session management helpers."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator

from sqlalchemy import event
from sqlalchemy.exc import ResourceClosedError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dms.core.config import settings


def _engine_options() -> dict[str, Any]:
    if settings.is_sqlite:
        # Local/test database. The pysqlite driver's own transaction handling is
        # switched off below so SQLAlchemy controls BEGIN and SAVEPOINT.
        return {
            "connect_args": {"timeout": settings.SQLITE_BUSY_TIMEOUT_SEC},
            "echo": settings.DEBUG,
        }
    return {
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "isolation_level": settings.DB_ISOLATION_LEVEL,
        "echo": settings.DEBUG,
    }


engine = create_async_engine(settings.DATABASE_URL, **_engine_options())

if settings.is_sqlite:

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_on_begin(conn):
        # Take the write lock up front so concurrent writers queue on the busy
        # timeout instead of failing on lock upgrade.
        conn.exec_driver_sql("BEGIN IMMEDIATE")


SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async database session."""

    async with SessionLocal() as session:
        yield session


async def _end_implicit_transaction(session: AsyncSession) -> None:
    """Close the transaction a previous read on ``session`` autobegan.

    Committed rather than rolled back: a rollback expires every loaded instance,
    so objects returned by earlier calls could no longer be read.
    """

    if session.in_transaction():
        await session.commit()


@asynccontextmanager
async def repeatable_read_transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run the enclosed block in a single DB transaction at REPEATABLE READ."""

    if session.bind.dialect.name != "mysql":
        await _end_implicit_transaction(session)
        async with session.begin():
            yield session
        return

    # ``AsyncSession.connection()`` is a coroutine returning an ``AsyncConnection``;
    # await it and manage the connection lifecycle manually.
    conn = await session.connection()
    try:
        prev_lock_wait = (
            await conn.exec_driver_sql("SELECT @@SESSION.innodb_lock_wait_timeout")
        ).scalar_one()
        prev_max_exec = (
            await conn.exec_driver_sql("SELECT @@SESSION.max_execution_time")
        ).scalar_one()

        await conn.exec_driver_sql(
            "SET SESSION TRANSACTION ISOLATION LEVEL REPEATABLE READ"
        )
        await conn.exec_driver_sql(
            f"SET SESSION innodb_lock_wait_timeout = {settings.INNODB_LOCK_WAIT_TIMEOUT_SEC}"
        )
        await conn.exec_driver_sql(
            f"SET SESSION MAX_EXECUTION_TIME = {settings.SELECT_MAX_EXECUTION_TIME_MS}"
        )

        await _end_implicit_transaction(session)

        try:
            async with session.begin():
                yield session
        finally:
            try:
                await conn.exec_driver_sql(
                    f"SET SESSION TRANSACTION ISOLATION LEVEL {settings.DB_ISOLATION_LEVEL}"
                )
                await conn.exec_driver_sql(
                    f"SET SESSION innodb_lock_wait_timeout = {int(prev_lock_wait)}"
                )
                await conn.exec_driver_sql(
                    f"SET SESSION MAX_EXECUTION_TIME = {int(prev_max_exec)}"
                )
            except ResourceClosedError:
                # The connection may already be released after a retry-induced
                # rollback; the session overrides went with it.
                pass
    finally:
        await conn.close()
