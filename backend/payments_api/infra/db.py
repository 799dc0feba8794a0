import logging
from typing import Any, AsyncGenerator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.exc import TimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from payments_api.settings import Settings

Base = declarative_base()

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and session factory for one application instance."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "Database":
        is_postgres = app_settings.database_url.startswith(("postgresql://", "postgresql+"))
        engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if is_postgres:
            # bounded pool; callers wait for a connection instead of failing fast
            engine_kwargs.update(
                {
                    "pool_size": app_settings.database_pool_size,
                    "max_overflow": app_settings.database_max_overflow,
                    "pool_timeout": app_settings.database_pool_timeout_seconds,
                }
            )
        engine = create_async_engine(app_settings.database_url, **engine_kwargs)
        _configure_logging(engine)
        return cls(engine)

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("database_disposed")


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not initialised for this application")
    return database


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    database = get_database(request)
    try:
        async with database.session() as session:
            yield session
    except TimeoutError as exc:
        logger.warning("db_pool_timeout", exc_info=exc)
        raise


def _configure_logging(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "handle_error")
    def receive_error(context):  # noqa: ANN001
        exc = context.original_exception or context.sqlalchemy_exception
        if isinstance(exc, TimeoutError):
            logger.warning(
                "db_pool_timeout",
                extra={"extra": {"operation": str(context.statement) if context.statement else None}},
            )
