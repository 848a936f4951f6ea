import logging
from typing import Any

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.exc import TimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from alert_provisioning.settings import Settings, settings

# SQLite only autoincrements an INTEGER PRIMARY KEY
ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

Base = declarative_base()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

logger = logging.getLogger(__name__)


def create_engine_from_settings(app_settings: Settings) -> AsyncEngine:
    engine_kwargs: dict[str, Any] = {
        "pool_pre_ping": True,
    }

    if app_settings.is_postgres:
        # Apply Postgres-specific pool settings
        engine_kwargs.update({
            "pool_size": app_settings.database_pool_size,
            "max_overflow": app_settings.database_max_overflow,
            "pool_timeout": app_settings.database_pool_timeout_seconds,
            "connect_args": {
                "server_settings": {
                    "statement_timeout": str(int(app_settings.database_statement_timeout_ms)),
                },
            },
        })
    else:
        engine_kwargs["connect_args"] = {"timeout": app_settings.database_pool_timeout_seconds}

    engine = create_async_engine(app_settings.database_url, **engine_kwargs)
    _configure_logging(engine)
    return engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _engine, _session_factory
    if _session_factory is None:
        _engine = create_engine_from_settings(settings)
        _session_factory = async_sessionmaker(
            _engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return _get_session_factory()


async def create_schema(engine: AsyncEngine) -> None:
    # Register every mapped table before create_all.
    import alert_provisioning.infra.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def dialect_name(session: AsyncSession) -> str:
    bind = session.get_bind()
    return getattr(getattr(bind, "dialect", None), "name", "") if bind else ""


def _configure_logging(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "handle_error")
    def receive_error(context):  # noqa: ANN001
        # Check both original_exception and sqlalchemy_exception for timeout
        exc = context.original_exception or context.sqlalchemy_exception
        if isinstance(exc, TimeoutError):
            logger.warning(
                "db_pool_timeout",
                extra={"extra": {"operation": str(context.statement) if context.statement else None}},
            )
