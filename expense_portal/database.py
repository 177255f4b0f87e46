"""Async database engine and session management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import MetaData
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from expense_portal.config import get_settings
from expense_portal.errors import InternalError
from expense_portal.logging_config import get_logger

logger = get_logger(__name__)

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """SQLAlchemy declarative base with naming conventions."""

    metadata = MetaData(naming_convention=convention)


_engine = None
_session_factory = None


def get_engine():
    """Return the singleton async engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            echo=False,
            pool_pre_ping=True,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the singleton session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


@asynccontextmanager
async def service_session(
    factory: async_sessionmaker[AsyncSession], operation: str,
) -> AsyncGenerator[AsyncSession, None]:
    """Session scope for workflow services.

    The caller commits explicitly. Anything that escapes the block rolls the
    transaction back; SQLAlchemy failures surface as ``InternalError``.
    """
    async with factory() as session:
        try:
            yield session
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("database_error", operation=operation, error=str(exc))
            raise InternalError(str(exc)) from exc
        except BaseException:
            await session.rollback()
            raise


def import_models() -> None:
    """Import every model module so Base.metadata knows about all tables."""
    import expense_portal.modules.approvals.models  # noqa: F401
    import expense_portal.modules.employees.models  # noqa: F401
    import expense_portal.modules.expenses.models  # noqa: F401
    import expense_portal.modules.finance.models  # noqa: F401
    import expense_portal.modules.policy.models  # noqa: F401
    import expense_portal.security.audit  # noqa: F401


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)
async def init_db() -> None:
    """Create all tables, waiting for the database to accept connections."""
    import_models()
    data_dir = get_settings().data_dir  # property creates the directory

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", data_dir=str(data_dir))


async def close_db() -> None:
    """Dispose of the engine connection pool."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
    logger.info("database_closed")
