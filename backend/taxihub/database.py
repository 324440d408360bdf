import logging
from collections.abc import AsyncGenerator

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from taxihub.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Async engine & session
# ---------------------------------------------------------------------------
# SQLite (local dev / tests) gets a fresh connection per session; pool sizing
# only applies to server databases.
if settings.DATABASE_URL.startswith("sqlite"):
    _engine_options: dict = {"poolclass": NullPool}
else:
    _engine_options = {"pool_size": 20, "max_overflow": 10}

async_engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    **_engine_options,
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ---------------------------------------------------------------------------
# Declarative base for all models
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_all_tables() -> None:
    """Create every mapped table that does not exist yet."""
    import taxihub.models  # noqa: F401  (registers the mappers)

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def commit_or_fail(db: AsyncSession, failed_action: str) -> None:
    """Commit the unit of work; on a database error roll back and report
    ``failed_action`` to the caller as a 503.  No retry is attempted.
    """
    try:
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Write failed: %s", failed_action)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to {failed_action}. Please try again.",
        )
