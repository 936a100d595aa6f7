from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from jobengine.config.settings import Settings


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that round-trips as UTC on every backend.

    SQLite has no timezone support, so values are normalised to UTC before
    binding and re-tagged with UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Database:
    """Database connection and session management."""

    def __init__(self, settings: Settings, url: str | None = None):
        self.settings = settings
        self.url = url or settings.database_url

        engine_options = {"echo": settings.db_echo}
        if not self.url.startswith("sqlite"):
            engine_options.update(
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_recycle=settings.db_pool_recycle,
            )

        self.engine = create_async_engine(self.url, **engine_options)
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        """Create all tables (development and tests; production uses Alembic)."""
        # Import models so they are registered on the metadata
        from jobengine.cron import models as cron_models  # noqa: F401
        from jobengine.jobs import models as job_models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connections."""
        await self.engine.dispose()
