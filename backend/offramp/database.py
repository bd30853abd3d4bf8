"""Database connection and session management with async SQLAlchemy."""

from decimal import Decimal

from sqlalchemy import String
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from offramp.config import settings


def _engine_options(database_url: str) -> dict:
    options = {
        "echo": settings.ENVIRONMENT == "development" and settings.LOG_LEVEL == "DEBUG",
        "pool_pre_ping": True,
    }
    # SQLite (local runs, tests) uses a pool without sizing knobs
    if not database_url.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10)
    return options


# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    **_engine_options(settings.DATABASE_URL),
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# Base class for all models
class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class DecimalString(TypeDecorator):
    """
    Exact decimal stored as text.

    SQLite keeps NUMERIC values as floats, which alters token amounts on the
    way back. Amounts are written as decimal strings and read back as
    ``Decimal`` on every backend.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


async def init_models() -> None:
    """Create tables that do not exist yet (local runs without migrations)."""
    import offramp.models  # noqa: F401  registers tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
