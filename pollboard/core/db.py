from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from datetime import datetime, timezone
import logging

from pollboard.core.config import get_database_url, settings

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Timezone-aware current time used for every stored timestamp."""
    return datetime.now(timezone.utc)


def enable_sqlite_foreign_keys(async_engine: AsyncEngine) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


database_url = get_database_url()

# Database engine configuration
engine_kwargs = {
    "echo": settings.database_echo,
    "pool_pre_ping": True,
}

# Handle SQLite for local runs and tests
if database_url.startswith("sqlite"):
    engine_kwargs.update({
        "poolclass": StaticPool,
        "connect_args": {"check_same_thread": False}
    })
else:
    engine_kwargs["pool_recycle"] = 300

engine = create_async_engine(database_url, **engine_kwargs)

if database_url.startswith("sqlite"):
    enable_sqlite_foreign_keys(engine)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False
)

# Create Base class for models
Base = declarative_base()


async def create_tables():
    """Create all database tables."""
    # Models must be imported so they register with Base.metadata
    import pollboard.models  # noqa: F401

    try:
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise


async def check_database_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        bool: True if connection is successful, False otherwise
    """
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


async def health_check() -> dict:
    """
    Perform database health check.

    Returns:
        dict: Health check results
    """
    try:
        async with engine.connect() as connection:
            result = await connection.execute(text("SELECT 1 as health_check"))
            health_status = result.scalar() == 1

        return {
            "status": "healthy" if health_status else "unhealthy",
            "database": "connected" if health_status else "disconnected",
            "timestamp": utcnow().isoformat()
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": "error",
            "timestamp": utcnow().isoformat()
        }
