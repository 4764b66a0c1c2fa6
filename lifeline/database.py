import logging
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from lifeline.db.base import Base
from lifeline.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

url = make_url(DATABASE_URL)
connect_args = {}

logger.info(f"Database backend: {url.get_backend_name()}")

if url.get_backend_name() == "sqlite":
    # One connection per session; writers wait on the busy timeout instead of
    # failing with "database is locked".
    connect_args = {
        "check_same_thread": False,
        "timeout": settings.DATABASE_BUSY_TIMEOUT_SECONDS,
    }

    engine = create_async_engine(
        DATABASE_URL,
        poolclass=NullPool,
        connect_args=connect_args,
        echo=False,
    )

    logger.info("Using NullPool for SQLite")

else:
    engine = create_async_engine(
        DATABASE_URL,
        connect_args=connect_args,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=False,
    )

    logger.info("Using traditional connection pooling")

# Create session factory with proper settings
async_session = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Import models so metadata knows every table
from lifeline.models.blood_request import BloodRequest  # noqa
from lifeline.models.donor import Donor  # noqa
from lifeline.models.response_token import ResponseToken  # noqa
from lifeline.models.notification import Notification  # noqa


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully.")


async def close_db():
    """Close database connections gracefully"""
    try:
        await engine.dispose()
        logger.info("Database connections closed.")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")
