from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from eventlens.config import settings
import logging
import uuid

logger = logging.getLogger(__name__)


def build_engine(database_url: str, environment: str = "development"):
    """Create the async engine, applying pool sizing only where the driver pools."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url)
    if environment == "production":
        return create_async_engine(
            database_url,
            pool_size=20,
            max_overflow=50,
            pool_timeout=60,
            pool_recycle=1800,
        )
    return create_async_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
    )


def build_session_factory(bind) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.database_url, settings.environment)
AsyncSessionLocal = build_session_factory(engine)
Base = declarative_base()


async def get_db():
    logger.debug("Opening database session...")
    async with AsyncSessionLocal() as db:
        try:
            yield db
        except Exception as e:
            logger.error("Database session error: %s", e)
            raise
        finally:
            try:
                await db.close()
                logger.debug("Database session closed.")
            except Exception as close_error:
                logger.warning("Error closing database session: %s", close_error)


def new_uuid() -> str:
    return str(uuid.uuid4())
