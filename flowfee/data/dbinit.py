from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from flowfee.config.config import settings

import structlog

logger = structlog.get_logger()

engine = create_async_engine(
    settings.SQLALCHEMY_DATABASE_URI,
    connect_args={'ssl': 'require'} if settings.POSTGRES_SSL else {},
    pool_pre_ping=True,  # Enable connection health checks
    pool_size=settings.POSTGRES_POOL_SIZE,
    max_overflow=settings.POSTGRES_MAX_OVERFLOW,
    pool_recycle=3600    # Recycle connections after 1 hour
)

SessionLocal = async_sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Important for async operations
)

# Base class for declarative models
Base = declarative_base()


async def get_db():
    """
    Request-scoped transaction. Every fee operation runs inside it and the
    whole unit commits or rolls back together.
    """
    db = SessionLocal()
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    finally:
        await db.close()


async def init_db():
    # Create tables if they don't exist
    from flowfee.data import organization, payment, discount_redemption, fee_calculation  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise
