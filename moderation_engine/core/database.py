"""Database connection and session management.

Transaction Guarantees:
- Each engine operation gets its own session
- All writes within an operation are atomic
- On any exception, the entire transaction is rolled back
- Sessions are properly closed after each operation
"""

import logging
import ssl

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

connect_args = {}
db_url_async = settings.database_url_async

# Always use SSL for production/cloud databases
if settings.environment == "production":
    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    connect_args["ssl"] = ssl_context
    # Disable prepared statements for pgbouncer compatibility
    connect_args["prepared_statement_cache_size"] = 0
    connect_args["statement_cache_size"] = 0
    logger.info("Using SSL for database connection with pgbouncer compatibility")

logger.info(f"Async Database URL (masked): {db_url_async[:40]}...")

engine = create_async_engine(
    db_url_async,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,  # Check connection health before use
    pool_recycle=300,
    pool_timeout=30,
    connect_args=connect_args,
)

# Session factory - every engine operation opens its own session
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Don't expire objects after commit
    autoflush=False,         # Manual flush for better control
)


async def init_db() -> None:
    """Initialize database (create tables if needed)."""
    from ..models import Base

    async with engine.begin() as conn:
        # In production, use migrations instead
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
