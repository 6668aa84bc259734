from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator
from fastapi import Request
import logging

logger = logging.getLogger(__name__)


def get_session_factory_from_request(request: Request):
    """Return the session factory stored on the app at startup."""
    factory = getattr(request.app.state, "session_factory", None)
    if factory is None:
        logger.error("Session factory accessed before application startup completed.")
        raise RuntimeError("Database session factory not initialized.")
    return factory


# Session dependency for FastAPI routes
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Create and yield a database session using the shared engine.
    Used for read-only queries; writes go through run_in_transaction.
    """
    async_session = get_session_factory_from_request(request)

    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
