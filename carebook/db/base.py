from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

# Async engine and session factory
async def get_engine(database_url: str, isolation_level: str | None = None, echo: bool = False):
    kwargs = {"echo": echo}
    if isolation_level:
        kwargs["isolation_level"] = isolation_level
    return create_async_engine(database_url, **kwargs)

async def get_session_factory(engine):
    return sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
