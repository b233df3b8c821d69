from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.ext.asyncio.session import AsyncSession
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def build_engine(db_url: str) -> AsyncEngine:
    return create_async_engine(db_url, future=True, echo=False)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def ensure_schema(engine: AsyncEngine) -> None:
    """Create any missing tables registered on Base."""
    # models register themselves on import
    import orderview.db.models.orders  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
