from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from storefront.core.config import settings


def engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def build_engine(database_url: str | None = None) -> AsyncEngine:
    url = database_url or settings.database_url
    return create_async_engine(url, future=True, echo=False, **engine_options(url))


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Instances stay readable after commit; order collections are refreshed explicitly.
    return async_sessionmaker(bind, expire_on_commit=False, autoflush=False, class_=AsyncSession)


engine = build_engine()
SessionLocal = build_sessionmaker(engine)


async def get_session() -> AsyncSession:
    """FastAPI dependency yielding one billing session per request."""
    async with SessionLocal() as session:
        yield session
