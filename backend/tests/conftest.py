import asyncio
import os
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext import asyncio as sa_asyncio

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from storefront.db.session import build_sessionmaker, engine_options, get_session  # noqa: E402
from storefront.main import app  # noqa: E402
from storefront.models import Base  # noqa: E402


_TRACKED_ENGINES: list[sa_asyncio.AsyncEngine] = []
_ORIGINAL_CREATE_ASYNC_ENGINE = sa_asyncio.create_async_engine


def _tracked_create_async_engine(*args, **kwargs):  # type: ignore[no-untyped-def]
    engine = _ORIGINAL_CREATE_ASYNC_ENGINE(*args, **kwargs)
    _TRACKED_ENGINES.append(engine)
    return engine


sa_asyncio.create_async_engine = _tracked_create_async_engine  # type: ignore[assignment]


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _dispose_tracked_async_engines() -> Generator[None, None, None]:
    start_index = len(_TRACKED_ENGINES)
    yield
    pending = _TRACKED_ENGINES[start_index:]
    if not pending:
        return

    async def _dispose_all() -> None:
        for engine in pending:
            try:
                await engine.dispose()
            except Exception:
                continue

    try:
        asyncio.run(_dispose_all())
    except RuntimeError:
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(_dispose_all())
        finally:
            loop.close()

    del _TRACKED_ENGINES[start_index:]


@pytest.fixture
def session_factory():
    """Fresh in-memory schema per test."""
    url = "sqlite+aiosqlite:///:memory:"
    engine = sa_asyncio.create_async_engine(url, future=True, **engine_options(url))
    SessionLocal = build_sessionmaker(engine)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    return SessionLocal


@pytest.fixture
def test_app(session_factory) -> Generator[dict[str, object], None, None]:
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    client = TestClient(app)
    yield {"client": client, "session_factory": session_factory}
    client.close()
    app.dependency_overrides.clear()
