from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator

import pytest

from todo_sync.db import dispose_engine_cache, get_engine


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    # The app runs on SQLAlchemy's asyncio engine; run async tests on asyncio only.
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_cache_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Dispose the cached AsyncEngine (aiosqlite worker thread) while the
    # per-test event loop is still alive.
    _ = anyio_backend
    yield

    engine = get_engine()
    result = engine.dispose()
    if inspect.isawaitable(result):
        await result

    # Next test sets its own DATABASE_URL and must not reuse this engine.
    dispose_engine_cache()


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    # Safety net: close cached engine so CI can exit cleanly.
    _ = session, exitstatus
    dispose_engine_cache()
