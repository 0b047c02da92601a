"""Shared fixtures for the OpsDesk test suite."""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest

from fakes import STANDARD_TOOLS, FakeClient, no_sleep
from opsdesk.agent.preferences import PreferenceStore
from opsdesk.agent.tracer import Tracer
from opsdesk.agent.transcript import Transcript
from opsdesk.backend.session import SessionManager
from opsdesk.backend.transport import ServerConfig
from opsdesk.db.repo import SqlKeyValueStore
from opsdesk.db.session import init_db, make_engine, make_session_factory
from opsdesk.tools.models import ToolDescriptor
from opsdesk.tools.registry import ToolCatalog


@pytest.fixture
def catalog() -> ToolCatalog:
    return ToolCatalog(STANDARD_TOOLS)


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator:
    """Fresh SQLite database per test."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'opsdesk-test.db'}")
    await init_db(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def transcript(session_factory) -> Transcript:
    return Transcript(session_factory)


@pytest.fixture
def tracer(session_factory) -> Tracer:
    return Tracer(session_factory)


@pytest.fixture
async def store(session_factory) -> PreferenceStore:
    s = PreferenceStore(SqlKeyValueStore(session_factory))
    await s.load()
    return s


@pytest.fixture
def make_session() -> Callable:
    """Factory: connected SessionManager around a FakeClient."""

    async def _make(tools: list[ToolDescriptor] | None = None, handlers: dict | None = None):
        client = FakeClient(STANDARD_TOOLS if tools is None else tools, handlers)

        async def factory(config):
            return client

        session = SessionManager(factory, sleep=no_sleep)
        await session.connect(ServerConfig(command="fake-backend"))
        return session, client

    return _make
