from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from sandboxer.configs.sandbox import SandboxConfig
from sandboxer.core.sandbox import SandboxOrchestrator
from sandboxer.infra.container.memory_backend import InMemoryContainerBackend
from sandboxer.infra.database import build_engine, build_session_factory, create_db_and_tables
from sandboxer.infra.git.memory import InMemoryRepositoryBackend
from tests.fixtures.client import async_client  # noqa: F401


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite database file per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'sandboxer-test.db'}")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def sandbox_settings() -> SandboxConfig:
    return SandboxConfig(
        ContainerBackend="memory",
        RepositoryBackend="memory",
        ReconcileOnStartup=False,
        StopTimeoutSeconds=1,
        OperationGraceSeconds=1,
    )


@pytest.fixture
def containers() -> InMemoryContainerBackend:
    return InMemoryContainerBackend()


@pytest.fixture
def repositories() -> InMemoryRepositoryBackend:
    return InMemoryRepositoryBackend()


@pytest.fixture
def orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    containers: InMemoryContainerBackend,
    repositories: InMemoryRepositoryBackend,
    sandbox_settings: SandboxConfig,
) -> SandboxOrchestrator:
    return SandboxOrchestrator(
        session_factory=session_factory,
        containers=containers,
        repositories=repositories,
        settings=sandbox_settings,
        environment="development",
    )
