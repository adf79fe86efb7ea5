from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from sandboxer.core.sandbox import SandboxOrchestrator
from sandboxer.main import app


@pytest_asyncio.fixture
async def async_client(orchestrator: SandboxOrchestrator) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client wired to the in-memory orchestrator."""
    app.state.orchestrator = orchestrator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.state.orchestrator = None
