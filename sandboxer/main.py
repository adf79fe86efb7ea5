import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sandboxer.api import root_router
from sandboxer.configs import configs
from sandboxer.core.logger import LOGGING_CONFIG
from sandboxer.infra.database import create_db_and_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Create database tables
    await create_db_and_tables()

    logger.info(f"Environment: {configs.Environment}")
    logger.info(
        f"Sandbox backends: containers={configs.Sandbox.ContainerBackend}, "
        f"repositories={configs.Sandbox.RepositoryBackend}"
    )

    from sandboxer.core.sandbox import build_orchestrator

    orchestrator = build_orchestrator()
    await orchestrator.init()
    app.state.orchestrator = orchestrator

    try:
        yield
    finally:
        await orchestrator.shutdown()

        from sandboxer.infra.database.connection import async_engine

        await async_engine.dispose()


app = FastAPI(
    title=configs.Title,
    description="Sandbox lifecycle orchestrator",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(root_router)


def run() -> None:
    uvicorn.run(
        "sandboxer.main:app",
        host=configs.Host,
        port=configs.Port,
        log_config=LOGGING_CONFIG,
        reload=configs.Debug,
        reload_excludes=["tests"],
    )


if __name__ == "__main__":
    run()
