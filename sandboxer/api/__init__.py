from fastapi import APIRouter

from .v1 import v1_router

root_router = APIRouter(prefix="/api")


@root_router.get("/", tags=["root"])
async def root() -> dict[str, str]:
    return {"message": "Welcome to the Sandboxer API"}


root_router.include_router(v1_router)
