from fastapi import APIRouter

from .sandboxes import router as sandboxes_router

# Don't add tags here, each router defines its own
v1_router = APIRouter(prefix="/v1")

v1_router.include_router(sandboxes_router, prefix="/sandboxes")
