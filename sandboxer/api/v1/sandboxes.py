"""Sandbox lifecycle API.

Every ``/{sandbox_id}`` route only sees sandboxes owned by the caller; other
users' sandboxes are reported as not found.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from sandboxer.api.deps import get_current_user, get_orchestrator
from sandboxer.core.project_config import ConfigLoadResult
from sandboxer.core.sandbox import (
    EngineFailureError,
    InvalidRequestError,
    RepositoryFailureError,
    SandboxAlreadyExistsError,
    SandboxError,
    SandboxNotFoundError,
    SandboxOrchestrator,
    SandboxTimeoutError,
)
from sandboxer.core.sandbox.policy import ResourceTier, list_flavors, list_tiers
from sandboxer.infra.container import ContainerStats, EngineInfo, EngineState, ExecResult
from sandboxer.infra.git import Repository
from sandboxer.models.sandbox import Sandbox, SandboxCreate, SandboxRead, SandboxStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sandboxes"])


# --- Request / response models ---


class SandboxInfoRead(BaseModel):
    sandbox: SandboxRead
    status: SandboxStatus = Field(description="Live status mapped from the container engine")
    engine_state: EngineState | None = None
    stats: ContainerStats | None = None
    repository: Repository | None = None
    project_config: ConfigLoadResult | None = None
    engine_error: str | None = None


class ExecRequest(BaseModel):
    command: list[str] = Field(min_length=1, description="argv to run inside the container")
    workdir: str | None = None
    env: dict[str, str] | None = None
    user: str | None = None


class HealthResponse(BaseModel):
    status: str
    engine: bool


class SandboxStatusResponse(BaseModel):
    sandbox_id: UUID
    status: SandboxStatus


class SandboxLogsResponse(BaseModel):
    sandbox_id: UUID
    logs: str


class SandboxDeleteResponse(BaseModel):
    success: bool
    sandbox_id: UUID


class SandboxTouchResponse(BaseModel):
    success: bool


def handle_sandbox_error(e: SandboxError) -> HTTPException:
    """Translate an orchestrator error into the matching HTTP error."""
    if isinstance(e, SandboxNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SandboxAlreadyExistsError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidRequestError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, SandboxTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, (EngineFailureError, RepositoryFailureError)):
        return HTTPException(status_code=502, detail=str(e))
    logger.error(f"Unhandled sandbox error: {e}")
    return HTTPException(status_code=500, detail="Internal sandbox error")


async def _get_owned(orchestrator: SandboxOrchestrator, sandbox_id: UUID, user: str) -> Sandbox:
    sandbox = await orchestrator.get_sandbox(sandbox_id)
    if sandbox is None or sandbox.user_id != user:
        raise HTTPException(status_code=404, detail="Sandbox not found")
    return sandbox


# --- Engine and catalog ---


@router.get("/health", response_model=HealthResponse)
async def health(orchestrator: SandboxOrchestrator = Depends(get_orchestrator)) -> HealthResponse:
    engine_ok = await orchestrator.health_check()
    return HealthResponse(status="ok" if engine_ok else "degraded", engine=engine_ok)


@router.get("/engine", response_model=EngineInfo)
async def engine_info(
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> EngineInfo:
    try:
        return await orchestrator.get_engine_info()
    except SandboxError as e:
        raise handle_sandbox_error(e)


@router.get("/tiers", response_model=list[ResourceTier])
async def get_tiers() -> list[ResourceTier]:
    return list_tiers()


@router.get("/flavors", response_model=list[str])
async def get_flavors() -> list[str]:
    return list_flavors()


# --- Collection ---


@router.get("/", response_model=list[SandboxRead])
async def list_sandboxes(
    status: list[SandboxStatus] | None = Query(default=None, description="Only return sandboxes in these states"),
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> list[SandboxRead]:
    sandboxes = await orchestrator.list_sandboxes(user, status)
    return [SandboxRead.model_validate(sandbox) for sandbox in sandboxes]


@router.post("/", response_model=SandboxRead, status_code=201)
async def create_sandbox(
    data: SandboxCreate,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxRead:
    """Create a sandbox.

    Engine or repository failures do not fail the request: the sandbox is
    returned in ``error`` status with the reason in ``error_message``.
    """
    try:
        sandbox = await orchestrator.create_sandbox(
            user_id=user,
            name=data.name,
            flavor=data.flavor_id,
            tier=data.resource_tier_id,
            addons=data.addon_ids,
            github_url=data.github_url,
            description=data.description,
            auto_start=data.auto_start,
        )
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxRead.model_validate(sandbox)


# --- Single sandbox ---


@router.get("/{sandbox_id}", response_model=SandboxInfoRead)
async def get_sandbox(
    sandbox_id: UUID,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxInfoRead:
    await _get_owned(orchestrator, sandbox_id, user)
    info = await orchestrator.get_sandbox_info(sandbox_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Sandbox not found")
    return SandboxInfoRead(
        sandbox=SandboxRead.model_validate(info.sandbox),
        status=info.status,
        engine_state=info.engine_state,
        stats=info.stats,
        repository=info.repository,
        project_config=info.project_config,
        engine_error=info.engine_error,
    )


@router.delete("/{sandbox_id}", response_model=SandboxDeleteResponse)
async def delete_sandbox(
    sandbox_id: UUID,
    remove_volumes: bool = Query(default=False),
    delete_repo: bool = Query(default=True),
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxDeleteResponse:
    # A repeated delete finds no record and still succeeds
    sandbox = await orchestrator.get_sandbox(sandbox_id)
    if sandbox is not None and sandbox.user_id != user:
        raise HTTPException(status_code=404, detail="Sandbox not found")
    try:
        await orchestrator.delete_sandbox(sandbox_id, remove_volumes=remove_volumes, delete_repo=delete_repo)
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxDeleteResponse(success=True, sandbox_id=sandbox_id)


@router.post("/{sandbox_id}/start", response_model=SandboxRead)
async def start_sandbox(
    sandbox_id: UUID,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxRead:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        sandbox = await orchestrator.start_sandbox(sandbox_id)
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxRead.model_validate(sandbox)


@router.post("/{sandbox_id}/stop", response_model=SandboxRead)
async def stop_sandbox(
    sandbox_id: UUID,
    timeout: int | None = Query(default=None, ge=0, description="Graceful stop timeout in seconds"),
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxRead:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        sandbox = await orchestrator.stop_sandbox(sandbox_id, timeout=timeout)
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxRead.model_validate(sandbox)


@router.post("/{sandbox_id}/restart", response_model=SandboxRead)
async def restart_sandbox(
    sandbox_id: UUID,
    timeout: int | None = Query(default=None, ge=0, description="Graceful stop timeout in seconds"),
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxRead:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        sandbox = await orchestrator.restart_sandbox(sandbox_id, timeout=timeout)
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxRead.model_validate(sandbox)


@router.post("/{sandbox_id}/pause", response_model=SandboxRead)
async def pause_sandbox(
    sandbox_id: UUID,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxRead:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        sandbox = await orchestrator.pause_sandbox(sandbox_id)
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxRead.model_validate(sandbox)


@router.post("/{sandbox_id}/unpause", response_model=SandboxRead)
async def unpause_sandbox(
    sandbox_id: UUID,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxRead:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        sandbox = await orchestrator.unpause_sandbox(sandbox_id)
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxRead.model_validate(sandbox)


@router.post("/{sandbox_id}/touch", response_model=SandboxTouchResponse)
async def touch_sandbox(
    sandbox_id: UUID,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxTouchResponse:
    await _get_owned(orchestrator, sandbox_id, user)
    return SandboxTouchResponse(success=await orchestrator.touch_sandbox(sandbox_id))


@router.post("/{sandbox_id}/exec", response_model=ExecResult)
async def exec_in_sandbox(
    sandbox_id: UUID,
    req: ExecRequest,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> ExecResult:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        return await orchestrator.exec(sandbox_id, req.command, workdir=req.workdir, env=req.env, user=req.user)
    except SandboxError as e:
        raise handle_sandbox_error(e)


@router.get("/{sandbox_id}/status", response_model=SandboxStatusResponse)
async def get_sandbox_status(
    sandbox_id: UUID,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxStatusResponse:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        status = await orchestrator.get_sandbox_status(sandbox_id)
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxStatusResponse(sandbox_id=sandbox_id, status=status)


@router.get("/{sandbox_id}/stats", response_model=ContainerStats)
async def get_sandbox_stats(
    sandbox_id: UUID,
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> ContainerStats:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        return await orchestrator.get_sandbox_stats(sandbox_id)
    except SandboxError as e:
        raise handle_sandbox_error(e)


@router.get("/{sandbox_id}/logs", response_model=SandboxLogsResponse)
async def get_sandbox_logs(
    sandbox_id: UUID,
    tail: int | None = Query(default=100, ge=0),
    timestamps: bool = Query(default=False),
    user: str = Depends(get_current_user),
    orchestrator: SandboxOrchestrator = Depends(get_orchestrator),
) -> SandboxLogsResponse:
    await _get_owned(orchestrator, sandbox_id, user)
    try:
        logs = await orchestrator.get_sandbox_logs(sandbox_id, tail=tail, timestamps=timestamps)
    except SandboxError as e:
        raise handle_sandbox_error(e)
    return SandboxLogsResponse(sandbox_id=sandbox_id, logs=logs)
