from fastapi import Header, HTTPException, Request

from sandboxer.core.sandbox import SandboxOrchestrator


async def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, forwarded by the gateway that authenticated the request."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_orchestrator(request: Request) -> SandboxOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sandbox orchestrator is not initialized")
    return orchestrator
