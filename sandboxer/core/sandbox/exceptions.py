"""
Sandbox orchestrator exceptions.

Adapter-level failures (container engine, git backend) are translated into
these before they leave the orchestrator.
"""

from __future__ import annotations


class SandboxError(Exception):
    """Base class for orchestrator errors."""

    pass


class SandboxNotFoundError(SandboxError):
    """No sandbox record (or no container, for container-only operations)."""

    def __init__(self, sandbox_id: str, message: str | None = None):
        self.sandbox_id = sandbox_id
        super().__init__(message or f"Sandbox not found: {sandbox_id}")


class SandboxAlreadyExistsError(SandboxError):
    """Slug, name or repository collision."""

    def __init__(self, message: str, name: str | None = None):
        self.name = name
        super().__init__(message)


class EngineFailureError(SandboxError):
    """A container engine call failed."""

    def __init__(self, message: str, sandbox_id: str | None = None, cause: Exception | None = None):
        self.sandbox_id = sandbox_id
        self.cause = cause
        super().__init__(message)


class RepositoryFailureError(SandboxError):
    """A repository backend call failed."""

    def __init__(self, message: str, sandbox_id: str | None = None, cause: Exception | None = None):
        self.sandbox_id = sandbox_id
        self.cause = cause
        super().__init__(message)


class SandboxTimeoutError(SandboxError):
    """An engine operation exceeded its deadline."""

    def __init__(self, operation: str, timeout_secs: float, sandbox_id: str | None = None):
        self.operation = operation
        self.timeout_secs = timeout_secs
        self.sandbox_id = sandbox_id
        super().__init__(f"{operation} timed out after {timeout_secs:g} seconds")


class InvalidRequestError(SandboxError):
    """Malformed input or an operation not allowed in the current state."""

    def __init__(self, message: str, field: str | None = None, sandbox_id: str | None = None):
        self.field = field
        self.sandbox_id = sandbox_id
        super().__init__(message)


__all__ = [
    "EngineFailureError",
    "InvalidRequestError",
    "RepositoryFailureError",
    "SandboxAlreadyExistsError",
    "SandboxError",
    "SandboxNotFoundError",
    "SandboxTimeoutError",
]
