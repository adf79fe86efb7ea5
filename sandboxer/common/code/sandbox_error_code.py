"""Sandbox failure codes stored in ``Sandbox.error_message``."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum

from sandboxer.infra.container.base import (
    ContainerError,
    EngineUnavailableError,
    ImagePullError,
    ResourceLimitError,
)
from sandboxer.infra.git.base import RepositoryError


class SandboxErrorCode(StrEnum):
    """Machine-readable failure codes.

    Format: {category}.{specific_error}
    """

    # Container engine
    ENGINE_UNREACHABLE = "engine.unreachable"
    ENGINE_FAILURE = "engine.failure"
    IMAGE_PULL_FAILED = "image.pull_failed"
    RESOURCE_LIMIT_EXCEEDED = "resource.limit_exceeded"

    # Repository backend
    REPOSITORY_FAILURE = "repository.failure"

    # Operation control
    OPERATION_TIMEOUT = "operation.timeout"
    OPERATION_CANCELLED = "operation.cancelled"

    @property
    def category(self) -> str:
        return self.value.split(".")[0]

    @property
    def recoverable(self) -> bool:
        """Whether retrying the same operation may succeed without reconfiguring."""
        return self in (
            SandboxErrorCode.ENGINE_UNREACHABLE,
            SandboxErrorCode.ENGINE_FAILURE,
            SandboxErrorCode.OPERATION_TIMEOUT,
            SandboxErrorCode.OPERATION_CANCELLED,
        )


# Default user-facing hints for each code
_DEFAULT_MESSAGES: dict[SandboxErrorCode, str] = {
    SandboxErrorCode.ENGINE_UNREACHABLE: "The container engine could not be reached. Please try again later.",
    SandboxErrorCode.ENGINE_FAILURE: "The container engine rejected the operation.",
    SandboxErrorCode.IMAGE_PULL_FAILED: "The sandbox image could not be pulled. Check the flavor and registry settings.",
    SandboxErrorCode.RESOURCE_LIMIT_EXCEEDED: (
        "The requested resources are not available. Choose a smaller tier or contact the operator."
    ),
    SandboxErrorCode.REPOSITORY_FAILURE: "The sandbox repository could not be prepared.",
    SandboxErrorCode.OPERATION_TIMEOUT: "The operation timed out.",
    SandboxErrorCode.OPERATION_CANCELLED: "The operation was cancelled before it finished.",
}


@dataclass(frozen=True)
class ClassifiedFailure:
    """A failure code plus the hint shown for it."""

    code: SandboxErrorCode
    message: str


def classify_failure(e: BaseException) -> ClassifiedFailure:
    """Map an adapter or control-flow exception to a failure code."""
    if isinstance(e, ImagePullError):
        code = SandboxErrorCode.IMAGE_PULL_FAILED
    elif isinstance(e, EngineUnavailableError):
        code = SandboxErrorCode.ENGINE_UNREACHABLE
    elif isinstance(e, ResourceLimitError):
        code = SandboxErrorCode.RESOURCE_LIMIT_EXCEEDED
    elif isinstance(e, RepositoryError):
        code = SandboxErrorCode.REPOSITORY_FAILURE
    elif isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        code = SandboxErrorCode.OPERATION_TIMEOUT
    elif isinstance(e, asyncio.CancelledError):
        code = SandboxErrorCode.OPERATION_CANCELLED
    elif isinstance(e, ContainerError):
        code = SandboxErrorCode.ENGINE_FAILURE
    else:
        error_str = str(e).lower()
        if "timed out" in error_str or "timeout" in error_str:
            code = SandboxErrorCode.OPERATION_TIMEOUT
        elif "connection refused" in error_str or "unreachable" in error_str:
            code = SandboxErrorCode.ENGINE_UNREACHABLE
        else:
            code = SandboxErrorCode.ENGINE_FAILURE

    return ClassifiedFailure(code=code, message=_DEFAULT_MESSAGES[code])


def format_error(code: SandboxErrorCode, phase: str, detail: str | None = None) -> str:
    """Render the stored error text, e.g. ``[image.pull_failed] create: manifest unknown``."""
    detail = (detail or "").strip() or _DEFAULT_MESSAGES[code]
    return f"[{code.value}] {phase}: {detail}"
