"""Engine-state normalisation and the record state machine."""

from __future__ import annotations

from sandboxer.infra.container.base import EngineState
from sandboxer.models.sandbox import SandboxStatus

from .exceptions import InvalidRequestError

ENGINE_STATUS_MAP: dict[EngineState, SandboxStatus] = {
    EngineState.creating: SandboxStatus.STARTING,
    EngineState.running: SandboxStatus.RUNNING,
    EngineState.stopped: SandboxStatus.STOPPED,
    EngineState.paused: SandboxStatus.STOPPED,
    EngineState.restarting: SandboxStatus.STARTING,
    EngineState.removing: SandboxStatus.STOPPING,
    EngineState.exited: SandboxStatus.STOPPED,
    EngineState.dead: SandboxStatus.ERROR,
    EngineState.error: SandboxStatus.ERROR,
    EngineState.unknown: SandboxStatus.ERROR,
}

# error is reachable from every state and is added in can_transition
ALLOWED_TRANSITIONS: dict[SandboxStatus, frozenset[SandboxStatus]] = {
    SandboxStatus.CREATED: frozenset({SandboxStatus.STARTING, SandboxStatus.STOPPING, SandboxStatus.STOPPED}),
    SandboxStatus.STARTING: frozenset({SandboxStatus.RUNNING, SandboxStatus.STOPPING, SandboxStatus.STOPPED}),
    SandboxStatus.RUNNING: frozenset({SandboxStatus.STOPPING, SandboxStatus.STOPPED, SandboxStatus.STARTING}),
    SandboxStatus.STOPPING: frozenset({SandboxStatus.STOPPED, SandboxStatus.STARTING}),
    SandboxStatus.STOPPED: frozenset({SandboxStatus.STARTING, SandboxStatus.STOPPING, SandboxStatus.RUNNING}),
    SandboxStatus.ERROR: frozenset({SandboxStatus.STARTING, SandboxStatus.STOPPING}),
}


def map_engine_state(state: EngineState | str | None) -> SandboxStatus:
    """Normalise a raw engine state into a record status.

    Total over its input: anything that is not a known engine state maps to
    ``error`` so an unrecognised state is never reported as healthy.
    """
    if state is None:
        return SandboxStatus.ERROR
    try:
        engine_state = EngineState(state)
    except ValueError:
        return SandboxStatus.ERROR
    return ENGINE_STATUS_MAP.get(engine_state, SandboxStatus.ERROR)


def can_transition(current: SandboxStatus, target: SandboxStatus) -> bool:
    if target == current or target == SandboxStatus.ERROR:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: SandboxStatus, target: SandboxStatus, sandbox_id: str | None = None) -> None:
    if not can_transition(current, target):
        raise InvalidRequestError(
            f"Cannot move sandbox from '{current.value}' to '{target.value}'",
            field="status",
            sandbox_id=sandbox_id,
        )
