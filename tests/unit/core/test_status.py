"""Unit tests for engine-state mapping and the record state machine."""

import pytest

from sandboxer.core.sandbox import InvalidRequestError, map_engine_state
from sandboxer.core.sandbox.status import ALLOWED_TRANSITIONS, can_transition, ensure_transition
from sandboxer.infra.container import EngineState
from sandboxer.models.sandbox import SandboxStatus


class TestMapEngineState:
    """map_engine_state is total over engine states."""

    @pytest.mark.parametrize(
        "state,expected",
        [
            (EngineState.creating, SandboxStatus.STARTING),
            (EngineState.running, SandboxStatus.RUNNING),
            (EngineState.stopped, SandboxStatus.STOPPED),
            (EngineState.paused, SandboxStatus.STOPPED),
            (EngineState.restarting, SandboxStatus.STARTING),
            (EngineState.removing, SandboxStatus.STOPPING),
            (EngineState.exited, SandboxStatus.STOPPED),
            (EngineState.dead, SandboxStatus.ERROR),
            (EngineState.error, SandboxStatus.ERROR),
            (EngineState.unknown, SandboxStatus.ERROR),
        ],
    )
    def test_mapping(self, state: EngineState, expected: SandboxStatus) -> None:
        """Every engine state has a fixed record status."""
        assert map_engine_state(state) == expected

    def test_accepts_raw_strings(self) -> None:
        """Raw engine strings are mapped like enum members."""
        assert map_engine_state("running") == SandboxStatus.RUNNING

    def test_unrecognised_state_is_error(self) -> None:
        """Anything unknown is never reported as healthy."""
        assert map_engine_state("hibernating") == SandboxStatus.ERROR
        assert map_engine_state(None) == SandboxStatus.ERROR


class TestTransitions:
    """Allowed record transitions."""

    def test_error_reachable_from_every_state(self) -> None:
        """Any state may move to error."""
        for status in SandboxStatus:
            assert can_transition(status, SandboxStatus.ERROR)

    def test_same_state_is_allowed(self) -> None:
        """Writing the current state is never rejected."""
        for status in SandboxStatus:
            assert can_transition(status, status)

    def test_every_state_has_a_transition_entry(self) -> None:
        """The table covers the whole status enum."""
        assert set(ALLOWED_TRANSITIONS) == set(SandboxStatus)

    @pytest.mark.parametrize(
        "current,target",
        [
            (SandboxStatus.CREATED, SandboxStatus.STARTING),
            (SandboxStatus.STARTING, SandboxStatus.RUNNING),
            (SandboxStatus.RUNNING, SandboxStatus.STOPPING),
            (SandboxStatus.STOPPING, SandboxStatus.STOPPED),
            (SandboxStatus.STOPPED, SandboxStatus.STARTING),
            (SandboxStatus.STOPPED, SandboxStatus.RUNNING),
            (SandboxStatus.ERROR, SandboxStatus.STARTING),
            (SandboxStatus.ERROR, SandboxStatus.STOPPING),
        ],
    )
    def test_allowed(self, current: SandboxStatus, target: SandboxStatus) -> None:
        """Regular lifecycle moves are accepted."""
        assert can_transition(current, target)
        ensure_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (SandboxStatus.CREATED, SandboxStatus.RUNNING),
            (SandboxStatus.STOPPING, SandboxStatus.RUNNING),
            (SandboxStatus.ERROR, SandboxStatus.RUNNING),
            (SandboxStatus.ERROR, SandboxStatus.STOPPED),
            (SandboxStatus.RUNNING, SandboxStatus.CREATED),
        ],
    )
    def test_rejected(self, current: SandboxStatus, target: SandboxStatus) -> None:
        """Skipping intermediate states is refused."""
        assert not can_transition(current, target)
        with pytest.raises(InvalidRequestError) as exc_info:
            ensure_transition(current, target, "sb-1")
        assert exc_info.value.field == "status"
        assert exc_info.value.sandbox_id == "sb-1"
