"""
Unit tests for the SessionStateMachine.
"""

import pytest

from quotefeed.live.state import ALLOWED_TRANSITIONS, SessionStateMachine
from quotefeed.live.types import SessionState


class TestSessionStateMachine:
    """Tests for SessionStateMachine."""

    @pytest.fixture
    def machine(self) -> SessionStateMachine:
        return SessionStateMachine()

    def test_initial_state(self, machine: SessionStateMachine) -> None:
        """Test a new machine starts DISCONNECTED."""
        assert machine.state == SessionState.DISCONNECTED
        assert not machine.can_subscribe

    def test_happy_path(self, machine: SessionStateMachine) -> None:
        """Test the full connect/auth/subscribe path."""
        for state in (
            SessionState.CONNECTING,
            SessionState.CONNECTED,
            SessionState.AUTHENTICATED,
            SessionState.SUBSCRIBED,
        ):
            assert machine.transition(state)

        assert machine.state == SessionState.SUBSCRIBED
        assert machine.can_subscribe

    def test_disallowed_transition_rejected(self, machine: SessionStateMachine) -> None:
        """Test SUBSCRIBED cannot be reached from DISCONNECTED."""
        assert not machine.transition(SessionState.SUBSCRIBED)
        assert machine.state == SessionState.DISCONNECTED

    def test_same_state_is_noop(self, machine: SessionStateMachine) -> None:
        """Test same-state transitions succeed without notifying listeners."""
        calls: list[tuple[SessionState, SessionState]] = []
        machine.add_listener(lambda old, new: calls.append((old, new)))

        assert machine.transition(SessionState.DISCONNECTED)
        assert calls == []

    def test_listeners_see_old_and_new(self, machine: SessionStateMachine) -> None:
        """Test listeners receive (old, new)."""
        calls: list[tuple[SessionState, SessionState]] = []
        machine.add_listener(lambda old, new: calls.append((old, new)))

        machine.transition(SessionState.CONNECTING)
        machine.transition(SessionState.ERROR)

        assert calls == [
            (SessionState.DISCONNECTED, SessionState.CONNECTING),
            (SessionState.CONNECTING, SessionState.ERROR),
        ]

    def test_listener_error_does_not_block_transition(self, machine: SessionStateMachine) -> None:
        """Test a raising listener is logged and the state still changes."""

        def broken(old: SessionState, new: SessionState) -> None:
            raise RuntimeError("boom")

        machine.add_listener(broken)

        assert machine.transition(SessionState.CONNECTING)
        assert machine.state == SessionState.CONNECTING

    def test_every_state_can_reach_disconnected_or_connecting(self) -> None:
        """Test no state is a dead end."""
        for state, targets in ALLOWED_TRANSITIONS.items():
            assert targets & {SessionState.DISCONNECTED, SessionState.CONNECTING}, state
