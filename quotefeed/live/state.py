"""
Session state machine for the streaming connection.

Single writer: transitions are made from the transport callbacks, the message
handlers and the reconnection policy, all on the event loop. Everything else
only reads `state`.

    [DISCONNECTED] --open--> [CONNECTING] --open ok--> [CONNECTED]
                                  |                        |
                               [ERROR] <---------- auth ok/failed
                                                           |
                   [SUBSCRIBED] <--subscribe ok-- [AUTHENTICATED]

Any connected state falls back to DISCONNECTED when the socket closes.
"""

from __future__ import annotations

import logging
from typing import Callable

from quotefeed.live.types import SessionState

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState, SessionState], None]

ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset(
        {
            SessionState.CONNECTED,
            SessionState.AUTHENTICATED,
            SessionState.ERROR,
            SessionState.DISCONNECTED,
        }
    ),
    SessionState.CONNECTED: frozenset(
        {SessionState.AUTHENTICATED, SessionState.ERROR, SessionState.DISCONNECTED}
    ),
    SessionState.AUTHENTICATED: frozenset(
        {SessionState.SUBSCRIBED, SessionState.ERROR, SessionState.DISCONNECTED}
    ),
    SessionState.SUBSCRIBED: frozenset({SessionState.ERROR, SessionState.DISCONNECTED}),
    SessionState.ERROR: frozenset({SessionState.CONNECTING, SessionState.DISCONNECTED}),
}

# States in which a subscribe request may be sent
SUBSCRIBABLE_STATES = frozenset({SessionState.AUTHENTICATED, SessionState.SUBSCRIBED})


class SessionStateMachine:
    """Authoritative lifecycle state with synchronous change listeners."""

    def __init__(self, name: str = "session") -> None:
        self._name = name
        self._state = SessionState.DISCONNECTED
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> SessionState:
        """Current state."""
        return self._state

    @property
    def can_subscribe(self) -> bool:
        return self._state in SUBSCRIBABLE_STATES

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked as listener(old_state, new_state)."""
        self._listeners.append(listener)

    def can_transition(self, new_state: SessionState) -> bool:
        return new_state == self._state or new_state in ALLOWED_TRANSITIONS[self._state]

    def transition(self, new_state: SessionState) -> bool:
        """
        Move to `new_state`.

        Returns False (and leaves the state untouched) when the transition is
        not allowed. Same-state transitions succeed without notifying.
        """
        old_state = self._state
        if new_state == old_state:
            return True

        if new_state not in ALLOWED_TRANSITIONS[old_state]:
            logger.warning(
                f"[{self._name}] Rejected transition: {old_state.value} -> {new_state.value}"
            )
            return False

        self._state = new_state
        logger.debug(f"[{self._name}] State: {old_state.value} -> {new_state.value}")

        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.warning(f"[{self._name}] State listener error: {e}")
        return True
