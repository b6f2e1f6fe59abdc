"""
Session State Machine

Validates session lifecycle transitions and records their history.
"""

import logging
from typing import Any, Dict, Optional, Set

from ..recovery.errors import InvalidTransitionError
from .models import SessionRecord, SessionState, StateTransition, TransitionTrigger


class SessionStateMachine:
    """
    Manages state transitions for one session record.

    Features:
    - Validates transitions against allowed transition map
    - Tracks state history on the record
    """

    # Define valid state transitions
    TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
        SessionState.UNCONFIGURED: {
            SessionState.SESSION_PROPOSED,
        },
        SessionState.SESSION_PROPOSED: {
            SessionState.SESSION_APPROVED,
            SessionState.REVOKED,  # Withdrawn before install
        },
        SessionState.SESSION_APPROVED: {
            SessionState.SESSION_ACTIVE,
            SessionState.REVOKED,
            SessionState.EXPIRED,
        },
        SessionState.SESSION_ACTIVE: {
            SessionState.REVOKED,
            SessionState.EXPIRED,
        },
        SessionState.REVOKED: set(),
        SessionState.EXPIRED: set(),
    }

    def __init__(self, record: SessionRecord, logger: Optional[logging.Logger] = None):
        self.record = record
        self.logger = logger or logging.getLogger(__name__)

    @property
    def current_state(self) -> SessionState:
        return self.record.state

    @property
    def is_terminal(self) -> bool:
        return self.record.is_terminal

    def can_transition_to(self, to_state: SessionState) -> bool:
        return to_state in self.TRANSITIONS.get(self.current_state, set())

    def get_allowed_transitions(self) -> Set[SessionState]:
        return self.TRANSITIONS.get(self.current_state, set())

    def require(self, to_state: SessionState) -> None:
        """Raise InvalidTransitionError unless ``to_state`` is reachable now."""
        if not self.can_transition_to(to_state):
            raise InvalidTransitionError(
                from_state=self.current_state,
                to_state=to_state,
                message=f"Invalid transition from {self.current_state.value} to {to_state.value}. "
                        f"Allowed: {sorted(s.value for s in self.get_allowed_transitions())}",
            )

    def transition_to(
        self,
        to_state: SessionState,
        trigger: TransitionTrigger = TransitionTrigger.OWNER_ACTION,
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """
        Transition the record to a new state.

        Raises:
            InvalidTransitionError: If transition is not allowed
        """
        from_state = self.current_state
        self.require(to_state)

        transition = StateTransition(
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            reason=reason,
            context=context or {},
        )

        self.record.state = to_state
        self.record.updated_at = transition.timestamp
        self.record.history.append(transition)

        self.logger.info(
            f"Session {self.record.session_id}: {from_state.value} -> {to_state.value}"
            f"{f' ({reason})' if reason else ''}"
        )
        return transition
