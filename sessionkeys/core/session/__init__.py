"""
Session Lifecycle Module

Owner-side lifecycle manager and agent-side client for session keys.

States:
    UNCONFIGURED -> SESSION_PROPOSED -> SESSION_APPROVED -> SESSION_ACTIVE -> REVOKED
                                                     \\-> EXPIRED
"""

from .agent import SessionAgent
from .manager import SessionLifecycleManager
from .models import SessionRecord, SessionState, StateTransition, TransitionTrigger
from .state_machine import SessionStateMachine

__all__ = [
    "SessionAgent",
    "SessionLifecycleManager",
    "SessionRecord",
    "SessionState",
    "SessionStateMachine",
    "StateTransition",
    "TransitionTrigger",
]
