"""
Session Lifecycle Models

Data classes for tracking a session from proposal to revocation or expiry.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..wallet.models import Account, SessionValidator


class SessionState(str, Enum):
    """Lifecycle states of a session."""

    UNCONFIGURED = "unconfigured"          # Nothing proposed yet
    SESSION_PROPOSED = "session_proposed"  # Signer + policy chosen, nothing on-chain
    SESSION_APPROVED = "session_approved"  # Installed on-chain, artifact issued
    SESSION_ACTIVE = "session_active"      # Agent reconstructed the session
    REVOKED = "revoked"                    # Uninstalled by the owner
    EXPIRED = "expired"                    # Validity window has passed


TERMINAL_STATES = frozenset({SessionState.REVOKED, SessionState.EXPIRED})


class TransitionTrigger(str, Enum):
    """What triggered a state transition."""

    OWNER_ACTION = "owner_action"
    AGENT_ACTION = "agent_action"
    OPERATION_CONFIRMED = "operation_confirmed"
    LEDGER_STATE = "ledger_state"          # Observed on-chain state
    CLOCK = "clock"                        # Validity window elapsed


@dataclass
class StateTransition:
    """Record of a state transition."""

    from_state: SessionState
    to_state: SessionState
    trigger: TransitionTrigger = TransitionTrigger.OWNER_ACTION
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromState": self.from_state.value,
            "toState": self.to_state.value,
            "trigger": self.trigger.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "context": self.context,
        }


@dataclass
class SessionRecord:
    """
    One session as seen by the process that drives it.

    The owner process and the agent process each keep their own record;
    they share only the on-chain account and the approval artifact.
    """

    account: Account
    validator: SessionValidator
    session_id: str = field(default_factory=lambda: str(uuid4()))
    state: SessionState = SessionState.UNCONFIGURED
    artifact: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    install_user_op_hash: Optional[str] = None
    revoke_user_op_hash: Optional[str] = None

    history: List[StateTransition] = field(default_factory=list)

    @property
    def permission_id(self) -> str:
        return self.validator.permission_id

    @property
    def account_address(self) -> str:
        return self.account.address

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "permissionId": self.permission_id,
            "account": self.account_address,
            "sessionSigner": self.validator.signer.address,
            "state": self.state.value,
            "validAfter": self.validator.valid_after,
            "validUntil": self.validator.valid_until,
            "hasArtifact": self.artifact is not None,
            "installUserOpHash": self.install_user_op_hash,
            "revokeUserOpHash": self.revoke_user_op_hash,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "history": [t.to_dict() for t in self.history],
        }
