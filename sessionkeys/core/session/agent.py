"""
Session Agent

Agent-side client: reconstructs a session from an approval artifact with
the agent's own signer and executes policy-checked calls under it.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from ...logging_config import session_log_context
from ..approval.codec import ApprovalCodec, get_approval_codec
from ..execution.gateway import ExecutionGateway
from ..execution.userop import UserOpReceipt
from ..policy.models import Call, DenyReason, PolicyDecision
from ..recovery.errors import ConfigurationError, PolicyDenied, ValidatorNotInstalled
from ..wallet.models import Account, ValidatorRole
from ..wallet.signers import Signer
from .models import SessionRecord, SessionState, TransitionTrigger
from .state_machine import SessionStateMachine


logger = logging.getLogger(__name__)


class SessionAgent:
    """
    Holds at most one active session.

    Usage:
        agent = SessionAgent(gateway)
        agent.activate(artifact, LocalAccountSigner.from_key(session_key))
        receipt = await agent.execute([Call(target=token, data=transfer_data)])
    """

    def __init__(
        self,
        gateway: ExecutionGateway,
        codec: Optional[ApprovalCodec] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.gateway = gateway
        self.codec = codec or get_approval_codec()
        self._clock = clock or time.time
        self.record: Optional[SessionRecord] = None

    @property
    def state(self) -> SessionState:
        return self.record.state if self.record else SessionState.UNCONFIGURED

    @property
    def account(self) -> Optional[Account]:
        return self.record.account if self.record else None

    def activate(self, artifact: str, signer: Signer) -> Account:
        """
        Reconstruct the session locally. No chain interaction; the first
        submitted call is the first real test of validity.

        Raises SignerMismatch, VersionMismatch or ArtifactCorrupted.
        """
        account = self.codec.deserialize(artifact, signer)
        record = SessionRecord(
            account=account,
            validator=account.regular_validator,
            state=SessionState.SESSION_APPROVED,
            artifact=artifact,
        )
        SessionStateMachine(record, logger).transition_to(
            SessionState.SESSION_ACTIVE,
            trigger=TransitionTrigger.AGENT_ACTION,
            reason="Artifact reconstructed with agent signer",
            context={"permissionId": record.permission_id},
        )
        self.record = record
        return account

    async def execute(
        self,
        calls: Sequence[Call],
        timeout: Optional[float] = None,
    ) -> UserOpReceipt:
        """
        Submit ``calls`` under the session validator and wait for the receipt.

        Raises:
            PolicyDenied: a call is outside the policy, or the session expired
            ValidatorNotInstalled: the session was revoked
        """
        record = self._require_session()
        machine = SessionStateMachine(record, logger)

        with session_log_context(session_id=record.session_id, permission_id=record.permission_id):
            if record.validator.is_expired(self._clock()):
                self._mark_expired(machine)
                raise PolicyDenied(
                    PolicyDecision.deny(
                        DenyReason.SESSION_EXPIRED,
                        f"session expired at {record.validator.valid_until}",
                    )
                )

            try:
                return await self.gateway.send_calls(
                    record.account,
                    ValidatorRole.REGULAR,
                    calls,
                    timeout=timeout,
                )
            except ValidatorNotInstalled:
                machine.transition_to(
                    SessionState.REVOKED,
                    trigger=TransitionTrigger.LEDGER_STATE,
                    reason="Session validator no longer installed",
                )
                raise
            except PolicyDenied as exc:
                if exc.reason == DenyReason.SESSION_EXPIRED:
                    self._mark_expired(machine)
                raise

    def _mark_expired(self, machine: SessionStateMachine) -> None:
        machine.transition_to(
            SessionState.EXPIRED,
            trigger=TransitionTrigger.CLOCK,
            reason=f"Validity window ended at {machine.record.validator.valid_until}",
        )

    def _require_session(self) -> SessionRecord:
        if self.record is None:
            raise ConfigurationError("No session activated")
        if self.record.state == SessionState.REVOKED:
            raise ValidatorNotInstalled(
                f"Session {self.record.permission_id} was revoked",
                account_address=self.record.account_address,
                validator_ref=self.record.permission_id,
            )
        if self.record.state == SessionState.EXPIRED:
            raise PolicyDenied(
                PolicyDecision.deny(DenyReason.SESSION_EXPIRED, "session expired")
            )
        return self.record
