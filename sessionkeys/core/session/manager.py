"""
Session Lifecycle Manager

Owner-side orchestration: propose a session, install it through the master
validator, hand out the approval artifact, and revoke it.

Install and uninstall operations against the same account are serialized
with a per-account lock; the in-memory account only changes after the
operation has a successful receipt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Union

from eth_utils import is_address

from ...config import settings
from ...logging_config import session_log_context
from ...providers.base import LedgerQuery
from ..approval.codec import ApprovalCodec, get_approval_codec
from ..execution.gateway import ExecutionGateway, get_execution_gateway
from ..execution.userop_builder import (
    CURRENT_NONCE_SIGNATURE,
    KernelModules,
    build_install_validation_call,
    build_uninstall_validation_call,
    validation_id,
)
from ..policy.models import Policy
from ..recovery.errors import ConfigurationError
from ..wallet.accounts import create_account, install_validator, uninstall_validator
from ..wallet.models import Account, SessionValidator, ValidatorRole
from ..wallet.signers import AddressOnlySigner, Signer, owner_signer_from_settings
from .models import SessionRecord, SessionState, TransitionTrigger
from .state_machine import SessionStateMachine


logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """
    Drives sessions for accounts whose owner key this process holds.

    Usage:
        manager = SessionLifecycleManager.from_settings()
        record = manager.propose_session(account, session_address, [call_policy])
        artifact = await manager.approve_session(record.session_id)
        ...
        await manager.revoke_session(record.session_id)
    """

    def __init__(
        self,
        gateway: ExecutionGateway,
        codec: Optional[ApprovalCodec] = None,
        modules: Optional[KernelModules] = None,
    ):
        self.gateway = gateway
        self.codec = codec or get_approval_codec()
        self.modules = modules or KernelModules.from_settings()

        self._accounts: Dict[str, Account] = {}
        self._sessions: Dict[str, SessionRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls) -> "SessionLifecycleManager":
        """
        Manager for the configured owner key, with its account registered.

        Raises ConfigurationError before any network call if a required
        input is missing.
        """
        settings.require_runtime_inputs()
        owner = owner_signer_from_settings(settings.owner_key())
        manager = cls(gateway=get_execution_gateway())
        manager.register_account(
            create_account(
                owner,
                entry_point_version=settings.entry_point_version,
                kernel_version=settings.kernel_version,
                chain_id=settings.chain_id,
                validator_module=settings.ecdsa_validator_address,
            )
        )
        return manager

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def register_account(self, account: Account) -> Account:
        key = self._key(account.address)
        self._accounts.setdefault(key, account)
        return self._accounts[key]

    def get_account(self, address: str) -> Optional[Account]:
        return self._accounts.get(self._key(address))

    @property
    def accounts(self) -> List[Account]:
        return list(self._accounts.values())

    def _lock_for(self, address: str) -> asyncio.Lock:
        key = self._key(address)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _set_account(self, account: Account) -> None:
        self._accounts[self._key(account.address)] = account
        for record in self._sessions.values():
            if self._key(record.account_address) == self._key(account.address):
                record.account = account

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def propose_session(
        self,
        account: Account,
        session_signer: Union[Signer, str],
        policies: Sequence[Policy],
        valid_after: Optional[int] = None,
        valid_until: Optional[int] = None,
        allow_sudo: bool = False,
    ) -> SessionRecord:
        """
        Choose a session identity and its policies. No chain interaction.

        ``session_signer`` may be the agent's address only; the session key
        never has to reach the owner process.
        """
        if isinstance(session_signer, str):
            if not is_address(session_signer):
                raise ConfigurationError(f"Invalid session signer address: {session_signer!r}")
            session_signer = AddressOnlySigner(session_signer)

        account = self.register_account(account)
        validator = SessionValidator(
            signer=session_signer,
            policies=tuple(policies),
            valid_after=valid_after,
            valid_until=valid_until,
            allow_sudo=allow_sudo,
        )

        record = SessionRecord(account=account, validator=validator)
        SessionStateMachine(record, logger).transition_to(
            SessionState.SESSION_PROPOSED,
            reason="Session proposed",
            context={"permissionId": validator.permission_id, "signer": session_signer.address},
        )
        self._sessions[record.session_id] = record
        return record

    async def approve_session(self, session_id: str, timeout: Optional[float] = None) -> str:
        """
        Install the proposed session via the master validator and return
        its approval artifact.
        """
        record = self._require_session(session_id)
        machine = SessionStateMachine(record, logger)
        machine.require(SessionState.SESSION_APPROVED)

        with session_log_context(session_id=record.session_id, permission_id=record.permission_id):
            async with self._lock_for(record.account_address):
                # Another approval may have completed while waiting
                machine.require(SessionState.SESSION_APPROVED)
                account = self._accounts[self._key(record.account_address)]
                # Validates the install locally before anything is submitted
                installed_account = install_validator(account, record.validator, ValidatorRole.REGULAR)

                validation_nonce = await self.gateway.ledger.read(
                    account.address,
                    LedgerQuery(CURRENT_NONCE_SIGNATURE, (), ("uint32",)),
                )
                call = build_install_validation_call(
                    account.address,
                    record.validator,
                    validation_nonce,
                    self.modules,
                )
                receipt = await self.gateway.send_calls(
                    account,
                    ValidatorRole.SUDO,
                    [call],
                    timeout=timeout,
                )

                self._set_account(installed_account)
                record.install_user_op_hash = receipt.user_op_hash
                record.artifact = self.codec.serialize(installed_account, record.validator)

                machine.transition_to(
                    SessionState.SESSION_APPROVED,
                    trigger=TransitionTrigger.OPERATION_CONFIRMED,
                    reason="Session validator installed",
                    context={"userOpHash": receipt.user_op_hash, "txHash": receipt.transaction_hash},
                )
        return record.artifact

    async def revoke_session(
        self,
        session: Union[str, SessionValidator],
        timeout: Optional[float] = None,
    ) -> Account:
        """
        Uninstall the session validator via the master validator.

        Idempotent: revoking an already revoked session, or one that is not
        installed on-chain, returns the account without submitting anything.
        """
        record = self._resolve_session(session)
        machine = SessionStateMachine(record, logger)

        if record.state == SessionState.REVOKED:
            logger.debug(f"Session {record.session_id} already revoked")
            return self._accounts[self._key(record.account_address)]
        machine.require(SessionState.REVOKED)

        with session_log_context(session_id=record.session_id, permission_id=record.permission_id):
            async with self._lock_for(record.account_address):
                if record.state == SessionState.REVOKED:
                    return self._accounts[self._key(record.account_address)]
                account = self._accounts[self._key(record.account_address)]
                on_chain = await self.gateway.ledger.is_permission_installed(
                    account.address, validation_id(record.validator)
                )

                if on_chain:
                    call = build_uninstall_validation_call(account.address, record.validator)
                    receipt = await self.gateway.send_calls(
                        account,
                        ValidatorRole.SUDO,
                        [call],
                        timeout=timeout,
                    )
                    record.revoke_user_op_hash = receipt.user_op_hash
                    trigger = TransitionTrigger.OPERATION_CONFIRMED
                    reason = "Session validator uninstalled"
                else:
                    trigger = TransitionTrigger.LEDGER_STATE
                    reason = "Session validator not installed on-chain"

                account = uninstall_validator(account, record.validator.ref)
                self._set_account(account)

                machine.transition_to(
                    SessionState.REVOKED,
                    trigger=trigger,
                    reason=reason,
                    context={"userOpHash": record.revoke_user_op_hash},
                )
        return account

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    def list_sessions(
        self,
        account_address: Optional[str] = None,
        state: Optional[SessionState] = None,
    ) -> List[SessionRecord]:
        records = list(self._sessions.values())
        if account_address:
            records = [r for r in records if self._key(r.account_address) == self._key(account_address)]
        if state:
            records = [r for r in records if r.state == state]
        return sorted(records, key=lambda r: r.created_at)

    def _require_session(self, session_id: str) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise ConfigurationError(f"Unknown session: {session_id}")
        return record

    def _resolve_session(self, session: Union[str, SessionValidator]) -> SessionRecord:
        if isinstance(session, SessionValidator):
            matches = [
                r for r in self._sessions.values()
                if r.permission_id.lower() == session.permission_id.lower()
            ]
            if not matches:
                raise ConfigurationError(f"Unknown session validator: {session.permission_id}")
            # Prefer a live record over earlier revoked proposals of the same config
            live = [r for r in matches if not r.is_terminal]
            return (live or matches)[-1]
        return self._require_session(session)

