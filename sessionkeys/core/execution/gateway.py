"""
Execution Gateway

Turns call batches into signed, sponsored ERC-4337 operations for a chosen
validator and tracks them to a receipt.

Session validator calls are checked against the local policy before anything
is sponsored; a denied call is never broadcast.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence

from ...config import settings
from ..policy.models import Call
from ..recovery.errors import (
    ConfigurationError,
    NetworkError,
    NetworkTimeout,
    OperationReverted,
    PolicyDenied,
    ValidatorNotInstalled,
)
from ..recovery.strategies import ExponentialBackoffStrategy, RetryStrategy
from ..wallet.models import PERMISSION_SIGNATURE_PREFIX, Account, SessionValidator, Validator, ValidatorRole
from .userop import SponsorshipData, UserOperation, UserOpReceipt
from .userop_builder import build_execute_call_data, nonce_key, validation_id

if TYPE_CHECKING:
    from ...providers.base import Broadcaster, LedgerClient, SponsorshipService


logger = logging.getLogger(__name__)

# Well-formed ECDSA signature used while the paymaster simulates validation
DUMMY_ECDSA_SIGNATURE = (
    "0xfffffffffffffffffffffffffffffff0000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)


def dummy_signature(validator: Validator) -> str:
    if isinstance(validator, SessionValidator):
        return PERMISSION_SIGNATURE_PREFIX + DUMMY_ECDSA_SIGNATURE[2:]
    return DUMMY_ECDSA_SIGNATURE


@dataclass
class OperationHandle:
    """A submitted operation awaiting its receipt."""
    user_op_hash: str
    account_address: str
    role: ValidatorRole
    validator_ref: str
    call_count: int
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userOpHash": self.user_op_hash,
            "account": self.account_address,
            "role": self.role.value,
            "validator": self.validator_ref,
            "callCount": self.call_count,
            "submittedAt": self.submitted_at.isoformat(),
        }


class ExecutionGateway:
    """
    Submits policy-checked call batches through a bundler.

    Fees are fetched on every submission. Sponsorship failures are retried
    with exponential backoff; everything else propagates to the caller.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        paymaster: SponsorshipService,
        bundler: Broadcaster,
        entry_point: Optional[str] = None,
        sponsorship_retry: Optional[RetryStrategy] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ledger = ledger
        self.paymaster = paymaster
        self.bundler = bundler
        self.entry_point = entry_point or settings.entry_point_address
        self.sponsorship_retry = sponsorship_retry or ExponentialBackoffStrategy(
            max_attempts=settings.sponsorship_max_attempts,
            initial_delay=settings.sponsorship_retry_delay_seconds,
            max_delay=30.0,
            logger=logger,
        )
        self._clock = clock or time.time

    async def submit(
        self,
        account: Account,
        role: ValidatorRole,
        calls: Sequence[Call],
    ) -> OperationHandle:
        """
        Build, sponsor, sign and broadcast an operation for ``calls``.

        Raises:
            ConfigurationError: empty batch
            ValidatorNotInstalled: role has no validator, or it was uninstalled on-chain
            PolicyDenied: a call is outside the session policy
            SponsorshipUnavailable: paymaster refused after all retries
        """
        calls = list(calls)
        if not calls:
            raise ConfigurationError("Cannot submit an empty call batch")

        role = ValidatorRole(role)
        validator = account.validator_for(role)

        if isinstance(validator, SessionValidator):
            # A revoked session reports as uninstalled whatever the call
            installed = await self.ledger.is_permission_installed(
                account.address, validation_id(validator)
            )
            if not installed:
                raise ValidatorNotInstalled(
                    f"Session {validator.ref} is not installed on {account.address}",
                    account_address=account.address,
                    validator_ref=validator.ref,
                )

            decision, denied_index = validator.engine.evaluate_batch(calls, now=self._clock())
            if not decision.allowed:
                logger.info(
                    f"Call {denied_index} denied for session {validator.ref}: "
                    f"{decision.reason.value} {decision.message}"
                )
                raise PolicyDenied(decision, call_index=denied_index)

        nonce = await self.ledger.get_nonce(self.entry_point, account.address, nonce_key(validator))
        gas_price = await self.bundler.get_user_operation_gas_price()

        user_op = UserOperation(
            sender=account.address,
            nonce=nonce,
            call_data=build_execute_call_data(calls),
            max_fee_per_gas=gas_price.max_fee_per_gas,
            max_priority_fee_per_gas=gas_price.max_priority_fee_per_gas,
            signature=dummy_signature(validator),
        )

        sponsorship = await self._sponsor(user_op)
        sponsorship.apply(user_op)

        user_op_hash = user_op.hash(self.entry_point, account.chain_id)
        user_op.signature = await validator.sign_user_op_hash(user_op_hash)

        sent_hash = await self.bundler.send_user_operation(user_op, self.entry_point)
        handle = OperationHandle(
            user_op_hash=sent_hash,
            account_address=account.address,
            role=role,
            validator_ref=validator.ref,
            call_count=len(calls),
        )
        logger.info(
            f"Submitted operation {sent_hash} for {account.address} "
            f"via {role.value} validator ({len(calls)} call(s))"
        )
        return handle

    async def _sponsor(self, user_op: UserOperation) -> SponsorshipData:
        async def _request() -> SponsorshipData:
            return await self.paymaster.sponsor(user_op, self.entry_point)

        return await self.sponsorship_retry.execute(_request, "sponsorship")

    async def await_receipt(
        self,
        handle: OperationHandle,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> UserOpReceipt:
        """
        Wait for the operation to be included.

        Cancelling the awaiting task stops the wait only; the submitted
        operation is unaffected.

        Raises:
            NetworkTimeout: no receipt within ``timeout``
            OperationReverted: receipt reports failure
        """
        timeout = settings.receipt_timeout_seconds if timeout is None else timeout
        poll_interval = settings.receipt_poll_interval_seconds if poll_interval is None else poll_interval

        try:
            receipt = await asyncio.wait_for(
                self._poll_receipt(handle.user_op_hash, poll_interval),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning(f"No receipt for {handle.user_op_hash} after {timeout}s")
            raise NetworkTimeout(
                f"Timed out waiting for receipt of {handle.user_op_hash}",
                operation="await_receipt",
                user_op_hash=handle.user_op_hash,
            ) from exc

        if not receipt.success:
            logger.warning(f"Operation {handle.user_op_hash} reverted: {receipt.reason}")
            raise OperationReverted(
                f"Operation {handle.user_op_hash} reverted",
                user_op_hash=handle.user_op_hash,
                reason=receipt.reason,
                tx_hash=receipt.transaction_hash,
            )

        logger.info(
            f"Operation {handle.user_op_hash} included in {receipt.transaction_hash} "
            f"(block {receipt.block_number})"
        )
        return receipt

    async def _poll_receipt(self, user_op_hash: str, poll_interval: float) -> UserOpReceipt:
        while True:
            try:
                receipt = await self.bundler.get_user_operation_receipt(user_op_hash)
            except (NetworkError, NetworkTimeout) as exc:
                logger.debug(f"Receipt poll for {user_op_hash} failed: {exc}")
                receipt = None
            if receipt is not None:
                return receipt
            await asyncio.sleep(poll_interval)

    async def send_calls(
        self,
        account: Account,
        role: ValidatorRole,
        calls: Sequence[Call],
        timeout: Optional[float] = None,
    ) -> UserOpReceipt:
        """Submit ``calls`` and wait for the receipt."""
        handle = await self.submit(account, role, calls)
        return await self.await_receipt(handle, timeout=timeout)

    async def close(self) -> None:
        for provider in (self.ledger, self.paymaster, self.bundler):
            await provider.close()


def get_execution_gateway() -> ExecutionGateway:
    """Gateway wired to the configured JSON-RPC providers."""
    from ...providers.bundler import get_bundler_provider
    from ...providers.ledger import get_ledger_client
    from ...providers.paymaster import get_paymaster_provider

    return ExecutionGateway(
        ledger=get_ledger_client(),
        paymaster=get_paymaster_provider(),
        bundler=get_bundler_provider(),
    )
