"""
ERC-4337 v0.7 UserOperation models and helpers.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_utils import keccak

from ..policy.abi import encode, hex_to_bytes


def _to_hex(value: int) -> str:
    return hex(value)


def _parse_hex(value: Optional[Any]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


@dataclass
class UserOperation:
    """
    ERC-4337 v0.7 UserOperation payload.

    Values should be supplied in raw units (wei / gas units) and are encoded
    as hex for RPC calls. Deployed accounts leave ``factory`` empty.
    """
    sender: str
    nonce: int
    call_data: str
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    factory: Optional[str] = None
    factory_data: str = "0x"
    paymaster: Optional[str] = None
    paymaster_verification_gas_limit: int = 0
    paymaster_post_op_gas_limit: int = 0
    paymaster_data: str = "0x"
    signature: str = "0x"

    @property
    def init_code(self) -> bytes:
        if not self.factory:
            return b""
        return hex_to_bytes(self.factory) + hex_to_bytes(self.factory_data)

    @property
    def paymaster_and_data(self) -> bytes:
        if not self.paymaster:
            return b""
        return (
            hex_to_bytes(self.paymaster)
            + self.paymaster_verification_gas_limit.to_bytes(16, "big")
            + self.paymaster_post_op_gas_limit.to_bytes(16, "big")
            + hex_to_bytes(self.paymaster_data)
        )

    def apply_gas(self, estimate: "UserOpGasEstimate") -> None:
        self.call_gas_limit = estimate.call_gas_limit
        self.verification_gas_limit = estimate.verification_gas_limit
        self.pre_verification_gas = estimate.pre_verification_gas
        if estimate.paymaster_verification_gas_limit is not None:
            self.paymaster_verification_gas_limit = estimate.paymaster_verification_gas_limit
        if estimate.paymaster_post_op_gas_limit is not None:
            self.paymaster_post_op_gas_limit = estimate.paymaster_post_op_gas_limit

    def to_rpc_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "sender": self.sender,
            "nonce": _to_hex(self.nonce),
            "callData": self.call_data,
            "callGasLimit": _to_hex(self.call_gas_limit),
            "verificationGasLimit": _to_hex(self.verification_gas_limit),
            "preVerificationGas": _to_hex(self.pre_verification_gas),
            "maxFeePerGas": _to_hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _to_hex(self.max_priority_fee_per_gas),
            "signature": self.signature,
        }
        if self.factory:
            payload["factory"] = self.factory
            payload["factoryData"] = self.factory_data
        if self.paymaster:
            payload["paymaster"] = self.paymaster
            payload["paymasterVerificationGasLimit"] = _to_hex(self.paymaster_verification_gas_limit)
            payload["paymasterPostOpGasLimit"] = _to_hex(self.paymaster_post_op_gas_limit)
            payload["paymasterData"] = self.paymaster_data
        return payload

    def packed_hash(self) -> bytes:
        """keccak of the v0.7 packed form (signature excluded)."""
        account_gas_limits = (
            self.verification_gas_limit.to_bytes(16, "big")
            + self.call_gas_limit.to_bytes(16, "big")
        )
        gas_fees = (
            self.max_priority_fee_per_gas.to_bytes(16, "big")
            + self.max_fee_per_gas.to_bytes(16, "big")
        )
        packed = encode(
            ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
            [
                self.sender,
                self.nonce,
                keccak(self.init_code),
                keccak(hex_to_bytes(self.call_data)),
                account_gas_limits,
                self.pre_verification_gas,
                gas_fees,
                keccak(self.paymaster_and_data),
            ],
        )
        return keccak(packed)

    def hash(self, entry_point: str, chain_id: int) -> bytes:
        """userOpHash as computed by EntryPoint v0.7 ``getUserOpHash``."""
        return keccak(
            encode(
                ["bytes32", "address", "uint256"],
                [self.packed_hash(), entry_point, chain_id],
            )
        )


@dataclass
class UserOpGasEstimate:
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    paymaster_verification_gas_limit: Optional[int] = None
    paymaster_post_op_gas_limit: Optional[int] = None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "UserOpGasEstimate":
        return cls(
            call_gas_limit=_parse_hex(data.get("callGasLimit")) or 0,
            verification_gas_limit=_parse_hex(data.get("verificationGasLimit")) or 0,
            pre_verification_gas=_parse_hex(data.get("preVerificationGas")) or 0,
            paymaster_verification_gas_limit=_parse_hex(data.get("paymasterVerificationGasLimit")),
            paymaster_post_op_gas_limit=_parse_hex(data.get("paymasterPostOpGasLimit")),
        )


@dataclass
class GasPrice:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass
class SponsorshipData:
    """Paymaster fields plus the gas limits the paymaster priced against."""
    paymaster: str
    paymaster_data: str
    gas: UserOpGasEstimate

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "SponsorshipData":
        return cls(
            paymaster=data["paymaster"],
            paymaster_data=data.get("paymasterData") or "0x",
            gas=UserOpGasEstimate.from_rpc(data),
        )

    def apply(self, user_op: UserOperation) -> None:
        user_op.paymaster = self.paymaster
        user_op.paymaster_data = self.paymaster_data
        user_op.apply_gas(self.gas)


@dataclass
class UserOpReceipt:
    user_op_hash: str
    success: bool
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def from_rpc(cls, user_op_hash: str, data: Dict[str, Any]) -> "UserOpReceipt":
        receipt = data.get("receipt") or {}
        success = data.get("success")
        if success is None:
            success = receipt.get("status") == "0x1"
        return cls(
            user_op_hash=data.get("userOpHash") or user_op_hash,
            success=bool(success),
            transaction_hash=receipt.get("transactionHash"),
            block_number=_parse_hex(receipt.get("blockNumber")),
            gas_used=_parse_hex(data.get("actualGasUsed") or receipt.get("gasUsed")),
            reason=data.get("reason") or None,
        )
