"""
Tests for the ERC-4337 v0.7 UserOperation model.
"""

from dataclasses import replace

from eth_utils import keccak

from sessionkeys.core.execution.userop import (
    SponsorshipData,
    UserOperation,
    UserOpGasEstimate,
    UserOpReceipt,
)
from sessionkeys.core.policy.abi import encode


SENDER = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"
ENTRY_POINT = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
PAYMASTER = "0x777777777777AeC03fd955926DbF81597e66834C"


def _user_op(**overrides) -> UserOperation:
    fields = dict(
        sender=SENDER,
        nonce=1,
        call_data="0x1234",
        call_gas_limit=100_000,
        verification_gas_limit=200_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=3_000_000_000,
        max_priority_fee_per_gas=1_000_000_000,
    )
    fields.update(overrides)
    return UserOperation(**fields)


def test_signature_does_not_affect_hash() -> None:
    op = _user_op(signature="0x")

    assert op.hash(ENTRY_POINT, 1) == replace(op, signature="0xff" + "ab" * 65).hash(ENTRY_POINT, 1)


def test_hash_binds_nonce_chain_and_entry_point() -> None:
    op = _user_op()

    base = op.hash(ENTRY_POINT, 11155111)

    assert base != replace(op, nonce=2).hash(ENTRY_POINT, 11155111)
    assert base != op.hash(ENTRY_POINT, 1)
    assert base != op.hash(PAYMASTER, 11155111)
    assert len(base) == 32


def test_hash_wraps_packed_hash() -> None:
    op = _user_op()

    expected = keccak(encode(["bytes32", "address", "uint256"], [op.packed_hash(), ENTRY_POINT, 5]))

    assert op.hash(ENTRY_POINT, 5) == expected


def test_packed_hash_uses_packed_gas_words() -> None:
    op = _user_op()

    account_gas_limits = (200_000).to_bytes(16, "big") + (100_000).to_bytes(16, "big")
    gas_fees = (1_000_000_000).to_bytes(16, "big") + (3_000_000_000).to_bytes(16, "big")
    expected = keccak(
        encode(
            ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
            [
                SENDER,
                1,
                keccak(b""),
                keccak(b"\x12\x34"),
                account_gas_limits,
                50_000,
                gas_fees,
                keccak(b""),
            ],
        )
    )

    assert op.packed_hash() == expected


def test_paymaster_and_data_layout() -> None:
    op = _user_op(
        paymaster=PAYMASTER,
        paymaster_verification_gas_limit=7,
        paymaster_post_op_gas_limit=9,
        paymaster_data="0xabcd",
    )

    packed = op.paymaster_and_data

    assert packed[:20] == bytes.fromhex(PAYMASTER[2:])
    assert int.from_bytes(packed[20:36], "big") == 7
    assert int.from_bytes(packed[36:52], "big") == 9
    assert packed[52:] == b"\xab\xcd"


def test_rpc_dict_omits_unset_optional_fields() -> None:
    payload = _user_op().to_rpc_dict()

    assert payload["nonce"] == "0x1"
    assert payload["callGasLimit"] == hex(100_000)
    assert "factory" not in payload
    assert "paymaster" not in payload


def test_sponsorship_applies_paymaster_and_gas() -> None:
    op = _user_op()
    sponsorship = SponsorshipData.from_rpc(
        {
            "paymaster": PAYMASTER,
            "paymasterData": "0x01",
            "callGasLimit": "0x10",
            "verificationGasLimit": "0x20",
            "preVerificationGas": "0x30",
            "paymasterVerificationGasLimit": "0x40",
            "paymasterPostOpGasLimit": "0x50",
        }
    )

    sponsorship.apply(op)
    payload = op.to_rpc_dict()

    assert op.call_gas_limit == 0x10
    assert op.verification_gas_limit == 0x20
    assert op.pre_verification_gas == 0x30
    assert payload["paymaster"] == PAYMASTER
    assert payload["paymasterVerificationGasLimit"] == "0x40"
    assert payload["paymasterPostOpGasLimit"] == "0x50"
    assert payload["paymasterData"] == "0x01"


def test_gas_estimate_defaults() -> None:
    estimate = UserOpGasEstimate.from_rpc({"callGasLimit": "0x1"})

    assert estimate.call_gas_limit == 1
    assert estimate.verification_gas_limit == 0
    assert estimate.paymaster_verification_gas_limit is None


def test_receipt_from_rpc() -> None:
    receipt = UserOpReceipt.from_rpc(
        "0xop",
        {
            "userOpHash": "0xop",
            "success": True,
            "actualGasUsed": "0x5208",
            "receipt": {"transactionHash": "0xtx", "blockNumber": "0x10", "status": "0x1"},
        },
    )

    assert receipt.success is True
    assert receipt.transaction_hash == "0xtx"
    assert receipt.block_number == 16
    assert receipt.gas_used == 21000


def test_receipt_falls_back_to_transaction_status() -> None:
    receipt = UserOpReceipt.from_rpc("0xop", {"receipt": {"status": "0x0"}, "reason": "AA23 reverted"})

    assert receipt.success is False
    assert receipt.reason == "AA23 reverted"
