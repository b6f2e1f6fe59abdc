"""
Kernel v3 calldata builders.

Builds ``execute`` calldata for call batches and the validator management
calls used to install and uninstall a session validator. Also defines the
nonce key and ValidationId encodings the EntryPoint and Kernel expect.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from eth_utils import to_checksum_address

from ...config import settings
from ..policy.abi import encode, encode_function_call, hex_to_bytes, parse_type
from ..policy.models import Call, CallPolicy, ConditionOperator, SudoPolicy
from ..recovery.errors import ConfigurationError
from ..wallet.models import MasterValidator, SessionValidator, ValidationType, Validator


MAX_UINT256 = 2**256 - 1

# ERC-7579 execution mode call types
CALLTYPE_SINGLE = 0x00
CALLTYPE_BATCH = 0x01

# Validator mode byte of the nonce key
VALIDATOR_MODE_DEFAULT = 0x00
VALIDATOR_MODE_ENABLE = 0x01

# Installed-without-hook marker in a Kernel validation config
HOOK_INSTALLED = "0x0000000000000000000000000000000000000001"

EXECUTE_SIGNATURE = "execute(bytes32,bytes)"
INSTALL_VALIDATIONS_SIGNATURE = "installValidations(bytes21[],(uint32,address)[],bytes[],bytes[])"
UNINSTALL_VALIDATION_SIGNATURE = "uninstallValidation(bytes21,bytes,bytes)"
GET_NONCE_SIGNATURE = "getNonce(address,uint192)"
VALIDATION_CONFIG_SIGNATURE = "validationConfig(bytes21)"
CURRENT_NONCE_SIGNATURE = "currentNonce()"

# On-chain call policy condition codes
CALL_POLICY_CONDITIONS = {
    ConditionOperator.EQUAL: 0,
    ConditionOperator.GREATER_THAN: 1,
    ConditionOperator.LESS_THAN: 2,
    ConditionOperator.GREATER_THAN_OR_EQUAL: 3,
    ConditionOperator.LESS_THAN_OR_EQUAL: 4,
    ConditionOperator.NOT_EQUAL: 5,
}

PERMISSION_TUPLE = "(uint8,address,bytes4,uint256,(uint8,uint64,bytes32[])[])[]"


@dataclass(frozen=True)
class KernelModules:
    """Addresses of the modules a permission validator is assembled from."""
    ecdsa_validator: str
    ecdsa_signer: str
    call_policy: str
    sudo_policy: str
    timestamp_policy: str

    @classmethod
    def from_settings(cls) -> "KernelModules":
        return cls(
            ecdsa_validator=settings.ecdsa_validator_address,
            ecdsa_signer=settings.ecdsa_signer_address,
            call_policy=settings.call_policy_address,
            sudo_policy=settings.sudo_policy_address,
            timestamp_policy=settings.timestamp_policy_address,
        )


def _call_type_mode(call_type: int) -> bytes:
    return bytes([call_type]) + b"\x00" * 31


def build_execute_call_data(calls: Sequence[Call]) -> str:
    """
    Build calldata for Kernel ``execute(bytes32 mode, bytes executionCalldata)``.

    One call uses single mode (packed target/value/data); several use batch
    mode with ``abi.encode((address,uint256,bytes)[])``.
    """
    if not calls:
        raise ConfigurationError("At least one call is required")

    if len(calls) == 1:
        call = calls[0]
        if call.value < 0:
            raise ConfigurationError("Call value must be non-negative")
        execution = (
            hex_to_bytes(to_checksum_address(call.target))
            + call.value.to_bytes(32, "big")
            + hex_to_bytes(call.data)
        )
        return encode_function_call(EXECUTE_SIGNATURE, [_call_type_mode(CALLTYPE_SINGLE), execution])

    execution = encode(
        ["(address,uint256,bytes)[]"],
        [[(c.target, c.value, c.data) for c in calls]],
    )
    return encode_function_call(EXECUTE_SIGNATURE, [_call_type_mode(CALLTYPE_BATCH), execution])


def validation_id(validator: Validator) -> bytes:
    """
    Kernel ValidationId (bytes21): type byte followed by the identifier.

    Permission validators are identified by their 4-byte permission ID,
    right-padded with zeros.
    """
    if isinstance(validator, SessionValidator):
        permission_id = hex_to_bytes(validator.permission_id)
        return bytes([ValidationType.PERMISSION]) + permission_id + b"\x00" * 16
    if validator.module_address:
        return bytes([ValidationType.VALIDATOR]) + hex_to_bytes(validator.module_address)
    return bytes([ValidationType.ROOT]) + b"\x00" * 20


def nonce_key(validator: Validator, key: int = 0, mode: int = VALIDATOR_MODE_DEFAULT) -> int:
    """
    Kernel v3 nonce key (uint192).

    Layout: validator mode (1 byte) | validation type (1 byte) |
    identifier (20 bytes) | sequence key (2 bytes).
    """
    if not 0 <= key < 2**16:
        raise ConfigurationError("Nonce sequence key must fit in 2 bytes")

    if isinstance(validator, MasterValidator):
        # Root validation ignores the identifier
        vtype = ValidationType.ROOT
        identifier = b"\x00" * 20
    else:
        vtype = ValidationType.PERMISSION
        identifier = hex_to_bytes(validator.permission_id).ljust(20, b"\x00")

    raw = bytes([mode, vtype]) + identifier + key.to_bytes(2, "big")
    return int.from_bytes(raw, "big")


def _param_rules(policy: CallPolicy, permission_index: int) -> List[tuple]:
    permission = policy.permissions[permission_index]
    rules = []
    for condition in permission.conditions:
        abi_type = parse_type(permission.function.input_types[condition.index])
        if abi_type.is_dynamic:
            raise ConfigurationError(
                f"Conditions on dynamic argument {condition.index} of "
                f"{permission.function.signature} cannot be enforced on-chain"
            )
        offset = condition.index * 32
        type_str = abi_type.canonical()
        if condition.operator == ConditionOperator.IN_RANGE:
            # No on-chain range condition; split into two inclusive bounds
            low, high = condition.value
            gte = CALL_POLICY_CONDITIONS[ConditionOperator.GREATER_THAN_OR_EQUAL]
            lte = CALL_POLICY_CONDITIONS[ConditionOperator.LESS_THAN_OR_EQUAL]
            rules.append((gte, offset, [encode([type_str], [low])]))
            rules.append((lte, offset, [encode([type_str], [high])]))
            continue
        code = CALL_POLICY_CONDITIONS[condition.operator]
        rules.append((code, offset, [encode([type_str], [condition.value])]))
    return rules


def encode_call_policy_data(policy: CallPolicy) -> bytes:
    """Install data for the on-chain call policy module."""
    permissions = []
    for i, permission in enumerate(policy.permissions):
        value_limit = MAX_UINT256 if permission.value_limit is None else permission.value_limit
        permissions.append(
            (
                CALLTYPE_SINGLE,
                permission.target,
                permission.selector,
                value_limit,
                _param_rules(policy, i),
            )
        )
    return encode([PERMISSION_TUPLE], [permissions])


def encode_permission_enable_data(session: SessionValidator, modules: KernelModules) -> bytes:
    """
    Validation data for installing a permission validator.

    Each element is ``flag(2) | module(20) | module data``; policies come
    first and the signer module last.
    """
    flag = b"\x00\x00"
    items = []
    for policy in session.policies:
        if isinstance(policy, CallPolicy):
            items.append(flag + hex_to_bytes(modules.call_policy) + encode_call_policy_data(policy))
        elif isinstance(policy, SudoPolicy):
            items.append(flag + hex_to_bytes(modules.sudo_policy))
        else:
            raise ConfigurationError(f"No on-chain module for {type(policy).__name__}")

    if session.valid_after is not None or session.valid_until is not None:
        timestamps = (session.valid_after or 0).to_bytes(6, "big") + (session.valid_until or 0).to_bytes(6, "big")
        items.append(flag + hex_to_bytes(modules.timestamp_policy) + timestamps)

    items.append(flag + hex_to_bytes(modules.ecdsa_signer) + hex_to_bytes(session.signer.address))
    return encode(["bytes[]"], [items])


def _module_count(session: SessionValidator) -> int:
    count = len(session.policies) + 1
    if session.valid_after is not None or session.valid_until is not None:
        count += 1
    return count


def build_install_validation_call(
    account_address: str,
    session: SessionValidator,
    validation_nonce: int,
    modules: Optional[KernelModules] = None,
) -> Call:
    """Self-call that installs ``session`` as a permission validator."""
    modules = modules or KernelModules.from_settings()
    data = encode_function_call(
        INSTALL_VALIDATIONS_SIGNATURE,
        [
            [validation_id(session)],
            [(validation_nonce, HOOK_INSTALLED)],
            [encode_permission_enable_data(session, modules)],
            [b""],
        ],
    )
    return Call(target=account_address, value=0, data=data)


def build_uninstall_validation_call(account_address: str, session: SessionValidator) -> Call:
    """Self-call that removes ``session`` and deinitializes its modules."""
    deinit = encode(["bytes[]"], [[b""] * _module_count(session)])
    data = encode_function_call(
        UNINSTALL_VALIDATION_SIGNATURE,
        [validation_id(session), deinit, b""],
    )
    return Call(target=account_address, value=0, data=data)

