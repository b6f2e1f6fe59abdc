"""
Execution Gateway Module

Builds, sponsors, signs and broadcasts ERC-4337 v0.7 operations for Kernel
accounts, and waits for their receipts.

Usage:
    from sessionkeys.core.execution import get_execution_gateway
    from sessionkeys.core.wallet import ValidatorRole

    gateway = get_execution_gateway()
    receipt = await gateway.send_calls(account, ValidatorRole.REGULAR, [call])
"""

from .gateway import ExecutionGateway, OperationHandle, get_execution_gateway
from .userop import GasPrice, SponsorshipData, UserOperation, UserOpGasEstimate, UserOpReceipt
from .userop_builder import (
    KernelModules,
    build_execute_call_data,
    build_install_validation_call,
    build_uninstall_validation_call,
    nonce_key,
    validation_id,
)

__all__ = [
    # Gateway
    "ExecutionGateway",
    "OperationHandle",
    "get_execution_gateway",
    # UserOperation
    "UserOperation",
    "UserOpGasEstimate",
    "UserOpReceipt",
    "GasPrice",
    "SponsorshipData",
    # Calldata
    "KernelModules",
    "build_execute_call_data",
    "build_install_validation_call",
    "build_uninstall_validation_call",
    "nonce_key",
    "validation_id",
]
