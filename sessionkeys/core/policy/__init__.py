"""
Policy Engine Module

Declarative call policies for session validators and their evaluation.
"""

from .abi_registry import ERC20_ABI, FunctionAbi, FunctionAbiRegistry, find_function
from .engine import PolicyEngine, evaluate, evaluate_policies
from .models import (
    ZERO_ADDRESS,
    ArgumentCondition,
    Call,
    CallPolicy,
    ConditionOperator,
    DenyReason,
    ParamCondition,
    Permission,
    Policy,
    PolicyDecision,
    PolicyKind,
    SudoPolicy,
    policy_from_dict,
    to_call_policy,
)

__all__ = [
    # Engine
    "PolicyEngine",
    "evaluate",
    "evaluate_policies",
    # Policies
    "Policy",
    "CallPolicy",
    "SudoPolicy",
    "to_call_policy",
    "policy_from_dict",
    # Models
    "ArgumentCondition",
    "Call",
    "ConditionOperator",
    "DenyReason",
    "ParamCondition",
    "Permission",
    "PolicyDecision",
    "PolicyKind",
    "ZERO_ADDRESS",
    # ABI
    "ERC20_ABI",
    "FunctionAbi",
    "FunctionAbiRegistry",
    "find_function",
]
