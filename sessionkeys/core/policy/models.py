"""
Policy Models

Declarative call policies for session validators. A CallPolicy holds
Permissions pinned to one ``(target, function)`` pair each, with ordered
argument conditions and an optional native value limit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_utils import is_address, to_checksum_address

from ..recovery.errors import ConfigurationError
from .abi import AbiDecodingError, decode, hex_to_bytes, parse_type
from .abi_registry import AbiDefinition, FunctionAbi, FunctionAbiRegistry, find_function


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ConditionOperator(str, Enum):
    """Comparison applied to a decoded call argument."""
    EQUAL = "EQUAL"
    NOT_EQUAL = "NOT_EQUAL"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    IN_RANGE = "IN_RANGE"

    @property
    def is_ordered(self) -> bool:
        return self not in (ConditionOperator.EQUAL, ConditionOperator.NOT_EQUAL)


# Alias matching the on-chain call policy naming
ParamCondition = ConditionOperator


class DenyReason(str, Enum):
    """Why a call was denied."""
    EMPTY_POLICY = "EMPTY_POLICY"
    NO_MATCHING_PERMISSION = "NO_MATCHING_PERMISSION"
    CONDITION_FAILED = "CONDITION_FAILED"
    VALUE_LIMIT_EXCEEDED = "VALUE_LIMIT_EXCEEDED"
    MALFORMED_CALL = "MALFORMED_CALL"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_NOT_YET_VALID = "SESSION_NOT_YET_VALID"


class PolicyKind(str, Enum):
    CALL = "call"
    SUDO = "sudo"


@dataclass(frozen=True)
class Call:
    """A proposed call from the account."""
    target: str
    value: int = 0
    data: str = "0x"

    def to_dict(self) -> Dict[str, Any]:
        return {"to": self.target, "value": str(self.value), "data": self.data}


@dataclass(frozen=True)
class PolicyDecision:
    """Result of evaluating a call against a policy: Allow or Deny(reason)."""
    allowed: bool
    reason: Optional[DenyReason] = None
    message: str = ""
    permission_index: Optional[int] = None

    @classmethod
    def allow(cls, permission_index: Optional[int] = None) -> "PolicyDecision":
        return cls(allowed=True, permission_index=permission_index)

    @classmethod
    def deny(
        cls,
        reason: DenyReason,
        message: str = "",
        permission_index: Optional[int] = None,
    ) -> "PolicyDecision":
        return cls(allowed=False, reason=reason, message=message, permission_index=permission_index)

    def __bool__(self) -> bool:
        return self.allowed


def _normalize_comparand(type_str: str, operator: ConditionOperator, value: Any) -> Any:
    """Coerce a comparand to the Python type the decoder produces for ``type_str``."""
    abi_type = parse_type(type_str)

    if operator == ConditionOperator.IN_RANGE:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ConfigurationError("IN_RANGE comparand must be a (low, high) pair")
        low = _normalize_comparand(type_str, ConditionOperator.EQUAL, value[0])
        high = _normalize_comparand(type_str, ConditionOperator.EQUAL, value[1])
        if low > high:
            raise ConfigurationError(f"IN_RANGE low {low} is greater than high {high}")
        return (low, high)

    if abi_type.is_numeric:
        if isinstance(value, bool):
            raise ConfigurationError(f"Expected integer comparand for {type_str}, got bool")
        if isinstance(value, str):
            try:
                value = int(value, 0)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid integer comparand {value!r}") from exc
        if not isinstance(value, int):
            raise ConfigurationError(f"Expected integer comparand for {type_str}, got {value!r}")
        return value

    if abi_type.kind == "address":
        if not isinstance(value, str) or not is_address(value):
            raise ConfigurationError(f"Invalid address comparand {value!r}")
        return to_checksum_address(value)
    if abi_type.kind == "bool":
        if not isinstance(value, bool):
            raise ConfigurationError(f"Expected bool comparand for {type_str}")
        return value
    if abi_type.kind in ("fixed_bytes", "bytes"):
        try:
            raw = hex_to_bytes(value) if isinstance(value, str) else bytes(value)
        except (AbiDecodingError, TypeError) as exc:
            raise ConfigurationError(f"Invalid bytes comparand {value!r}") from exc
        if abi_type.kind == "fixed_bytes" and len(raw) != abi_type.size:
            raise ConfigurationError(f"Comparand must be {abi_type.size} bytes for {type_str}")
        return raw
    if abi_type.kind == "string":
        if not isinstance(value, str):
            raise ConfigurationError(f"Expected string comparand for {type_str}")
        return value

    raise ConfigurationError(f"Conditions are not supported on {type_str} arguments")


def _comparand_to_json(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_comparand_to_json(v) for v in value]
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, bytes):
        return "0x" + value.hex()
    return value


@dataclass(frozen=True)
class ArgumentCondition:
    """
    Condition on one decoded argument.

    The argument is addressed by ``index`` or by parameter ``name`` (its
    role in the ABI). Positional construction via ``Permission.from_abi``
    fills the index in.
    """
    operator: ConditionOperator
    value: Any
    index: Optional[int] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "operator", ConditionOperator(self.operator))
        except ValueError as exc:
            raise ConfigurationError(f"Unknown condition operator: {self.operator!r}") from exc

    def bind(self, function: FunctionAbi) -> "ArgumentCondition":
        """Resolve the argument index and normalize the comparand for ``function``."""
        index = self.index
        if index is None:
            if self.name is None:
                raise ConfigurationError("Argument condition needs an index or a name")
            if self.name not in function.input_names:
                raise ConfigurationError(
                    f"{function.signature} has no parameter named {self.name!r}"
                )
            index = function.input_names.index(self.name)

        if index < 0 or index >= len(function.input_types):
            raise ConfigurationError(
                f"Argument index {index} out of range for {function.signature}"
            )

        type_str = function.input_types[index]
        if self.operator.is_ordered and not parse_type(type_str).is_numeric:
            raise ConfigurationError(
                f"Operator {self.operator.value} requires a numeric argument, "
                f"{function.signature} argument {index} is {type_str}"
            )

        return ArgumentCondition(
            operator=self.operator,
            value=_normalize_comparand(type_str, self.operator, self.value),
            index=index,
            name=self.name,
        )

    def holds(self, actual: Any) -> bool:
        op = self.operator
        expected = self.value
        if op == ConditionOperator.EQUAL:
            return actual == expected
        if op == ConditionOperator.NOT_EQUAL:
            return actual != expected
        if op == ConditionOperator.LESS_THAN:
            return actual < expected
        if op == ConditionOperator.LESS_THAN_OR_EQUAL:
            return actual <= expected
        if op == ConditionOperator.GREATER_THAN:
            return actual > expected
        if op == ConditionOperator.GREATER_THAN_OR_EQUAL:
            return actual >= expected
        low, high = expected
        return low <= actual <= high

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "operator": self.operator.value,
            "value": _comparand_to_json(self.value),
        }


ConditionInput = Union[ArgumentCondition, Dict[str, Any], None]


def _coerce_condition(raw: ConditionInput, index: Optional[int]) -> Optional[ArgumentCondition]:
    if raw is None:
        return None
    if isinstance(raw, ArgumentCondition):
        if raw.index is None and raw.name is None and index is not None:
            return ArgumentCondition(operator=raw.operator, value=raw.value, index=index)
        return raw
    operator = raw.get("operator", raw.get("condition"))
    return ArgumentCondition(
        operator=operator,
        value=raw.get("value"),
        index=raw.get("index", index),
        name=raw.get("name"),
    )


@dataclass(frozen=True)
class Permission:
    """
    One permitted ``(target, function)`` pair.

    ``value_limit`` of 0 requires zero native value; ``None`` is unlimited.
    """
    target: str
    function: FunctionAbi
    conditions: Tuple[ArgumentCondition, ...] = ()
    value_limit: Optional[int] = None

    def __post_init__(self) -> None:
        if not isinstance(self.target, str) or not is_address(self.target):
            raise ConfigurationError(f"Invalid permission target: {self.target!r}")
        object.__setattr__(self, "target", to_checksum_address(self.target))

        if self.value_limit is not None:
            if isinstance(self.value_limit, bool) or not isinstance(self.value_limit, int) or self.value_limit < 0:
                raise ConfigurationError(f"Invalid value limit: {self.value_limit!r}")

        bound = tuple(c.bind(self.function) for c in self.conditions)
        object.__setattr__(self, "conditions", bound)

    @classmethod
    def from_abi(
        cls,
        target: str,
        abi: AbiDefinition,
        function_name: str,
        args: Optional[Sequence[ConditionInput]] = None,
        value_limit: Optional[int] = None,
    ) -> "Permission":
        """
        Build a permission from a JSON ABI and positional argument rules.

        ``args[i]`` constrains argument ``i``; ``None`` leaves it free.
        """
        function = find_function(abi, function_name)
        conditions = [
            c for c in (_coerce_condition(raw, i) for i, raw in enumerate(args or [])) if c
        ]
        return cls(
            target=target,
            function=function,
            conditions=tuple(conditions),
            value_limit=value_limit,
        )

    @classmethod
    def from_signature(
        cls,
        target: str,
        signature: str,
        conditions: Optional[Sequence[ConditionInput]] = None,
        value_limit: Optional[int] = None,
        registry: Optional[FunctionAbiRegistry] = None,
    ) -> "Permission":
        """
        Build a permission for ``target.signature``.

        With a ``registry`` the function is resolved from the ABI registered
        for ``target`` (``signature`` may then be a bare name), so conditions
        can refer to arguments by their declared names.
        """
        if registry is not None:
            function = registry.resolve(target, signature)
        else:
            function = FunctionAbi.from_signature(signature)
        coerced = [c for c in (_coerce_condition(raw, None) for raw in conditions or []) if c]
        return cls(
            target=target,
            function=function,
            conditions=tuple(coerced),
            value_limit=value_limit,
        )

    @classmethod
    def from_registry(
        cls,
        registry: FunctionAbiRegistry,
        target: str,
        function_name: str,
        args: Optional[Sequence[ConditionInput]] = None,
        value_limit: Optional[int] = None,
    ) -> "Permission":
        """Positional argument rules, like ``from_abi``, against a registered ABI."""
        function = registry.resolve(target, function_name)
        conditions = [
            c for c in (_coerce_condition(raw, i) for i, raw in enumerate(args or [])) if c
        ]
        return cls(
            target=target,
            function=function,
            conditions=tuple(conditions),
            value_limit=value_limit,
        )

    @property
    def selector(self) -> bytes:
        return self.function.selector

    def matches(self, call: Call) -> bool:
        """Exact match on target and function selector."""
        if call.target.lower() != self.target.lower():
            return False
        try:
            data = hex_to_bytes(call.data)
        except AbiDecodingError:
            return False
        return data[:4] == self.selector

    def check(self, call: Call, index: Optional[int] = None) -> PolicyDecision:
        """Evaluate a call already known to match this permission."""
        data = hex_to_bytes(call.data)
        try:
            args = decode(list(self.function.input_types), data[4:])
        except AbiDecodingError as exc:
            return PolicyDecision.deny(
                DenyReason.MALFORMED_CALL,
                f"{self.function.signature}: {exc}",
                permission_index=index,
            )

        for condition in self.conditions:
            actual = args[condition.index]
            try:
                holds = condition.holds(actual)
            except TypeError:
                holds = False
            if not holds:
                return PolicyDecision.deny(
                    DenyReason.CONDITION_FAILED,
                    f"argument {condition.index} failed {condition.operator.value}",
                    permission_index=index,
                )

        if self.value_limit is not None and call.value > self.value_limit:
            return PolicyDecision.deny(
                DenyReason.VALUE_LIMIT_EXCEEDED,
                f"value {call.value} exceeds limit {self.value_limit}",
                permission_index=index,
            )

        return PolicyDecision.allow(permission_index=index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "signature": self.function.signature,
            "inputNames": list(self.function.input_names),
            "valueLimit": str(self.value_limit) if self.value_limit is not None else None,
            "conditions": [c.to_dict() for c in self.conditions],
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        registry: Optional[FunctionAbiRegistry] = None,
    ) -> "Permission":
        function = FunctionAbi.from_signature(data["signature"])
        names = tuple(data.get("inputNames") or ())
        if names and len(names) == len(function.input_types):
            function = FunctionAbi(
                name=function.name,
                input_types=function.input_types,
                input_names=names,
            )
        elif registry is not None:
            registered = registry.lookup_selector(data["target"], function.selector)
            if registered is not None and registered.input_types == function.input_types:
                function = registered
        value_limit = data.get("valueLimit")
        return cls(
            target=data["target"],
            function=function,
            conditions=tuple(
                ArgumentCondition(
                    operator=c["operator"],
                    value=tuple(c["value"]) if isinstance(c["value"], list) else c["value"],
                    index=c["index"],
                )
                for c in data.get("conditions", [])
            ),
            value_limit=int(value_limit) if value_limit is not None else None,
        )


class Policy:
    """Predicate over a proposed call."""

    kind: PolicyKind

    def evaluate(self, call: Call) -> PolicyDecision:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class CallPolicy(Policy):
    """
    Set of Permissions; a call is allowed if any Permission allows it.

    An empty CallPolicy denies everything.
    """
    permissions: Tuple[Permission, ...] = ()
    version: str = "0.0.4"
    kind: PolicyKind = field(default=PolicyKind.CALL, init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", tuple(self.permissions))
        for p in self.permissions:
            if not isinstance(p, Permission):
                raise ConfigurationError(f"CallPolicy expects Permission objects, got {type(p).__name__}")

    def evaluate(self, call: Call) -> PolicyDecision:
        if not self.permissions:
            return PolicyDecision.deny(DenyReason.EMPTY_POLICY, "policy has no permissions")

        try:
            hex_to_bytes(call.data)
        except AbiDecodingError as exc:
            return PolicyDecision.deny(DenyReason.MALFORMED_CALL, str(exc))

        first_denial: Optional[PolicyDecision] = None
        for i, permission in enumerate(self.permissions):
            if not permission.matches(call):
                continue
            decision = permission.check(call, index=i)
            if decision.allowed:
                return decision
            if first_denial is None:
                first_denial = decision

        if first_denial is not None:
            return first_denial

        if len(hex_to_bytes(call.data)) < 4 and any(
            p.target.lower() == call.target.lower() for p in self.permissions
        ):
            return PolicyDecision.deny(DenyReason.MALFORMED_CALL, "call data has no function selector")

        return PolicyDecision.deny(
            DenyReason.NO_MATCHING_PERMISSION,
            f"no permission for {call.target} selector {call.data[:10]}",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "version": self.version,
            "permissions": [p.to_dict() for p in self.permissions],
        }


@dataclass(frozen=True)
class SudoPolicy(Policy):
    """Allows every call. Used on the master validator path."""
    kind: PolicyKind = field(default=PolicyKind.SUDO, init=False)

    def evaluate(self, call: Call) -> PolicyDecision:
        return PolicyDecision.allow()

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value}


def to_call_policy(permissions: Sequence[Permission], version: str = "0.0.4") -> CallPolicy:
    return CallPolicy(permissions=tuple(permissions), version=version)


def policy_from_dict(
    data: Dict[str, Any],
    registry: Optional[FunctionAbiRegistry] = None,
) -> Policy:
    """Rebuild a policy from its ``to_dict`` form; ``registry`` fills in missing argument names."""
    kind = data.get("kind")
    if kind == PolicyKind.CALL.value:
        return CallPolicy(
            permissions=tuple(Permission.from_dict(p, registry) for p in data.get("permissions", [])),
            version=data.get("version", "0.0.4"),
        )
    if kind == PolicyKind.SUDO.value:
        return SudoPolicy()
    raise ConfigurationError(f"Unknown policy kind: {kind!r}")


def policies_to_dict(policies: Sequence[Policy]) -> List[Dict[str, Any]]:
    return [p.to_dict() for p in policies]
