"""
Function ABI registry.

Maps ``(target, function name)`` to the declared parameter types the policy
engine uses to decode call arguments.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..recovery.errors import ConfigurationError
from .abi import AbiError, canonical_signature, function_selector, parse_signature, parse_type


AbiDefinition = Union[str, List[Dict[str, Any]]]


ERC20_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "transfer",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "transferFrom",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


def _input_type(param: Dict[str, Any]) -> str:
    """Resolve a JSON ABI parameter to a canonical type string (tuples included)."""
    param_type = param.get("type", "")
    if param_type.startswith("tuple"):
        suffix = param_type[len("tuple"):]
        inner = ",".join(_input_type(c) for c in param.get("components", []))
        return f"({inner}){suffix}"
    return param_type


@dataclass(frozen=True)
class FunctionAbi:
    """A function's name and declared input types."""
    name: str
    input_types: Tuple[str, ...]
    input_names: Tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return canonical_signature(self.name, self.input_types)

    @property
    def selector(self) -> bytes:
        return function_selector(self.signature)

    @property
    def selector_hex(self) -> str:
        return "0x" + self.selector.hex()

    @classmethod
    def from_signature(cls, signature: str) -> "FunctionAbi":
        try:
            name, types = parse_signature(signature)
        except AbiError as exc:
            raise ConfigurationError(f"Invalid function signature {signature!r}: {exc}") from exc
        return cls(name=name, input_types=tuple(types))

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "FunctionAbi":
        inputs = item.get("inputs", [])
        types = tuple(_input_type(p) for p in inputs)
        try:
            for t in types:
                parse_type(t)
        except AbiError as exc:
            raise ConfigurationError(f"Invalid ABI for {item.get('name')}: {exc}") from exc
        return cls(
            name=item["name"],
            input_types=types,
            input_names=tuple(p.get("name", "") for p in inputs),
        )


def load_functions(abi: AbiDefinition) -> List[FunctionAbi]:
    """Parse a JSON ABI (string or list) into its function entries."""
    items = json.loads(abi) if isinstance(abi, str) else abi
    return [
        FunctionAbi.from_json(item)
        for item in items
        if item.get("type", "function") == "function" and item.get("name")
    ]


def find_function(abi: AbiDefinition, function_name: str) -> FunctionAbi:
    """
    Find a function in an ABI by name or full signature.

    Overloaded names must be disambiguated with the full signature.
    """
    return _pick(load_functions(abi), function_name)


def _pick(functions: List[FunctionAbi], function_name: str) -> FunctionAbi:
    if "(" in function_name:
        wanted = FunctionAbi.from_signature(function_name).signature
        matches = [f for f in functions if f.signature == wanted]
    else:
        matches = [f for f in functions if f.name == function_name]

    if not matches:
        raise ConfigurationError(f"Function {function_name!r} not found in ABI")
    if len(matches) > 1:
        raise ConfigurationError(
            f"Function {function_name!r} is overloaded; use the full signature",
            details={"candidates": [f.signature for f in matches]},
        )
    return matches[0]


class FunctionAbiRegistry:
    """
    Registry of contract ABIs keyed by target address.

    Lookups are case-insensitive on the address.
    """

    def __init__(self) -> None:
        self._functions: Dict[str, Dict[str, FunctionAbi]] = {}

    @staticmethod
    def _key(target: str) -> str:
        return target.lower()

    def register(self, target: str, abi: AbiDefinition) -> None:
        entries = self._functions.setdefault(self._key(target), {})
        for fn in load_functions(abi):
            entries[fn.signature] = fn

    def register_function(self, target: str, signature: str) -> FunctionAbi:
        fn = FunctionAbi.from_signature(signature)
        self._functions.setdefault(self._key(target), {})[fn.signature] = fn
        return fn

    def resolve(self, target: str, function_name: str) -> FunctionAbi:
        """Resolve a function by name or signature for a target."""
        entries = self._functions.get(self._key(target))
        if not entries:
            raise ConfigurationError(f"No ABI registered for {target}")
        return _pick(list(entries.values()), function_name)

    def lookup_selector(self, target: str, selector: bytes) -> Optional[FunctionAbi]:
        for fn in self._functions.get(self._key(target), {}).values():
            if fn.selector == selector:
                return fn
        return None

    def targets(self) -> Iterable[str]:
        return list(self._functions.keys())
