"""
Solidity ABI encoding and decoding.

Covers the types call policies and Kernel calldata need: uintN, intN,
address, bool, bytesN, bytes, string, fixed/dynamic arrays and tuples.
Types are given as canonical strings, e.g. ``"(address,uint256,bytes)[]"``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from eth_utils import keccak, to_checksum_address

WORD = 32


class AbiError(ValueError):
    """Type string cannot be parsed or value cannot be encoded."""
    pass


class AbiDecodingError(AbiError):
    """Data does not match the declared types."""
    pass


@dataclass(frozen=True)
class AbiType:
    kind: str  # uint, int, address, bool, fixed_bytes, bytes, string, array, tuple
    size: int = 0  # bit width for ints, byte width for fixed_bytes
    item: Optional["AbiType"] = None
    length: Optional[int] = None  # None for dynamic arrays
    components: Tuple["AbiType", ...] = ()

    @property
    def is_dynamic(self) -> bool:
        if self.kind in ("bytes", "string"):
            return True
        if self.kind == "array":
            return self.length is None or self.item.is_dynamic
        if self.kind == "tuple":
            return any(c.is_dynamic for c in self.components)
        return False

    @property
    def is_numeric(self) -> bool:
        return self.kind in ("uint", "int")

    @property
    def head_size(self) -> int:
        """Bytes this type occupies in the head of an enclosing tuple."""
        if self.is_dynamic:
            return WORD
        if self.kind == "array":
            return self.length * self.item.head_size
        if self.kind == "tuple":
            return sum(c.head_size for c in self.components)
        return WORD

    def canonical(self) -> str:
        if self.kind in ("uint", "int"):
            return f"{self.kind}{self.size}"
        if self.kind == "fixed_bytes":
            return f"bytes{self.size}"
        if self.kind == "array":
            suffix = "[]" if self.length is None else f"[{self.length}]"
            return self.item.canonical() + suffix
        if self.kind == "tuple":
            return "(" + ",".join(c.canonical() for c in self.components) + ")"
        return self.kind


def _split_components(inner: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    current = ""
    for char in inner:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
        else:
            current += char
    if current:
        parts.append(current)
    return parts


def parse_type(type_str: str) -> AbiType:
    """Parse a canonical Solidity type string."""
    text = type_str.strip().replace(" ", "")
    if not text:
        raise AbiError("Empty type string")

    if text.endswith("]"):
        open_idx = text.rindex("[")
        item = parse_type(text[:open_idx])
        size_text = text[open_idx + 1:-1]
        if size_text == "":
            return AbiType(kind="array", item=item, length=None)
        if not size_text.isdigit() or int(size_text) == 0:
            raise AbiError(f"Invalid array length in {type_str}")
        return AbiType(kind="array", item=item, length=int(size_text))

    if text.startswith("("):
        if not text.endswith(")"):
            raise AbiError(f"Unbalanced tuple type: {type_str}")
        inner = text[1:-1]
        components = tuple(parse_type(part) for part in _split_components(inner)) if inner else ()
        return AbiType(kind="tuple", components=components)

    if text in ("address", "bool", "bytes", "string"):
        return AbiType(kind=text)

    for prefix in ("uint", "int"):
        if text.startswith(prefix):
            bits_text = text[len(prefix):] or "256"
            if not bits_text.isdigit():
                break
            bits = int(bits_text)
            if bits == 0 or bits > 256 or bits % 8 != 0:
                raise AbiError(f"Invalid integer width: {type_str}")
            return AbiType(kind=prefix, size=bits)

    if text.startswith("bytes"):
        size_text = text[len("bytes"):]
        if size_text.isdigit() and 1 <= int(size_text) <= 32:
            return AbiType(kind="fixed_bytes", size=int(size_text))

    raise AbiError(f"Unsupported ABI type: {type_str}")


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.startswith("0x") else value
        if len(text) % 2 != 0:
            raise AbiError("Byte data must have an even-length hex string")
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise AbiError(f"Invalid hex data: {value}") from exc
    raise AbiError(f"Cannot convert {type(value).__name__} to bytes")


def _pad_right(data: bytes) -> bytes:
    remainder = len(data) % WORD
    if remainder == 0:
        return data
    return data + b"\x00" * (WORD - remainder)


def _encode_uint(value: int, bits: int = 256) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise AbiError(f"Expected integer, got {value!r}")
    if value < 0 or value >= 2 ** bits:
        raise AbiError(f"Value {value} out of range for uint{bits}")
    return value.to_bytes(WORD, "big")


def _encode_single(abi_type: AbiType, value: Any) -> bytes:
    kind = abi_type.kind
    if kind == "uint":
        return _encode_uint(value, abi_type.size)
    if kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise AbiError(f"Expected integer, got {value!r}")
        bound = 2 ** (abi_type.size - 1)
        if value < -bound or value >= bound:
            raise AbiError(f"Value {value} out of range for int{abi_type.size}")
        return value.to_bytes(WORD, "big", signed=True)
    if kind == "address":
        raw = _to_bytes(value)
        if len(raw) != 20:
            raise AbiError(f"Invalid address length: {value}")
        return raw.rjust(WORD, b"\x00")
    if kind == "bool":
        return _encode_uint(1 if value else 0)
    if kind == "fixed_bytes":
        raw = _to_bytes(value)
        if len(raw) > abi_type.size:
            raise AbiError(f"Value too long for bytes{abi_type.size}")
        return raw.ljust(WORD, b"\x00")
    if kind in ("bytes", "string"):
        raw = value.encode("utf-8") if kind == "string" else _to_bytes(value)
        return _encode_uint(len(raw)) + _pad_right(raw)
    if kind == "array":
        items = list(value)
        if abi_type.length is not None and len(items) != abi_type.length:
            raise AbiError(f"Expected {abi_type.length} items, got {len(items)}")
        body = _encode_sequence([abi_type.item] * len(items), items)
        if abi_type.length is None:
            return _encode_uint(len(items)) + body
        return body
    if kind == "tuple":
        values = list(value)
        if len(values) != len(abi_type.components):
            raise AbiError(
                f"Expected {len(abi_type.components)} tuple values, got {len(values)}"
            )
        return _encode_sequence(list(abi_type.components), values)
    raise AbiError(f"Unsupported ABI type: {kind}")


def _encode_sequence(types: Sequence[AbiType], values: Sequence[Any]) -> bytes:
    heads: List[bytes] = []
    tails: List[bytes] = []
    head_length = sum(t.head_size for t in types)
    tail_offset = head_length
    for abi_type, value in zip(types, values):
        encoded = _encode_single(abi_type, value)
        if abi_type.is_dynamic:
            heads.append(_encode_uint(tail_offset))
            tails.append(encoded)
            tail_offset += len(encoded)
        else:
            heads.append(encoded)
    return b"".join(heads) + b"".join(tails)


def encode(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """ABI-encode values as a tuple of the given types."""
    if len(types) != len(values):
        raise AbiError(f"Expected {len(types)} values, got {len(values)}")
    return _encode_sequence([parse_type(t) for t in types], list(values))


def _read_word(data: bytes, offset: int) -> bytes:
    if offset < 0 or offset + WORD > len(data):
        raise AbiDecodingError(f"Data too short: need word at offset {offset}, have {len(data)} bytes")
    return data[offset:offset + WORD]


def _read_offset(data: bytes, offset: int) -> int:
    pointer = int.from_bytes(_read_word(data, offset), "big")
    if pointer > len(data):
        raise AbiDecodingError(f"Offset {pointer} points past end of data")
    return pointer


def _decode_single(abi_type: AbiType, data: bytes, offset: int) -> Any:
    kind = abi_type.kind
    if kind == "uint":
        value = int.from_bytes(_read_word(data, offset), "big")
        if value >= 2 ** abi_type.size:
            raise AbiDecodingError(f"Value out of range for uint{abi_type.size}")
        return value
    if kind == "int":
        value = int.from_bytes(_read_word(data, offset), "big", signed=True)
        bound = 2 ** (abi_type.size - 1)
        if value < -bound or value >= bound:
            raise AbiDecodingError(f"Value out of range for int{abi_type.size}")
        return value
    if kind == "address":
        word = _read_word(data, offset)
        if any(word[:12]):
            raise AbiDecodingError("Address word has non-zero padding")
        return to_checksum_address(word[12:])
    if kind == "bool":
        value = int.from_bytes(_read_word(data, offset), "big")
        if value not in (0, 1):
            raise AbiDecodingError(f"Invalid bool value {value}")
        return bool(value)
    if kind == "fixed_bytes":
        word = _read_word(data, offset)
        if any(word[abi_type.size:]):
            raise AbiDecodingError(f"bytes{abi_type.size} word has non-zero padding")
        return word[:abi_type.size]
    if kind in ("bytes", "string"):
        length = int.from_bytes(_read_word(data, offset), "big")
        start = offset + WORD
        if start + length > len(data):
            raise AbiDecodingError("Dynamic value length exceeds data")
        raw = data[start:start + length]
        if kind == "string":
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise AbiDecodingError("Invalid UTF-8 string") from exc
        return raw
    if kind == "array":
        if abi_type.length is None:
            length = int.from_bytes(_read_word(data, offset), "big")
            if length > len(data):
                raise AbiDecodingError("Array length exceeds data")
            return list(_decode_sequence([abi_type.item] * length, data[offset + WORD:]))
        return list(_decode_sequence([abi_type.item] * abi_type.length, data[offset:]))
    if kind == "tuple":
        return _decode_sequence(list(abi_type.components), data[offset:])
    raise AbiDecodingError(f"Unsupported ABI type: {kind}")


def _decode_sequence(types: Sequence[AbiType], data: bytes) -> Tuple[Any, ...]:
    values: List[Any] = []
    cursor = 0
    for abi_type in types:
        if abi_type.is_dynamic:
            values.append(_decode_single(abi_type, data, _read_offset(data, cursor)))
        else:
            values.append(_decode_single(abi_type, data, cursor))
        cursor += abi_type.head_size
    return tuple(values)


def decode(types: Sequence[str], data: bytes) -> Tuple[Any, ...]:
    """Decode ABI data into a tuple of Python values."""
    return _decode_sequence([parse_type(t) for t in types], data)


def function_selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def canonical_signature(name: str, input_types: Sequence[str]) -> str:
    types = ",".join(parse_type(t).canonical() for t in input_types)
    return f"{name}({types})"


def parse_signature(signature: str) -> Tuple[str, List[str]]:
    """Split ``transfer(address,uint256)`` into name and input types."""
    text = signature.strip().replace(" ", "")
    if "(" not in text or not text.endswith(")"):
        raise AbiError(f"Invalid function signature: {signature}")
    name, _, rest = text.partition("(")
    inner = rest[:-1]
    types = _split_components(inner) if inner else []
    for t in types:
        parse_type(t)
    return name, types


def encode_function_call(signature: str, args: Sequence[Any]) -> str:
    """Build hex calldata for a function call."""
    _, types = parse_signature(signature)
    return "0x" + (function_selector(signature) + encode(types, args)).hex()


def hex_to_bytes(value: str) -> bytes:
    """Convert 0x-prefixed hex to bytes, raising AbiDecodingError on bad input."""
    try:
        return _to_bytes(value)
    except AbiError as exc:
        raise AbiDecodingError(str(exc)) from exc
