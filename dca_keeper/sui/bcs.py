"""
Minimal BCS writer and Move type-tag parser.

Covers exactly what a programmable transaction needs: integers, ULEB128
lengths, byte vectors, strings, 32-byte addresses and type tags.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Union


_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: index for index, char in enumerate(_BASE58_ALPHABET)}


def base58_decode(value: str) -> bytes:
    num = 0
    for char in value:
        if char not in _BASE58_INDEX:
            raise ValueError("Invalid base58 character")
        num = num * 58 + _BASE58_INDEX[char]
    combined = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    pad = len(value) - len(value.lstrip("1"))
    return b"\x00" * pad + combined


def base58_encode(data: bytes) -> str:
    if not data:
        return ""
    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, rem = divmod(num, 58)
        encoded = _BASE58_ALPHABET[rem] + encoded
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + encoded


def normalize_address(address: str) -> str:
    """Return the canonical 0x-prefixed, 64-hex-digit form of an address or object id."""
    value = address.strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    if not value or len(value) > 64 or any(c not in "0123456789abcdef" for c in value):
        raise ValueError(f"Invalid Sui address: {address!r}")
    return "0x" + value.rjust(64, "0")


def address_bytes(address: str) -> bytes:
    return bytes.fromhex(normalize_address(address)[2:])


class BcsWriter:
    """Append-only BCS encoder."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def _int(self, value: int, size: int) -> "BcsWriter":
        if value < 0 or value >= 1 << (size * 8):
            raise ValueError(f"Value {value} out of range for u{size * 8}")
        self._buf += value.to_bytes(size, "little")
        return self

    def u8(self, value: int) -> "BcsWriter":
        return self._int(value, 1)

    def u16(self, value: int) -> "BcsWriter":
        return self._int(value, 2)

    def u32(self, value: int) -> "BcsWriter":
        return self._int(value, 4)

    def u64(self, value: int) -> "BcsWriter":
        return self._int(value, 8)

    def u128(self, value: int) -> "BcsWriter":
        return self._int(value, 16)

    def u256(self, value: int) -> "BcsWriter":
        return self._int(value, 32)

    def bool(self, value: bool) -> "BcsWriter":
        return self.u8(1 if value else 0)

    def uleb128(self, value: int) -> "BcsWriter":
        if value < 0:
            raise ValueError("ULEB128 cannot encode negative values")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(byte | 0x80)
            else:
                self._buf.append(byte)
                return self

    def raw(self, data: bytes) -> "BcsWriter":
        self._buf += data
        return self

    def bytes(self, data: bytes) -> "BcsWriter":
        self.uleb128(len(data))
        self._buf += data
        return self

    def string(self, value: str) -> "BcsWriter":
        return self.bytes(value.encode("utf-8"))

    def address(self, value: str) -> "BcsWriter":
        return self.raw(address_bytes(value))

    def length(self, count: int) -> "BcsWriter":
        return self.uleb128(count)

    def getvalue(self) -> bytes:
        return bytes(self._buf)


# Pure value helpers used for PTB pure inputs
def encode_u8(value: int) -> bytes:
    return BcsWriter().u8(value).getvalue()


def encode_u64(value: int) -> bytes:
    return BcsWriter().u64(value).getvalue()


def encode_bool(value: bool) -> bytes:
    return BcsWriter().bool(value).getvalue()


def encode_address(value: str) -> bytes:
    return BcsWriter().address(value).getvalue()


def encode_option_u64(value: int | None) -> bytes:
    writer = BcsWriter()
    if value is None:
        return writer.u8(0).getvalue()
    return writer.u8(1).u64(value).getvalue()


def encode_vector_u8(value: bytes) -> bytes:
    return BcsWriter().bytes(value).getvalue()


# Type tags
_PRIMITIVE_TAGS = {
    "bool": 0,
    "u8": 1,
    "u64": 2,
    "u128": 3,
    "address": 4,
    "signer": 5,
    "u16": 8,
    "u32": 9,
    "u256": 10,
}


@dataclass(frozen=True)
class StructTag:
    address: str
    module: str
    name: str
    type_params: tuple = field(default_factory=tuple)

    def __str__(self) -> str:
        base = f"{self.address}::{self.module}::{self.name}"
        if self.type_params:
            return base + "<" + ", ".join(str(p) for p in self.type_params) + ">"
        return base


@dataclass(frozen=True)
class VectorTag:
    inner: "TypeTag"

    def __str__(self) -> str:
        return f"vector<{self.inner}>"


TypeTag = Union[str, StructTag, VectorTag]


def split_type_args(args: str) -> List[str]:
    """Split a comma-separated generic argument list, respecting nesting."""
    parts: List[str] = []
    depth = 0
    start = 0
    for i, char in enumerate(args):
        if char == "<":
            depth += 1
        elif char == ">":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append(args[start:i].strip())
            start = i + 1
    tail = args[start:].strip()
    if tail:
        parts.append(tail)
    return parts


def parse_type_tag(value: str) -> TypeTag:
    """Parse a Move type string such as `0x2::coin::Coin<0x2::sui::SUI>`."""
    text = value.strip()
    if text in _PRIMITIVE_TAGS:
        return text
    if text.startswith("vector<") and text.endswith(">"):
        return VectorTag(parse_type_tag(text[len("vector<"):-1]))

    params: tuple = ()
    if "<" in text:
        if not text.endswith(">"):
            raise ValueError(f"Malformed type tag: {value!r}")
        head, args = text.split("<", 1)
        params = tuple(parse_type_tag(arg) for arg in split_type_args(args[:-1]))
    else:
        head = text

    pieces = head.split("::")
    if len(pieces) != 3:
        raise ValueError(f"Malformed type tag: {value!r}")
    address, module, name = pieces
    return StructTag(normalize_address(address), module, name, params)


def normalize_type(value: str) -> str:
    """Canonical string form with full-length addresses."""
    return str(parse_type_tag(value))


def write_type_tag(writer: BcsWriter, tag: TypeTag) -> None:
    if isinstance(tag, str):
        writer.u8(_PRIMITIVE_TAGS[tag])
    elif isinstance(tag, VectorTag):
        writer.u8(6)
        write_type_tag(writer, tag.inner)
    else:
        writer.u8(7)
        writer.address(tag.address)
        writer.string(tag.module)
        writer.string(tag.name)
        write_vector(writer, tag.type_params, write_type_tag)


def write_vector(writer: BcsWriter, items: Iterable, write_item) -> None:
    items = list(items)
    writer.length(len(items))
    for item in items:
        write_item(writer, item)
