"""
Ed25519 keypair for the executor wallet.

Accepts the private-key encodings Sui tooling emits: `suiprivkey1…` bech32,
base64 (optionally flag-prefixed, as in sui.keystore) and raw hex.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from typing import List, Tuple

from nacl.signing import SigningKey

ED25519_FLAG = 0x00
_TRANSACTION_INTENT = bytes([0, 0, 0])  # TransactionData, V0, Sui

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GENERATORS = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
_SUI_PRIVATE_KEY_HRP = "suiprivkey"


def _bech32_polymod(values: List[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= _BECH32_GENERATORS[i] if ((top >> i) & 1) else 0
    return chk


def _bech32_hrp_expand(hrp: str) -> List[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def bech32_decode(value: str) -> Tuple[str, bytes]:
    """Decode a bech32 string into (hrp, payload bytes)."""
    text = value.strip().lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text):
        raise ValueError("Invalid bech32 string")
    hrp, data_part = text[:pos], text[pos + 1:]
    if any(c not in _BECH32_CHARSET for c in data_part):
        raise ValueError("Invalid bech32 character")
    data = [_BECH32_CHARSET.index(c) for c in data_part]
    if _bech32_polymod(_bech32_hrp_expand(hrp) + data) != 1:
        raise ValueError("Invalid bech32 checksum")

    acc = 0
    bits = 0
    out = bytearray()
    for group in data[:-6]:
        acc = (acc << 5) | group
        bits += 5
        if bits >= 8:
            bits -= 8
            out.append((acc >> bits) & 0xFF)
    if bits >= 5 or (acc << (8 - bits)) & 0xFF:
        raise ValueError("Invalid bech32 padding")
    return hrp, bytes(out)


def decode_private_key(value: str) -> bytes:
    """Return the 32-byte Ed25519 seed from any supported encoding."""
    candidate = value.strip()
    if not candidate:
        raise ValueError("Private key is empty")

    if candidate.startswith(_SUI_PRIVATE_KEY_HRP):
        hrp, payload = bech32_decode(candidate)
        if hrp != _SUI_PRIVATE_KEY_HRP or len(payload) != 33:
            raise ValueError("Malformed suiprivkey")
        if payload[0] != ED25519_FLAG:
            raise ValueError("Only Ed25519 keys are supported")
        return payload[1:]

    hex_value = candidate[2:] if candidate.startswith("0x") else candidate
    if len(hex_value) == 64:
        try:
            return bytes.fromhex(hex_value)
        except ValueError:
            pass

    try:
        raw = base64.b64decode(candidate, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise ValueError("Private key is not bech32, hex or base64") from exc
    if len(raw) == 33:
        if raw[0] != ED25519_FLAG:
            raise ValueError("Only Ed25519 keys are supported")
        return raw[1:]
    if len(raw) in (32, 64):
        return raw[:32]
    raise ValueError(f"Unexpected private key length {len(raw)}")


def _blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


class SuiKeypair:
    """Ed25519 signer producing Sui serialized signatures."""

    def __init__(self, seed: bytes):
        if len(seed) != 32:
            raise ValueError("Ed25519 seed must be 32 bytes")
        self._signing_key = SigningKey(seed)

    @classmethod
    def from_private_key(cls, value: str) -> "SuiKeypair":
        return cls(decode_private_key(value))

    @property
    def public_key(self) -> bytes:
        return bytes(self._signing_key.verify_key)

    @property
    def address(self) -> str:
        return "0x" + _blake2b_256(bytes([ED25519_FLAG]) + self.public_key).hex()

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Sign TransactionData bytes; returns the base64 `flag || sig || pubkey`."""
        digest = _blake2b_256(_TRANSACTION_INTENT + tx_bytes)
        signature = self._signing_key.sign(digest).signature
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self.public_key).decode("ascii")
