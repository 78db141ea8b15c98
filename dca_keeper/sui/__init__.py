"""Sui transaction plumbing: BCS, programmable transactions and signing."""

from .bcs import normalize_address, normalize_type, parse_type_tag, split_type_args
from .keypair import SuiKeypair, decode_private_key
from .transactions import (
    CLOCK_OBJECT_ID,
    GAS_COIN,
    Argument,
    GasConfig,
    ObjectRef,
    ProgrammableTransaction,
)

__all__ = [
    "CLOCK_OBJECT_ID",
    "GAS_COIN",
    "Argument",
    "GasConfig",
    "ObjectRef",
    "ProgrammableTransaction",
    "SuiKeypair",
    "decode_private_key",
    "normalize_address",
    "normalize_type",
    "parse_type_tag",
    "split_type_args",
]
