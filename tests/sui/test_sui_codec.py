"""
Tests for BCS encoding, type tags, the PTB builder and the executor keypair.
"""

import base64
import hashlib

import pytest
from nacl.signing import VerifyKey

from dca_keeper.sui.bcs import (
    BcsWriter,
    base58_decode,
    base58_encode,
    encode_option_u64,
    normalize_address,
    normalize_type,
    split_type_args,
)
from dca_keeper.sui.keypair import SuiKeypair, bech32_decode, decode_private_key
from dca_keeper.sui.transactions import (
    CLOCK_OBJECT_ID,
    GAS_COIN,
    GasConfig,
    ObjectRef,
    ProgrammableTransaction,
)


SEED = bytes(range(32))
DIGEST = base58_encode(bytes([7]) * 32)


# =============================================================================
# BCS Tests
# =============================================================================

class TestBcs:
    """Tests for the BCS writer."""

    def test_integers_little_endian(self):
        assert BcsWriter().u64(1).getvalue() == b"\x01" + b"\x00" * 7
        assert BcsWriter().u16(0x0102).getvalue() == b"\x02\x01"

    @pytest.mark.parametrize(
        "value,encoded",
        [(0, b"\x00"), (127, b"\x7f"), (128, b"\x80\x01"), (300, b"\xac\x02")],
    )
    def test_uleb128(self, value, encoded):
        assert BcsWriter().uleb128(value).getvalue() == encoded

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            BcsWriter().u8(256)

    def test_option_u64(self):
        assert encode_option_u64(None) == b"\x00"
        assert encode_option_u64(5) == b"\x01\x05" + b"\x00" * 7

    def test_string_is_length_prefixed(self):
        assert BcsWriter().string("dca").getvalue() == b"\x03dca"

    def test_base58_leading_zeros(self):
        data = b"\x00\x00\x01\x02"
        assert base58_decode(base58_encode(data)) == data


class TestTypeTags:
    """Tests for address and type normalization."""

    def test_normalize_address(self):
        assert normalize_address("0x2") == "0x" + "0" * 63 + "2"

    def test_invalid_address(self):
        with pytest.raises(ValueError):
            normalize_address("0xzz")

    def test_normalize_nested_type(self):
        normalized = normalize_type("0x2::coin::Coin<0x2::sui::SUI>")
        sui = "0x" + "0" * 63 + "2"
        assert normalized == f"{sui}::coin::Coin<{sui}::sui::SUI>"

    def test_split_respects_nesting(self):
        args = split_type_args("0x2::a::A<0x2::b::B, u64>, 0x3::c::C")
        assert args == ["0x2::a::A<0x2::b::B, u64>", "0x3::c::C"]


# =============================================================================
# Programmable Transaction Tests
# =============================================================================

class TestProgrammableTransaction:
    """Tests for the PTB builder."""

    def test_shared_object_reused_and_widened(self):
        tx = ProgrammableTransaction()
        first = tx.shared_object("0xabc", mutable=False)
        second = tx.shared_object("0xabc", mutable=True)

        assert first == second
        assert len(tx.inputs) == 1
        assert tx.inputs[0].mutable is True

    def test_clock_is_immutable_and_resolved(self):
        tx = ProgrammableTransaction()
        tx.shared_object(CLOCK_OBJECT_ID, mutable=True)

        assert tx.inputs[0].mutable is False
        assert tx.unresolved_shared_objects() == []

    def test_nested_result(self):
        tx = ProgrammableTransaction()
        result = tx.move_call("0x2::coin::zero", type_arguments=["0x2::sui::SUI"])

        nested = result[1]
        assert nested.to_json() == {"NestedResult": [0, 1]}
        with pytest.raises(TypeError):
            GAS_COIN[0]

    def test_unresolved_shared_objects_block_serialization(self):
        tx = ProgrammableTransaction()
        tx.shared_object("0xabc")
        gas = GasConfig(payment=[ObjectRef("0x9", 1, DIGEST)], owner="0x1", price=1000, budget=10_000)

        with pytest.raises(ValueError):
            tx.to_bytes("0x1", gas)

        tx.resolve_shared_versions({normalize_address("0xabc"): 42})
        data = tx.to_bytes("0x1", gas)

        assert data[:2] == b"\x00\x00"
        assert data[-1:] == b"\x00"

    def test_resolve_missing_version(self):
        tx = ProgrammableTransaction()
        tx.shared_object("0xabc")
        with pytest.raises(ValueError):
            tx.resolve_shared_versions({})

    def test_describe(self):
        tx = ProgrammableTransaction()
        coin = tx.split_coins(GAS_COIN, [100])
        tx.transfer_objects([coin], "0x5")

        described = tx.describe()

        assert described["commands"][0]["SplitCoins"]["coin"] == "GasCoin"
        assert "TransferObjects" in described["commands"][1]
        assert described["inputs"][0] == {"pure": "u64:100"}


# =============================================================================
# Keypair Tests
# =============================================================================

class TestKeypair:
    """Tests for private-key decoding and signing."""

    def test_hex_seed(self):
        assert decode_private_key("0x" + SEED.hex()) == SEED

    def test_flagged_base64(self):
        encoded = base64.b64encode(b"\x00" + SEED).decode()
        assert decode_private_key(encoded) == SEED

    def test_non_ed25519_flag_rejected(self):
        encoded = base64.b64encode(b"\x01" + SEED).decode()
        with pytest.raises(ValueError):
            decode_private_key(encoded)

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            decode_private_key("  ")

    def test_bad_bech32_checksum(self):
        with pytest.raises(ValueError):
            bech32_decode("suiprivkey1qqqqqqqqqqqqqq")

    def test_address_derivation(self):
        keypair = SuiKeypair(SEED)
        expected = hashlib.blake2b(b"\x00" + keypair.public_key, digest_size=32).hexdigest()

        assert keypair.address == "0x" + expected

    def test_signature_verifies(self):
        keypair = SuiKeypair(SEED)
        tx_bytes = b"transaction-data"

        serialized = base64.b64decode(keypair.sign_transaction(tx_bytes))
        flag, signature, public_key = serialized[0], serialized[1:65], serialized[65:]
        digest = hashlib.blake2b(b"\x00\x00\x00" + tx_bytes, digest_size=32).digest()

        assert flag == 0
        assert public_key == keypair.public_key
        VerifyKey(public_key).verify(digest, signature)
