"""
Tests for the SafeTx EIP-712 codec.

The digest must match what the wallet contract computes on-chain:
- domain separator over (chainId, verifyingContract) only
- ten SafeTx fields in struct order, dynamic `data` hashed
"""

import pytest
from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak

from polyloans_relayer.codec import (
    ZERO_ADDRESS,
    DelegatedCall,
    Operation,
    build_typed_data,
    encode_delegated_call,
    exec_transaction_args,
    sign_delegated_call,
    to_bytes,
)

OWNER_KEY = "0x" + "11" * 32
WALLET = "0x2222222222222222222222222222222222222222"
TARGET = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"
PAYLOAD = bytes.fromhex("095ea7b3") + b"\x00" * 64


def _reference_digest(call: DelegatedCall, chain_id: int, wallet: str) -> bytes:
    """Digest built field by field, without the typed-data helper."""
    domain_typehash = keccak(text="EIP712Domain(uint256 chainId,address verifyingContract)")
    safe_tx_typehash = keccak(
        text=(
            "SafeTx(address to,uint256 value,bytes data,uint8 operation,"
            "uint256 safeTxGas,uint256 baseGas,uint256 gasPrice,"
            "address gasToken,address refundReceiver,uint256 nonce)"
        )
    )
    domain_separator = keccak(
        encode(["bytes32", "uint256", "address"], [domain_typehash, chain_id, wallet])
    )
    struct_hash = keccak(
        encode(
            [
                "bytes32", "address", "uint256", "bytes32", "uint8", "uint256",
                "uint256", "uint256", "address", "address", "uint256",
            ],
            [
                safe_tx_typehash,
                call.target,
                call.value,
                keccak(call.payload),
                int(call.operation_kind),
                call.gas_ceiling,
                call.base_gas,
                call.gas_price,
                call.gas_asset,
                call.refund_target,
                call.sequence,
            ],
        )
    )
    return keccak(b"\x19\x01" + domain_separator + struct_hash)


class TestTypeHashes:
    """The schema strings must hash to the contract's constants."""

    def test_safe_tx_typehash(self) -> None:
        typehash = keccak(
            text=(
                "SafeTx(address to,uint256 value,bytes data,uint8 operation,"
                "uint256 safeTxGas,uint256 baseGas,uint256 gasPrice,"
                "address gasToken,address refundReceiver,uint256 nonce)"
            )
        )
        assert typehash.hex() == "bb8310d486368db6bd6f849402fdd73ad53d316b5a4b2644ad6efe0f941286d8"

    def test_domain_typehash(self) -> None:
        typehash = keccak(text="EIP712Domain(uint256 chainId,address verifyingContract)")
        assert typehash.hex() == "47e79534a245952e8b16893a336b85a3d9ea9fa8c573f3d803afb92a79469218"


class TestEncodeDelegatedCall:
    """Tests for the 32-byte signing digest."""

    def test_matches_reference_encoding(self) -> None:
        """Digest should equal the field-by-field EIP-712 construction."""
        call = DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=7)

        digest = encode_delegated_call(call, 137, WALLET)

        assert len(digest) == 32
        assert digest == _reference_digest(call, 137, WALLET)

    def test_deterministic(self) -> None:
        """Identical inputs produce identical digests."""
        a = DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=7)
        b = DelegatedCall(target=TARGET.lower(), payload="0x" + PAYLOAD.hex(), sequence=7)

        assert encode_delegated_call(a, 137, WALLET) == encode_delegated_call(b, 137, WALLET)

    def test_nonce_changes_digest(self) -> None:
        call = DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=7)

        assert encode_delegated_call(call, 137, WALLET) != encode_delegated_call(
            call.with_sequence(8), 137, WALLET
        )

    def test_domain_binds_chain_and_wallet(self) -> None:
        """The same call on another chain or wallet is a different message."""
        call = DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=0)
        base = encode_delegated_call(call, 137, WALLET)

        assert encode_delegated_call(call, 80002, WALLET) != base
        assert encode_delegated_call(call, 137, TARGET) != base

    def test_empty_payload(self) -> None:
        call = DelegatedCall(target=TARGET, payload=b"", sequence=0)
        assert encode_delegated_call(call, 137, WALLET) == _reference_digest(call, 137, WALLET)


class TestSignDelegatedCall:
    """Owner signatures over the typed data."""

    def test_signature_recovers_owner(self) -> None:
        call = DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=3)

        signature = sign_delegated_call(call, OWNER_KEY, 137, WALLET)

        assert len(signature) == 65
        signable = encode_typed_data(full_message=build_typed_data(call, 137, WALLET))
        assert Account.recover_message(signable, signature=signature) == Account.from_key(OWNER_KEY).address

    def test_signature_for_other_nonce_recovers_someone_else(self) -> None:
        """What the wallet sees when a signature is replayed at a newer nonce."""
        call = DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=3)
        signature = sign_delegated_call(call, OWNER_KEY, 137, WALLET)

        signable = encode_typed_data(full_message=build_typed_data(call.with_sequence(4), 137, WALLET))
        assert Account.recover_message(signable, signature=signature) != Account.from_key(OWNER_KEY).address


class TestDelegatedCall:
    """Validation and execTransaction argument layout."""

    def test_defaults_are_zero(self) -> None:
        call = DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=1)

        message = call.to_message()
        assert message["value"] == 0
        assert message["operation"] == 0
        assert message["safeTxGas"] == 0
        assert message["baseGas"] == 0
        assert message["gasPrice"] == 0
        assert message["gasToken"] == ZERO_ADDRESS
        assert message["refundReceiver"] == ZERO_ADDRESS

    def test_rejects_delegate_call(self) -> None:
        with pytest.raises(ValueError):
            DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=0, operation_kind=Operation.DELEGATE_CALL)

    def test_rejects_value(self) -> None:
        with pytest.raises(ValueError):
            DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=0, value=1)

    def test_rejects_negative_sequence(self) -> None:
        with pytest.raises(ValueError):
            DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=-1)

    def test_rejects_malformed_target(self) -> None:
        with pytest.raises(ValueError):
            DelegatedCall(target="0x1234", payload=PAYLOAD, sequence=0)

    def test_exec_args_forward_signature_verbatim(self) -> None:
        call = DelegatedCall(target=TARGET, payload=PAYLOAD, sequence=5)
        signature = "0x" + "ab" * 65

        args = exec_transaction_args(call, signature)

        assert len(args) == 10
        assert args[0] == TARGET
        assert args[2] == PAYLOAD
        assert args[-1] == bytes.fromhex("ab" * 65)

    def test_to_bytes_accepts_hex_and_bytes(self) -> None:
        assert to_bytes("0xdead") == b"\xde\xad"
        assert to_bytes("dead") == b"\xde\xad"
        assert to_bytes(b"\x01") == b"\x01"
        with pytest.raises(ValueError):
            to_bytes("0xzz")
