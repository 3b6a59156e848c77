"""
EIP-712 encoding for Safe-style delegated calls.

This is the single definition of the SafeTx schema. The frontend signs
against it and the executor re-derives the exact same message from it, so
any change here must stay byte-compatible with the wallet contract.
"""

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Union

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak
from web3 import Web3
import structlog

logger = structlog.get_logger()


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class Operation(IntEnum):
    """Safe operation kinds. Only CALL is ever relayed."""

    CALL = 0
    DELEGATE_CALL = 1


EIP712_DOMAIN_TYPE = [
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

SAFE_TX_TYPE = [
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "data", "type": "bytes"},
    {"name": "operation", "type": "uint8"},
    {"name": "safeTxGas", "type": "uint256"},
    {"name": "baseGas", "type": "uint256"},
    {"name": "gasPrice", "type": "uint256"},
    {"name": "gasToken", "type": "address"},
    {"name": "refundReceiver", "type": "address"},
    {"name": "nonce", "type": "uint256"},
]


def to_bytes(data: Union[bytes, str]) -> bytes:
    """Accept raw bytes or a 0x-prefixed hex string."""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    hex_str = data[2:] if data.startswith(("0x", "0X")) else data
    return bytes.fromhex(hex_str)


@dataclass(frozen=True)
class DelegatedCall:
    """A call the wallet executes on the owner's behalf.

    Field order mirrors the SafeTx struct.
    """

    target: str
    payload: bytes
    sequence: int
    value: int = 0
    operation_kind: Operation = Operation.CALL
    gas_ceiling: int = 0
    base_gas: int = 0
    gas_price: int = 0
    gas_asset: str = ZERO_ADDRESS
    refund_target: str = ZERO_ADDRESS

    def __post_init__(self) -> None:
        if self.operation_kind != Operation.CALL:
            raise ValueError("Only direct calls are relayed")
        if self.value != 0:
            raise ValueError("Native value forwarding is not supported")
        if self.sequence < 0:
            raise ValueError("Sequence must be non-negative")
        object.__setattr__(self, "target", Web3.to_checksum_address(self.target))
        object.__setattr__(self, "payload", to_bytes(self.payload))

    def with_sequence(self, sequence: int) -> "DelegatedCall":
        return replace(self, sequence=sequence)

    def to_message(self) -> dict[str, Any]:
        """SafeTx message values, keyed by EIP-712 field name."""
        return {
            "to": self.target,
            "value": self.value,
            "data": self.payload,
            "operation": int(self.operation_kind),
            "safeTxGas": self.gas_ceiling,
            "baseGas": self.base_gas,
            "gasPrice": self.gas_price,
            "gasToken": self.gas_asset,
            "refundReceiver": self.refund_target,
            "nonce": self.sequence,
        }


def build_typed_data(call: DelegatedCall, chain_id: int, wallet: str) -> dict[str, Any]:
    """Build the full EIP-712 structure for a delegated call.

    The domain has no name or version: the wallet contract's separator is
    derived from chain id and its own address only.
    """
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "SafeTx": SAFE_TX_TYPE,
        },
        "primaryType": "SafeTx",
        "domain": {
            "chainId": chain_id,
            "verifyingContract": Web3.to_checksum_address(wallet),
        },
        "message": call.to_message(),
    }


def encode_delegated_call(call: DelegatedCall, chain_id: int, wallet: str) -> bytes:
    """
    Compute the 32-byte EIP-712 digest the wallet owner signs.

    digest = keccak256(0x19 || 0x01 || domainSeparator || hashStruct(SafeTx))
    """
    signable = encode_typed_data(full_message=build_typed_data(call, chain_id, wallet))
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def sign_delegated_call(
    call: DelegatedCall,
    private_key: str,
    chain_id: int,
    wallet: str,
) -> bytes:
    """
    Sign a delegated call as the wallet owner.

    Returns:
        65-byte signature (r || s || v)
    """
    account = Account.from_key(private_key)
    signed = account.sign_typed_data(full_message=build_typed_data(call, chain_id, wallet))

    logger.info(
        "signed_delegated_call",
        wallet=wallet,
        target=call.target,
        sequence=call.sequence,
        signer=account.address,
    )

    return bytes(signed.signature)


def exec_transaction_args(call: DelegatedCall, signature: Union[bytes, str]) -> tuple:
    """Positional arguments for Safe.execTransaction, signature passed verbatim."""
    return (
        call.target,
        call.value,
        call.payload,
        int(call.operation_kind),
        call.gas_ceiling,
        call.base_gas,
        call.gas_price,
        call.gas_asset,
        call.refund_target,
        to_bytes(signature),
    )
