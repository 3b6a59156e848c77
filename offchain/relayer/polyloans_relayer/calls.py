"""
ABI encoding for the approval calls the relayer builds itself.

Market-specific payloads arrive already encoded and are never decoded here.
"""

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

MAX_UINT256 = 2**256 - 1

# Allowance below this many settlement-asset units counts as "not authorized".
MIN_SUFFICIENT_ALLOWANCE = 1_000_000

SET_APPROVAL_FOR_ALL = "setApprovalForAll(address,bool)"
APPROVE = "approve(address,uint256)"


def _encode_call(signature: str, arg_types: list[str], args: list) -> bytes:
    return function_signature_to_4byte_selector(signature) + encode(arg_types, args)


def encode_set_approval_for_all(operator: str, approved: bool = True) -> bytes:
    """Grant (or revoke) transfer rights over all collateral positions."""
    return _encode_call(
        SET_APPROVAL_FOR_ALL,
        ["address", "bool"],
        [Web3.to_checksum_address(operator), approved],
    )


def encode_approve(spender: str, amount: int = MAX_UINT256) -> bytes:
    """ERC-20 approve; defaults to the never-expiring maximum allowance."""
    if not 0 <= amount <= MAX_UINT256:
        raise ValueError("Allowance amount out of uint256 range")
    return _encode_call(
        APPROVE,
        ["address", "uint256"],
        [Web3.to_checksum_address(spender), amount],
    )
