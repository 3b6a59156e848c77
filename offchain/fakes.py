"""
In-memory stand-ins for the chain and the market data services.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Optional

import httpx
from eth_abi import decode
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3
from web3.exceptions import ContractLogicError

from polyloans_relayer.calls import APPROVE, SET_APPROVAL_FOR_ALL
from polyloans_relayer.codec import DelegatedCall, build_typed_data
from polyloans_relayer.errors import SubmissionFailed
from polyloans_relayer.evm import TxOutcome
from polyloans_relayer.market_data import MarketDataClient

OWNER_KEY = "0x" + "11" * 32
RELAYER_KEY = "0x" + "22" * 32
STRANGER_KEY = "0x" + "33" * 32

USER = "0x1111111111111111111111111111111111111111"
PROXY = "0x2222222222222222222222222222222222222222"
MARKET = "0x3333333333333333333333333333333333333333"
OTHER_PROXY = "0x4444444444444444444444444444444444444444"

COLLATERAL_REGISTRY = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
SETTLEMENT_ASSET = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"

_APPROVE_SELECTOR = function_signature_to_4byte_selector(APPROVE)
_SET_APPROVAL_SELECTOR = function_signature_to_4byte_selector(SET_APPROVAL_FOR_ALL)


class FakeSafeChain:
    """
    Safe wallets held in memory.

    execTransaction recovers the signer over the SafeTx rebuilt at the
    wallet's *current* nonce, like the real contract, so a signature made
    over any other nonce fails with GS026. Transactions are mined when
    their receipt is awaited; set `confirm_gate` to hold confirmations.
    """

    def __init__(self, chain_id: int = 137):
        self.chain_id = chain_id
        self.account = Account.from_key(RELAYER_KEY)
        self.nonces: dict[str, int] = {}
        self.owners: dict[str, set[str]] = {}
        self.allowances: dict[tuple[str, str, str], int] = {}
        self.operator_approvals: dict[tuple[str, str, str], bool] = {}
        self.sent: list[dict[str, Any]] = []
        self.pending: dict[str, tuple[str, tuple]] = {}
        self.confirm_gate: Optional[asyncio.Event] = None
        self.send_error: Optional[Exception] = None
        self.estimate_error: Optional[Exception] = None
        self.reverting_targets: set[str] = set()
        self.revert_on_mine = False
        self.nonce_reads = 0

    # -- setup -------------------------------------------------------------

    def add_wallet(self, wallet: str, owner_key: str = OWNER_KEY, nonce: int = 0) -> None:
        wallet = Web3.to_checksum_address(wallet)
        self.nonces[wallet] = nonce
        self.owners[wallet] = {Account.from_key(owner_key).address}

    # -- reads -------------------------------------------------------------

    async def check_connectivity(self) -> bool:
        return True

    async def get_wallet_nonce(self, wallet: str) -> int:
        self.nonce_reads += 1
        return self.nonces[Web3.to_checksum_address(wallet)]

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get(_key(token, owner, spender), 0)

    async def is_approved_for_all(self, registry: str, owner: str, operator: str) -> bool:
        return self.operator_approvals.get(_key(registry, owner, operator), False)

    # -- execTransaction ---------------------------------------------------

    def _revert_reason(self, wallet: str, args: tuple) -> Optional[str]:
        target, _value, data, _op, *_gas, signature = args
        call = DelegatedCall(target=target, payload=data, sequence=self.nonces[wallet])
        signable = encode_typed_data(full_message=build_typed_data(call, self.chain_id, wallet))
        try:
            signer = Account.recover_message(signable, signature=signature)
        except Exception:
            return "GS026"
        if signer not in self.owners[wallet]:
            return "GS026"
        if Web3.to_checksum_address(target) in self.reverting_targets:
            return "GS013"
        return None

    async def estimate_exec(self, wallet: str, args: tuple) -> int:
        if self.estimate_error is not None:
            raise self.estimate_error
        reason = self._revert_reason(wallet, args)
        if reason:
            raise ContractLogicError(f"execution reverted: {reason}")
        return 120_000

    async def send_exec(self, wallet: str, args: tuple, gas: int) -> str:
        if self.send_error is not None:
            raise self.send_error
        tx_hash = "0x" + f"{len(self.sent) + 1:064x}"
        self.sent.append({"wallet": wallet, "args": args, "gas": gas, "tx_hash": tx_hash})
        self.pending[tx_hash] = (wallet, args)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxOutcome:
        if self.confirm_gate is not None:
            try:
                await asyncio.wait_for(self.confirm_gate.wait(), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise SubmissionFailed("Transaction not confirmed", tx_hash=tx_hash) from e
        return self._mine(tx_hash)

    async def replay_revert_reason(self, wallet: str, args: tuple, block_number: Optional[int]) -> str:
        return self._revert_reason(wallet, args) or "transaction reverted"

    def _mine(self, tx_hash: str) -> TxOutcome:
        wallet, args = self.pending.pop(tx_hash)
        if self.revert_on_mine or self._revert_reason(wallet, args):
            return TxOutcome(tx_hash=tx_hash, status=0, block_number=100, gas_used=21_000)

        self.nonces[wallet] += 1
        self._apply(wallet, args[0], args[2])
        return TxOutcome(tx_hash=tx_hash, status=1, block_number=100, gas_used=90_000)

    def _apply(self, wallet: str, target: str, data: bytes) -> None:
        selector, body = data[:4], data[4:]
        if selector == _APPROVE_SELECTOR:
            spender, amount = decode(["address", "uint256"], body)
            self.allowances[_key(target, wallet, spender)] = amount
        elif selector == _SET_APPROVAL_SELECTOR:
            operator, approved = decode(["address", "bool"], body)
            self.operator_approvals[_key(target, wallet, operator)] = approved


def _key(*addresses: str) -> tuple[str, ...]:
    return tuple(Web3.to_checksum_address(a) for a in addresses)


class FakePositions:
    """Positions lookup stub that counts calls."""

    def __init__(self, wallets: Optional[dict[str, str]] = None, error: Optional[Exception] = None):
        self.wallets = wallets or {}
        self.error = error
        self.calls: list[str] = []

    async def lookup_proxy_wallet(self, user: str) -> Optional[str]:
        self.calls.append(user)
        if self.error is not None:
            raise self.error
        return self.wallets.get(user)


def market_data_client(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> MarketDataClient:
    """MarketDataClient backed by an in-process httpx transport."""
    return MarketDataClient(transport=httpx.MockTransport(handler), **kwargs)


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))
