"""
EVM interaction: wallet reads and execTransaction submission.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted
import structlog

from .errors import SubmissionFailed

logger = structlog.get_logger()


# Safe wallet ABI (minimal for nonce + execTransaction)
SAFE_ABI = [
    {
        "inputs": [],
        "name": "nonce",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
            {"name": "operation", "type": "uint8"},
            {"name": "safeTxGas", "type": "uint256"},
            {"name": "baseGas", "type": "uint256"},
            {"name": "gasPrice", "type": "uint256"},
            {"name": "gasToken", "type": "address"},
            {"name": "refundReceiver", "type": "address"},
            {"name": "signatures", "type": "bytes"},
        ],
        "name": "execTransaction",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

ERC20_ABI = [
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

# Conditional tokens registry (ERC-1155 style operator approvals)
COLLATERAL_REGISTRY_ABI = [
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "operator", "type": "address"},
        ],
        "name": "isApprovedForAll",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass
class TxOutcome:
    """Mined transaction summary."""

    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


def revert_reason(error: Exception) -> str:
    """Extract a readable revert reason from a web3 contract error."""
    message = getattr(error, "message", None) or str(error)
    return message.replace("execution reverted:", "").strip() or "execution reverted"


class SafeChainClient:
    """Async client for Safe wallet reads and relayed execTransaction calls."""

    def __init__(
        self,
        rpc_url: str,
        relayer_private_key: str,
        chain_id: int,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.chain_id = chain_id
        self.account = Account.from_key(relayer_private_key) if relayer_private_key else None
        # Serializes pending-nonce read + send for the relayer account.
        self._send_lock = asyncio.Lock()

        logger.info(
            "evm_client_initialized",
            rpc_url=rpc_url,
            chain_id=chain_id,
            relayer=self.account.address if self.account else None,
        )

    @property
    def address(self) -> str:
        """Get relayer account address."""
        if not self.account:
            raise ValueError("No relayer private key configured")
        return self.account.address

    def _safe(self, wallet: str) -> Any:
        return self.w3.eth.contract(address=Web3.to_checksum_address(wallet), abi=SAFE_ABI)

    async def check_connectivity(self) -> bool:
        """Check if EVM RPC is reachable."""
        try:
            await self.w3.eth.block_number
            return True
        except Exception:
            return False

    async def get_wallet_nonce(self, wallet: str) -> int:
        """Read the wallet's confirmed sequence counter."""
        return int(await self._safe(wallet).functions.nonce().call())

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
        return int(
            await contract.functions.allowance(
                Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
            ).call()
        )

    async def is_approved_for_all(self, registry: str, owner: str, operator: str) -> bool:
        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(registry), abi=COLLATERAL_REGISTRY_ABI
        )
        return bool(
            await contract.functions.isApprovedForAll(
                Web3.to_checksum_address(owner), Web3.to_checksum_address(operator)
            ).call()
        )

    async def estimate_exec(self, wallet: str, args: tuple) -> int:
        """
        Estimate gas for execTransaction.

        Raises web3's ContractLogicError when the wallet would revert.
        """
        fn = self._safe(wallet).functions.execTransaction(*args)
        return int(await fn.estimate_gas({"from": self.address}))

    async def send_exec(self, wallet: str, args: tuple, gas: int) -> str:
        """Sign and broadcast execTransaction from the relayer account."""
        fn = self._safe(wallet).functions.execTransaction(*args)

        async with self._send_lock:
            nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
            tx = await fn.build_transaction(
                {
                    "from": self.address,
                    "chainId": self.chain_id,
                    "nonce": nonce,
                    "gas": gas,
                    "value": 0,
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxOutcome:
        """
        Wait (bounded) for a transaction receipt.

        Raises:
            SubmissionFailed: if no receipt arrives within `timeout`
        """
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except (TimeExhausted, asyncio.TimeoutError) as e:
            raise SubmissionFailed(
                f"Transaction not confirmed within {timeout:.0f}s", tx_hash=tx_hash
            ) from e

        return TxOutcome(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    async def replay_revert_reason(self, wallet: str, args: tuple, block_number: Optional[int]) -> str:
        """Best-effort revert reason for a mined, failed execTransaction."""
        fn = self._safe(wallet).functions.execTransaction(*args)
        try:
            await fn.call({"from": self.address}, block_identifier=block_number or "latest")
        except ContractLogicError as e:
            return revert_reason(e)
        except Exception as e:
            logger.warning("revert_replay_failed", wallet=wallet, error=str(e))
        return "transaction reverted"
