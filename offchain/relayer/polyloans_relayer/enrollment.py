"""
One-time market enrollment for a wallet.

Two grants are needed before a market can move a wallet's assets:

1. transfer rights over collateral positions (setApprovalForAll on the
   collateral registry)
2. spending rights over the settlement asset (approve with the maximum
   allowance)

Each step is skipped when its grant is already present, so the flow can be
re-run after an interruption. Step 2 reads its nonce only after step 1 is
confirmed, because the executor holds the wallet lock until confirmation.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from web3 import Web3

from .calls import MAX_UINT256, MIN_SUFFICIENT_ALLOWANCE, encode_approve, encode_set_approval_for_all
from .executor import RelayExecutor, RelayReceipt

logger = structlog.get_logger()


@dataclass(frozen=True)
class PlannedCall:
    """A delegated call the wallet still needs to make."""

    target: str
    payload: bytes
    description: str


@dataclass
class EnrollmentResult:
    """Outcome of an enrollment run."""

    wallet: str
    market: str
    transfer_grant: Optional[RelayReceipt] = None
    spend_grant: Optional[RelayReceipt] = None
    transfer_already_granted: bool = False
    spend_already_granted: bool = False

    @property
    def complete(self) -> bool:
        transfer_ok = self.transfer_already_granted or self.transfer_grant is not None
        spend_ok = self.spend_already_granted or self.spend_grant is not None
        return transfer_ok and spend_ok


def plan_transfer_grant(approved: bool, registry: str, market: str) -> Optional[PlannedCall]:
    """setApprovalForAll(market, true) unless already approved."""
    if approved:
        return None
    return PlannedCall(
        target=Web3.to_checksum_address(registry),
        payload=encode_set_approval_for_all(market, True),
        description="collateral transfer rights",
    )


def plan_spend_grant(allowance: int, asset: str, market: str) -> Optional[PlannedCall]:
    """approve(market, MAX_UINT256) when the allowance is below the threshold."""
    if allowance >= MIN_SUFFICIENT_ALLOWANCE:
        return None
    return PlannedCall(
        target=Web3.to_checksum_address(asset),
        payload=encode_approve(market, MAX_UINT256),
        description="settlement asset allowance",
    )


class MarketEnrollment:
    """Runs the two-step authorization for a wallet and a market."""

    def __init__(
        self,
        chain: Any,
        executor: RelayExecutor,
        collateral_registry: str,
        settlement_asset: str,
        owner_private_key: str,
    ):
        self.chain = chain
        self.executor = executor
        self.collateral_registry = Web3.to_checksum_address(collateral_registry)
        self.settlement_asset = Web3.to_checksum_address(settlement_asset)
        self._owner_private_key = owner_private_key

    async def pending_calls(self, wallet: str, market: str) -> list[PlannedCall]:
        """Grants still missing, in execution order (no transactions sent)."""
        approved = await self.chain.is_approved_for_all(self.collateral_registry, wallet, market)
        allowance = await self.chain.get_allowance(self.settlement_asset, wallet, market)
        return [
            call
            for call in (
                plan_transfer_grant(approved, self.collateral_registry, market),
                plan_spend_grant(allowance, self.settlement_asset, market),
            )
            if call is not None
        ]

    async def enroll(self, wallet: str, market: str) -> EnrollmentResult:
        """
        Grant the market both rights over the wallet's assets.

        Raises:
            RelayError subclasses from the executor; a failed step 1 stops
            the flow before step 2 is attempted.
        """
        wallet = Web3.to_checksum_address(wallet)
        market = Web3.to_checksum_address(market)
        result = EnrollmentResult(wallet=wallet, market=market)

        logger.info("enrollment_started", wallet=wallet, market=market)

        approved = await self.chain.is_approved_for_all(self.collateral_registry, wallet, market)
        transfer = plan_transfer_grant(approved, self.collateral_registry, market)
        if transfer is None:
            result.transfer_already_granted = True
        else:
            result.transfer_grant = await self._submit(wallet, transfer)

        # Read after step 1 is confirmed.
        allowance = await self.chain.get_allowance(self.settlement_asset, wallet, market)
        spend = plan_spend_grant(allowance, self.settlement_asset, market)
        if spend is None:
            result.spend_already_granted = True
        else:
            result.spend_grant = await self._submit(wallet, spend)

        logger.info(
            "enrollment_complete",
            wallet=wallet,
            market=market,
            transfer_tx=result.transfer_grant.tx_hash if result.transfer_grant else None,
            spend_tx=result.spend_grant.tx_hash if result.spend_grant else None,
        )
        return result

    async def _submit(self, wallet: str, call: PlannedCall) -> RelayReceipt:
        logger.info("enrollment_step", wallet=wallet, target=call.target, step=call.description)
        return await self.executor.relay_as_owner(
            wallet, call.target, call.payload, self._owner_private_key
        )
