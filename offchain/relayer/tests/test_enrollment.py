"""
Tests for the two-step market enrollment flow.
"""

import asyncio

import pytest
from eth_abi import decode

from fakes import COLLATERAL_REGISTRY, MARKET, OWNER_KEY, PROXY, SETTLEMENT_ASSET
from polyloans_relayer.calls import (
    MAX_UINT256,
    MIN_SUFFICIENT_ALLOWANCE,
    encode_approve,
    encode_set_approval_for_all,
)
from polyloans_relayer.errors import SubmissionFailed
from polyloans_relayer.enrollment import MarketEnrollment, plan_spend_grant, plan_transfer_grant
from polyloans_relayer.executor import RelayExecutor
from polyloans_relayer.sequencer import NonceSequencer


def _enrollment(chain, **kwargs) -> MarketEnrollment:
    executor = RelayExecutor(chain, NonceSequencer(chain), chain_id=chain.chain_id, **kwargs)
    return MarketEnrollment(
        chain=chain,
        executor=executor,
        collateral_registry=COLLATERAL_REGISTRY,
        settlement_asset=SETTLEMENT_ASSET,
        owner_private_key=OWNER_KEY,
    )


class TestCallEncoding:
    """Approval payloads the enrollment flow builds."""

    def test_set_approval_for_all(self) -> None:
        payload = encode_set_approval_for_all(MARKET)

        assert payload[:4].hex() == "a22cb465"
        assert decode(["address", "bool"], payload[4:]) == (MARKET, True)

    def test_approve_defaults_to_max(self) -> None:
        payload = encode_approve(MARKET)

        assert payload[:4].hex() == "095ea7b3"
        assert decode(["address", "uint256"], payload[4:]) == (MARKET, MAX_UINT256)

    def test_approve_rejects_out_of_range(self) -> None:
        with pytest.raises(ValueError):
            encode_approve(MARKET, MAX_UINT256 + 1)
        with pytest.raises(ValueError):
            encode_approve(MARKET, -1)


class TestPlanning:
    """Which grants are still needed."""

    def test_transfer_grant_skipped_when_approved(self) -> None:
        assert plan_transfer_grant(True, COLLATERAL_REGISTRY, MARKET) is None

    def test_transfer_grant_targets_registry(self) -> None:
        call = plan_transfer_grant(False, COLLATERAL_REGISTRY, MARKET)

        assert call.target == COLLATERAL_REGISTRY
        assert call.payload == encode_set_approval_for_all(MARKET, True)

    def test_spend_grant_threshold(self) -> None:
        """Below one whole unit (1,000,000) counts as not authorized."""
        assert plan_spend_grant(MIN_SUFFICIENT_ALLOWANCE - 1, SETTLEMENT_ASSET, MARKET) is not None
        assert plan_spend_grant(MIN_SUFFICIENT_ALLOWANCE, SETTLEMENT_ASSET, MARKET) is None
        assert plan_spend_grant(0, SETTLEMENT_ASSET, MARKET).target == SETTLEMENT_ASSET


class TestEnroll:
    """End-to-end enrollment against the in-memory wallet."""

    @pytest.mark.asyncio
    async def test_approved_wallet_with_small_allowance(self, chain) -> None:
        """Step 1 is skipped; step 2 approves the maximum allowance."""
        chain.operator_approvals[(COLLATERAL_REGISTRY, PROXY, MARKET)] = True
        chain.allowances[(SETTLEMENT_ASSET, PROXY, MARKET)] = 500_000
        enrollment = _enrollment(chain)

        result = await enrollment.enroll(PROXY, MARKET)

        assert result.transfer_already_granted
        assert result.transfer_grant is None
        assert result.spend_grant is not None
        assert result.complete
        assert len(chain.sent) == 1
        assert chain.sent[0]["args"][0] == SETTLEMENT_ASSET
        assert chain.allowances[(SETTLEMENT_ASSET, PROXY, MARKET)] == MAX_UINT256

    @pytest.mark.asyncio
    async def test_fresh_wallet_runs_both_steps_in_order(self, chain) -> None:
        enrollment = _enrollment(chain)

        result = await enrollment.enroll(PROXY, MARKET)

        assert [s["args"][0] for s in chain.sent] == [COLLATERAL_REGISTRY, SETTLEMENT_ASSET]
        assert result.transfer_grant.sequence == 0
        assert result.spend_grant.sequence == 1
        assert chain.nonces[PROXY] == 2

    @pytest.mark.asyncio
    async def test_step_two_waits_for_step_one_confirmation(self, chain) -> None:
        chain.confirm_gate = asyncio.Event()
        enrollment = _enrollment(chain)

        task = asyncio.create_task(enrollment.enroll(PROXY, MARKET))
        for _ in range(200):
            if chain.sent:
                break
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)

        assert len(chain.sent) == 1
        assert chain.nonces[PROXY] == 0

        chain.confirm_gate.set()
        result = await task

        assert result.complete
        assert len(chain.sent) == 2
        assert result.spend_grant.sequence == 1

    @pytest.mark.asyncio
    async def test_step_one_timeout_stops_the_flow(self, chain) -> None:
        chain.confirm_gate = asyncio.Event()
        enrollment = _enrollment(chain, confirmation_timeout_seconds=0.05)

        with pytest.raises(SubmissionFailed):
            await enrollment.enroll(PROXY, MARKET)

        assert len(chain.sent) == 1
        assert chain.sent[0]["args"][0] == COLLATERAL_REGISTRY

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, chain) -> None:
        enrollment = _enrollment(chain)
        await enrollment.enroll(PROXY, MARKET)

        result = await enrollment.enroll(PROXY, MARKET)

        assert result.transfer_already_granted
        assert result.spend_already_granted
        assert result.complete
        assert len(chain.sent) == 2

    @pytest.mark.asyncio
    async def test_pending_calls_sends_nothing(self, chain) -> None:
        enrollment = _enrollment(chain)

        pending = await enrollment.pending_calls(PROXY, MARKET)

        assert [c.target for c in pending] == [COLLATERAL_REGISTRY, SETTLEMENT_ASSET]
        assert chain.sent == []
