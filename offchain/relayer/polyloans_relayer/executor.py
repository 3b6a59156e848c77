"""
Relay execution: rebuild the signed SafeTx and submit execTransaction.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from web3.exceptions import ContractLogicError
import structlog

from .codec import DelegatedCall, exec_transaction_args, sign_delegated_call, to_bytes
from .errors import ContractReverted, RelayError, StaleSequence, SubmissionFailed
from .evm import revert_reason
from .sequencer import NonceSequencer

logger = structlog.get_logger()

# Safe revert code for "signature does not recover to an owner". With the
# owner key this means the message was signed over another nonce; it is also
# what a signature from a non-owner key produces.
INVALID_SIGNATURE_CODE = "GS026"

SignFn = Callable[[DelegatedCall, str], bytes]


@dataclass
class RelayReceipt:
    """Result of a confirmed relay."""

    tx_hash: str
    wallet: str
    sequence: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


def classify_revert(reason: str, sequence: int, tx_hash: Optional[str] = None) -> RelayError:
    """Map a wallet revert reason onto the relay failure taxonomy."""
    if INVALID_SIGNATURE_CODE in reason:
        return StaleSequence(
            f"Signature does not recover to a wallet owner at sequence {sequence}; "
            "re-fetch the nonce and re-sign with the owner key",
            current=sequence,
            tx_hash=tx_hash,
        )
    return ContractReverted(reason, tx_hash=tx_hash)


class RelayExecutor:
    """
    Submits owner-signed delegated calls from the relayer account.

    The relayer key only pays for and authorizes network submission. The
    call content is authorized solely by the owner's signature, which is
    forwarded untouched.
    """

    def __init__(
        self,
        chain: Any,
        sequencer: NonceSequencer,
        chain_id: int,
        confirmation_timeout_seconds: float = 60.0,
        fallback_gas_limit: int = 500_000,
    ):
        self.chain = chain
        self.sequencer = sequencer
        self.chain_id = chain_id
        self.confirmation_timeout_seconds = confirmation_timeout_seconds
        self.fallback_gas_limit = fallback_gas_limit

    async def relay(
        self,
        proxy: str,
        target: str,
        payload: Union[bytes, str],
        signature: Union[bytes, str],
        expected_sequence: Optional[int] = None,
    ) -> RelayReceipt:
        """
        Relay a call the wallet owner already signed.

        Args:
            proxy: resolved wallet address
            target: contract the wallet should call
            payload: encoded call data, passed through unchanged
            signature: owner signature over the SafeTx at the current nonce
            expected_sequence: nonce the client signed over, if it sent one

        Raises:
            StaleSequence, ContractReverted, SubmissionFailed
            ValueError: malformed signature or addresses
        """
        raw_signature = to_bytes(signature)

        return await self._execute(
            proxy,
            target,
            payload,
            lambda call, wallet: raw_signature,
            expected_sequence,
        )

    async def relay_as_owner(
        self,
        proxy: str,
        target: str,
        payload: Union[bytes, str],
        owner_private_key: str,
    ) -> RelayReceipt:
        """
        Sign with the owner key inside the wallet lock, then relay.

        For operator enrollment and the test-only autosign mode.
        """
        return await self._execute(
            proxy,
            target,
            payload,
            lambda call, wallet: sign_delegated_call(call, owner_private_key, self.chain_id, wallet),
        )

    async def _execute(
        self,
        proxy: str,
        target: str,
        payload: Union[bytes, str],
        sign: SignFn,
        expected_sequence: Optional[int] = None,
    ) -> RelayReceipt:
        async with self.sequencer.hold(proxy) as wallet:
            try:
                sequence = await self.sequencer.current_sequence(wallet)
            except Exception as e:
                raise SubmissionFailed(f"Could not read wallet nonce: {e}") from e

            if expected_sequence is not None and expected_sequence != sequence:
                logger.info(
                    "relay_stale_sequence",
                    wallet=wallet,
                    expected=expected_sequence,
                    current=sequence,
                )
                raise StaleSequence(
                    f"Signed sequence {expected_sequence} does not match wallet sequence {sequence}",
                    expected=expected_sequence,
                    current=sequence,
                )

            call = DelegatedCall(target=target, payload=payload, sequence=sequence)
            args = exec_transaction_args(call, sign(call, wallet))
            gas = await self._estimate_gas(wallet, args, sequence)

            try:
                tx_hash = await self.chain.send_exec(wallet, args, gas)
            except ContractLogicError as e:
                raise classify_revert(revert_reason(e), sequence) from e
            except Exception as e:
                logger.error("relay_broadcast_failed", wallet=wallet, sequence=sequence, error=str(e))
                raise SubmissionFailed(f"Broadcast failed: {e}") from e

            logger.info(
                "relay_submitted",
                wallet=wallet,
                target=call.target,
                sequence=sequence,
                tx_hash=tx_hash,
                gas=gas,
            )

            try:
                outcome = await self.chain.wait_for_receipt(tx_hash, self.confirmation_timeout_seconds)
            except RelayError:
                raise
            except Exception as e:
                logger.error("relay_receipt_failed", wallet=wallet, tx_hash=tx_hash, error=str(e))
                raise SubmissionFailed(f"Receipt polling failed: {e}", tx_hash=tx_hash) from e

            if outcome.status != 1:
                reason = await self._replay_reason(wallet, args, outcome.block_number)
                logger.error("relay_reverted", wallet=wallet, tx_hash=tx_hash, reason=reason)
                raise classify_revert(reason, sequence, tx_hash=tx_hash)

            logger.info(
                "relay_confirmed",
                wallet=wallet,
                sequence=sequence,
                tx_hash=tx_hash,
                gas_used=outcome.gas_used,
            )

            return RelayReceipt(
                tx_hash=tx_hash,
                wallet=wallet,
                sequence=sequence,
                block_number=outcome.block_number,
                gas_used=outcome.gas_used,
            )

    async def _estimate_gas(self, wallet: str, args: tuple, sequence: int) -> int:
        """Auto-estimate; fall back to the fixed ceiling unless the wallet reverts."""
        try:
            return await self.chain.estimate_exec(wallet, args)
        except ContractLogicError as e:
            reason = revert_reason(e)
            logger.info("relay_preflight_reverted", wallet=wallet, sequence=sequence, reason=reason)
            raise classify_revert(reason, sequence) from e
        except Exception as e:
            logger.warning(
                "gas_estimate_failed",
                wallet=wallet,
                fallback_gas_limit=self.fallback_gas_limit,
                error=str(e),
            )
            return self.fallback_gas_limit

    async def _replay_reason(self, wallet: str, args: tuple, block_number: Optional[int]) -> str:
        try:
            return await self.chain.replay_revert_reason(wallet, args, block_number)
        except Exception as e:
            logger.warning("revert_replay_failed", wallet=wallet, error=str(e))
            return "transaction reverted"
