"""
Relayer service: wires the resolver, sequencer, executor and collaborators.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

import structlog

from .config import RelayerConfig
from .enrollment import EnrollmentResult, MarketEnrollment
from .evm import SafeChainClient
from .errors import SubmissionFailed
from .executor import RelayExecutor, RelayReceipt
from .identity import IdentityResolver, ResolutionCache
from .market_data import (
    ApiCredentials,
    MarketDataClient,
    MarketDescriptor,
    describe_market,
    load_portfolio,
)
from .sequencer import NonceSequencer

logger = structlog.get_logger()


@dataclass
class WalletSequence:
    """A resolved wallet and its current nonce."""

    proxy: str
    nonce: int


class PolyLoansRelayer:
    """
    Entry point for relay operations:
    1. Resolve an end user's proxy wallet and its nonce
    2. Relay owner-signed delegated calls
    3. Enroll a wallet for a new market (operator)
    4. Read-only portfolio and market views
    """

    def __init__(
        self,
        config: RelayerConfig,
        chain: Optional[Any] = None,
        market_data: Optional[MarketDataClient] = None,
        cache: Optional[ResolutionCache] = None,
    ):
        self.config = config
        settings = config.settings

        self.chain = chain or SafeChainClient(
            rpc_url=settings.rpc_url,
            relayer_private_key=settings.relayer_private_key,
            chain_id=settings.chain_id,
        )

        credentials = None
        if settings.has_market_credentials:
            credentials = ApiCredentials(
                api_key=settings.poly_api_key or "",
                api_secret=settings.poly_api_secret or "",
                api_passphrase=settings.poly_api_passphrase or "",
            )
        self.market_data = market_data or MarketDataClient(
            data_api_url=settings.data_api_url,
            clob_api_url=settings.clob_api_url,
            gamma_api_url=settings.gamma_api_url,
            credentials=credentials,
            timeout=settings.http_timeout_seconds,
        )

        self.resolver = IdentityResolver(
            positions=self.market_data,
            overrides=settings.proxy_overrides,
            cache=cache or ResolutionCache(ttl_seconds=settings.identity_cache_ttl_seconds),
        )
        self.sequencer = NonceSequencer(self.chain, lock_timeout_seconds=settings.lock_timeout_seconds)
        self.executor = RelayExecutor(
            chain=self.chain,
            sequencer=self.sequencer,
            chain_id=settings.chain_id,
            confirmation_timeout_seconds=settings.confirmation_timeout_seconds,
            fallback_gas_limit=settings.fallback_gas_limit,
        )

        logger.info(
            "relayer_initialized",
            chain_id=settings.chain_id,
            overrides=len(self.resolver.overrides),
            confirmation_timeout=settings.confirmation_timeout_seconds,
            test_autosign=settings.test_autosign,
        )

    async def get_nonce(self, user: str) -> WalletSequence:
        """
        Resolve the user's wallet and read its current nonce.

        Raises:
            IdentityNotFound: no wallet is known for the user
            SubmissionFailed: the nonce could not be read from the chain
        """
        proxy = await self.resolver.require(user)
        try:
            nonce = await self.sequencer.current_sequence(proxy)
        except Exception as e:
            logger.error("nonce_read_failed", wallet=proxy, error=str(e))
            raise SubmissionFailed(f"Could not fetch nonce for {proxy}") from e
        return WalletSequence(proxy=proxy, nonce=nonce)

    async def relay(
        self,
        proxy: str,
        target: str,
        payload: Union[bytes, str],
        signature: Optional[Union[bytes, str]],
        expected_sequence: Optional[int] = None,
    ) -> RelayReceipt:
        """Relay an owner-signed call for a wallet."""
        if signature is None:
            return await self._relay_autosigned(proxy, target, payload)
        return await self.executor.relay(proxy, target, payload, signature, expected_sequence)

    async def _relay_autosigned(self, proxy: str, target: str, payload: Union[bytes, str]) -> RelayReceipt:
        # Test-only: the relayer key stands in for the wallet owner.
        settings = self.config.settings
        if not settings.test_autosign:
            raise ValueError("A wallet owner signature is required")
        logger.warning("test_autosign_relay", wallet=proxy, target=target)
        return await self.executor.relay_as_owner(proxy, target, payload, settings.relayer_private_key)

    def enrollment(self) -> MarketEnrollment:
        """Enrollment flow signed with the configured owner key."""
        settings = self.config.settings
        if not settings.owner_private_key:
            raise ValueError("OWNER_PRIVATE_KEY not configured")
        return MarketEnrollment(
            chain=self.chain,
            executor=self.executor,
            collateral_registry=settings.collateral_registry,
            settlement_asset=settings.settlement_asset,
            owner_private_key=settings.owner_private_key,
        )

    async def enroll(self, wallet: str, market: str) -> EnrollmentResult:
        return await self.enrollment().enroll(wallet, market)

    async def portfolio(self, user: str) -> list[dict[str, Any]]:
        """Positions view. Falls back to the user's own address (read-only)."""
        wallet = await self.resolver.resolve_for_read(user)
        return await load_portfolio(self.market_data, wallet)

    async def market_info(self, token_id: str) -> MarketDescriptor:
        return await describe_market(self.market_data, token_id)

    async def close(self) -> None:
        await self.market_data.close()
