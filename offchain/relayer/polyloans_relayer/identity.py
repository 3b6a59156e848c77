"""
End-user address -> proxy wallet resolution.
"""

import time
from typing import Any, Callable, Optional

import structlog
from web3 import Web3

from .errors import IdentityNotFound, UpstreamServiceUnavailable

logger = structlog.get_logger()


def normalize_address(address: str) -> str:
    """Checksum an address; raises ValueError when malformed."""
    if not isinstance(address, str):
        raise ValueError(f"Address must be a string, got {type(address).__name__}")
    return Web3.to_checksum_address(address.strip())


class ResolutionCache:
    """
    In-process cache of resolved wallets.

    Entries live for the process lifetime unless a TTL is given. A user who
    moves to a new wallet needs `invalidate()` (or a restart).
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    @staticmethod
    def _key(user: str) -> str:
        try:
            return normalize_address(user)
        except ValueError:
            return user

    def get(self, user: str) -> Optional[str]:
        user = self._key(user)
        entry = self._entries.get(user)
        if entry is None:
            return None
        wallet, stored_at = entry
        if self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds:
            del self._entries[user]
            return None
        return wallet

    def set(self, user: str, wallet: str) -> None:
        user = self._key(user)
        self._entries[user] = (wallet, self._clock())

    def invalidate(self, user: str) -> None:
        user = self._key(user)
        self._entries.pop(user, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class IdentityResolver:
    """
    Resolves the proxy wallet that executes for an end user.

    Lookup order: operator overrides, cache, then exactly one call to the
    positions service. Lookup errors resolve to "not found"; a wallet is
    never guessed.
    """

    def __init__(
        self,
        positions: Any,
        overrides: Optional[dict[str, str]] = None,
        cache: Optional[ResolutionCache] = None,
    ):
        # positions: anything with `async lookup_proxy_wallet(user) -> Optional[str]`
        self.positions = positions
        self.overrides = {
            normalize_address(user): normalize_address(wallet)
            for user, wallet in (overrides or {}).items()
        }
        self.cache = cache if cache is not None else ResolutionCache()

    async def resolve(self, user_address: str) -> Optional[str]:
        """Return the user's wallet address, or None when none can be found."""
        try:
            user = normalize_address(user_address)
        except ValueError:
            logger.warning("identity_invalid_address", user=user_address)
            return None

        if user in self.overrides:
            return self.overrides[user]

        cached = self.cache.get(user)
        if cached is not None:
            return cached

        try:
            wallet = await self.positions.lookup_proxy_wallet(user)
        except UpstreamServiceUnavailable as e:
            logger.warning("identity_lookup_failed", user=user, error=str(e))
            return None

        if not wallet:
            logger.info("identity_not_found", user=user)
            return None

        try:
            wallet = normalize_address(wallet)
        except ValueError:
            logger.warning("identity_lookup_malformed", user=user, wallet=wallet)
            return None

        self.cache.set(user, wallet)
        logger.info("identity_resolved", user=user, wallet=wallet)
        return wallet

    async def require(self, user_address: str) -> str:
        """Resolve or raise IdentityNotFound."""
        wallet = await self.resolve(user_address)
        if wallet is None:
            raise IdentityNotFound(user_address)
        return wallet

    async def resolve_for_read(self, user_address: str) -> str:
        """
        Degraded read-only resolution: falls back to the user's own address.

        Only for views. Never use the result to relay a call.
        """
        wallet = await self.resolve(user_address)
        return wallet if wallet is not None else user_address
