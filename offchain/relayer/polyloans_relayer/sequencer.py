"""
Per-wallet sequencing of relayed operations.

The wallet nonce is a single-writer register owned by the wallet contract.
Reading it, broadcasting against it and waiting for the result all happen
under one lock keyed by wallet address, so a second operation for the same
wallet only reads the nonce once the first is confirmed or has timed out.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog

from .errors import SubmissionFailed
from .identity import normalize_address

logger = structlog.get_logger()


class NonceSequencer:
    """Reads wallet nonces and serializes operations per wallet."""

    def __init__(self, chain: Any, lock_timeout_seconds: float = 90.0):
        # chain: anything with `async get_wallet_nonce(wallet) -> int`
        self.chain = chain
        self.lock_timeout_seconds = lock_timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        # holders plus waiters per wallet; the lock is dropped at zero
        self._users: dict[str, int] = {}

    def _checkout(self, wallet: str) -> asyncio.Lock:
        lock = self._locks.get(wallet)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[wallet] = lock
        self._users[wallet] = self._users.get(wallet, 0) + 1
        return lock

    def _checkin(self, wallet: str) -> None:
        remaining = self._users[wallet] - 1
        if remaining:
            self._users[wallet] = remaining
        else:
            del self._users[wallet]
            del self._locks[wallet]

    def tracked_wallets(self) -> int:
        """Number of wallets with an operation in flight or waiting."""
        return len(self._locks)

    def is_busy(self, wallet: str) -> bool:
        """True while an operation for this wallet is in flight."""
        lock = self._locks.get(normalize_address(wallet))
        return lock is not None and lock.locked()

    async def current_sequence(self, wallet: str) -> int:
        """The wallet's last confirmed nonce (ignores in-flight submissions)."""
        return await self.chain.get_wallet_nonce(normalize_address(wallet))

    @asynccontextmanager
    async def hold(self, wallet: str) -> AsyncIterator[str]:
        """
        Hold the wallet's lock for submit -> confirm-or-timeout.

        Yields the checksummed wallet address.

        Raises:
            SubmissionFailed: if the lock is not acquired within the timeout
        """
        address = normalize_address(wallet)
        lock = self._checkout(address)

        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout_seconds)
            except asyncio.TimeoutError as e:
                logger.warning("wallet_lock_timeout", wallet=address, timeout=self.lock_timeout_seconds)
                raise SubmissionFailed(
                    f"Another operation for {address} is still pending; retry later"
                ) from e

            try:
                yield address
            finally:
                lock.release()
        finally:
            self._checkin(address)
