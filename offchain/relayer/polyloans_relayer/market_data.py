"""
Market data collaborators: positions, live prices and market descriptors.

All of this is read-only enrichment. Lookup failures raise
UpstreamServiceUnavailable from the client methods; the view helpers at the
bottom of the module turn them into placeholder values.
"""

import asyncio
import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from .errors import UpstreamServiceUnavailable

logger = structlog.get_logger()

# Positions at or below this size are dust and hidden from the portfolio.
MIN_POSITION_SIZE = 0.000001


@dataclass(frozen=True)
class ApiCredentials:
    """Credentials for authenticated CLOB requests."""

    api_key: str
    api_secret: str
    api_passphrase: str = ""


@dataclass(frozen=True)
class MarketDescriptor:
    title: str
    slug: str


UNKNOWN_MARKET = MarketDescriptor(title="Unknown", slug="")


def build_auth_headers(
    credentials: Optional[ApiCredentials],
    method: str,
    path: str,
    timestamp: Optional[int] = None,
) -> dict[str, str]:
    """
    HMAC-SHA256 request signature over timestamp + method + path.

    Returns no headers when no credentials are configured.
    """
    if credentials is None:
        return {}

    ts = str(int(time.time()) if timestamp is None else timestamp)
    digest = hmac.new(
        credentials.api_secret.encode("utf-8"),
        f"{ts}{method.upper()}{path}".encode("utf-8"),
        hashlib.sha256,
    ).digest()

    return {
        "Poly-Api-Key": credentials.api_key,
        "Poly-Api-Signature": base64.b64encode(digest).decode("ascii"),
        "Poly-Timestamp": ts,
        "Poly-Api-Passphrase": credentials.api_passphrase,
    }


class MarketDataClient:
    """Client for the positions, pricing and market metadata APIs."""

    def __init__(
        self,
        data_api_url: str = "https://data-api.polymarket.com",
        clob_api_url: str = "https://clob.polymarket.com",
        gamma_api_url: str = "https://gamma-api.polymarket.com",
        credentials: Optional[ApiCredentials] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.data_api_url = data_api_url.rstrip("/")
        self.clob_api_url = clob_api_url.rstrip("/")
        self.gamma_api_url = gamma_api_url.rstrip("/")
        self.credentials = credentials
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _get_json(self, url: str, headers: Optional[dict[str, str]] = None) -> Any:
        try:
            response = await self.client.get(url, headers=headers)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamServiceUnavailable(f"GET {url} failed: {e}") from e

    async def get_positions(self, user: str) -> list[dict[str, Any]]:
        """Get open positions reported for an address."""
        data = await self._get_json(f"{self.data_api_url}/positions?user={user}")
        if not isinstance(data, list):
            raise UpstreamServiceUnavailable("Unexpected positions payload")
        return data

    async def lookup_proxy_wallet(self, user: str) -> Optional[str]:
        """First wallet association reported by the positions service."""
        positions = await self.get_positions(user)
        if positions and isinstance(positions[0], dict):
            wallet = positions[0].get("proxyWallet")
            if isinstance(wallet, str) and wallet:
                return wallet
        return None

    async def get_price(self, token_id: str, side: str = "sell") -> str:
        """Get the live price for an outcome token."""
        path = f"/price?token_id={token_id}&side={side}"
        data = await self._get_json(
            f"{self.clob_api_url}{path}",
            headers=build_auth_headers(self.credentials, "GET", path),
        )
        return str(data["price"]) if isinstance(data, dict) and "price" in data else "0"

    async def get_market(self, token_id: str) -> Optional[dict[str, Any]]:
        """Get market metadata for an outcome token, if any."""
        data = await self._get_json(f"{self.gamma_api_url}/markets?token_id={token_id}")
        if isinstance(data, list) and data:
            return data[0]
        return None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


async def load_portfolio(client: MarketDataClient, wallet: str) -> list[dict[str, Any]]:
    """
    Positions for a wallet, each enriched with a best-effort live price.

    A failed positions lookup yields an empty list; a failed price lookup
    yields livePrice "0" for that position only.
    """
    try:
        positions = await client.get_positions(wallet)
    except UpstreamServiceUnavailable as e:
        logger.warning("portfolio_lookup_failed", wallet=wallet, error=str(e))
        return []

    held = [p for p in positions if _size(p) > MIN_POSITION_SIZE]

    async def enrich(position: dict[str, Any]) -> dict[str, Any]:
        try:
            price = await client.get_price(str(position.get("asset", "")))
        except UpstreamServiceUnavailable as e:
            logger.warning("price_lookup_failed", asset=position.get("asset"), error=str(e))
            price = "0"
        return {**position, "livePrice": price}

    return list(await asyncio.gather(*(enrich(p) for p in held)))


async def describe_market(client: MarketDataClient, token_id: str) -> MarketDescriptor:
    """Human-readable title and slug, or the Unknown placeholder."""
    try:
        market = await client.get_market(token_id)
    except UpstreamServiceUnavailable as e:
        logger.warning("market_lookup_failed", token_id=token_id, error=str(e))
        return UNKNOWN_MARKET

    if not market:
        return UNKNOWN_MARKET
    return MarketDescriptor(
        title=str(market.get("question") or UNKNOWN_MARKET.title),
        slug=str(market.get("slug") or ""),
    )


def _size(position: dict[str, Any]) -> float:
    try:
        return float(position.get("size", 0))
    except (TypeError, ValueError):
        return 0.0
