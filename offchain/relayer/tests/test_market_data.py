"""
Tests for the market data client and the degraded read views.
"""

import base64
import hashlib
import hmac

import httpx
import pytest

from fakes import PROXY, USER, json_response, market_data_client
from polyloans_relayer.errors import UpstreamServiceUnavailable
from polyloans_relayer.market_data import (
    UNKNOWN_MARKET,
    ApiCredentials,
    build_auth_headers,
    describe_market,
    load_portfolio,
)

CREDENTIALS = ApiCredentials(api_key="key-1", api_secret="s3cret", api_passphrase="phrase")


class TestAuthHeaders:
    """HMAC request signing."""

    def test_signature_over_timestamp_method_path(self) -> None:
        headers = build_auth_headers(CREDENTIALS, "get", "/price?token_id=1&side=sell", timestamp=1700000000)

        expected = base64.b64encode(
            hmac.new(b"s3cret", b"1700000000GET/price?token_id=1&side=sell", hashlib.sha256).digest()
        ).decode("ascii")
        assert headers == {
            "Poly-Api-Key": "key-1",
            "Poly-Api-Signature": expected,
            "Poly-Timestamp": "1700000000",
            "Poly-Api-Passphrase": "phrase",
        }

    def test_no_credentials_no_headers(self) -> None:
        assert build_auth_headers(None, "GET", "/price") == {}


class TestMarketDataClient:
    """Request shapes and error wrapping."""

    @pytest.mark.asyncio
    async def test_lookup_proxy_wallet_uses_first_position(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return json_response([{"proxyWallet": PROXY}, {"proxyWallet": USER}])

        client = market_data_client(handler)
        try:
            assert await client.lookup_proxy_wallet(USER) == PROXY
        finally:
            await client.close()

        assert seen[0].path == "/positions"
        assert seen[0].params["user"] == USER

    @pytest.mark.asyncio
    async def test_lookup_proxy_wallet_ignores_non_string(self) -> None:
        client = market_data_client(lambda request: json_response([{"proxyWallet": 12345}]))
        try:
            assert await client.lookup_proxy_wallet(USER) is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_lookup_proxy_wallet_no_positions(self) -> None:
        client = market_data_client(lambda request: json_response([]))
        try:
            assert await client.lookup_proxy_wallet(USER) is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_http_error_raises_upstream_unavailable(self) -> None:
        client = market_data_client(lambda request: json_response({"error": "boom"}, status_code=500))
        try:
            with pytest.raises(UpstreamServiceUnavailable):
                await client.get_positions(USER)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_price_request_is_signed(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return json_response({"price": "0.42"})

        client = market_data_client(handler, credentials=CREDENTIALS)
        try:
            assert await client.get_price("123") == "0.42"
        finally:
            await client.close()

        request = seen[0]
        assert request.url.path == "/price"
        assert request.url.params["side"] == "sell"
        assert request.headers["Poly-Api-Key"] == "key-1"
        assert "Poly-Api-Signature" in request.headers


def _router(routes: dict):
    """Handler answering by URL path; a route value of None means a 503."""

    def handler(request: httpx.Request) -> httpx.Response:
        key = request.url.path
        if key == "/price":
            key = f"/price:{request.url.params['token_id']}"
        payload = routes.get(key)
        if payload is None:
            return json_response({"error": "unavailable"}, status_code=503)
        return json_response(payload)

    return handler


class TestLoadPortfolio:
    """Portfolio view degrades instead of failing."""

    @pytest.mark.asyncio
    async def test_filters_dust_and_prices_positions(self) -> None:
        client = market_data_client(
            _router(
                {
                    "/positions": [
                        {"asset": "1", "size": 10},
                        {"asset": "2", "size": "0.0000001"},
                        {"asset": "3", "size": "2.5"},
                    ],
                    "/price:1": {"price": "0.61"},
                }
            )
        )
        try:
            portfolio = await load_portfolio(client, PROXY)
        finally:
            await client.close()

        assert [p["asset"] for p in portfolio] == ["1", "3"]
        assert portfolio[0]["livePrice"] == "0.61"
        # price lookup for asset 3 fails -> placeholder
        assert portfolio[1]["livePrice"] == "0"

    @pytest.mark.asyncio
    async def test_positions_failure_yields_empty(self) -> None:
        client = market_data_client(_router({}))
        try:
            assert await load_portfolio(client, PROXY) == []
        finally:
            await client.close()


class TestDescribeMarket:
    """Market descriptor lookups."""

    @pytest.mark.asyncio
    async def test_known_market(self) -> None:
        client = market_data_client(
            _router({"/markets": [{"question": "Will it rain?", "slug": "will-it-rain"}]})
        )
        try:
            descriptor = await describe_market(client, "99")
        finally:
            await client.close()

        assert descriptor.title == "Will it rain?"
        assert descriptor.slug == "will-it-rain"

    @pytest.mark.asyncio
    async def test_unknown_market(self) -> None:
        client = market_data_client(_router({"/markets": []}))
        try:
            assert await describe_market(client, "99") == UNKNOWN_MARKET
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_lookup_failure_is_unknown(self) -> None:
        client = market_data_client(_router({}))
        try:
            descriptor = await describe_market(client, "99")
        finally:
            await client.close()

        assert descriptor.title == "Unknown"
        assert descriptor.slug == ""
