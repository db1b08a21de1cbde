"""Tests for the network-backed providers, with HTTP mocked by respx."""

import json

import httpx
import pytest
import respx

from tradebot.services.http_providers import (
    ChainQuoteRouter,
    CoinGeckoRateSource,
    HttpDiscoveryProvider,
    JsonRpcExecutionProvider,
    JupiterQuoteProvider,
    ZeroXQuoteProvider,
)
from tradebot.services.providers import ConfirmationStatus, NoRoute, ProviderError
from tradebot.utils.constants import EVM_NATIVE_TOKEN, SOL_NATIVE_MINT

from conftest import TOKEN_A

DISCOVERY_URL = "https://discovery.test"
ZEROX_URL = "https://api.0x.test"
JUPITER_URL = "https://jup.test/v6"
COINGECKO_URL = "https://coingecko.test/api/v3"
RPC_URL = "https://rpc.test"
SOLANA_RPC_URL = "https://solana-rpc.test"
BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def _rpc_body(request: httpx.Request) -> dict:
    return json.loads(request.content)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

class TestDiscovery:
    @pytest.mark.asyncio
    @respx.mock
    async def test_list_payload(self):
        route = respx.get(f"{DISCOVERY_URL}/trending").mock(
            return_value=httpx.Response(200, json=[{"address": TOKEN_A, "symbol": "AAA"}])
        )
        rows = await HttpDiscoveryProvider(DISCOVERY_URL + "/").list_trending("base")

        assert rows == [{"address": TOKEN_A, "symbol": "AAA"}]
        assert route.calls[0].request.url.params["chain"] == "base"

    @pytest.mark.asyncio
    @respx.mock
    async def test_wrapped_payload(self):
        respx.get(f"{DISCOVERY_URL}/trending").mock(
            return_value=httpx.Response(200, json={"tokens": [{"address": TOKEN_A}]})
        )
        assert await HttpDiscoveryProvider(DISCOVERY_URL).list_trending("ethereum") == [{"address": TOKEN_A}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_is_provider_error(self):
        respx.get(f"{DISCOVERY_URL}/trending").mock(return_value=httpx.Response(503))
        with pytest.raises(ProviderError):
            await HttpDiscoveryProvider(DISCOVERY_URL).list_trending("ethereum")

    @pytest.mark.asyncio
    @respx.mock
    async def test_unexpected_shape_is_provider_error(self):
        respx.get(f"{DISCOVERY_URL}/trending").mock(return_value=httpx.Response(200, json={"status": "ok"}))
        with pytest.raises(ProviderError, match="unexpected discovery payload"):
            await HttpDiscoveryProvider(DISCOVERY_URL).list_trending("ethereum")


# ---------------------------------------------------------------------------
# 0x
# ---------------------------------------------------------------------------

ZEROX_QUOTE = {
    "liquidityAvailable": True,
    "buyAmount": "10000000000000000000000",  # 10_000 tokens at 18 decimals
    "estimatedPriceImpact": "0.35",
    "route": {"fills": [{"source": "Uniswap_V3"}, {"source": "Curve"}]},
    "transaction": {"to": "0xdead", "data": "0x1234", "value": "10000000000000000", "gas": "150000", "gasPrice": "1000000000"},
}


class TestZeroX:
    @pytest.mark.asyncio
    @respx.mock
    async def test_quote_is_parsed(self):
        route = respx.get(f"{ZEROX_URL}/swap/allowance-holder/quote").mock(
            return_value=httpx.Response(200, json=ZEROX_QUOTE)
        )
        provider = ZeroXQuoteProvider(ZEROX_URL, api_key="k3y", taker_address="0xtaker")
        quote = await provider.quote("ethereum", EVM_NATIVE_TOKEN, TOKEN_A, 0.01)

        assert quote.amount_out == pytest.approx(10_000)
        assert quote.gas_estimate == 150_000
        assert quote.gas_price == 1e9
        assert quote.price_impact == pytest.approx(0.35)
        assert quote.route == [EVM_NATIVE_TOKEN, "Uniswap_V3", "Curve", TOKEN_A]
        assert quote.tx["to"] == "0xdead"

        request = route.calls[0].request
        assert request.headers["0x-version"] == "v2"
        assert request.headers["0x-api-key"] == "k3y"
        assert request.url.params["chainId"] == "1"
        assert request.url.params["sellAmount"] == "10000000000000000"
        assert request.url.params["taker"] == "0xtaker"

    @pytest.mark.asyncio
    @respx.mock
    async def test_token_decimals_are_applied_on_sell(self):
        route = respx.get(f"{ZEROX_URL}/swap/allowance-holder/quote").mock(
            return_value=httpx.Response(200, json={**ZEROX_QUOTE, "buyAmount": "20000000000000000"})
        )
        provider = ZeroXQuoteProvider(ZEROX_URL, token_decimals={TOKEN_A.upper(): 6})
        quote = await provider.quote("polygon", TOKEN_A, EVM_NATIVE_TOKEN, 1.5)

        assert quote.amount_out == pytest.approx(0.02)
        assert route.calls[0].request.url.params["sellAmount"] == "1500000"
        assert route.calls[0].request.url.params["chainId"] == "137"
        assert "0x-api-key" not in route.calls[0].request.headers

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_liquidity_is_no_route(self):
        respx.get(f"{ZEROX_URL}/swap/allowance-holder/quote").mock(
            return_value=httpx.Response(200, json={"liquidityAvailable": False})
        )
        with pytest.raises(NoRoute):
            await ZeroXQuoteProvider(ZEROX_URL).quote("ethereum", EVM_NATIVE_TOKEN, TOKEN_A, 0.01)

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_is_provider_error(self):
        respx.get(f"{ZEROX_URL}/swap/allowance-holder/quote").mock(return_value=httpx.Response(500))
        with pytest.raises(ProviderError) as exc_info:
            await ZeroXQuoteProvider(ZEROX_URL).quote("ethereum", EVM_NATIVE_TOKEN, TOKEN_A, 0.01)
        assert not isinstance(exc_info.value, NoRoute)

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_body_is_provider_error(self):
        respx.get(f"{ZEROX_URL}/swap/allowance-holder/quote").mock(return_value=httpx.Response(200, json=[1, 2]))
        with pytest.raises(ProviderError, match="unexpected 0x payload"):
            await ZeroXQuoteProvider(ZEROX_URL).quote("ethereum", EVM_NATIVE_TOKEN, TOKEN_A, 0.01)

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_fills_are_provider_error(self):
        respx.get(f"{ZEROX_URL}/swap/allowance-holder/quote").mock(
            return_value=httpx.Response(200, json={**ZEROX_QUOTE, "route": {"fills": ["Uniswap_V3"]}})
        )
        with pytest.raises(ProviderError, match="malformed 0x quote"):
            await ZeroXQuoteProvider(ZEROX_URL).quote("ethereum", EVM_NATIVE_TOKEN, TOKEN_A, 0.01)


# ---------------------------------------------------------------------------
# Jupiter and routing
# ---------------------------------------------------------------------------

JUPITER_QUOTE = {
    "inAmount": "100000000",
    "outAmount": "2500000000",  # 2_500 BONK-like tokens at 6 decimals
    "priceImpactPct": "0.012",
    "routePlan": [{"swapInfo": {"label": "Raydium"}}, {"swapInfo": {"label": "Orca"}}],
}


class TestJupiter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_quote_is_parsed(self):
        route = respx.get(f"{JUPITER_URL}/quote").mock(return_value=httpx.Response(200, json=JUPITER_QUOTE))
        quote = await JupiterQuoteProvider(JUPITER_URL).quote("solana", SOL_NATIVE_MINT, BONK, 0.1)

        assert quote.amount_out == pytest.approx(2_500)
        assert quote.gas_estimate == 5_000
        assert quote.gas_price == 1.0
        assert quote.route == [SOL_NATIVE_MINT, "Raydium", "Orca", BONK]
        assert quote.tx == {"quoteResponse": JUPITER_QUOTE}

        params = route.calls[0].request.url.params
        assert params["amount"] == "100000000"
        assert params["slippageBps"] == "50"
        assert params["inputMint"] == SOL_NATIVE_MINT

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_route_is_no_route(self):
        respx.get(f"{JUPITER_URL}/quote").mock(
            return_value=httpx.Response(400, json={"error": "Could not find any route"})
        )
        with pytest.raises(NoRoute):
            await JupiterQuoteProvider(JUPITER_URL).quote("solana", SOL_NATIVE_MINT, BONK, 0.1)

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_body_is_provider_error(self):
        respx.get(f"{JUPITER_URL}/quote").mock(return_value=httpx.Response(200, json=["outAmount"]))
        with pytest.raises(ProviderError, match="unexpected Jupiter payload"):
            await JupiterQuoteProvider(JUPITER_URL).quote("solana", SOL_NATIVE_MINT, BONK, 0.1)

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_route_plan_is_provider_error(self):
        respx.get(f"{JUPITER_URL}/quote").mock(
            return_value=httpx.Response(200, json={**JUPITER_QUOTE, "routePlan": [{"swapInfo": "Raydium"}]})
        )
        with pytest.raises(ProviderError, match="malformed Jupiter quote"):
            await JupiterQuoteProvider(JUPITER_URL).quote("solana", SOL_NATIVE_MINT, BONK, 0.1)

    @pytest.mark.asyncio
    async def test_router_dispatches_by_chain(self):
        class Recorder:
            def __init__(self):
                self.chains = []

            async def quote(self, chain, token_in, token_out, amount_in):
                self.chains.append(chain)

        evm, solana = Recorder(), Recorder()
        router = ChainQuoteRouter(evm, solana)
        await router.quote("base", EVM_NATIVE_TOKEN, TOKEN_A, 1.0)
        await router.quote("solana", SOL_NATIVE_MINT, BONK, 1.0)

        assert evm.chains == ["base"]
        assert solana.chains == ["solana"]

    @pytest.mark.asyncio
    async def test_router_without_solana_provider(self):
        router = ChainQuoteRouter(ZeroXQuoteProvider(ZEROX_URL))
        with pytest.raises(NoRoute):
            await router.quote("solana", SOL_NATIVE_MINT, BONK, 1.0)


# ---------------------------------------------------------------------------
# CoinGecko
# ---------------------------------------------------------------------------

class TestCoinGecko:
    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_is_cached(self):
        route = respx.get(f"{COINGECKO_URL}/simple/price").mock(
            return_value=httpx.Response(200, json={"ethereum": {"usd": 3120.5}})
        )
        source = CoinGeckoRateSource(COINGECKO_URL)

        assert await source.rate("ethereum") == 3120.5
        assert await source.rate("base") == 3120.5  # same coingecko id
        assert route.call_count == 1
        assert route.calls[0].request.url.params["ids"] == "ethereum"

    @pytest.mark.asyncio
    @respx.mock
    async def test_failure_falls_back_to_last_rate(self):
        route = respx.get(f"{COINGECKO_URL}/simple/price")
        route.side_effect = [
            httpx.Response(200, json={"solana": {"usd": 171.0}}),
            httpx.Response(429),
        ]
        source = CoinGeckoRateSource(COINGECKO_URL, cache_sec=0)

        assert await source.rate("solana") == 171.0
        assert await source.rate("solana") == 171.0
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_failure_without_cache_uses_static_rate(self):
        respx.get(f"{COINGECKO_URL}/simple/price").mock(return_value=httpx.Response(200, json={}))
        assert await CoinGeckoRateSource(COINGECKO_URL).rate("bsc") == 300.0


# ---------------------------------------------------------------------------
# JSON-RPC execution
# ---------------------------------------------------------------------------

async def _sign(chain, payload):
    return f"signed:{chain}:{payload['leg']}"


def _executor(**kwargs) -> JsonRpcExecutionProvider:
    return JsonRpcExecutionProvider(
        {"ethereum": RPC_URL, "solana": SOLANA_RPC_URL}, _sign, poll_interval_sec=0.01, **kwargs
    )


class TestJsonRpcExecution:
    @pytest.mark.asyncio
    @respx.mock
    async def test_evm_submit(self):
        route = respx.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0xhash"})
        )
        submission = await _executor().submit("ethereum", {"leg": "buy"})

        assert submission.tx_hash == "0xhash"
        body = _rpc_body(route.calls[0].request)
        assert body["method"] == "eth_sendRawTransaction"
        assert body["params"] == ["signed:ethereum:buy"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_solana_submit(self):
        route = respx.post(SOLANA_RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "5sig"})
        )
        submission = await _executor().submit("solana", {"leg": "sell"})

        assert submission.tx_hash == "5sig"
        body = _rpc_body(route.calls[0].request)
        assert body["method"] == "sendTransaction"
        assert body["params"] == ["signed:solana:sell", {"encoding": "base64"}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_rpc_error_is_provider_error(self):
        respx.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "nonce too low"}})
        )
        with pytest.raises(ProviderError, match="nonce too low"):
            await _executor().submit("ethereum", {"leg": "buy"})

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_rpc_body_is_provider_error(self):
        respx.post(RPC_URL).mock(return_value=httpx.Response(200, json=["0xhash"]))
        with pytest.raises(ProviderError, match="expected an object"):
            await _executor().submit("ethereum", {"leg": "buy"})

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_receipt_keeps_polling_until_timeout(self):
        respx.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x1"})
        )
        status = await _executor().confirm("ethereum", "0xhash", timeout=0.05)
        assert status == ConfirmationStatus.TIMED_OUT

    @pytest.mark.asyncio
    async def test_unknown_chain_is_provider_error(self):
        with pytest.raises(ProviderError, match="no RPC endpoint"):
            await _executor().submit("base", {"leg": "buy"})

    @pytest.mark.asyncio
    @respx.mock
    async def test_evm_confirm_polls_until_receipt(self):
        route = respx.post(RPC_URL)
        route.side_effect = [
            httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None}),
            httpx.Response(502),
            httpx.Response(200, json={"jsonrpc": "2.0", "id": 3, "result": {"status": "0x1"}}),
        ]
        assert await _executor().confirm("ethereum", "0xhash", timeout=5) == ConfirmationStatus.CONFIRMED
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_evm_reverted_receipt_is_failed(self):
        respx.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"status": "0x0"}})
        )
        assert await _executor().confirm("ethereum", "0xhash", timeout=5) == ConfirmationStatus.FAILED

    @pytest.mark.asyncio
    @respx.mock
    async def test_solana_confirm(self):
        route = respx.post(SOLANA_RPC_URL)
        route.side_effect = [
            httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"value": [None]}}),
            httpx.Response(200, json={"jsonrpc": "2.0", "id": 2, "result": {
                "value": [{"err": None, "confirmationStatus": "confirmed"}]
            }}),
        ]
        assert await _executor().confirm("solana", "5sig", timeout=5) == ConfirmationStatus.CONFIRMED

    @pytest.mark.asyncio
    @respx.mock
    async def test_solana_error_is_failed(self):
        respx.post(SOLANA_RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {
                "value": [{"err": {"InstructionError": [0, "Custom"]}, "confirmationStatus": "confirmed"}]
            }})
        )
        assert await _executor().confirm("solana", "5sig", timeout=5) == ConfirmationStatus.FAILED

    @pytest.mark.asyncio
    @respx.mock
    async def test_confirm_times_out(self):
        respx.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})
        )
        assert await _executor().confirm("ethereum", "0xhash", timeout=0.05) == ConfirmationStatus.TIMED_OUT
