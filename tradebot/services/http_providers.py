"""Network-backed providers (TB_PROVIDER_MODE=live).

Amounts cross this boundary in human units (1.5 ETH, 120.0 tokens) and are
converted to base units for the wire. Quote APIs do not report token
decimals, so providers take a per-token decimals map with a per-chain default.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from tradebot.services.providers import (
    ConfirmationStatus,
    NoRoute,
    ProviderError,
    Quote,
    QuoteProvider,
    Submission,
)
from tradebot.utils.constants import get_chain

logger = logging.getLogger(__name__)

_TIMEOUT = 10.0

# Signs a swap payload for a chain and returns the raw transaction (hex for EVM, base64 for Solana)
Signer = Callable[[str, dict[str, Any]], Awaitable[str]]


def _to_base_units(amount: float, decimals: int) -> int:
    return int(round(amount * 10 ** decimals))


def _from_base_units(raw: str | int, decimals: int) -> float:
    return int(raw) / 10 ** decimals


class HttpDiscoveryProvider:
    """GET {base_url}/trending?chain=<chain> returning a list (or {"tokens": [...]})."""

    def __init__(self, base_url: str, timeout: float = _TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def list_trending(self, chain: str) -> list[dict]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self.base_url}/trending", params={"chain": chain})
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"discovery request failed for {chain}: {e}") from e

        if isinstance(data, dict):
            data = data.get("tokens", data.get("data"))
        if not isinstance(data, list):
            raise ProviderError(f"unexpected discovery payload for {chain}")
        return data


class ZeroXQuoteProvider:
    """0x Swap API v2 (allowance-holder flow) for EVM chains."""

    def __init__(
        self,
        api_url: str = "https://api.0x.org",
        api_key: str = "",
        taker_address: str = "",
        token_decimals: dict[str, int] | None = None,
        default_decimals: int = 18,
        timeout: float = _TIMEOUT,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.taker_address = taker_address
        self.token_decimals = {k.lower(): v for k, v in (token_decimals or {}).items()}
        self.default_decimals = default_decimals
        self.timeout = timeout

    def _decimals(self, chain: str, token: str) -> int:
        info = get_chain(chain)
        if token.lower() == info.native_token.lower():
            return info.native_decimals
        return self.token_decimals.get(token.lower(), self.default_decimals)

    async def quote(self, chain: str, token_in: str, token_out: str, amount_in: float) -> Quote:
        info = get_chain(chain)
        params = {
            "chainId": info.chain_id,
            "sellToken": token_in,
            "buyToken": token_out,
            "sellAmount": str(_to_base_units(amount_in, self._decimals(chain, token_in))),
        }
        if self.taker_address:
            params["taker"] = self.taker_address
        headers = {"0x-version": "v2"}
        if self.api_key:
            headers["0x-api-key"] = self.api_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    f"{self.api_url}/swap/allowance-holder/quote", params=params, headers=headers
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"0x quote failed on {chain}: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError(f"unexpected 0x payload on {chain}: {type(data).__name__}")

        if not data.get("liquidityAvailable", True) or not data.get("buyAmount"):
            raise NoRoute(f"0x has no liquidity for {token_in} -> {token_out} on {chain}")

        try:
            tx = data.get("transaction") or {}
            fills = (data.get("route") or {}).get("fills") or []
            return Quote(
                amount_in=amount_in,
                amount_out=_from_base_units(data["buyAmount"], self._decimals(chain, token_out)),
                price_impact=float(data.get("estimatedPriceImpact") or 0.0),
                gas_estimate=float(tx.get("gas") or data.get("gas") or 0),
                gas_price=float(tx.get("gasPrice") or data.get("gasPrice") or 0),
                route=[token_in] + [f.get("source", "?") for f in fills] + [token_out],
                tx={k: tx[k] for k in ("to", "data", "value", "gas", "gasPrice") if k in tx},
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"malformed 0x quote on {chain}: {e}") from e


class JupiterQuoteProvider:
    """Jupiter v6 /quote for Solana. Gas is the flat per-signature fee in lamports."""

    SIGNATURE_FEE_LAMPORTS = 5_000

    def __init__(
        self,
        api_url: str = "https://quote-api.jup.ag/v6",
        slippage_bps: int = 50,
        token_decimals: dict[str, int] | None = None,
        default_decimals: int = 6,
        timeout: float = _TIMEOUT,
    ):
        self.api_url = api_url.rstrip("/")
        self.slippage_bps = slippage_bps
        self.token_decimals = dict(token_decimals or {})
        self.default_decimals = default_decimals
        self.timeout = timeout

    def _decimals(self, mint: str) -> int:
        info = get_chain("solana")
        if mint == info.native_token:
            return info.native_decimals
        return self.token_decimals.get(mint, self.default_decimals)

    async def quote(self, chain: str, token_in: str, token_out: str, amount_in: float) -> Quote:
        params = {
            "inputMint": token_in,
            "outputMint": token_out,
            "amount": str(_to_base_units(amount_in, self._decimals(token_in))),
            "slippageBps": self.slippage_bps,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self.api_url}/quote", params=params)
                if resp.status_code in (400, 404):
                    raise NoRoute(f"Jupiter has no route for {token_in} -> {token_out}: {resp.text[:200]}")
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"Jupiter quote failed: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError(f"unexpected Jupiter payload: {type(data).__name__}")

        try:
            hops = [step["swapInfo"].get("label", "?") for step in data.get("routePlan", [])]
            return Quote(
                amount_in=amount_in,
                amount_out=_from_base_units(data["outAmount"], self._decimals(token_out)),
                price_impact=float(data.get("priceImpactPct") or 0.0),
                gas_estimate=self.SIGNATURE_FEE_LAMPORTS,
                gas_price=1.0,
                route=[token_in] + hops + [token_out],
                tx={"quoteResponse": data},
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"malformed Jupiter quote: {e}") from e


class ChainQuoteRouter:
    """Dispatches quotes to the Solana provider or the EVM provider by chain."""

    def __init__(self, evm: QuoteProvider, solana: QuoteProvider | None = None):
        self.evm = evm
        self.solana = solana

    async def quote(self, chain: str, token_in: str, token_out: str, amount_in: float) -> Quote:
        if chain == "solana":
            if self.solana is None:
                raise NoRoute("no Solana quote provider configured")
            return await self.solana.quote(chain, token_in, token_out, amount_in)
        return await self.evm.quote(chain, token_in, token_out, amount_in)


class CoinGeckoRateSource:
    """Native/USD rates from CoinGecko simple/price, cached per chain.

    Falls back to the last cached value, then to the chain's static rate,
    so a CoinGecko outage never blocks simulation.
    """

    def __init__(self, base_url: str = "https://api.coingecko.com/api/v3", cache_sec: float = 60.0, timeout: float = _TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.cache_sec = cache_sec
        self.timeout = timeout
        self._cache: dict[str, tuple[float, float]] = {}  # coingecko id -> (rate, fetched_at)

    async def rate(self, chain: str) -> float:
        info = get_chain(chain)
        cached = self._cache.get(info.coingecko_id)
        now = time.time()
        if cached is not None and (now - cached[1]) < self.cache_sec:
            return cached[0]

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    f"{self.base_url}/simple/price",
                    params={"ids": info.coingecko_id, "vs_currencies": "usd"},
                )
                resp.raise_for_status()
                rate = float(resp.json()[info.coingecko_id]["usd"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            fallback = cached[0] if cached is not None else info.default_usd_rate
            logger.warning(f"{info.native_symbol}/USD fetch failed, using ${fallback:,.2f}: {e}")
            return fallback

        self._cache[info.coingecko_id] = (rate, now)
        logger.debug(f"{info.native_symbol}/USD: ${rate:,.4f}")
        return rate


class JsonRpcExecutionProvider:
    """Broadcasts signed transactions over JSON-RPC and polls for the outcome."""

    def __init__(
        self,
        rpc_urls: dict[str, str],
        signer: Signer,
        poll_interval_sec: float = 2.0,
        timeout: float = _TIMEOUT,
    ):
        self.rpc_urls = rpc_urls
        self.signer = signer
        self.poll_interval_sec = poll_interval_sec
        self.timeout = timeout
        self._ids = 0

    async def _call(self, chain: str, method: str, params: list) -> Any:
        url = self.rpc_urls.get(chain)
        if not url:
            raise ProviderError(f"no RPC endpoint configured for {chain}")
        self._ids += 1
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    url, json={"jsonrpc": "2.0", "id": self._ids, "method": method, "params": params}
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"{method} on {chain} failed: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{method} on {chain} returned {type(data).__name__}, expected an object")
        if data.get("error"):
            raise ProviderError(f"{method} on {chain} returned error: {data['error']}")
        return data.get("result")

    async def submit(self, chain: str, payload: dict[str, Any]) -> Submission:
        raw_tx = await self.signer(chain, payload)
        if chain == "solana":
            tx_hash = await self._call(chain, "sendTransaction", [raw_tx, {"encoding": "base64"}])
        else:
            tx_hash = await self._call(chain, "eth_sendRawTransaction", [raw_tx])
        if not tx_hash:
            raise ProviderError(f"{chain} node returned no transaction hash")
        logger.info(f"Submitted {payload.get('leg', 'swap')} on {chain}: {tx_hash}")
        return Submission(tx_hash=tx_hash)

    async def _status_once(self, chain: str, tx_hash: str) -> ConfirmationStatus | None:
        if chain == "solana":
            result = await self._call(chain, "getSignatureStatuses", [[tx_hash]])
            try:
                status = ((result or {}).get("value") or [None])[0]
            except (AttributeError, IndexError, KeyError, TypeError) as e:
                raise ProviderError(f"malformed signature status for {tx_hash}: {e}") from e
            if not status:
                return None
            if not isinstance(status, dict):
                raise ProviderError(f"malformed signature status for {tx_hash}: {status!r}")
            if status.get("err") is not None:
                return ConfirmationStatus.FAILED
            if status.get("confirmationStatus") in ("confirmed", "finalized"):
                return ConfirmationStatus.CONFIRMED
            return None

        receipt = await self._call(chain, "eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            return None
        if not isinstance(receipt, dict):
            raise ProviderError(f"malformed receipt for {tx_hash}: {receipt!r}")
        return ConfirmationStatus.CONFIRMED if receipt.get("status") == "0x1" else ConfirmationStatus.FAILED

    async def confirm(self, chain: str, tx_hash: str, timeout: float) -> ConfirmationStatus:
        deadline = time.monotonic() + timeout
        while True:
            try:
                status = await self._status_once(chain, tx_hash)
            except ProviderError as e:
                # Receipt polling is retried until the deadline
                logger.debug(f"Receipt poll for {tx_hash} failed: {e}")
                status = None
            if status is not None:
                return status
            if time.monotonic() + self.poll_interval_sec > deadline:
                return ConfirmationStatus.TIMED_OUT
            await asyncio.sleep(self.poll_interval_sec)
