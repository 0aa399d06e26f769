"""CoinGecko price client.

Wraps the CoinGecko ``simple/price`` endpoint, mapping ticker symbols to
CoinGecko coin ids and caching prices with a short TTL.  Lookups never raise:
an unmapped symbol or an upstream failure yields ``None`` for that asset.
"""

import json
import logging
import threading
import time
import urllib.parse
import urllib.request
from collections.abc import Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"

ASSET_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "MATIC": "polygon",
    "POL": "polygon-ecosystem-token",
    "SOL": "solana",
    "AVAX": "avalanche-2",
    "ARB": "arbitrum",
    "OP": "optimism",
    "BNB": "binancecoin",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "AAVE": "aave",
    "MKR": "maker",
    "SNX": "havven",
    "CRV": "curve-dao-token",
    "LDO": "lido-dao",
    "GMX": "gmx",
    "PEPE": "pepe",
    "SHIB": "shiba-inu",
    "BONK": "bonk",
    "WIF": "dogwifhat",
    "JUP": "jupiter-exchange-solana",
    "PYTH": "pyth-network",
    "TIA": "celestia",
    "SUI": "sui",
    "APT": "aptos",
    "SEI": "sei-network",
    "INJ": "injective-protocol",
    "FET": "fetch-ai",
    "AR": "arweave",
    "FIL": "filecoin",
    "NEAR": "near",
    "ALGO": "algorand",
    "XLM": "stellar",
    "XRP": "ripple",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "ETC": "ethereum-classic",
    "ATOM": "cosmos",
    "XMR": "monero",
    "ZEC": "zcash",
    "DASH": "dash",
    "TON": "the-open-network",
    "TRX": "tron",
}


class PriceCache:
    """Coin-id → USD price map whose entries expire ``ttl`` seconds after they were fetched.

    Shared by every poll loop thread, so reads and writes hold a lock.  Only
    successful fetches are stored; a missing price is always retried.
    """

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._prices: dict[str, tuple[float, float]] = {}
        self._lock = threading.Lock()

    def lookup(self, coin_ids: Iterable[str]) -> tuple[dict[str, float], list[str]]:
        """Split ``coin_ids`` into fresh cached prices and ids that need fetching."""
        now = self._clock()
        fresh: dict[str, float] = {}
        stale: list[str] = []
        with self._lock:
            for coin_id in coin_ids:
                entry = self._prices.get(coin_id)
                if entry is not None and now < entry[1]:
                    fresh[coin_id] = entry[0]
                else:
                    self._prices.pop(coin_id, None)
                    stale.append(coin_id)
        return fresh, stale

    def store(self, prices: dict[str, float]) -> None:
        expires_at = self._clock() + self._ttl
        with self._lock:
            for coin_id, price in prices.items():
                self._prices[coin_id] = (price, expires_at)

    def clear(self) -> None:
        with self._lock:
            self._prices.clear()


class CoinGeckoClient:
    """USD price oracle backed by CoinGecko.

    Every HTTP request goes through :meth:`_get_json`, which is the single
    chokepoint to mock in tests.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str | None = None,
        cache_ttl: float = 60.0,
        timeout: float = 10.0,
        asset_ids: dict[str, str] | None = None,
        cache: PriceCache | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._asset_ids = {k.upper(): v for k, v in (asset_ids or ASSET_IDS).items()}
        self._cache = cache or PriceCache(cache_ttl)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def coin_id(self, asset: str) -> str | None:
        """Return the CoinGecko id for a ticker symbol, or None if unmapped."""
        return self._asset_ids.get(asset.upper())

    def get_current_price(self, asset: str) -> float | None:
        """Return the USD price for one asset, or None if it is unavailable."""
        return self.get_multiple_prices([asset]).get(asset.upper())

    def get_multiple_prices(self, assets: list[str]) -> dict[str, float | None]:
        """Return USD prices keyed by upper-cased symbol; every requested asset is present."""
        symbols = list(dict.fromkeys(a.upper() for a in assets))
        coin_ids: dict[str, str] = {}
        for symbol in symbols:
            coin_id = self.coin_id(symbol)
            if coin_id is None:
                logger.warning("No CoinGecko mapping for asset %s", symbol)
            else:
                coin_ids[symbol] = coin_id

        prices, stale = self._cache.lookup(sorted(set(coin_ids.values())))
        if stale:
            fetched = self._fetch_prices(stale)
            self._cache.store(fetched)
            prices.update(fetched)
        return {symbol: prices.get(coin_ids[symbol]) if symbol in coin_ids else None for symbol in symbols}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fetch_prices(self, coin_ids: list[str]) -> dict[str, float]:
        """Fetch USD prices for CoinGecko ids. Returns an empty dict on failure."""
        try:
            data = self._get_json("/simple/price", {"ids": ",".join(coin_ids), "vs_currencies": "usd"})
        except RuntimeError:
            logger.warning("Price fetch failed for %s", ",".join(coin_ids), exc_info=True)
            return {}

        prices: dict[str, float] = {}
        for coin_id in coin_ids:
            entry = data.get(coin_id)
            if not isinstance(entry, dict) or entry.get("usd") is None:
                continue
            try:
                prices[coin_id] = float(entry["usd"])
            except (TypeError, ValueError):
                logger.warning("Malformed CoinGecko price for %s: %r", coin_id, entry)
        return prices

    def _get_json(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        """GET a CoinGecko endpoint and decode the JSON body.

        Raises :class:`RuntimeError` on network errors, timeouts, HTTP errors
        or undecodable responses.
        """
        url = f"{self._base_url}{path}?{urllib.parse.urlencode(params)}"
        headers = {"Accept": "application/json", "User-Agent": "swap-scheduler/1.0"}
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key
        req = urllib.request.Request(url, headers=headers)
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                payload = json.loads(resp.read().decode())
        except Exception as exc:
            msg = f"CoinGecko request failed: {path}"
            raise RuntimeError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"Unexpected CoinGecko response for {path}"
            raise RuntimeError(msg)
        return payload
