"""KiloLend price API client."""
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import NetworkConfig, PriceApiConfig
from ..errors import PriceFeedError

logger = logging.getLogger(__name__)


class KiloLendPriceApi:
    """Fetch USD prices from the KiloLend price API."""

    def __init__(self, config: PriceApiConfig, networks: dict[str, NetworkConfig]) -> None:
        self.url = config.url
        self.timeout = config.timeout
        self.symbol_map = dict(config.symbol_map)
        self.derived_symbols = dict(config.derived_symbols)
        self._network_symbols = {
            name: {t.symbol for t in network.tokens} for name, network in networks.items()
        }
        self._token_names = {
            t.symbol: t.name for network in networks.values() for t in network.tokens
        }

    async def _get(self) -> dict[str, Any]:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    self.url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        raise PriceFeedError(f"Price API returned HTTP {response.status}")
                    return await response.json()
        except PriceFeedError:
            raise
        except Exception as e:
            raise PriceFeedError(f"Failed to fetch prices from API: {e}") from e

    def _map_entries(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Rename API symbols and append the derived entries."""
        mapped = [
            {**item, "symbol": self.symbol_map.get(item.get("symbol"), item.get("symbol"))}
            for item in items
        ]

        by_symbol = {entry["symbol"]: entry for entry in mapped}
        for derived, source in self.derived_symbols.items():
            if source in by_symbol and derived not in by_symbol:
                entry = {**by_symbol[source], "symbol": derived}
                if derived in self._token_names:
                    entry["name"] = self._token_names[derived]
                mapped.append(entry)

        return mapped

    async def fetch_price_entries(self, network_id: str | None = None) -> list[dict[str, Any]]:
        """Mapped price rows, optionally restricted to one network's tokens.

        Raises:
            PriceFeedError: the API was unreachable or reported failure.
        """
        data = await self._get()
        if not data.get("success"):
            raise PriceFeedError("API returned unsuccessful response")

        entries = self._map_entries(list(data.get("data") or []))
        if network_id is None:
            return entries

        symbols = self._network_symbols.get(network_id, set())
        return [entry for entry in entries if entry["symbol"] in symbols]

    async def fetch_prices(self, network_id: str) -> dict[str, float]:
        """``{symbol: usd price}`` for the network's tokens; ``{}`` on any failure."""
        prices: dict[str, float] = {}

        try:
            entries = await self.fetch_price_entries(network_id)
        except PriceFeedError as e:
            logger.error("Error fetching prices: %s", e)
            return prices

        for entry in entries:
            try:
                prices[entry["symbol"]] = float(entry.get("price") or 0)
            except (TypeError, ValueError):
                logger.warning("Unparseable price for %s: %r", entry["symbol"], entry.get("price"))

        logger.debug("Fetched %d prices for %s", len(prices), network_id)
        return prices
