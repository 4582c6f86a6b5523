"""Market data aggregation: snapshots, derived rates and protocol totals."""
from __future__ import annotations

import asyncio
import logging

from ...context import AgentContext
from ...models import MarketSnapshot, MarketSummary, ProtocolStats
from . import parser
from .abis import CTOKEN_ABI, MARKET_PREFIX
from .resolver import SymbolResolver

logger = logging.getLogger(__name__)

_SNAPSHOT_FUNCTIONS = (
    "exchangeRateStored",
    "supplyRatePerBlock",
    "borrowRatePerBlock",
    "totalSupply",
    "totalBorrows",
    "getCash",
)


class MarketReader:
    """Read every KiloLend market on the active network."""

    def __init__(self, ctx: AgentContext, resolver: SymbolResolver | None = None) -> None:
        self._ctx = ctx
        self._resolver = resolver or SymbolResolver(ctx.network)

    async def get_market_snapshot(self, market_address: str) -> MarketSnapshot:
        """Six concurrent reads; any failure fails the snapshot."""
        results = await asyncio.gather(
            *(
                self._ctx.client.read_contract(market_address, CTOKEN_ABI, fn)
                for fn in _SNAPSHOT_FUNCTIONS
            )
        )
        exchange_rate, supply_rate, borrow_rate, total_supply, total_borrows, cash = (
            int(r) for r in results
        )
        return MarketSnapshot(
            exchange_rate=exchange_rate,
            supply_rate_per_block=supply_rate,
            borrow_rate_per_block=borrow_rate,
            total_supply=total_supply,
            total_borrows=total_borrows,
            cash=cash,
        )

    def summarize(
        self,
        root: str,
        market_address: str,
        snapshot: MarketSnapshot,
        prices: dict[str, float],
    ) -> MarketSummary:
        """Turn a raw snapshot into a summary in underlying units."""
        symbol = self._resolver.resolve(root)
        token = self._resolver.token(symbol)
        decimals = token.decimals if token else self._resolver.decimals(symbol)
        blocks_per_year = self._ctx.network.blocks_per_year

        exchange_rate = parser.normalize_exchange_rate(snapshot.exchange_rate)
        total_supply = parser.from_base_units(snapshot.total_supply, decimals)
        total_borrows = parser.from_base_units(snapshot.total_borrows, decimals)

        return MarketSummary(
            symbol=f"{MARKET_PREFIX}{root}",
            underlying_symbol=symbol,
            market_address=market_address,
            underlying_address=token.address if token else "",
            supply_apy=parser.annualize_rate(snapshot.supply_rate_per_block, blocks_per_year),
            borrow_apy=parser.annualize_rate(snapshot.borrow_rate_per_block, blocks_per_year),
            total_supply=total_supply * exchange_rate,
            total_borrows=total_borrows,
            cash=parser.from_base_units(snapshot.cash, decimals),
            utilization=round(parser.calc_utilization(total_supply, total_borrows, exchange_rate), 2),
            exchange_rate=exchange_rate,
            price=prices.get(symbol, prices.get(root, 0.0)),
        )

    async def _load_market(
        self, root: str, market_address: str, prices: dict[str, float]
    ) -> MarketSummary | None:
        try:
            snapshot = await self.get_market_snapshot(market_address)
            return self.summarize(root, market_address, snapshot, prices)
        except Exception as e:
            logger.warning("Failed to load data for %s%s: %s", MARKET_PREFIX, root, e)
            return None

    async def get_all_markets(self, prices: dict[str, float] | None = None) -> list[MarketSummary]:
        """Every configured market; a failing market is dropped, not fatal."""
        if prices is None:
            prices = await self._ctx.prices.fetch_prices(self._ctx.network.network_id)

        markets = self._ctx.network.markets
        results = await asyncio.gather(
            *(self._load_market(root, address, prices) for root, address in markets.items())
        )
        summaries = [summary for summary in results if summary is not None]
        logger.info("Loaded %d/%d markets on %s", len(summaries), len(markets), self._ctx.network.network_id)
        return summaries

    async def get_protocol_stats(self) -> ProtocolStats:
        """Protocol-wide TVL and borrows in USD."""
        prices = await self._ctx.prices.fetch_prices(self._ctx.network.network_id)
        markets = await self.get_all_markets(prices)

        total_tvl = sum(m.total_supply * m.price for m in markets)
        total_borrows = sum(m.total_borrows * m.price for m in markets)
        utilization = (total_borrows / total_tvl) * 100 if total_tvl > 0 else 0.0

        return ProtocolStats(
            total_tvl_usd=total_tvl,
            total_borrows_usd=total_borrows,
            utilization=utilization,
            markets=tuple(markets),
            prices=dict(prices),
        )
