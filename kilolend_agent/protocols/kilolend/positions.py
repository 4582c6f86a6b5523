"""Account position aggregation over every market an account has entered."""
from __future__ import annotations

import asyncio
import logging

from ...context import AgentContext
from ...errors import ProtocolError
from ...models import AccountLiquiditySummary, AccountPosition
from . import parser
from .abis import (
    COMPTROLLER_ABI,
    CTOKEN_ABI,
    MANTISSA_SCALE,
    PLACEHOLDER_COLLATERAL_FACTOR,
)
from .resolver import SymbolResolver

logger = logging.getLogger(__name__)


class PositionReader:
    """Build an account's liquidity summary from Comptroller and market reads."""

    def __init__(self, ctx: AgentContext, resolver: SymbolResolver | None = None) -> None:
        self._ctx = ctx
        self._resolver = resolver or SymbolResolver(ctx.network)

    async def _collateral_factor(self, market_address: str, symbol: str) -> float:
        """Placeholder factor, or the on-chain one when verification is enabled."""
        settings = self._ctx.settings
        if not settings.verify_collateral_factors:
            return PLACEHOLDER_COLLATERAL_FACTOR

        try:
            market = await self._ctx.client.read_contract(
                self._ctx.network.comptroller, COMPTROLLER_ABI, "markets", (market_address,)
            )
        except Exception as e:
            logger.warning("Collateral factor read for %s failed, using placeholder: %s", symbol, e)
            return PLACEHOLDER_COLLATERAL_FACTOR

        on_chain = parser.collateral_factor_percent(market[1])
        if parser.collateral_factor_diverges(
            on_chain, PLACEHOLDER_COLLATERAL_FACTOR, settings.collateral_factor_tolerance
        ):
            logger.warning(
                "Collateral factor for %s is %.2f%% on-chain, placeholder is %.2f%%",
                symbol,
                on_chain,
                PLACEHOLDER_COLLATERAL_FACTOR,
            )
        return on_chain

    async def get_user_position(
        self,
        market_address: str,
        account: str,
        prices: dict[str, float],
    ) -> AccountPosition | None:
        """Position in one market, or None when the market must be skipped."""
        symbol = self._resolver.market_symbol_for_address(market_address)
        if symbol is None:
            logger.warning("Account %s entered unknown market %s; skipping", account, market_address)
            return None

        snapshot, ctoken_balance = await asyncio.gather(
            self._ctx.client.read_contract(market_address, CTOKEN_ABI, "getAccountSnapshot", (account,)),
            self._ctx.client.read_contract(market_address, CTOKEN_ABI, "balanceOf", (account,)),
        )
        error_code, _, borrow_balance, exchange_rate_mantissa = (int(v) for v in snapshot)
        if error_code != 0:
            logger.warning("Snapshot for %s returned error %d; skipping", symbol, error_code)
            return None

        decimals = self._resolver.decimals(symbol)
        supplied = parser.from_base_units(
            parser.supply_balance(int(ctoken_balance), exchange_rate_mantissa), decimals
        )
        borrowed = parser.from_base_units(borrow_balance, decimals)
        price = prices.get(symbol, 0.0)

        return AccountPosition(
            market_address=market_address,
            symbol=symbol,
            supplied_underlying=supplied,
            borrowed_underlying=borrowed,
            supply_value_usd=supplied * price,
            borrow_value_usd=borrowed * price,
            collateral_factor=await self._collateral_factor(market_address, symbol),
        )

    async def _safe_position(
        self, market_address: str, account: str, prices: dict[str, float]
    ) -> AccountPosition | None:
        try:
            return await self.get_user_position(market_address, account, prices)
        except Exception as e:
            logger.warning("Failed to get position for %s: %s", market_address, e)
            return None

    async def get_account_liquidity(self, address: str) -> AccountLiquiditySummary:
        """Liquidity, shortfall and per-market positions for ``address``.

        Raises:
            ProtocolError: the Comptroller reported a nonzero error code.
        """
        account = parser.validate_address(address, "account address")
        comptroller = self._ctx.network.comptroller

        error_code, liquidity, shortfall = (
            int(v)
            for v in await self._ctx.client.read_contract(
                comptroller, COMPTROLLER_ABI, "getAccountLiquidity", (account,)
            )
        )
        if error_code != 0:
            raise ProtocolError("Comptroller", error_code)

        assets_in = await self._ctx.client.read_contract(
            comptroller, COMPTROLLER_ABI, "getAssetsIn", (account,)
        )
        prices = await self._ctx.prices.fetch_prices(self._ctx.network.network_id)

        results = await asyncio.gather(
            *(self._safe_position(market, account, prices) for market in assets_in)
        )
        positions = tuple(p for p in results if p is not None)

        total_collateral = sum(p.supply_value_usd for p in positions)
        total_borrow = sum(p.borrow_value_usd for p in positions)

        return AccountLiquiditySummary(
            account=account,
            liquidity=liquidity / MANTISSA_SCALE,
            shortfall=shortfall / MANTISSA_SCALE,
            health_factor=parser.calc_health_factor(total_collateral, total_borrow),
            total_collateral_usd=total_collateral,
            total_borrow_usd=total_borrow,
            positions=positions,
        )
