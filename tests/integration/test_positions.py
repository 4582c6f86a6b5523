"""Integration tests for account liquidity and per-market positions."""
from __future__ import annotations

import logging
from dataclasses import replace

import pytest

from fakes import (
    C_STKAIA,
    C_USDT,
    COMPTROLLER,
    MANTISSA,
    OTHER_ACCOUNT,
    FakeChainClient,
    assets_in,
)
from kilolend_agent.context import AgentContext
from kilolend_agent.errors import ProtocolError, ValidationError
from kilolend_agent.protocols.kilolend.abis import HEALTH_FACTOR_SENTINEL
from kilolend_agent.protocols.kilolend.positions import PositionReader


def _seed_account(client: FakeChainClient, *markets: str, liquidity: int = 5 * MANTISSA) -> None:
    client.set_read(COMPTROLLER, "getAccountLiquidity", (0, liquidity, 0))
    client.set_read(COMPTROLLER, "getAssetsIn", assets_in(*markets))

    # 5000 cUSDT at 0.02 → 100 USDT supplied, 40 USDT borrowed
    client.set_read(C_USDT, "getAccountSnapshot", (0, 5000 * 10**8, 40 * 10**6, 2 * 10**14))
    client.set_read(C_USDT, "balanceOf", 5000 * 10**8)
    # 50 cStKAIA at 0.02 → 1 stKAIA supplied
    client.set_read(C_STKAIA, "getAccountSnapshot", (0, 50 * 10**8, 0, 2 * 10**26))
    client.set_read(C_STKAIA, "balanceOf", 50 * 10**8)


@pytest.fixture()
def reader(readonly_ctx: AgentContext) -> PositionReader:
    return PositionReader(readonly_ctx)


class TestAccountLiquidity:
    @pytest.mark.asyncio
    async def test_aggregates_positions(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        _seed_account(readonly_client, C_USDT, C_STKAIA)

        summary = await reader.get_account_liquidity(OTHER_ACCOUNT)

        assert summary.liquidity == pytest.approx(5.0)
        assert summary.shortfall == 0.0
        assert summary.total_collateral_usd == pytest.approx(100.25)
        assert summary.total_borrow_usd == pytest.approx(40.0)
        assert summary.health_factor == pytest.approx(100.25 / 40.0)

        positions = {p.symbol: p for p in summary.positions}
        assert positions["USDT"].supplied_underlying == pytest.approx(100.0)
        assert positions["USDT"].borrowed_underlying == pytest.approx(40.0)
        assert positions["stKAIA"].supply_value_usd == pytest.approx(0.25)
        assert positions["USDT"].collateral_factor == 75.0

    @pytest.mark.asyncio
    async def test_no_borrows_reports_sentinel(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        _seed_account(readonly_client, C_STKAIA)
        summary = await reader.get_account_liquidity(OTHER_ACCOUNT)
        assert summary.health_factor == HEALTH_FACTOR_SENTINEL

    @pytest.mark.asyncio
    async def test_no_markets_entered(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        _seed_account(readonly_client)
        summary = await reader.get_account_liquidity(OTHER_ACCOUNT)
        assert summary.positions == ()
        assert summary.health_factor == 999.0

    @pytest.mark.asyncio
    async def test_comptroller_error_code(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        _seed_account(readonly_client, C_USDT)
        readonly_client.set_read(COMPTROLLER, "getAccountLiquidity", (3, 0, 0))

        with pytest.raises(ProtocolError) as info:
            await reader.get_account_liquidity(OTHER_ACCOUNT)
        assert info.value.code == 3

    @pytest.mark.asyncio
    async def test_invalid_address(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        with pytest.raises(ValidationError):
            await reader.get_account_liquidity("0x1234")
        assert readonly_client.total_calls == 0

    @pytest.mark.asyncio
    async def test_skips_snapshot_error(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        _seed_account(readonly_client, C_USDT, C_STKAIA)
        readonly_client.set_read(C_USDT, "getAccountSnapshot", (9, 0, 0, 0))

        summary = await reader.get_account_liquidity(OTHER_ACCOUNT)

        assert [p.symbol for p in summary.positions] == ["stKAIA"]

    @pytest.mark.asyncio
    async def test_skips_unknown_market(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        _seed_account(readonly_client, C_USDT, "0x" + "ff" * 20)
        summary = await reader.get_account_liquidity(OTHER_ACCOUNT)
        assert [p.symbol for p in summary.positions] == ["USDT"]

    @pytest.mark.asyncio
    async def test_skips_failing_market(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        _seed_account(readonly_client, C_USDT, C_STKAIA)
        del readonly_client.reads[(C_STKAIA.lower(), "balanceOf")]

        summary = await reader.get_account_liquidity(OTHER_ACCOUNT)

        assert [p.symbol for p in summary.positions] == ["USDT"]


class TestCollateralFactorVerification:
    @pytest.mark.asyncio
    async def test_placeholder_by_default(
        self, reader: PositionReader, readonly_client: FakeChainClient
    ) -> None:
        _seed_account(readonly_client, C_USDT)
        await reader.get_account_liquidity(OTHER_ACCOUNT)
        assert all(fn != "markets" for _, fn, _ in readonly_client.read_calls)

    @pytest.mark.asyncio
    async def test_divergence_warns_and_uses_on_chain(
        self,
        readonly_ctx: AgentContext,
        readonly_client: FakeChainClient,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        ctx = replace(readonly_ctx, settings=replace(readonly_ctx.settings, verify_collateral_factors=True))
        _seed_account(readonly_client, C_USDT)
        readonly_client.set_read(COMPTROLLER, "markets", (True, 60 * 10**16, False))

        with caplog.at_level(logging.WARNING):
            summary = await PositionReader(ctx).get_account_liquidity(OTHER_ACCOUNT)

        assert summary.positions[0].collateral_factor == pytest.approx(60.0)
        assert "placeholder" in caplog.text

    @pytest.mark.asyncio
    async def test_failed_read_falls_back(
        self, readonly_ctx: AgentContext, readonly_client: FakeChainClient
    ) -> None:
        ctx = replace(readonly_ctx, settings=replace(readonly_ctx.settings, verify_collateral_factors=True))
        _seed_account(readonly_client, C_USDT)

        summary = await PositionReader(ctx).get_account_liquidity(OTHER_ACCOUNT)

        assert summary.positions[0].collateral_factor == 75.0
