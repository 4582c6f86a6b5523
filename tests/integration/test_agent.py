"""Integration tests for the WalletAgent facade — wallet valuation and pre-flight checks."""
from __future__ import annotations

import pytest

from fakes import OTHER_ACCOUNT, STKAIA, USDT, FakeChainClient, FakePriceOracle
from kilolend_agent.context import AgentContext
from kilolend_agent.errors import InsufficientBalanceError, ValidationError
from kilolend_agent.services.agent import WalletAgent


@pytest.fixture()
def agent(tx_ctx: AgentContext) -> WalletAgent:
    return WalletAgent(tx_ctx)


class TestWalletInfo:
    @pytest.mark.asyncio
    async def test_values_and_sorts_holdings(
        self, agent: WalletAgent, fake_client: FakeChainClient
    ) -> None:
        fake_client.native_balance = 10 * 10**18
        fake_client.set_read(USDT, "balanceOf", 5 * 10**6)
        fake_client.set_read(STKAIA, "balanceOf", 0)

        info = await agent.get_wallet_info()

        assert info.address == agent.address
        assert info.mode == "transaction"
        assert info.native_balance == pytest.approx(10.0)
        assert info.native_balance_usd == pytest.approx(2.0)
        assert [t.symbol for t in info.tokens] == ["USDT", "KAIA"]
        assert info.total_portfolio_usd == pytest.approx(7.0)
        assert info.chain_id == 8217

    @pytest.mark.asyncio
    async def test_held_token_without_price_kept(
        self,
        agent: WalletAgent,
        fake_client: FakeChainClient,
        price_oracle: FakePriceOracle,
    ) -> None:
        price_oracle.prices = {}
        fake_client.set_read(USDT, "balanceOf", 10**6)
        fake_client.set_read(STKAIA, "balanceOf", 0)

        info = await agent.get_wallet_info()

        assert [t.symbol for t in info.tokens] == ["USDT"]
        assert info.tokens[0].balance_usd == 0.0

    @pytest.mark.asyncio
    async def test_failed_token_read_skipped(
        self, agent: WalletAgent, fake_client: FakeChainClient
    ) -> None:
        fake_client.set_read(USDT, "balanceOf", 10**6)

        info = await agent.get_wallet_info()

        assert "stKAIA" not in [t.symbol for t in info.tokens]

    @pytest.mark.asyncio
    async def test_readonly_requires_address(self, readonly_ctx: AgentContext) -> None:
        with pytest.raises(ValidationError, match="wallet not initialized"):
            await WalletAgent(readonly_ctx).get_wallet_info()

    @pytest.mark.asyncio
    async def test_readonly_with_address(
        self, readonly_ctx: AgentContext, readonly_client: FakeChainClient
    ) -> None:
        readonly_client.set_read(USDT, "balanceOf", 0)
        readonly_client.set_read(STKAIA, "balanceOf", 0)

        info = await WalletAgent(readonly_ctx).get_wallet_info(OTHER_ACCOUNT)

        assert info.mode == "read-only"
        assert info.address.lower() == OTHER_ACCOUNT
        assert info.tokens == ()


class TestPreflight:
    @pytest.mark.asyncio
    async def test_insufficient_token(self, agent: WalletAgent, fake_client: FakeChainClient) -> None:
        fake_client.set_read(USDT, "balanceOf", 10**6)
        with pytest.raises(InsufficientBalanceError, match="available: 1"):
            await agent.preflight_balance_check("USDT", "5")

    @pytest.mark.asyncio
    async def test_sufficient_native(self, agent: WalletAgent, fake_client: FakeChainClient) -> None:
        fake_client.native_balance = 2 * 10**18
        await agent.preflight_balance_check("KAIA", "1")
        assert fake_client.balance_calls == [agent.address]

    @pytest.mark.asyncio
    async def test_other_failures_ignored(self, agent: WalletAgent) -> None:
        await agent.preflight_balance_check("DOGE", "1")

    @pytest.mark.asyncio
    async def test_readonly_skipped(
        self, readonly_ctx: AgentContext, readonly_client: FakeChainClient
    ) -> None:
        await WalletAgent(readonly_ctx).preflight_balance_check("USDT", "5")
        assert readonly_client.total_calls == 0


class TestMisc:
    def test_modes(self, agent: WalletAgent, readonly_ctx: AgentContext) -> None:
        assert agent.is_transaction_mode() is True
        assert WalletAgent(readonly_ctx).is_transaction_mode() is False

    def test_explorer_url(self, agent: WalletAgent) -> None:
        assert agent.explorer_url("0xabc") == "https://kaiascan.io/tx/0xabc"

    @pytest.mark.asyncio
    async def test_wait_rejects_bad_hash(self, agent: WalletAgent, fake_client: FakeChainClient) -> None:
        with pytest.raises(ValidationError, match="Invalid transaction hash"):
            await agent.wait_for_transaction("0x1234")
        assert fake_client.receipts_awaited == []

    @pytest.mark.asyncio
    async def test_wait_returns_receipt(self, agent: WalletAgent) -> None:
        receipt = await agent.wait_for_transaction("0x" + "ab" * 32)
        assert receipt["status"] == 1

    @pytest.mark.asyncio
    async def test_market_snapshot_validates_address(
        self, agent: WalletAgent, fake_client: FakeChainClient
    ) -> None:
        with pytest.raises(ValidationError, match="Invalid market address"):
            await agent.get_market_snapshot("cUSDT")
        assert fake_client.total_calls == 0

    @pytest.mark.asyncio
    async def test_prices(self, agent: WalletAgent) -> None:
        network_prices = await agent.get_network_prices()
        assert {p["symbol"] for p in network_prices} == {"USDT", "KAIA", "stKAIA"}
        assert len(await agent.get_all_prices()) == 3
