"""Wallet agent facade, built once per process from the config."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from web3 import AsyncWeb3

from ..chains.evm import EvmClient
from ..config import AppConfig, NetworkConfig, TokenConfig
from ..context import AgentContext
from ..errors import InsufficientBalanceError, ValidationError, normalize_errors
from ..models import (
    AccountLiquiditySummary,
    MarketSnapshot,
    MarketSummary,
    ProtocolStats,
    TokenBalance,
    WalletInfo,
)
from ..oracles import KiloLendPriceApi
from ..protocols.kilolend import (
    MarketReader,
    PositionReader,
    SymbolResolver,
    TransactionOrchestrator,
)
from ..protocols.kilolend import parser
from ..protocols.kilolend.abis import NATIVE_DECIMALS
from ..wallet import build_identity

logger = logging.getLogger(__name__)

# Tokens worth less than this are hidden from the portfolio unless held.
_DUST_USD = 0.01


class WalletAgent:
    """Single entry point for every read and transaction the tools expose."""

    def __init__(self, ctx: AgentContext) -> None:
        self._ctx = ctx
        self.resolver = SymbolResolver(ctx.network)
        self.markets = MarketReader(ctx, self.resolver)
        self.positions = PositionReader(ctx, self.resolver)
        self.transactions = TransactionOrchestrator(ctx, self.resolver)

    @property
    def network(self) -> NetworkConfig:
        return self._ctx.network

    @property
    def address(self) -> str | None:
        return self._ctx.identity.address if self._ctx.identity else None

    @property
    def context(self) -> AgentContext:
        return self._ctx

    def is_transaction_mode(self) -> bool:
        return self._ctx.identity is not None

    def explorer_url(self, tx_hash: str) -> str:
        return self._ctx.network.explorer_tx_url(tx_hash)

    def _address_or_signer(self, address: str | None) -> str:
        if address:
            return parser.validate_address(address)
        if self.address is None:
            raise ValidationError("No address provided and wallet not initialized")
        return self.address

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    async def _token_balance(
        self, token: TokenConfig, account: str, native_balance: int, prices: dict[str, float]
    ) -> TokenBalance | None:
        try:
            if token.is_native:
                raw, decimals = native_balance, NATIVE_DECIMALS
            else:
                raw = await self.transactions.get_token_balance(token.address, account)
                decimals = token.decimals
        except Exception as e:
            logger.warning("Failed to load balance for %s: %s", token.symbol, e)
            return None

        balance = parser.from_base_units(raw, decimals)
        price = prices.get(token.symbol, 0.0)
        return TokenBalance(
            symbol=token.symbol,
            address=token.address,
            balance=balance,
            balance_usd=round(balance * price, 2),
            price=price,
            decimals=decimals,
        )

    async def get_wallet_info(self, address: str | None = None) -> WalletInfo:
        """Native and token balances with USD values, largest holding first."""
        account = self._address_or_signer(address)
        network = self._ctx.network

        native_raw, prices = await asyncio.gather(
            self._ctx.client.get_native_balance(account),
            self._ctx.prices.fetch_prices(network.network_id),
        )
        balances = await asyncio.gather(
            *(self._token_balance(t, account, native_raw, prices) for t in network.tokens)
        )
        tokens = sorted(
            (b for b in balances if b is not None and (b.balance_usd > _DUST_USD or b.balance > 0)),
            key=lambda b: b.balance_usd,
            reverse=True,
        )

        native_balance = parser.from_base_units(native_raw, NATIVE_DECIMALS)
        return WalletInfo(
            address=account,
            native_balance=native_balance,
            native_balance_usd=round(native_balance * prices.get(network.native_currency, 0.0), 2),
            native_currency=network.native_currency,
            total_portfolio_usd=round(sum(t.balance_usd for t in tokens), 2),
            network_id=network.network_id,
            chain_id=network.chain_id,
            rpc_url=network.rpc_url,
            mode="transaction" if self.is_transaction_mode() else "read-only",
            tokens=tuple(tokens),
        )

    async def preflight_balance_check(self, symbol: str, amount: str) -> None:
        """Raise InsufficientBalanceError when the signer cannot cover ``amount``.

        Any other failure is logged and ignored; the operation itself will
        surface real problems.
        """
        if self.address is None:
            return
        try:
            token = self.resolver.require_token(symbol)
            decimals = NATIVE_DECIMALS if token.is_native else token.decimals
            required = parser.to_base_units(amount, decimals)
            if token.is_native:
                available = await self._ctx.client.get_native_balance(self.address)
            else:
                available = await self.transactions.get_token_balance(token.address, self.address)
            if available < required:
                raise InsufficientBalanceError(
                    token.symbol, str(amount), parser.format_units(available, decimals)
                )
        except InsufficientBalanceError:
            raise
        except Exception as e:
            logger.warning("Balance pre-check for %s skipped: %s", symbol, e)

    # ------------------------------------------------------------------
    # Markets and positions
    # ------------------------------------------------------------------

    async def get_market_snapshot(self, market_address: str) -> MarketSnapshot:
        return await self.markets.get_market_snapshot(
            parser.validate_address(market_address, "market address")
        )

    async def get_all_markets(self) -> list[MarketSummary]:
        return await self.markets.get_all_markets()

    async def get_protocol_stats(self) -> ProtocolStats:
        return await self.markets.get_protocol_stats()

    async def get_account_liquidity(self, address: str | None = None) -> AccountLiquiditySummary:
        return await self.positions.get_account_liquidity(self._address_or_signer(address))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def check_allowance(self, symbol: str, spender: str, owner: str | None = None) -> int:
        return await self.transactions.check_allowance(symbol, spender, owner)

    async def approve_token(self, symbol: str, spender: str, amount: str | None = None) -> str:
        return await self.transactions.approve_token(symbol, spender, amount)

    async def check_market_membership(self, market_address: str, account: str | None = None) -> bool:
        return await self.transactions.check_market_membership(market_address, account)

    async def enter_markets(self, market_addresses: Sequence[str]) -> str:
        return await self.transactions.enter_markets(market_addresses)

    async def send_native_token(self, to: str, amount: str) -> str:
        return await self.transactions.send_native_token(to, amount)

    async def send_erc20_token(self, symbol: str, to: str, amount: str) -> str:
        return await self.transactions.send_erc20_token(symbol, to, amount)

    async def supply_to_market(self, symbol: str, amount: str) -> str:
        return await self.transactions.supply_to_market(symbol, amount)

    async def borrow_from_market(self, symbol: str, amount: str) -> str:
        return await self.transactions.borrow_from_market(symbol, amount)

    async def repay_borrow(self, symbol: str, amount: str | None = None) -> str:
        return await self.transactions.repay_borrow(symbol, amount)

    async def redeem_tokens(self, symbol: str, ctoken_amount: str) -> str:
        return await self.transactions.redeem_tokens(symbol, ctoken_amount)

    async def redeem_underlying(self, symbol: str, amount: str) -> str:
        return await self.transactions.redeem_underlying(symbol, amount)

    @normalize_errors
    async def wait_for_transaction(self, tx_hash: str) -> dict[str, Any]:
        if not isinstance(tx_hash, str) or not tx_hash.startswith("0x") or len(tx_hash) != 66:
            raise ValidationError(f"Invalid transaction hash: {tx_hash}")
        return await self._ctx.client.wait_for_receipt(tx_hash)

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    async def get_network_prices(self) -> list[dict[str, Any]]:
        return await self._ctx.prices.fetch_price_entries(self._ctx.network.network_id)

    async def get_all_prices(self) -> list[dict[str, Any]]:
        return await self._ctx.prices.fetch_price_entries()


def build_agent(config: AppConfig, web3: AsyncWeb3 | None = None) -> WalletAgent:
    """Wire identity, chain client and price feed for the configured network."""
    network = config.active_network
    identity = build_identity(config.agent.private_key)
    client = EvmClient(
        network,
        identity=identity,
        web3=web3,
        rpc_timeout=config.agent.rpc_timeout,
        receipt_timeout=config.agent.receipt_timeout,
    )
    prices = KiloLendPriceApi(config.price_api, config.networks)
    ctx = AgentContext(
        network=network,
        client=client,
        identity=identity,
        prices=prices,
        settings=config.agent,
    )
    logger.info(
        "Wallet agent ready on %s (chain %d), %s mode",
        network.name,
        network.chain_id,
        "transaction" if identity else "read-only",
    )
    return WalletAgent(ctx)
