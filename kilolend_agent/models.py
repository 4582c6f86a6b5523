"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class MarketSnapshot:
    """Raw fixed-point market fields as returned by the chain."""

    exchange_rate: int
    supply_rate_per_block: int
    borrow_rate_per_block: int
    total_supply: int
    total_borrows: int
    cash: int


@dataclass(frozen=True)
class MarketSummary:
    """One lending market with derived rates and totals in underlying units."""

    symbol: str
    underlying_symbol: str
    market_address: str
    underlying_address: str
    supply_apy: float
    borrow_apy: float
    total_supply: float
    total_borrows: float
    cash: float
    utilization: float
    exchange_rate: float
    price: float
    is_listed: bool = True


@dataclass(frozen=True)
class AccountPosition:
    """A user's supply and borrow in one entered market."""

    market_address: str
    symbol: str
    supplied_underlying: float
    borrowed_underlying: float
    supply_value_usd: float
    borrow_value_usd: float
    collateral_factor: float
    is_collateral: bool = True


@dataclass(frozen=True)
class AccountLiquiditySummary:
    """Aggregate over every market an account has entered."""

    account: str
    liquidity: float
    shortfall: float
    health_factor: float
    total_collateral_usd: float
    total_borrow_usd: float
    positions: tuple[AccountPosition, ...] = ()


@dataclass(frozen=True)
class TokenBalance:
    symbol: str
    address: str
    balance: float
    balance_usd: float
    price: float
    decimals: int


@dataclass(frozen=True)
class WalletInfo:
    """Portfolio valuation of one address on the active network."""

    address: str
    native_balance: float
    native_balance_usd: float
    native_currency: str
    total_portfolio_usd: float
    network_id: str
    chain_id: int
    rpc_url: str
    mode: str
    tokens: tuple[TokenBalance, ...] = ()


@dataclass(frozen=True)
class ProtocolStats:
    total_tvl_usd: float
    total_borrows_usd: float
    utilization: float
    markets: tuple[MarketSummary, ...] = ()
    prices: dict[str, float] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
