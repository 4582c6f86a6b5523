"""Pure fixed-point and rate functions for KiloLend market data (no I/O)."""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from web3 import Web3

from ...errors import ValidationError
from .abis import HEALTH_FACTOR_SENTINEL, MANTISSA_SCALE

_AMOUNT_RE = re.compile(r"^(\d+\.?\d*|\.\d+)$")


def to_base_units(amount: Any, decimals: int) -> int:
    """Convert a human decimal amount into an integer of ``decimals`` places.

    Digits beyond the token's precision are rounded half-up. Zero, negative
    and malformed amounts raise ValidationError.

    Examples:
        to_base_units("1.5", 6) → 1500000
        to_base_units("0.1", 18) → 100000000000000000
    """
    text = str(amount).strip()
    if not _AMOUNT_RE.match(text):
        raise ValidationError(f"Invalid amount: {amount}")

    try:
        value = Decimal(text)
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {amount}") from e

    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    if scaled <= 0:
        raise ValidationError(f"Amount must be greater than zero: {amount}")
    return int(scaled)


def from_base_units(raw: int, decimals: int) -> float:
    """Convert an on-chain integer into a float of token units."""
    return int(raw) / (10**decimals)


def format_units(raw: int, decimals: int) -> str:
    """Exact decimal string for an on-chain integer, trailing zeros trimmed."""
    value = Decimal(int(raw)) / (Decimal(10) ** decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def annualize_rate(rate_per_block: int, blocks_per_year: int) -> float:
    """Per-block rate mantissa → annual percentage with two decimals.

    Integer arithmetic up to the final division so the result is exact to
    the basis point: ``(rate * blocks * 10000 // 1e18) / 100``.
    """
    basis_points = int(rate_per_block) * int(blocks_per_year) * 10000 // MANTISSA_SCALE
    return basis_points / 100


def normalize_exchange_rate(exchange_rate_mantissa: int) -> float:
    return int(exchange_rate_mantissa) / MANTISSA_SCALE


def calc_utilization(
    total_supply: float,
    total_borrows: float,
    exchange_rate: float,
) -> float:
    """Borrowed share of supplied liquidity as a percentage.

    ``total_supply`` is the market's token supply scaled by the underlying
    decimals; multiplying by the normalized exchange rate gives the supplied
    underlying. Returns 0 when nothing is supplied.
    """
    supplied = total_supply * exchange_rate
    if supplied <= 0:
        return 0.0
    return (total_borrows / supplied) * 100


def supply_balance(ctoken_balance: int, exchange_rate_mantissa: int) -> int:
    """Underlying base units redeemable for a market-token balance."""
    return int(ctoken_balance) * int(exchange_rate_mantissa) // MANTISSA_SCALE


def calc_health_factor(total_collateral_usd: float, total_borrow_usd: float) -> float:
    """Collateral over borrows, or the sentinel when nothing is borrowed."""
    if total_borrow_usd <= 0:
        return HEALTH_FACTOR_SENTINEL
    return total_collateral_usd / total_borrow_usd


def collateral_factor_percent(collateral_factor_mantissa: int) -> float:
    return int(collateral_factor_mantissa) / MANTISSA_SCALE * 100


def collateral_factor_diverges(
    on_chain_percent: float, placeholder_percent: float, tolerance: float
) -> bool:
    return abs(on_chain_percent - placeholder_percent) > tolerance


def risk_level(health_factor: float, shortfall: float) -> str:
    """Coarse liquidation risk bucket for an account."""
    if shortfall > 0:
        return "CRITICAL"
    if health_factor < 1.4:
        return "HIGH"
    if health_factor < 2.0:
        return "MEDIUM"
    return "LOW"


def validate_address(address: Any, label: str = "address") -> str:
    """Return the checksummed form of a well-formed hex address."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValidationError(f"Invalid {label}: {address}")
    return Web3.to_checksum_address(address)
