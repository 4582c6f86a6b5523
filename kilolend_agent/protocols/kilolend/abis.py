"""
KiloLend (Compound-fork) contract ABIs and protocol constants.
"""
from typing import Any, Final, List

from ...config import MARKET_PREFIX, NATIVE_TOKEN_ADDRESS

MANTISSA_SCALE: Final[int] = 10**18
MAX_UINT256: Final[int] = 2**256 - 1
# cToken balances always carry 8 decimals, whatever the underlying uses.
CTOKEN_DECIMALS: Final[int] = 8
NATIVE_DECIMALS: Final[int] = 18
HEALTH_FACTOR_SENTINEL: Final[float] = 999.0
# Stand-in for the per-market risk parameter; not read from chain unless
# agent.verify_collateral_factors is enabled.
PLACEHOLDER_COLLATERAL_FACTOR: Final[float] = 75.0

__all__ = [
    "CETHER_MINT_ABI",
    "CETHER_REPAY_ABI",
    "COMPTROLLER_ABI",
    "CTOKEN_ABI",
    "CTOKEN_DECIMALS",
    "ERC20_ABI",
    "HEALTH_FACTOR_SENTINEL",
    "MANTISSA_SCALE",
    "MARKET_PREFIX",
    "MAX_UINT256",
    "NATIVE_DECIMALS",
    "NATIVE_TOKEN_ADDRESS",
    "PLACEHOLDER_COLLATERAL_FACTOR",
]


def _uint_view(name: str, inputs: List[Any] | None = None) -> dict[str, Any]:
    return {
        "inputs": inputs or [],
        "name": name,
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }


def _uint_write(name: str, arg_name: str) -> dict[str, Any]:
    return {
        "inputs": [{"internalType": "uint256", "name": arg_name, "type": "uint256"}],
        "name": name,
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    }


_ACCOUNT_INPUT: Final[List[Any]] = [{"internalType": "address", "name": "account", "type": "address"}]

CTOKEN_ABI: Final[List[Any]] = [
    # --- View Functions ---
    _uint_view("exchangeRateStored"),
    _uint_view("supplyRatePerBlock"),
    _uint_view("borrowRatePerBlock"),
    _uint_view("totalSupply"),
    _uint_view("totalBorrows"),
    _uint_view("totalReserves"),
    _uint_view("getCash"),
    _uint_view("balanceOf", _ACCOUNT_INPUT),
    _uint_view("borrowBalanceStored", _ACCOUNT_INPUT),
    {
        "inputs": [],
        "name": "underlying",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": _ACCOUNT_INPUT,
        "name": "getAccountSnapshot",
        "outputs": [
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    # --- Write Functions (ERC20-backed markets) ---
    _uint_write("mint", "mintAmount"),
    _uint_write("redeem", "redeemTokens"),
    _uint_write("redeemUnderlying", "redeemAmount"),
    _uint_write("borrow", "borrowAmount"),
    _uint_write("repayBorrow", "repayAmount"),
]

# Native-asset markets take the amount as msg.value instead of an argument.
CETHER_MINT_ABI: Final[List[Any]] = [
    {
        "inputs": [],
        "name": "mint",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    }
]

CETHER_REPAY_ABI: Final[List[Any]] = [
    {
        "inputs": [],
        "name": "repayBorrow",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    }
]

COMPTROLLER_ABI: Final[List[Any]] = [
    {
        "inputs": _ACCOUNT_INPUT,
        "name": "getAccountLiquidity",
        "outputs": [
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": _ACCOUNT_INPUT,
        "name": "getAssetsIn",
        "outputs": [{"internalType": "contract CToken[]", "name": "", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "", "type": "address"}],
        "name": "markets",
        "outputs": [
            {"internalType": "bool", "name": "isListed", "type": "bool"},
            {"internalType": "uint256", "name": "collateralFactorMantissa", "type": "uint256"},
            {"internalType": "bool", "name": "isComped", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address[]", "name": "cTokens", "type": "address[]"}],
        "name": "enterMarkets",
        "outputs": [{"internalType": "uint256[]", "name": "", "type": "uint256[]"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "cTokenAddress", "type": "address"}],
        "name": "exitMarket",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# ERC20 Token ABI (partial)
ERC20_ABI: Final[List[Any]] = [
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
]
