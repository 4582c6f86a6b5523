"""Guarded transaction pipeline for KiloLend markets and plain transfers.

Every state-changing operation follows the same order:

1. mode guard (a signing identity must exist), before any chain call
2. parameter validation and amount encoding, before any chain call
3. prerequisite transactions (market entry, approval), each awaited
4. the primary transaction, returned as soon as it is broadcast

Failures leave through ``normalize_errors`` so callers only ever see the
error taxonomy in ``kilolend_agent.errors``.
"""
from __future__ import annotations

import logging
from typing import Sequence

from ...context import AgentContext
from ...errors import (
    ContractCallError,
    InsufficientBalanceError,
    TransactionModeError,
    ValidationError,
    normalize_errors,
)
from ...wallet import WalletIdentity
from . import parser
from .abis import (
    CETHER_MINT_ABI,
    CETHER_REPAY_ABI,
    COMPTROLLER_ABI,
    CTOKEN_ABI,
    CTOKEN_DECIMALS,
    ERC20_ABI,
    MARKET_PREFIX,
    MAX_UINT256,
    NATIVE_DECIMALS,
)
from .resolver import SymbolResolver

logger = logging.getLogger(__name__)


class TransactionOrchestrator:
    """Sequence checks, prerequisites and the primary call for each operation."""

    def __init__(self, ctx: AgentContext, resolver: SymbolResolver | None = None) -> None:
        self._ctx = ctx
        self._resolver = resolver or SymbolResolver(ctx.network)

    # ------------------------------------------------------------------
    # Guards and helpers
    # ------------------------------------------------------------------

    def _require_identity(self) -> WalletIdentity:
        if self._ctx.identity is None:
            raise TransactionModeError()
        return self._ctx.identity

    def _account_or_identity(self, account: str | None) -> str:
        if account:
            return parser.validate_address(account, "account address")
        if self._ctx.identity is None:
            raise ValidationError("No address provided and wallet not initialized")
        return self._ctx.identity.address

    async def _await_prerequisite(self, tx_hash: str, label: str) -> None:
        logger.info("Submitted %s transaction %s", label, tx_hash)
        if not self._ctx.settings.await_prerequisite_receipts:
            return
        receipt = await self._ctx.client.wait_for_receipt(tx_hash)
        if receipt.get("status") == 0:
            raise ContractCallError(f"{label} transaction {tx_hash} reverted")

    def _market(self, symbol: str) -> tuple[str, str]:
        """(market key, market address) for a user-supplied symbol."""
        key = self._resolver.resolve_for_market(symbol)
        return key, self._resolver.market_address(symbol)

    async def get_token_balance(self, token_address: str, account: str) -> int:
        return int(
            await self._ctx.client.read_contract(token_address, ERC20_ABI, "balanceOf", (account,))
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def check_allowance(self, symbol: str, spender: str, owner: str | None = None) -> int:
        """Allowance of ``owner`` (default: the signer) toward ``spender``.

        The native asset needs no approval and reports MAX_UINT256.
        """
        token = self._resolver.require_token(symbol)
        spender = parser.validate_address(spender, "spender address")
        if token.is_native:
            return MAX_UINT256

        owner = self._account_or_identity(owner)
        return int(
            await self._ctx.client.read_contract(
                token.address, ERC20_ABI, "allowance", (owner, spender)
            )
        )

    async def check_market_membership(self, market_address: str, account: str | None = None) -> bool:
        """Whether ``account`` (default: the signer) has entered the market."""
        market_address = parser.validate_address(market_address, "market address")
        account = self._account_or_identity(account)
        assets_in = await self._ctx.client.read_contract(
            self._ctx.network.comptroller, COMPTROLLER_ABI, "getAssetsIn", (account,)
        )
        target = market_address.lower()
        return any(str(asset).lower() == target for asset in assets_in)

    # ------------------------------------------------------------------
    # Approvals and market entry
    # ------------------------------------------------------------------

    async def _submit_approve(self, token_address: str, spender: str, amount_wei: int) -> str:
        return await self._ctx.client.submit_transaction(
            token_address, ERC20_ABI, "approve", (spender, amount_wei)
        )

    async def _submit_enter(self, market_addresses: Sequence[str]) -> str:
        return await self._ctx.client.submit_transaction(
            self._ctx.network.comptroller, COMPTROLLER_ABI, "enterMarkets", (list(market_addresses),)
        )

    @normalize_errors
    async def approve_token(self, symbol: str, spender: str, amount: str | None = None) -> str:
        """Approve ``spender``; no amount means unlimited."""
        self._require_identity()
        token = self._resolver.require_token(symbol)
        spender = parser.validate_address(spender, "spender address")
        if token.is_native:
            raise ValidationError(
                f"{token.symbol} is native token and does not require approval"
            )
        amount_wei = parser.to_base_units(amount, token.decimals) if amount else MAX_UINT256
        return await self._submit_approve(token.address, spender, amount_wei)

    @normalize_errors
    async def enter_markets(self, market_addresses: Sequence[str]) -> str:
        """Enter the given markets so they count as collateral."""
        self._require_identity()
        if not market_addresses:
            raise ValidationError("At least one market address is required")
        addresses = [parser.validate_address(a, "market address") for a in market_addresses]
        return await self._submit_enter(addresses)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    @normalize_errors
    async def send_native_token(self, to: str, amount: str) -> str:
        identity = self._require_identity()
        to = parser.validate_address(to, "recipient address")
        amount_wei = parser.to_base_units(amount, NATIVE_DECIMALS)

        balance = await self._ctx.client.get_native_balance(identity.address)
        if balance < amount_wei:
            raise InsufficientBalanceError(
                self._ctx.network.native_currency,
                str(amount),
                parser.format_units(balance, NATIVE_DECIMALS),
            )
        return await self._ctx.client.send_native(to, amount_wei)

    @normalize_errors
    async def send_erc20_token(self, symbol: str, to: str, amount: str) -> str:
        identity = self._require_identity()
        token = self._resolver.require_token(symbol)
        to = parser.validate_address(to, "recipient address")
        if token.is_native:
            raise ValidationError(
                f"{token.symbol} is the native asset; use send_native_token instead"
            )
        amount_wei = parser.to_base_units(amount, token.decimals)

        balance = await self.get_token_balance(token.address, identity.address)
        if balance < amount_wei:
            raise InsufficientBalanceError(
                token.symbol, str(amount), parser.format_units(balance, token.decimals)
            )
        return await self._ctx.client.submit_transaction(
            token.address, ERC20_ABI, "transfer", (to, amount_wei)
        )

    # ------------------------------------------------------------------
    # Lending operations
    # ------------------------------------------------------------------

    async def _ensure_allowance(self, key: str, market_address: str, amount_wei: int) -> None:
        token = self._resolver.require_token(key)
        allowance = await self.check_allowance(token.symbol, market_address)
        if allowance < amount_wei:
            tx_hash = await self._submit_approve(token.address, market_address, MAX_UINT256)
            await self._await_prerequisite(tx_hash, f"approve {token.symbol}")

    @normalize_errors
    async def supply_to_market(self, symbol: str, amount: str) -> str:
        """Supply underlying, entering the market and approving first if needed."""
        self._require_identity()
        key, market_address = self._market(symbol)
        amount_wei = parser.to_base_units(amount, self._resolver.decimals(key))
        native = self._resolver.is_native(key)

        if not await self.check_market_membership(market_address):
            tx_hash = await self._submit_enter([market_address])
            await self._await_prerequisite(tx_hash, f"enter market {MARKET_PREFIX}{key}")

        if native:
            return await self._ctx.client.submit_transaction(
                market_address, CETHER_MINT_ABI, "mint", (), value=amount_wei
            )

        await self._ensure_allowance(key, market_address, amount_wei)
        return await self._ctx.client.submit_transaction(
            market_address, CTOKEN_ABI, "mint", (amount_wei,)
        )

    @normalize_errors
    async def borrow_from_market(self, symbol: str, amount: str) -> str:
        self._require_identity()
        key, market_address = self._market(symbol)
        amount_wei = parser.to_base_units(amount, self._resolver.decimals(key))
        return await self._ctx.client.submit_transaction(
            market_address, CTOKEN_ABI, "borrow", (amount_wei,)
        )

    @normalize_errors
    async def repay_borrow(self, symbol: str, amount: str | None = None) -> str:
        """Repay a borrow; no amount repays the full debt of an ERC20 market."""
        self._require_identity()
        key, market_address = self._market(symbol)
        native = self._resolver.is_native(key)

        if amount:
            amount_wei = parser.to_base_units(amount, self._resolver.decimals(key))
        elif native:
            raise ValidationError(
                f"An explicit amount is required to repay {self._resolver.resolve(key)}"
            )
        else:
            amount_wei = MAX_UINT256

        if native:
            return await self._ctx.client.submit_transaction(
                market_address, CETHER_REPAY_ABI, "repayBorrow", (), value=amount_wei
            )

        await self._ensure_allowance(key, market_address, amount_wei)
        return await self._ctx.client.submit_transaction(
            market_address, CTOKEN_ABI, "repayBorrow", (amount_wei,)
        )

    @normalize_errors
    async def redeem_tokens(self, symbol: str, ctoken_amount: str) -> str:
        """Redeem a market-token amount (always 8 decimals)."""
        identity = self._require_identity()
        key, market_address = self._market(symbol)
        amount_wei = parser.to_base_units(ctoken_amount, CTOKEN_DECIMALS)

        balance = int(
            await self._ctx.client.read_contract(
                market_address, CTOKEN_ABI, "balanceOf", (identity.address,)
            )
        )
        if balance < amount_wei:
            raise InsufficientBalanceError(
                f"{MARKET_PREFIX}{key}",
                str(ctoken_amount),
                parser.format_units(balance, CTOKEN_DECIMALS),
            )
        return await self._ctx.client.submit_transaction(
            market_address, CTOKEN_ABI, "redeem", (amount_wei,)
        )

    @normalize_errors
    async def redeem_underlying(self, symbol: str, amount: str) -> str:
        """Redeem an exact amount of the underlying asset."""
        self._require_identity()
        key, market_address = self._market(symbol)
        amount_wei = parser.to_base_units(amount, self._resolver.decimals(key))
        return await self._ctx.client.submit_transaction(
            market_address, CTOKEN_ABI, "redeemUnderlying", (amount_wei,)
        )
