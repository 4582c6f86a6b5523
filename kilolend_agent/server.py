"""MCP server exposing the wallet agent as ``kilolend_*`` tools.

Tool bodies live in plain ``handle_*`` coroutines that take the agent and
return a dict, so they can be exercised without an MCP session. The
registered tools only pull the agent out of the lifespan context and wrap
the result in the JSON envelope.
"""
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Awaitable, Callable

from mcp.server.fastmcp import Context, FastMCP

from .config import AppConfig
from .errors import ValidationError, normalize_error
from .protocols.kilolend.abis import MAX_UINT256
from .protocols.kilolend.parser import risk_level
from .services import WalletAgent, build_agent

logger = logging.getLogger(__name__)

_MARKET_SORT_KEYS = {
    "supply_apy": "supply_apy",
    "borrow_apy": "borrow_apy",
    "total_supply": "total_supply",
    "total_borrows": "total_borrows",
    "utilization_rate": "utilization",
}


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def success(message: str, **payload: Any) -> dict[str, Any]:
    return {"status": "success", "message": message, **payload}


def failure(exc: BaseException) -> dict[str, Any]:
    return {"status": "error", "error": str(normalize_error(exc))}


async def respond(handler: Callable[..., Awaitable[dict[str, Any]]], *args: Any, **kwargs: Any) -> str:
    """Run a handler and serialize its result or its normalized error."""
    try:
        result = await handler(*args, **kwargs)
    except Exception as e:
        logger.error("Tool %s failed: %s", handler.__name__, e)
        result = failure(e)
    return json.dumps(result, indent=2, default=str)


def _network_info(agent: WalletAgent) -> dict[str, Any]:
    network = agent.network
    return {
        "name": network.name,
        "network_id": network.network_id,
        "chain_id": network.chain_id,
        "native_currency": network.native_currency,
    }


def _tx_result(agent: WalletAgent, message: str, tx_hash: str, **details: Any) -> dict[str, Any]:
    return success(
        message,
        transaction_hash=tx_hash,
        explorer_url=agent.explorer_url(tx_hash),
        network=_network_info(agent),
        details=details,
    )


# ---------------------------------------------------------------------------
# Wallet and market reads
# ---------------------------------------------------------------------------


async def handle_get_wallet_info(agent: WalletAgent, address: str | None = None) -> dict[str, Any]:
    info = await agent.get_wallet_info(address)
    return success(
        "Wallet information retrieved",
        wallet_details=asdict(info),
        account_status={
            "can_supply": info.native_balance >= 0.01,
            "ready_for_operations": info.native_balance >= 0.001,
            "token_count": len(info.tokens),
        },
    )


async def handle_get_markets(
    agent: WalletAgent,
    sort_by: str | None = None,
    sort_order: str = "desc",
    filter_active: bool = True,
) -> dict[str, Any]:
    markets = await agent.get_all_markets()
    if filter_active:
        markets = [m for m in markets if m.is_listed]
    if sort_by:
        field_name = _MARKET_SORT_KEYS.get(sort_by)
        if field_name is None:
            raise ValidationError(f"Unsupported sort key: {sort_by}")
        markets.sort(key=lambda m: getattr(m, field_name), reverse=sort_order != "asc")

    count = len(markets)
    total_tvl = sum(m.total_supply * m.price for m in markets)
    total_borrows = sum(m.total_borrows * m.price for m in markets)
    return success(
        f"Retrieved {count} lending markets",
        network=_network_info(agent),
        markets=[asdict(m) for m in markets],
        summary={
            "total_markets": count,
            "avg_supply_apy": round(sum(m.supply_apy for m in markets) / count, 2) if count else 0.0,
            "avg_borrow_apy": round(sum(m.borrow_apy for m in markets) / count, 2) if count else 0.0,
            "total_tvl_usd": round(total_tvl, 2),
            "total_borrows_usd": round(total_borrows, 2),
            "avg_utilization_rate": round(total_borrows / total_tvl * 100, 2) if total_tvl > 0 else 0.0,
        },
    )


async def handle_get_account_liquidity(
    agent: WalletAgent, account_address: str | None = None
) -> dict[str, Any]:
    summary = await agent.get_account_liquidity(account_address)
    return success(
        "Account liquidity information retrieved",
        account_address=summary.account,
        network=_network_info(agent),
        liquidity_info={
            "liquidity": summary.liquidity,
            "shortfall": summary.shortfall,
            "health_factor": round(summary.health_factor, 2),
            "can_borrow": summary.liquidity > 0 and summary.shortfall == 0,
            "total_collateral_usd": round(summary.total_collateral_usd, 2),
            "total_borrow_usd": round(summary.total_borrow_usd, 2),
        },
        positions=[asdict(p) for p in summary.positions],
        risk_analysis={"risk_level": risk_level(summary.health_factor, summary.shortfall)},
    )


async def handle_check_allowance(agent: WalletAgent, token_symbol: str, spender_address: str) -> dict[str, Any]:
    allowance = await agent.check_allowance(token_symbol, spender_address)
    return success(
        f"Allowance for {token_symbol} retrieved",
        token_symbol=agent.resolver.resolve(token_symbol),
        spender_address=spender_address,
        allowance=str(allowance),
        is_unlimited=allowance == MAX_UINT256,
    )


async def handle_check_market_membership(
    agent: WalletAgent, market_address: str, account_address: str | None = None
) -> dict[str, Any]:
    is_member = await agent.check_market_membership(market_address, account_address)
    return success(
        "Market membership checked",
        market_address=market_address,
        is_member=is_member,
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


async def handle_approve_token(
    agent: WalletAgent, token_symbol: str, spender_address: str, amount: str | None = None
) -> dict[str, Any]:
    tx_hash = await agent.approve_token(token_symbol, spender_address, amount)
    return _tx_result(
        agent,
        f"Approval for {token_symbol} submitted",
        tx_hash,
        token_symbol=token_symbol,
        spender_address=spender_address,
        amount=amount or "unlimited",
    )


async def handle_enter_market(agent: WalletAgent, market_addresses: list[str]) -> dict[str, Any]:
    tx_hash = await agent.enter_markets(market_addresses)
    return _tx_result(agent, "Enter markets transaction submitted", tx_hash, market_addresses=market_addresses)


async def handle_send_native_token(agent: WalletAgent, to_address: str, amount: str) -> dict[str, Any]:
    tx_hash = await agent.send_native_token(to_address, amount)
    currency = agent.network.native_currency
    return _tx_result(
        agent, f"Sent {amount} {currency}", tx_hash, to_address=to_address, amount=amount, token_symbol=currency
    )


async def handle_send_erc20_token(
    agent: WalletAgent, token_symbol: str, to_address: str, amount: str
) -> dict[str, Any]:
    tx_hash = await agent.send_erc20_token(token_symbol, to_address, amount)
    return _tx_result(
        agent, f"Sent {amount} {token_symbol}", tx_hash, to_address=to_address, amount=amount, token_symbol=token_symbol
    )


async def handle_supply_to_lending(
    agent: WalletAgent, token_symbol: str, amount: str, check_balance: bool = True
) -> dict[str, Any]:
    if check_balance:
        await agent.preflight_balance_check(token_symbol, amount)
    tx_hash = await agent.supply_to_market(token_symbol, amount)
    return _tx_result(agent, f"Supplied {amount} {token_symbol}", tx_hash, token_symbol=token_symbol, amount=amount)


async def handle_borrow_from_lending(agent: WalletAgent, token_symbol: str, amount: str) -> dict[str, Any]:
    tx_hash = await agent.borrow_from_market(token_symbol, amount)
    return _tx_result(agent, f"Borrowed {amount} {token_symbol}", tx_hash, token_symbol=token_symbol, amount=amount)


async def handle_repay_lending(
    agent: WalletAgent, token_symbol: str, amount: str | None = None, check_balance: bool = True
) -> dict[str, Any]:
    if check_balance and amount:
        await agent.preflight_balance_check(token_symbol, amount)
    tx_hash = await agent.repay_borrow(token_symbol, amount)
    return _tx_result(
        agent,
        f"Repaid {amount or 'full borrow of'} {token_symbol}",
        tx_hash,
        token_symbol=token_symbol,
        amount=amount or "full",
    )


async def handle_redeem_tokens(agent: WalletAgent, token_symbol: str, ctoken_amount: str) -> dict[str, Any]:
    tx_hash = await agent.redeem_tokens(token_symbol, ctoken_amount)
    return _tx_result(
        agent, f"Redeemed {ctoken_amount} c{token_symbol}", tx_hash, token_symbol=token_symbol, ctoken_amount=ctoken_amount
    )


async def handle_redeem_underlying(agent: WalletAgent, token_symbol: str, amount: str) -> dict[str, Any]:
    tx_hash = await agent.redeem_underlying(token_symbol, amount)
    return _tx_result(agent, f"Redeemed {amount} {token_symbol}", tx_hash, token_symbol=token_symbol, amount=amount)


async def handle_wait_for_transaction(agent: WalletAgent, transaction_hash: str) -> dict[str, Any]:
    receipt = await agent.wait_for_transaction(transaction_hash)
    status = receipt.get("status")
    return success(
        "Transaction confirmed" if status == 1 else "Transaction failed",
        transaction_hash=transaction_hash,
        explorer_url=agent.explorer_url(transaction_hash),
        receipt={
            "status": "success" if status == 1 else "failed",
            "block_number": receipt.get("blockNumber"),
            "gas_used": receipt.get("gasUsed"),
        },
    )


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


async def handle_get_network_prices(agent: WalletAgent) -> dict[str, Any]:
    prices = await agent.get_network_prices()
    return success(
        f"Retrieved {len(prices)} prices for {agent.network.name}",
        network=_network_info(agent),
        prices=prices,
        count=len(prices),
    )


async def handle_get_all_prices(agent: WalletAgent) -> dict[str, Any]:
    prices = await agent.get_all_prices()
    return success(f"Retrieved {len(prices)} prices", prices=prices, count=len(prices))


# ---------------------------------------------------------------------------
# Server wiring
# ---------------------------------------------------------------------------


def create_server(config: AppConfig) -> FastMCP:
    """Build the FastMCP server; the agent is created once in the lifespan."""

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[WalletAgent]:
        agent = build_agent(config)
        logger.info("MCP server %s started", config.server.name)
        try:
            yield agent
        finally:
            logger.info("MCP server %s shutting down", config.server.name)

    mcp = FastMCP(
        config.server.name,
        instructions="KiloLend lending operations on KAIA, KUB and Etherlink",
        lifespan=lifespan,
    )

    def _agent(ctx: Context) -> WalletAgent:
        return ctx.request_context.lifespan_context

    @mcp.tool(name="kilolend_get_wallet_info")
    async def get_wallet_info(ctx: Context, address: str | None = None) -> str:
        """Wallet balances for the signer or a given address, valued in USD."""
        return await respond(handle_get_wallet_info, _agent(ctx), address)

    @mcp.tool(name="kilolend_get_markets")
    async def get_markets(
        ctx: Context,
        sort_by: str | None = None,
        sort_order: str = "desc",
        filter_active: bool = True,
    ) -> str:
        """All lending markets with APYs, totals and utilization.

        sort_by: supply_apy, borrow_apy, total_supply, total_borrows or utilization_rate.
        """
        return await respond(handle_get_markets, _agent(ctx), sort_by, sort_order, filter_active)

    @mcp.tool(name="kilolend_get_account_liquidity")
    async def get_account_liquidity(ctx: Context, account_address: str | None = None) -> str:
        """Liquidity, shortfall, health factor and positions of an account."""
        return await respond(handle_get_account_liquidity, _agent(ctx), account_address)

    @mcp.tool(name="kilolend_check_allowance")
    async def check_allowance(ctx: Context, token_symbol: str, spender_address: str) -> str:
        """ERC20 allowance granted by the signer to a spender."""
        return await respond(handle_check_allowance, _agent(ctx), token_symbol, spender_address)

    @mcp.tool(name="kilolend_approve_token")
    async def approve_token(
        ctx: Context, token_symbol: str, spender_address: str, amount: str | None = None
    ) -> str:
        """Approve a spender; omit amount for unlimited approval."""
        return await respond(handle_approve_token, _agent(ctx), token_symbol, spender_address, amount)

    @mcp.tool(name="kilolend_check_market_membership")
    async def check_market_membership(
        ctx: Context, market_address: str, account_address: str | None = None
    ) -> str:
        """Whether an account has entered a market."""
        return await respond(handle_check_market_membership, _agent(ctx), market_address, account_address)

    @mcp.tool(name="kilolend_enter_market")
    async def enter_market(ctx: Context, market_addresses: list[str]) -> str:
        """Enter markets so supplied assets count as collateral."""
        return await respond(handle_enter_market, _agent(ctx), market_addresses)

    @mcp.tool(name="kilolend_send_native_token")
    async def send_native_token(ctx: Context, to_address: str, amount: str) -> str:
        """Send the network's native asset."""
        return await respond(handle_send_native_token, _agent(ctx), to_address, amount)

    @mcp.tool(name="kilolend_send_erc20_token")
    async def send_erc20_token(ctx: Context, token_symbol: str, to_address: str, amount: str) -> str:
        """Send an ERC20 token by symbol."""
        return await respond(handle_send_erc20_token, _agent(ctx), token_symbol, to_address, amount)

    @mcp.tool(name="kilolend_supply_to_lending")
    async def supply_to_lending(
        ctx: Context, token_symbol: str, amount: str, check_balance: bool = True
    ) -> str:
        """Supply an asset, entering the market and approving as needed."""
        return await respond(handle_supply_to_lending, _agent(ctx), token_symbol, amount, check_balance)

    @mcp.tool(name="kilolend_borrow_from_lending")
    async def borrow_from_lending(ctx: Context, token_symbol: str, amount: str) -> str:
        """Borrow an asset against entered collateral."""
        return await respond(handle_borrow_from_lending, _agent(ctx), token_symbol, amount)

    @mcp.tool(name="kilolend_repay_lending")
    async def repay_lending(
        ctx: Context, token_symbol: str, amount: str | None = None, check_balance: bool = True
    ) -> str:
        """Repay a borrow; omit amount to repay an ERC20 borrow in full."""
        return await respond(handle_repay_lending, _agent(ctx), token_symbol, amount, check_balance)

    @mcp.tool(name="kilolend_redeem_tokens")
    async def redeem_tokens(ctx: Context, token_symbol: str, ctoken_amount: str) -> str:
        """Redeem a market-token amount for the underlying asset."""
        return await respond(handle_redeem_tokens, _agent(ctx), token_symbol, ctoken_amount)

    @mcp.tool(name="kilolend_redeem_underlying")
    async def redeem_underlying(ctx: Context, token_symbol: str, amount: str) -> str:
        """Redeem an exact amount of the underlying asset."""
        return await respond(handle_redeem_underlying, _agent(ctx), token_symbol, amount)

    @mcp.tool(name="kilolend_wait_for_transaction")
    async def wait_for_transaction(ctx: Context, transaction_hash: str) -> str:
        """Wait for a transaction receipt."""
        return await respond(handle_wait_for_transaction, _agent(ctx), transaction_hash)

    @mcp.tool(name="kilolend_get_network_prices")
    async def get_network_prices(ctx: Context) -> str:
        """USD prices of the active network's tokens."""
        return await respond(handle_get_network_prices, _agent(ctx))

    @mcp.tool(name="kilolend_get_all_prices")
    async def get_all_prices(ctx: Context) -> str:
        """Every price the price API publishes."""
        return await respond(handle_get_all_prices, _agent(ctx))

    return mcp
