"""Command-line interface for the KiloLend wallet agent."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import load_config
from .logging_setup import configure_logging
from .server import (
    create_server,
    handle_get_account_liquidity,
    handle_get_markets,
    handle_get_network_prices,
    handle_get_wallet_info,
    respond,
)
from .services import build_agent


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="kilolend-agent",
        description="KiloLend wallet agent and MCP server",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Run the MCP server over stdio")
    sub.add_parser("markets", help="Print every lending market")
    sub.add_parser("prices", help="Print prices for the active network")

    liquidity_parser = sub.add_parser("liquidity", help="Print account liquidity")
    liquidity_parser.add_argument(
        "address", nargs="?", default=None, help="Account address (default: signer)"
    )

    wallet_parser = sub.add_parser("wallet", help="Print wallet balances")
    wallet_parser.add_argument(
        "address", nargs="?", default=None, help="Wallet address (default: signer)"
    )

    return parser


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    if args.command == "serve":
        await create_server(config).run_stdio_async()
        return

    agent = build_agent(config)
    if args.command == "markets":
        output = await respond(handle_get_markets, agent)
    elif args.command == "liquidity":
        output = await respond(handle_get_account_liquidity, agent, args.address)
    elif args.command == "wallet":
        output = await respond(handle_get_wallet_info, agent, args.address)
    elif args.command == "prices":
        output = await respond(handle_get_network_prices, agent)
    else:
        build_parser().print_help()
        sys.exit(1)
    print(output)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
