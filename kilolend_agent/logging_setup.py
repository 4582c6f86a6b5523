"""Logging configuration for the CLI and the MCP server."""
from __future__ import annotations

import logging
import sys

_NOISY_LOGGERS = ("aiohttp", "web3", "urllib3", "httpx", "httpcore", "asyncio")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging on stderr.

    stdout is reserved for the MCP stdio transport, so every handler writes to
    stderr. Unknown level names fall back to INFO.
    """
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logging.basicConfig(
        level=resolved,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
        force=True,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
