"""Explicit per-process wiring of the agent's collaborators."""
from __future__ import annotations

from dataclasses import dataclass

from .config import AgentConfig, NetworkConfig
from .interfaces.chain import ChainClient
from .interfaces.price_oracle import PriceOracle
from .wallet import WalletIdentity


@dataclass(frozen=True)
class AgentContext:
    """Everything an operation needs: built once, then passed around."""

    network: NetworkConfig
    client: ChainClient
    identity: WalletIdentity | None
    prices: PriceOracle
    settings: AgentConfig
