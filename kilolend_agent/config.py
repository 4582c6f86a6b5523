"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from web3 import Web3

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
MARKET_PREFIX = "c"

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenConfig:
    symbol: str
    name: str = ""
    decimals: int = 18
    address: str = ""
    lending: bool = True

    @property
    def is_native(self) -> bool:
        return self.address.lower() == NATIVE_TOKEN_ADDRESS.lower()


@dataclass(frozen=True)
class NetworkConfig:
    """Static profile of one supported chain."""

    network_id: str
    chain_id: int
    name: str = ""
    native_currency: str = ""
    rpc_url: str = ""
    block_explorer: str = ""
    blocks_per_year: int = 0
    contracts: dict[str, str] = field(default_factory=dict)
    tokens: tuple[TokenConfig, ...] = ()
    token_aliases: dict[str, str] = field(default_factory=dict)

    @property
    def comptroller(self) -> str:
        return self.contracts.get("Comptroller", "")

    @property
    def markets(self) -> dict[str, str]:
        """Market root symbol → market (cToken) address."""
        return {
            key[len(MARKET_PREFIX):]: address
            for key, address in self.contracts.items()
            if key.startswith(MARKET_PREFIX)
        }

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.block_explorer}/tx/{tx_hash}"


@dataclass(frozen=True)
class AgentConfig:
    chain_id: int = 0
    rpc_url: str = ""
    private_key: str | None = None
    mode: str = "readonly"
    await_prerequisite_receipts: bool = True
    verify_collateral_factors: bool = False
    collateral_factor_tolerance: float = 5.0
    rpc_timeout: int = 30
    receipt_timeout: int = 120

    @property
    def is_transaction_mode(self) -> bool:
        return self.mode == "transaction"


@dataclass(frozen=True)
class PriceApiConfig:
    url: str = "https://kvxdikvk5b.execute-api.ap-southeast-1.amazonaws.com/prod/prices"
    timeout: int = 10
    symbol_map: dict[str, str] = field(default_factory=dict)
    derived_symbols: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ServerConfig:
    name: str = "kilolend"


@dataclass(frozen=True)
class AppConfig:
    agent: AgentConfig = field(default_factory=AgentConfig)
    networks: dict[str, NetworkConfig] = field(default_factory=dict)
    price_api: PriceApiConfig = field(default_factory=PriceApiConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def active_network(self) -> NetworkConfig:
        """Network selected by ``agent.chain_id``, with the RPC override applied."""
        for network in self.networks.values():
            if network.chain_id == self.agent.chain_id:
                if self.agent.rpc_url:
                    return replace(network, rpc_url=self.agent.rpc_url)
                return network
        raise ConfigurationError(f"Unsupported chain ID: {self.agent.chain_id}")


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")
_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _as_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def normalize_private_key(raw: str) -> str:
    """Return the key with a 0x prefix, raising on anything but 32 hex bytes."""
    key = raw.strip()
    if not key.startswith("0x"):
        key = f"0x{key}"
    if not _PRIVATE_KEY_RE.match(key):
        raise ConfigurationError(
            "Invalid private key format. Expected 64 hex characters (32 bytes), "
            f"got: {len(key) - 2} characters"
        )
    return key


def _build_agent(raw: dict[str, Any]) -> AgentConfig:
    chain_raw = raw.get("chain_id", "")
    if chain_raw in ("", None):
        raise ConfigurationError(
            "Missing required configuration: CHAIN_ID (8217 for KAIA, 96 for KUB, 42793 for Etherlink)"
        )
    try:
        chain_id = int(chain_raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid CHAIN_ID: {chain_raw}") from e

    private_key = raw.get("private_key") or None
    mode = str(raw.get("mode") or "").strip().lower()

    if mode == "readonly":
        private_key = None
    elif mode == "transaction" and not private_key:
        raise ConfigurationError("Transaction mode requires a private key (PRIVATE_KEY)")
    elif mode not in ("", "transaction"):
        raise ConfigurationError(f"Invalid agent mode: {mode}. Use 'readonly' or 'transaction'")

    if private_key:
        private_key = normalize_private_key(str(private_key))

    return AgentConfig(
        chain_id=chain_id,
        rpc_url=raw.get("rpc_url", "") or "",
        private_key=private_key,
        mode="transaction" if private_key else "readonly",
        await_prerequisite_receipts=_as_bool(raw.get("await_prerequisite_receipts"), True),
        verify_collateral_factors=_as_bool(raw.get("verify_collateral_factors"), False),
        collateral_factor_tolerance=float(raw.get("collateral_factor_tolerance", 5.0)),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        receipt_timeout=int(raw.get("receipt_timeout", 120)),
    )


def _parse_decimals(network_id: str, token: dict[str, Any]) -> int:
    value = token.get("decimals")
    if isinstance(value, bool) or not re.fullmatch(r"\d+", str(value).strip()):
        raise ConfigurationError(
            f"Network '{network_id}' token '{token.get('symbol', '')}' needs integer decimals, got {value!r}"
        )
    return int(value)


def _build_tokens(network_id: str, raw: list[dict[str, Any]]) -> tuple[TokenConfig, ...]:
    tokens: list[TokenConfig] = []
    for t in raw:
        tokens.append(
            TokenConfig(
                symbol=t.get("symbol", ""),
                name=t.get("name", ""),
                decimals=_parse_decimals(network_id, t),
                address=t.get("address", ""),
                lending=_as_bool(t.get("lending"), True),
            )
        )
    return tuple(tokens)


def _build_networks(raw: dict[str, Any]) -> dict[str, NetworkConfig]:
    networks: dict[str, NetworkConfig] = {}
    for name, cfg in raw.items():
        networks[name] = NetworkConfig(
            network_id=name,
            chain_id=int(cfg.get("chain_id", 0)),
            name=cfg.get("name", name),
            native_currency=cfg.get("native_currency", ""),
            rpc_url=cfg.get("rpc_url", ""),
            block_explorer=cfg.get("block_explorer", ""),
            blocks_per_year=int(cfg.get("blocks_per_year", 0)),
            contracts=dict(cfg.get("contracts", {})),
            tokens=_build_tokens(name, cfg.get("tokens", [])),
            token_aliases={
                str(k).lower(): v for k, v in (cfg.get("token_aliases") or {}).items()
            },
        )
    return networks


def _build_price_api(raw: dict[str, Any]) -> PriceApiConfig:
    return PriceApiConfig(
        url=raw.get("url") or PriceApiConfig.url,
        timeout=int(raw.get("timeout", 10)),
        symbol_map=dict(raw.get("symbol_map", {})),
        derived_symbols=dict(raw.get("derived_symbols", {})),
    )


def _build_server(raw: dict[str, Any]) -> ServerConfig:
    return ServerConfig(name=raw.get("name", "kilolend"))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        agent=_build_agent(raw.get("agent", {})),
        networks=_build_networks(raw.get("networks", {})),
        price_api=_build_price_api(raw.get("price_api", {})),
        server=_build_server(raw.get("server", {})),
    )

    _validate(cfg)
    network = cfg.active_network
    logger.info(
        "Configuration loaded from %s: %s mode on %s (chain %d)",
        config_path,
        cfg.agent.mode,
        network.network_id,
        network.chain_id,
    )
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.networks:
        raise ConfigurationError("At least one network must be configured")

    supported = sorted(n.chain_id for n in cfg.networks.values())
    if cfg.agent.chain_id not in supported:
        raise ConfigurationError(
            f"Invalid CHAIN_ID: {cfg.agent.chain_id}. Supported chain IDs: "
            + ", ".join(str(c) for c in supported)
        )

    for network in cfg.networks.values():
        _validate_network(network)


def _validate_network(network: NetworkConfig) -> None:
    """Check that the contract and token tables describe the same markets."""
    if not network.comptroller:
        raise ConfigurationError(f"Network '{network.network_id}' has no Comptroller")
    if network.blocks_per_year <= 0:
        raise ConfigurationError(f"Network '{network.network_id}' has no blocks_per_year")

    token_symbols = {t.symbol.lower(): t for t in network.tokens}
    market_roots = {root.lower() for root in network.markets}

    for root in network.markets:
        if root.lower() not in token_symbols:
            raise ConfigurationError(
                f"Network '{network.network_id}' market '{MARKET_PREFIX}{root}' has no token entry"
            )

    for token in network.tokens:
        if token.decimals < 0:
            raise ConfigurationError(
                f"Network '{network.network_id}' token '{token.symbol}' has negative decimals"
            )
        # checksum casing is not enforced
        if token.address.lower() != NATIVE_TOKEN_ADDRESS.lower() and not Web3.is_address(
            token.address.lower()
        ):
            raise ConfigurationError(
                f"Network '{network.network_id}' token '{token.symbol}' has invalid address "
                f"{token.address!r}"
            )
        if token.lending and token.symbol.lower() not in market_roots:
            raise ConfigurationError(
                f"Network '{network.network_id}' token '{token.symbol}' has no market "
                "(set lending: false if intentional)"
            )
