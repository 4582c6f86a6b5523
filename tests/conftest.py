"""Shared test fixtures."""
from __future__ import annotations

from pathlib import Path

import pytest

from fakes import (
    C_KAIA,
    C_STKAIA,
    C_USDT,
    COMPTROLLER,
    SAMPLE_YAML,
    STKAIA,
    TEST_PRIVATE_KEY,
    USDT,
    FakeChainClient,
    FakePriceOracle,
)
from kilolend_agent.config import (
    NATIVE_TOKEN_ADDRESS,
    AgentConfig,
    NetworkConfig,
    TokenConfig,
)
from kilolend_agent.context import AgentContext
from kilolend_agent.wallet import WalletIdentity, build_identity


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def kaia_network() -> NetworkConfig:
    return NetworkConfig(
        network_id="kaia",
        chain_id=8217,
        name="KAIA",
        native_currency="KAIA",
        rpc_url="https://rpc.kaia.example.com",
        block_explorer="https://kaiascan.io",
        blocks_per_year=15_768_000,
        contracts={
            "Comptroller": COMPTROLLER,
            "cUSDT": C_USDT,
            "cKAIA": C_KAIA,
            "cStKAIA": C_STKAIA,
        },
        tokens=(
            TokenConfig(symbol="USDT", name="Tether USD", decimals=6, address=USDT),
            TokenConfig(symbol="KAIA", name="KAIA", decimals=18, address=NATIVE_TOKEN_ADDRESS),
            TokenConfig(symbol="stKAIA", name="Lair Staked KAIA", decimals=18, address=STKAIA),
        ),
        token_aliases={"stkaia": "stKAIA"},
    )


@pytest.fixture()
def agent_settings() -> AgentConfig:
    return AgentConfig(chain_id=8217, private_key=TEST_PRIVATE_KEY, mode="transaction")


@pytest.fixture()
def identity() -> WalletIdentity:
    ident = build_identity(TEST_PRIVATE_KEY)
    assert ident is not None
    return ident


@pytest.fixture()
def sample_prices() -> dict[str, float]:
    return {"USDT": 1.0, "KAIA": 0.2, "stKAIA": 0.25}


@pytest.fixture()
def price_oracle(sample_prices: dict[str, float]) -> FakePriceOracle:
    return FakePriceOracle(sample_prices)


@pytest.fixture()
def fake_client(identity: WalletIdentity) -> FakeChainClient:
    return FakeChainClient(identity.address)


@pytest.fixture()
def tx_ctx(
    kaia_network: NetworkConfig,
    fake_client: FakeChainClient,
    identity: WalletIdentity,
    price_oracle: FakePriceOracle,
    agent_settings: AgentConfig,
) -> AgentContext:
    return AgentContext(
        network=kaia_network,
        client=fake_client,
        identity=identity,
        prices=price_oracle,
        settings=agent_settings,
    )


@pytest.fixture()
def readonly_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture()
def readonly_ctx(
    kaia_network: NetworkConfig,
    readonly_client: FakeChainClient,
    price_oracle: FakePriceOracle,
) -> AgentContext:
    return AgentContext(
        network=kaia_network,
        client=readonly_client,
        identity=None,
        prices=price_oracle,
        settings=AgentConfig(chain_id=8217),
    )


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove agent variables so a developer .env cannot leak into tests."""
    for var in ("CHAIN_ID", "RPC_URL", "PRIVATE_KEY", "AGENT_MODE", "PRICE_URL"):
        monkeypatch.setenv(var, "")
    return monkeypatch


@pytest.fixture()
def sample_yaml_path(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> Path:
    clean_env.setenv("CHAIN_ID", "8217")
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
