"""Unit tests for token and market symbol resolution."""
from __future__ import annotations

from dataclasses import replace

import pytest

from fakes import C_STKAIA, C_USDT
from kilolend_agent.config import NetworkConfig
from kilolend_agent.errors import ValidationError
from kilolend_agent.protocols.kilolend.resolver import SymbolResolver


@pytest.fixture()
def resolver(kaia_network: NetworkConfig) -> SymbolResolver:
    return SymbolResolver(kaia_network)


class TestResolve:
    def test_case_insensitive_token(self, resolver: SymbolResolver) -> None:
        assert resolver.resolve("usdt") == "USDT"
        assert resolver.resolve("STKAIA") == "stKAIA"

    def test_idempotent(self, resolver: SymbolResolver) -> None:
        for raw in ("usdt", "Kaia", "STKAIA", "unknown"):
            once = resolver.resolve(raw)
            assert resolver.resolve(once) == once

    def test_alias(self, kaia_network: NetworkConfig) -> None:
        network = replace(kaia_network, token_aliases={"tether": "USDT"})
        assert SymbolResolver(network).resolve("Tether") == "USDT"

    def test_alias_to_unknown_token_ignored(self, kaia_network: NetworkConfig) -> None:
        network = replace(kaia_network, token_aliases={"tether": "USDC"})
        assert SymbolResolver(network).resolve("tether") == "tether"

    def test_market_root_without_token(self, kaia_network: NetworkConfig) -> None:
        contracts = {**kaia_network.contracts, "cBORA": "0x" + "a6" * 20}
        network = replace(kaia_network, contracts=contracts)
        assert SymbolResolver(network).resolve("bora") == "BORA"

    def test_unknown_passthrough(self, resolver: SymbolResolver) -> None:
        assert resolver.resolve("DOGE") == "DOGE"


class TestMarkets:
    def test_resolve_for_market_uses_market_spelling(self, resolver: SymbolResolver) -> None:
        assert resolver.resolve_for_market("stkaia") == "StKAIA"
        assert resolver.resolve_for_market("usdt") == "USDT"

    def test_unknown_symbol_not_routed_to_variant(self, resolver: SymbolResolver) -> None:
        assert resolver.resolve_for_market("doge") == "doge"

    def test_market_address(self, resolver: SymbolResolver) -> None:
        assert resolver.market_address("stKAIA") == C_STKAIA
        assert resolver.market_address("USDT") == C_USDT

    def test_missing_market(self, resolver: SymbolResolver) -> None:
        with pytest.raises(ValidationError, match="Market cDOGE not available"):
            resolver.market_address("DOGE")

    def test_market_symbol_for_address(self, resolver: SymbolResolver) -> None:
        assert resolver.market_symbol_for_address(C_STKAIA.upper().replace("0X", "0x")) == "stKAIA"
        assert resolver.market_symbol_for_address("0x" + "ff" * 20) is None


class TestTokens:
    def test_decimals(self, resolver: SymbolResolver) -> None:
        assert resolver.decimals("usdt") == 6
        assert resolver.decimals("KAIA") == 18

    def test_decimals_unknown(self, resolver: SymbolResolver) -> None:
        with pytest.raises(ValidationError, match="not supported on KAIA"):
            resolver.decimals("DOGE")

    def test_is_native(self, resolver: SymbolResolver) -> None:
        assert resolver.is_native("kaia") is True
        assert resolver.is_native("USDT") is False

    def test_require_token(self, resolver: SymbolResolver) -> None:
        assert resolver.require_token("stkaia").symbol == "stKAIA"
        with pytest.raises(ValidationError, match="Token doge not supported"):
            resolver.require_token("doge")
