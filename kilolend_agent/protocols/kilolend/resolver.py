"""Case-insensitive token and market symbol resolution for one network."""
from __future__ import annotations

from ...config import MARKET_PREFIX, NetworkConfig, TokenConfig
from ...errors import ValidationError
from .abis import NATIVE_DECIMALS

# Market roots historically spelled differently from their token symbol.
_MARKET_VARIANTS = ("StKAIA", "stKAIA", "STKAIA")


class SymbolResolver:
    """Map user-supplied symbols onto the network's token and market tables."""

    def __init__(self, network: NetworkConfig) -> None:
        self._network = network
        self._tokens = {t.symbol.lower(): t for t in network.tokens}
        self._markets = network.markets

    def resolve(self, raw: str) -> str:
        """Canonical token symbol for ``raw``; first match wins.

        1. token symbol, ignoring case
        2. network alias table (the target must be a known token)
        3. market root from the contract table, preferring the token spelling
        4. the input unchanged
        """
        needle = raw.strip().lower()

        token = self._tokens.get(needle)
        if token:
            return token.symbol

        alias = self._network.token_aliases.get(needle)
        if alias and alias.lower() in self._tokens:
            return self._tokens[alias.lower()].symbol

        for root in self._markets:
            if root.lower() == needle:
                token = self._tokens.get(root.lower())
                return token.symbol if token else root

        return raw

    def resolve_for_market(self, raw: str) -> str:
        """Symbol under which the market for ``raw`` is keyed in the contract table."""
        resolved = self.resolve(raw)
        if resolved in self._markets:
            return resolved
        if raw in self._markets:
            return raw
        if resolved.lower() == _MARKET_VARIANTS[0].lower():
            for variant in _MARKET_VARIANTS:
                if variant in self._markets:
                    return variant
        return resolved

    def token(self, symbol: str) -> TokenConfig | None:
        return self._tokens.get(symbol.strip().lower())

    def require_token(self, symbol: str) -> TokenConfig:
        token = self.token(self.resolve(symbol))
        if token is None:
            raise ValidationError(
                f"Token {symbol} not supported on {self._network.name}"
            )
        return token

    def market_address(self, symbol: str) -> str:
        """Market address for ``symbol``; raises when the network has none."""
        key = self.resolve_for_market(symbol)
        address = self._markets.get(key)
        if address is None:
            for root, candidate in self._markets.items():
                if root.lower() == key.lower():
                    address = candidate
                    break
        if address is None:
            raise ValidationError(f"Market {MARKET_PREFIX}{key} not available")
        return address

    def market_symbol_for_address(self, address: str) -> str | None:
        """Token symbol of the market at ``address``, or None if unknown."""
        target = address.lower()
        for root, candidate in self._markets.items():
            if candidate.lower() == target:
                token = self._tokens.get(root.lower())
                return token.symbol if token else root
        return None

    def decimals(self, symbol: str) -> int:
        """Underlying decimals for ``symbol``."""
        token = self.token(self.resolve(symbol))
        if token is not None:
            return token.decimals
        if symbol.strip().lower() == self._network.native_currency.lower():
            return NATIVE_DECIMALS
        raise ValidationError(f"Token {symbol} not supported on {self._network.name}")

    def is_native(self, symbol: str) -> bool:
        token = self.token(self.resolve(symbol))
        if token is not None:
            return token.is_native
        return symbol.strip().lower() == self._network.native_currency.lower()
