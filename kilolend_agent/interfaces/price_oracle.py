"""Price oracle protocol — price feed abstraction."""
from typing import Any, Protocol


class PriceOracle(Protocol):
    """Abstract interface for fetching asset prices."""

    async def fetch_prices(self, network_id: str) -> dict[str, float]: ...

    async def fetch_price_entries(
        self, network_id: str | None = None
    ) -> list[dict[str, Any]]: ...
