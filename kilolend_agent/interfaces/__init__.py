"""Protocol interfaces for the KiloLend wallet agent."""
from .chain import ChainClient
from .price_oracle import PriceOracle

__all__ = ["ChainClient", "PriceOracle"]
