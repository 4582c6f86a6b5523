"""KiloLend (Compound-fork) protocol: resolution, reads and transactions."""
from .markets import MarketReader
from .positions import PositionReader
from .resolver import SymbolResolver
from .transactions import TransactionOrchestrator

__all__ = ["MarketReader", "PositionReader", "SymbolResolver", "TransactionOrchestrator"]
