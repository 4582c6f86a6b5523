"""Price oracle implementations."""
from .kilolend_api import KiloLendPriceApi

__all__ = ["KiloLendPriceApi"]
