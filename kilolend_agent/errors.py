"""Error taxonomy and normalization of raw chain/contract failures."""
from __future__ import annotations

import functools
import logging
import re
from typing import Any, Awaitable, Callable, TypeVar

from web3.exceptions import ContractLogicError, TimeExhausted

logger = logging.getLogger(__name__)

_TX_HASH_RE = re.compile(r"0x[0-9a-fA-F]{64}")

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class KiloLendError(Exception):
    """Base class for every error surfaced to callers of the agent."""


class ConfigurationError(KiloLendError, ValueError):
    """Invalid network selection, signing key or contract tables."""


class ValidationError(KiloLendError, ValueError):
    """Bad caller input, detected before any network call."""


class InsufficientBalanceError(KiloLendError):
    """Pre-flight balance check failed."""

    def __init__(self, symbol: str, requested: str, available: str) -> None:
        self.symbol = symbol
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient {symbol} balance. Requested: {requested}, available: {available}"
        )


class TransactionModeError(KiloLendError):
    """A state-changing operation was attempted without a signing identity."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "This operation requires transaction mode. "
            "Configure a signing key (PRIVATE_KEY) to enable transactions."
        )


class ContractReadError(KiloLendError):
    """A read-only contract call failed."""


class ContractCallError(KiloLendError):
    """A state-changing contract call failed or reverted."""


class TransactionSubmitError(ContractCallError):
    """The node rejected a signed transaction."""


class TransactionTimeoutError(ContractCallError):
    """No receipt was observed for a submitted transaction."""

    def __init__(self, tx_hash: str, message: str | None = None) -> None:
        self.tx_hash = tx_hash
        super().__init__(message or f"Transaction {tx_hash} was not confirmed in time")


class ProtocolError(KiloLendError):
    """A contract returned a nonzero protocol error code."""

    def __init__(self, source: str, code: int) -> None:
        self.source = source
        self.code = code
        super().__init__(f"{source} error: {code}")


class PriceFeedError(KiloLendError):
    """The price API returned no usable data."""


def normalize_error(exc: BaseException) -> KiloLendError:
    """Map a raw exception onto the agent's error taxonomy.

    Taxonomy errors pass through untouched. Anything else is reduced to a
    short message; the raw detail only goes to the debug log.
    """
    if isinstance(exc, KiloLendError):
        return exc

    logger.debug("Normalizing raw error: %r", exc)

    if isinstance(exc, ContractLogicError):
        reason = getattr(exc, "message", None) or str(exc)
        return ContractCallError(f"Transaction reverted: {reason}")
    if isinstance(exc, TimeExhausted):
        match = _TX_HASH_RE.search(str(exc))
        if match:
            return TransactionTimeoutError(match.group(0))
        return ContractCallError("Timed out waiting for transaction receipt")

    text = str(exc).lower()
    if "insufficient funds" in text:
        return ContractCallError("Insufficient funds for gas * price + value")
    if "nonce too low" in text or "replacement transaction underpriced" in text:
        return TransactionSubmitError("Transaction nonce conflict, retry after pending transactions settle")
    if "user rejected" in text:
        return TransactionSubmitError("Transaction rejected by signer")
    return ContractCallError("Contract call failed")


def normalize_errors(func: F) -> F:
    """Decorator funnelling every failure of an async operation through normalize_error."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            normalized = normalize_error(e)
            if normalized is e:
                raise
            raise normalized from e

    return wrapper  # type: ignore[return-value]
