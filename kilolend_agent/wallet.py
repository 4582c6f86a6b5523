"""Signing identity derived from an optional private key."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .config import normalize_private_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletIdentity:
    """Address plus the local account that signs for it."""

    address: str
    account: LocalAccount

    def __repr__(self) -> str:
        return f"WalletIdentity(address={self.address!r})"


def build_identity(private_key: str | None) -> WalletIdentity | None:
    """Return the identity for ``private_key``, or None for read-only use.

    The key itself is never logged.
    """
    if not private_key:
        logger.info("No signing key configured; running in read-only mode")
        return None

    account: LocalAccount = Account.from_key(normalize_private_key(private_key))
    logger.info("Signing identity initialized. Address=%s", account.address)
    return WalletIdentity(address=account.address, account=account)
