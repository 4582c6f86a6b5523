"""Chain client protocol — EVM RPC abstraction."""
from typing import Any, Protocol, Sequence


class ChainClient(Protocol):
    """Abstract interface for reading from and transacting on one EVM chain."""

    @property
    def address(self) -> str | None: ...

    async def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: Sequence[Any] = (),
    ) -> Any: ...

    async def submit_transaction(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: Sequence[Any] = (),
        value: int = 0,
    ) -> str: ...

    async def send_native(self, to: str, value: int) -> str: ...

    async def get_native_balance(self, address: str) -> int: ...

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]: ...
