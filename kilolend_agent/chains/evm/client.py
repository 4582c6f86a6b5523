"""EVM RPC client: contract reads, signed submissions, receipts."""
import logging
from typing import Any, Sequence

from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from ...config import NetworkConfig
from ...errors import (
    ContractReadError,
    KiloLendError,
    TransactionModeError,
    TransactionSubmitError,
    TransactionTimeoutError,
    normalize_error,
)
from ...wallet import WalletIdentity

logger = logging.getLogger(__name__)

_FALLBACK_PRIORITY_FEE = Web3.to_wei(1, "gwei")


def _checksum_args(args: Sequence[Any]) -> list[Any]:
    """Checksum every address-looking argument, including inside lists."""
    out: list[Any] = []
    for arg in args:
        if isinstance(arg, str) and Web3.is_address(arg):
            out.append(Web3.to_checksum_address(arg))
        elif isinstance(arg, (list, tuple)):
            out.append(_checksum_args(arg))
        else:
            out.append(arg)
    return out


class EvmClient:
    """Async client for one EVM chain, optionally bound to a signing identity."""

    def __init__(
        self,
        network: NetworkConfig,
        identity: WalletIdentity | None = None,
        web3: AsyncWeb3 | None = None,
        rpc_timeout: int = 30,
        receipt_timeout: int = 120,
    ) -> None:
        self.network = network
        self.identity = identity
        self.receipt_timeout = receipt_timeout
        self.web3 = web3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                network.rpc_url, request_kwargs={"timeout": rpc_timeout}
            )
        )

    @property
    def address(self) -> str | None:
        return self.identity.address if self.identity else None

    def _function(self, address: str, abi: list[dict[str, Any]], function_name: str, args: Sequence[Any]):
        contract = self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
        return getattr(contract.functions, function_name)(*_checksum_args(args))

    async def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: Sequence[Any] = (),
    ) -> Any:
        """Call a view function and return its decoded result."""
        try:
            return await self._function(address, abi, function_name, args).call()
        except Exception as e:
            logger.debug("Read %s on %s failed: %r", function_name, address, e)
            raise ContractReadError(f"Failed to read {function_name} from {address}") from e

    async def _fee_params(self) -> dict[str, int]:
        """EIP-1559 fees when the chain reports a base fee, legacy gasPrice otherwise."""
        latest = await self.web3.eth.get_block("latest")
        base_fee = int(latest.get("baseFeePerGas") or 0)
        if not base_fee:
            return {"gasPrice": int(await self.web3.eth.gas_price)}

        try:
            priority = int(await self.web3.eth.max_priority_fee)
        except Exception as e:
            logger.debug("max_priority_fee unavailable (%s); using 1 gwei", e)
            priority = int(_FALLBACK_PRIORITY_FEE)
        return {
            "maxPriorityFeePerGas": priority,
            "maxFeePerGas": base_fee * 2 + priority,
        }

    def _require_identity(self) -> WalletIdentity:
        if self.identity is None:
            raise TransactionModeError()
        return self.identity

    async def _base_tx(self, value: int) -> dict[str, Any]:
        identity = self._require_identity()
        tx: dict[str, Any] = {
            "from": identity.address,
            "nonce": await self.web3.eth.get_transaction_count(identity.address, "pending"),
            "value": int(value),
            "chainId": self.network.chain_id,
        }
        tx.update(await self._fee_params())
        return tx

    async def _sign_and_send(self, tx: dict[str, Any]) -> str:
        identity = self._require_identity()
        signed = identity.account.sign_transaction(tx)
        tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        hex_hash = Web3.to_hex(tx_hash)
        logger.info("Broadcast transaction %s on %s", hex_hash, self.network.network_id)
        return hex_hash

    async def submit_transaction(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: Sequence[Any] = (),
        value: int = 0,
    ) -> str:
        """Build, sign and broadcast a contract call; returns the tx hash."""
        self._require_identity()
        try:
            tx = await self._function(address, abi, function_name, args).build_transaction(
                await self._base_tx(value)
            )
            return await self._sign_and_send(tx)
        except KiloLendError:
            raise
        except ContractLogicError as e:
            raise normalize_error(e) from e
        except Exception as e:
            raise TransactionSubmitError(
                f"Failed to submit {function_name}: {normalize_error(e)}"
            ) from e

    async def send_native(self, to: str, value: int) -> str:
        """Transfer the native asset; returns the tx hash."""
        self._require_identity()
        try:
            tx = await self._base_tx(value)
            tx["to"] = Web3.to_checksum_address(to)
            tx["gas"] = int(
                await self.web3.eth.estimate_gas(
                    {"from": tx["from"], "to": tx["to"], "value": tx["value"]}
                )
            )
            return await self._sign_and_send(tx)
        except KiloLendError:
            raise
        except Exception as e:
            raise TransactionSubmitError(
                f"Failed to send native transfer: {normalize_error(e)}"
            ) from e

    async def get_native_balance(self, address: str) -> int:
        try:
            return int(await self.web3.eth.get_balance(Web3.to_checksum_address(address)))
        except Exception as e:
            logger.debug("get_balance for %s failed: %r", address, e)
            raise ContractReadError(f"Failed to read native balance of {address}") from e

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        """Block until the transaction is mined, up to ``receipt_timeout`` seconds."""
        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as e:
            raise TransactionTimeoutError(tx_hash) from e
        logger.info("Transaction %s mined with status %s", tx_hash, receipt.get("status"))
        return dict(receipt)
