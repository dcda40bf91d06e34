"""
Serialized transaction submission per signing account.

Every outbound EVM transaction goes through a ``TransactionSigner``. The
signer holds an ``asyncio.Lock`` for the whole submit-and-confirm cycle, so
one account never has two transactions in flight and the nonce fetched for
the next transaction is always the confirmed on-chain value.
"""

import asyncio
import logging
from typing import Any

from web3 import AsyncWeb3
from web3.contract.async_contract import AsyncContractFunction
from web3.exceptions import ContractLogicError, Web3Exception
from web3.types import TxParams, TxReceipt

from ..errors import ExecutionError

logger = logging.getLogger(__name__)


class TransactionSigner:
    """One account on one endpoint with a single-slot submission queue."""

    def __init__(self, w3: AsyncWeb3, address: str, receipt_timeout: float = 60.0):
        """
        Initialize the signer.

        Args:
            w3: Connection whose middleware can sign for ``address`` (or a
                node that has the address unlocked)
            address: Sending account
            receipt_timeout: Seconds to wait for a receipt
        """
        self.w3 = w3
        self.address = AsyncWeb3.to_checksum_address(address)
        self.receipt_timeout = receipt_timeout
        self._lock = asyncio.Lock()
        self.submitted = 0

    async def transact(
        self,
        function: AsyncContractFunction,
        tx_params: dict[str, Any] | None = None,
        description: str = "",
    ) -> TxReceipt:
        """
        Submit a contract call and wait for it to be mined.

        Args:
            function: Bound contract function
            tx_params: Extra transaction fields (gas, value)
            description: Human readable label for errors

        Returns:
            The successful receipt

        Raises:
            ExecutionError: If the call is rejected or the receipt status is 0
        """
        params: TxParams = {"from": self.address, **(tx_params or {})}
        label = description or getattr(function, "fn_name", "transaction")
        async with self._lock:
            try:
                tx_hash = await function.transact(params)
            except (ContractLogicError, Web3Exception, ValueError) as e:
                raise ExecutionError(f"{label} rejected: {e}") from e
            return await self._confirm(tx_hash, label)

    async def send_value(self, to: str, value: int, description: str = "") -> TxReceipt:
        """Send a plain native-asset transfer."""
        label = description or f"transfer of {value} to {to}"
        async with self._lock:
            try:
                tx_hash = await self.w3.eth.send_transaction(
                    {
                        "from": self.address,
                        "to": AsyncWeb3.to_checksum_address(to),
                        "value": value,
                    }
                )
            except (Web3Exception, ValueError) as e:
                raise ExecutionError(f"{label} rejected: {e}") from e
            return await self._confirm(tx_hash, label)

    async def _confirm(self, tx_hash: bytes, label: str) -> TxReceipt:
        self.submitted += 1
        try:
            receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except Web3Exception as e:
            raise ExecutionError(f"{label} not confirmed: {e}") from e

        if (status := receipt.get("status", 0)) != 1:
            raise ExecutionError(f"{label} reverted (status={status}, tx={AsyncWeb3.to_hex(tx_hash)})")
        logger.debug(f"{label} confirmed in block {receipt.get('blockNumber')}")
        return receipt


class SignerPool:
    """Hands out one ``TransactionSigner`` per (endpoint, account)."""

    def __init__(self) -> None:
        self._signers: dict[tuple[str, str], TransactionSigner] = {}

    def get(self, w3: AsyncWeb3, rpc_url: str, address: str) -> TransactionSigner:
        key = (rpc_url, address.lower())
        if key not in self._signers:
            self._signers[key] = TransactionSigner(w3, address)
        return self._signers[key]

    def __len__(self) -> int:
        return len(self._signers)
