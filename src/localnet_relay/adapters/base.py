"""
Common interface of the chain adapters.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from ..constants import NON_EVM_REVERT_GAS_LIMIT, chain_name
from ..errors import UnsupportedOperation
from ..models import CallOptions, ForeignCoin, InboundEvent, RevertOptions
from ..utils.chain_logger import get_chain_logger

EventCallback = Callable[[InboundEvent], Awaitable[Any]]


class ChainAdapter(ABC):
    """
    One chain family's view of the network.

    Adapters observe their gateway and turn its activity into inbound events,
    and expose the outbound primitives the orchestrator needs. Primitives a
    chain does not support raise ``UnsupportedOperation``.
    """

    is_evm: bool = False

    def __init__(self, chain_id: str):
        self.chain_id = chain_id
        self.name = chain_name(chain_id)
        self.logger = get_chain_logger(f"{self.__module__}.{self.__class__.__name__}", chain_id)

    @abstractmethod
    async def observe_inbound(self, on_event: EventCallback) -> None:
        """Watch the gateway and await ``on_event`` for every inbound event. Runs until stopped."""

    async def stop(self) -> None:
        """Stop observation."""

    def encode_sender(self, sender: str) -> bytes:
        """Bytes form of an origin sender used in hub contexts."""
        return sender.encode("utf-8")

    def decode_recipient(self, receiver: bytes | str) -> str:
        """Chain-native recipient string from the bytes carried by hub events."""
        if isinstance(receiver, str):
            return receiver
        return bytes(receiver).decode("utf-8")

    def revert_gas_limit(self, revert_options: RevertOptions) -> int:
        """Gas limit used to quote the revert fee on this chain."""
        return NON_EVM_REVERT_GAS_LIMIT

    async def execute(
        self,
        receiver: str,
        message: bytes,
        *,
        sender: str,
        call_options: CallOptions,
        amount: int = 0,
    ) -> Any:
        """Call a contract on this chain on behalf of a hub sender."""
        raise UnsupportedOperation(f"{self.name} does not support execute")

    async def withdraw(self, recipient: str, amount: int, coin: ForeignCoin) -> Any:
        """Release ``amount`` of ``coin`` to ``recipient``."""
        raise UnsupportedOperation(f"{self.name} does not support withdraw")

    async def withdraw_and_call(
        self,
        recipient: str,
        amount: int,
        coin: ForeignCoin,
        message: bytes,
        *,
        sender: str,
        call_options: CallOptions,
    ) -> Any:
        """Release ``amount`` of ``coin`` and invoke ``recipient`` with ``message``."""
        raise UnsupportedOperation(f"{self.name} does not support withdraw and call")

    async def execute_revert(
        self,
        *,
        amount: int,
        coin: ForeignCoin,
        sender: str,
        revert_options: RevertOptions,
    ) -> Any:
        """Return ``amount`` of ``coin`` on this (origin) chain after a failed deposit."""
        raise UnsupportedOperation(f"{self.name} does not support revert")

    def get_status(self) -> dict[str, Any]:
        return {"chain_id": self.chain_id, "name": self.name}
